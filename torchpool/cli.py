"""CLI entrypoint for torchpool."""
from __future__ import annotations
import argparse
import asyncio
import base64
import json
import pathlib
import sys
from typing import Dict, List

from .core.errors import OrchestratorError
from .core.logging import add_file_handler, core_logger


def build_parser():
    p = argparse.ArgumentParser(prog="torchpool", description="Training worker pool orchestrator")
    p.add_argument("--config", help="YAML file with pool settings")
    p.add_argument(
        "--log-dir",
        help="Directory to write log file (torchpool.log). If not set, only stderr is used.",
    )
    sub = p.add_subparsers(dest="command")
    run = sub.add_parser("run", help="Start workers on a folder of generated files")
    run.add_argument("--files", required=True, help="Directory whose files are treated as generated code")
    run.add_argument("--workers", type=int, help="Number of worker processes (overrides config)")
    run.add_argument("--stats", action="store_true", help="Print worker statistics as JSON")
    run.add_argument("--diagrams", help="Write rendered architecture diagrams (SVG) to this directory")
    run.add_argument("--keep", action="store_true", help="Keep the script folder after exit")
    diagrams = sub.add_parser("diagrams", help="Render diagram files already present in a folder")
    diagrams.add_argument("--folder", required=True, help="Folder containing *.dot files")
    diagrams.add_argument("--out", help="Output directory for SVG files (default: print JSON)")
    diagrams.add_argument("--attempts", type=int, help="Polling attempts before giving up")
    return p


def _read_generated(files_dir: pathlib.Path) -> List[Dict[str, bytes]]:
    return [
        {"path": str(f.relative_to(files_dir)), "data": f.read_bytes()}
        for f in sorted(files_dir.rglob("*"))
        if f.is_file()
    ]


def _write_diagrams(results, out_dir: pathlib.Path) -> int:
    out_dir.mkdir(parents=True, exist_ok=True)
    failures = 0
    for r in results:
        if not r.ok:
            print(f"{r.file}: {r.error}", file=sys.stderr)
            failures += 1
            continue
        (out_dir / (pathlib.Path(r.file).stem + ".svg")).write_bytes(base64.b64decode(r.data))
    return failures


async def _run(args, settings) -> int:
    from .orchestrator import TrainingOrchestrator

    files_dir = pathlib.Path(args.files)
    orch = TrainingOrchestrator(lambda: _read_generated(files_dir), settings)
    async with orch:
        if args.stats:
            print(json.dumps(await orch.get_internal_statistics(), indent=2, default=str))
        if args.diagrams:
            results = await orch.extract_network_diagrams()
            return 1 if _write_diagrams(results, pathlib.Path(args.diagrams)) else 0
    return 0


async def _diagrams(args, settings) -> int:
    from .core.controller import TrainingController
    from .core.script_folder import ScriptFolder

    controller = TrainingController(None, ScriptFolder(args.folder), settings)
    results = await controller.extract_diagrams()
    if args.out:
        return 1 if _write_diagrams(results, pathlib.Path(args.out)) else 0
    print(json.dumps([r.to_dict() for r in results], indent=2))
    return 0 if all(r.ok for r in results) else 1


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command not in ("run", "diagrams"):
        parser.print_help()
        return 1
    if args.log_dir:
        add_file_handler(core_logger, args.log_dir)
    from .core.config_loader import load_settings

    try:
        if args.command == "run":
            settings = load_settings(args.config, worker_count=args.workers, keep_script_folder=args.keep or None)
            return asyncio.run(_run(args, settings))
        settings = load_settings(args.config, diagram_attempts=args.attempts)
        return asyncio.run(_diagrams(args, settings))
    except OrchestratorError as e:
        print(f"torchpool: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
