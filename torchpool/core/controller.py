"""Single-worker training/persistence operations and artifact retrieval.

Checkpoint writes and batch preparation go to worker 0 only; loading a
checkpoint is broadcast so every worker resynchronizes its parameters.
Architecture diagrams are picked up from the script folder once a worker has
written them and rendered to SVG with an external command (graphviz ``dot``
by default).
"""
from __future__ import annotations

import asyncio
import base64
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Dict, Hashable, List, Optional, Sequence

from .config_loader import PoolSettings
from .errors import DiagramExtractionError, OrchestratorError, ProtocolError, RenderError
from .logging import core_logger
from .process_pool import ProcessPool
from .script_folder import ScriptFolder
from .worker_protocol import (
    BATCH_PREPARED,
    LOAD,
    LOADED,
    PREPARE_BATCH,
    SAVE,
    SAVED,
    STATS,
    Message,
    make_message,
)

_READ_CHUNK = 64 * 1024


@dataclass
class DiagramResult:
    file: str
    data: Optional[str] = None  # base64 SVG
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"file": self.file}
        if self.ok:
            out["data"] = self.data
        else:
            out["error"] = self.error
        return out


async def render_diagram(path: Path, settings: PoolSettings) -> bytes:
    """Run the render command for one diagram file and return its stdout."""
    argv = settings.render_argv(path)
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
        )
    except OSError as e:
        raise RenderError(f"{path.name}: cannot run {argv[0]!r}: {e}") from e

    async def _read_stdout() -> bytes:
        chunks: List[bytes] = []
        total = 0
        while True:
            chunk = await proc.stdout.read(_READ_CHUNK)
            if not chunk:
                return b"".join(chunks)
            total += len(chunk)
            if total > settings.render_max_bytes:
                if proc.returncode is None:
                    try:
                        proc.kill()
                    except ProcessLookupError:
                        pass
                raise RenderError(f"{path.name}: rendered output exceeds {settings.render_max_bytes} bytes")
            chunks.append(chunk)

    try:
        out, err = await asyncio.gather(_read_stdout(), proc.stderr.read())
    finally:
        await proc.wait()
    if proc.returncode != 0:
        detail = err.decode("utf-8", errors="replace").strip()[:500]
        raise RenderError(f"{path.name}: {argv[0]} exited with {proc.returncode}: {detail}")
    return out


class TrainingController:
    def __init__(self, pool: Optional[ProcessPool], folder: ScriptFolder, settings: Optional[PoolSettings] = None):
        self.pool = pool
        self.folder = folder
        self.settings = settings or (pool.settings if pool is not None else PoolSettings())

    def _worker0(self):
        if self.pool is None:
            raise OrchestratorError("no process pool attached")
        return self.pool.worker(0)

    @property
    def checkpoint_path(self) -> Path:
        return self.folder.path(self.settings.checkpoint_filename)

    async def prepare_batch(self, ids: Sequence[Hashable], filename: str) -> Message:
        return await self._worker0().exchange(
            make_message(PREPARE_BATCH, ids=list(ids), fileName=filename), BATCH_PREPARED
        )

    async def save_model(self) -> BinaryIO:
        """Have worker 0 write the checkpoint and return an open binary stream over it."""
        await self._worker0().exchange(make_message(SAVE), SAVED)
        try:
            return self.checkpoint_path.open("rb")
        except FileNotFoundError as e:
            raise ProtocolError(f"worker reported '{SAVED}' but {self.checkpoint_path.name} is missing") from e

    async def load_model(self):
        if self.pool is None:
            raise OrchestratorError("no process pool attached")
        await self.pool.broadcast(make_message(LOAD), LOADED)

    async def get_statistics(self) -> Any:
        reply = await self._worker0().exchange(make_message(STATS), STATS)
        return reply.get("stats")

    async def wait_for_diagrams(self) -> List[Path]:
        attempts = self.settings.diagram_attempts
        delay = self.settings.diagram_delay_s
        for attempt in range(1, attempts + 1):
            files = self.folder.diagram_files(self.settings.diagram_pattern)
            if files:
                core_logger.debug(f"found {len(files)} diagram file(s) on attempt {attempt}")
                return files
            await asyncio.sleep(delay)
        raise DiagramExtractionError(
            f"Could not find any architectural diagrams in {self.folder.root} after {attempts} attempts"
        )

    async def extract_diagrams(self) -> List[DiagramResult]:
        """Render every diagram file; a failed render is reported for that file only."""
        files = await self.wait_for_diagrams()

        async def _one(path: Path) -> DiagramResult:
            try:
                svg = await render_diagram(path, self.settings)
            except RenderError as e:
                core_logger.warning(f"diagram render failed: {e}")
                return DiagramResult(file=path.name, error=str(e))
            return DiagramResult(file=path.name, data=base64.b64encode(svg).decode("ascii"))

        return list(await asyncio.gather(*(_one(p) for p in files)))


__all__ = ["TrainingController", "DiagramResult", "render_diagram"]
