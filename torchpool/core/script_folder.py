"""Per-orchestrator working directory for generated code and worker artifacts."""
from __future__ import annotations

import shutil
import tempfile
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple, Union

from .errors import ScriptFolderError
from .logging import core_logger

DEFAULT_PREFIX = "torchpool-model-"


def _record_fields(record: Any) -> Tuple[str, Union[str, bytes]]:
    """Accept ``{"path": ..., "data": ...}`` mappings or objects with those attributes."""
    if isinstance(record, dict):
        path, data = record.get("path"), record.get("data")
    else:
        path, data = getattr(record, "path", None), getattr(record, "data", None)
    if not path or data is None:
        raise ScriptFolderError(f"file record needs 'path' and 'data': {record!r}"[:200])
    if not isinstance(data, (str, bytes, bytearray)):
        raise ScriptFolderError(f"file record data for {path} must be str or bytes, got {type(data).__name__}")
    return str(path), data


class ScriptFolder:
    def __init__(self, root: Union[str, Path]):
        self.root = Path(root).resolve()

    @classmethod
    def create(cls, prefix: str = DEFAULT_PREFIX, base_dir: Optional[Union[str, Path]] = None) -> "ScriptFolder":
        root = tempfile.mkdtemp(prefix=prefix, dir=str(base_dir) if base_dir else None)
        core_logger.debug(f"created script folder {root}")
        return cls(root)

    def path(self, name: Union[str, Path]) -> Path:
        p = (self.root / name).resolve()
        if p != self.root and self.root not in p.parents:
            raise ScriptFolderError(f"path escapes script folder: {name}")
        return p

    def write_files(self, records: Iterable[Any]) -> int:
        count = 0
        for record in records:
            rel, data = _record_fields(record)
            target = self.path(rel)
            target.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(data, str):
                target.write_text(data, encoding="utf-8")
            else:
                target.write_bytes(bytes(data))
            count += 1
        return count

    def copy_library_files(self, dirs: Iterable[Union[str, Path]]) -> int:
        count = 0
        for d in dirs:
            src = Path(d)
            if not src.is_dir():
                raise ScriptFolderError(f"library directory not found: {src}")
            for f in sorted(src.iterdir()):
                if f.is_file():
                    shutil.copyfile(f, self.root / f.name)
                    count += 1
        return count

    def diagram_files(self, pattern: str = "*.dot") -> List[Path]:
        return sorted(p for p in self.root.glob(pattern) if p.is_file())

    def exists(self) -> bool:
        return self.root.is_dir()

    def cleanup(self):
        shutil.rmtree(self.root, ignore_errors=True)

    def __repr__(self):
        return f"ScriptFolder({str(self.root)!r})"


__all__ = ["ScriptFolder", "DEFAULT_PREFIX"]
