"""Logging setup for the orchestrator core.

Users can override log level with TORCHPOOL_LOG_LEVEL env var and add a file
sink with TORCHPOOL_LOG_DIR.

Also includes helpers to summarize worker payloads (stored inputs/outputs,
evaluation objects, statistics) for logging without dumping them in full.
"""
from __future__ import annotations
import logging
import os
from pathlib import Path
from typing import Any, Dict


def _summarize_sequence(seq: Any, max_items: int, level: int, max_level: int) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "type": type(seq).__name__,
        "len": len(seq) if hasattr(seq, "__len__") else None,
    }
    if level >= max_level:
        return out
    items = list(seq)[:max_items]
    out["preview_types"] = [type(x).__name__ for x in items]
    prev_vals = []
    for x in items:
        s = str(x)
        if len(s) > 120:
            s = s[:117] + "..."
        prev_vals.append(s)
    out["preview"] = prev_vals
    return out


def summarize_for_log(obj: Any, *, max_items: int = 8, max_level: int = 2) -> Any:
    """Return a compact, JSON-serializable summary suitable for logging.

    - Dict: show size, keys (truncated), and value types (not full values)
    - List/Tuple/Set: show length and a short preview of types/values
    - str: length and truncated preview
    - bytes/bytearray: length
    - Other scalars: returned directly
    """
    if obj is None or isinstance(obj, (bool, int, float)):
        return obj
    if isinstance(obj, str):
        return {"type": "str", "len": len(obj), "preview": (obj if len(obj) <= 200 else obj[:197] + "...")}
    if isinstance(obj, (bytes, bytearray)):
        return {"type": type(obj).__name__, "len": len(obj)}
    if isinstance(obj, dict):
        out: Dict[str, Any] = {"type": "dict", "len": len(obj)}
        keys = list(obj.keys())[:max_items]
        out["keys"] = [str(k) for k in keys]
        if max_level > 0:
            out["value_types"] = {str(k): type(obj[k]).__name__ for k in keys}
        return out
    if isinstance(obj, (list, tuple, set)):
        return _summarize_sequence(obj, max_items=max_items, level=0, max_level=max_level)
    return {"type": type(obj).__name__}


LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def add_file_handler(logger: logging.Logger, log_dir) -> Path:
    """Attach (once) a torchpool.log file handler under ``log_dir``."""
    p = Path(log_dir)
    p.mkdir(parents=True, exist_ok=True)
    file_path = (p / "torchpool.log").resolve()
    for h in logger.handlers:
        if isinstance(h, logging.FileHandler) and Path(h.baseFilename).resolve() == file_path:
            return file_path
    fh = logging.FileHandler(file_path, encoding="utf-8")
    fh.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(fh)
    return file_path


def get_logger(name: str = "torchpool") -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(stream_handler)
        # Optional file handler if TORCHPOOL_LOG_DIR is set
        log_dir = os.getenv("TORCHPOOL_LOG_DIR")
        if log_dir:
            add_file_handler(logger, log_dir)
        logger.setLevel(os.getenv("TORCHPOOL_LOG_LEVEL", "INFO").upper())
        logger.propagate = False
    return logger


core_logger = get_logger("torchpool.core")

__all__ = ["get_logger", "add_file_handler", "core_logger", "summarize_for_log"]
