"""Worker wire protocol.

One JSON document per line on the worker's stdin (requests) and stdout
(replies and out-of-band notifications). Every request carries ``type`` and a
per-channel ``requestId``; a worker should echo ``requestId`` in its reply but
replies are also accepted when matched only by their ``type`` tag.

    request         reply                 fields
    handshake       handshake             -
    reset           resetCompleted        -
    store           stored                id, input, output
    forget          forgotten             id
    evaluate        evaluationCompleted   samples -> objects
    evaluateBatch   evaluationCompleted   batchFilename -> objects
    iteration       iterationCompleted    batchFilename
    prepareBatch    batchPrepared         ids, fileName
    save            saved                 -
    load            loaded                -
    stats           stats                 -> stats

Workers may emit ``{"type": "log", "message": ...}`` at any time; those never
answer a request.
"""
from __future__ import annotations

import json
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from .errors import ProtocolError

HANDSHAKE = "handshake"
RESET = "reset"
RESET_COMPLETED = "resetCompleted"
STORE = "store"
STORED = "stored"
FORGET = "forget"
FORGOTTEN = "forgotten"
EVALUATE = "evaluate"
EVALUATE_BATCH = "evaluateBatch"
EVALUATION_COMPLETED = "evaluationCompleted"
ITERATION = "iteration"
ITERATION_COMPLETED = "iterationCompleted"
PREPARE_BATCH = "prepareBatch"
BATCH_PREPARED = "batchPrepared"
SAVE = "save"
SAVED = "saved"
LOAD = "load"
LOADED = "loaded"
STATS = "stats"
LOG = "log"
ERROR = "error"

REQUEST_ID = "requestId"

REPLY_FOR: Dict[str, str] = {
    HANDSHAKE: HANDSHAKE,
    RESET: RESET_COMPLETED,
    STORE: STORED,
    FORGET: FORGOTTEN,
    EVALUATE: EVALUATION_COMPLETED,
    EVALUATE_BATCH: EVALUATION_COMPLETED,
    ITERATION: ITERATION_COMPLETED,
    PREPARE_BATCH: BATCH_PREPARED,
    SAVE: SAVED,
    LOAD: LOADED,
    STATS: STATS,
}


class Message(BaseModel):
    """Immutable protocol record: a ``type`` tag plus type-specific fields."""

    model_config = ConfigDict(extra="allow", frozen=True)

    type: str

    @property
    def request_id(self) -> Optional[int]:
        rid = (self.model_extra or {}).get(REQUEST_ID)
        return rid if isinstance(rid, int) and not isinstance(rid, bool) else None

    @property
    def failed(self) -> bool:
        return self.type == ERROR or (self.model_extra or {}).get("ok") is False

    def get(self, key: str, default: Any = None) -> Any:
        if key == "type":
            return self.type
        return (self.model_extra or {}).get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        return self.model_dump()

    def with_request_id(self, request_id: int) -> "Message":
        return Message(**{**self.to_dict(), REQUEST_ID: request_id})

    def encode(self) -> bytes:
        return (json.dumps(self.to_dict(), separators=(",", ":")) + "\n").encode("utf-8")


def make_message(type: str, **fields: Any) -> Message:
    return Message(type=type, **fields)


def decode_line(line: bytes) -> Message:
    """Parse one stdout line into a Message; raise ProtocolError when it is not one."""
    try:
        data = json.loads(line)
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"not a JSON message: {line[:200]!r}") from e
    if not isinstance(data, dict):
        raise ProtocolError(f"message must be a JSON object, got {type(data).__name__}")
    try:
        return Message(**data)
    except (TypeError, ValidationError) as e:
        raise ProtocolError(f"message without a valid type tag: {data!r}"[:300]) from e


__all__ = [
    "Message",
    "make_message",
    "decode_line",
    "REPLY_FOR",
    "REQUEST_ID",
    "HANDSHAKE",
    "RESET",
    "RESET_COMPLETED",
    "STORE",
    "STORED",
    "FORGET",
    "FORGOTTEN",
    "EVALUATE",
    "EVALUATE_BATCH",
    "EVALUATION_COMPLETED",
    "ITERATION",
    "ITERATION_COMPLETED",
    "PREPARE_BATCH",
    "BATCH_PREPARED",
    "SAVE",
    "SAVED",
    "LOAD",
    "LOADED",
    "STATS",
    "LOG",
    "ERROR",
]
