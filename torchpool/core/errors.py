"""Centralized exception hierarchy for the training-process orchestrator."""
from __future__ import annotations
from typing import Dict, Iterable, List


class OrchestratorError(Exception):
    """Base class for all orchestrator errors."""


class ConfigError(OrchestratorError):
    pass


class ScriptFolderError(OrchestratorError):
    pass


class SpawnError(OrchestratorError):  # process start or handshake failure
    pass


class ProtocolError(OrchestratorError):
    pass


class WorkerReplyError(ProtocolError):
    """The worker answered the pending exchange with an error reply."""

    def __init__(self, message: str, reply=None):
        super().__init__(message)
        self.reply = reply


class ExchangeTimeoutError(OrchestratorError, TimeoutError):
    pass


class WorkerCrashedError(OrchestratorError):
    pass


class ChannelClosedError(OrchestratorError):
    pass


class BroadcastError(OrchestratorError):
    """One or more workers failed a broadcast exchange.

    ``failures`` maps worker index to the exception raised for that worker.
    Workers not listed acknowledged, so pool state may now be inconsistent.
    """

    def __init__(self, request_type: str, failures: Dict[int, BaseException]):
        self.request_type = request_type
        self.failures = dict(failures)
        detail = ", ".join(f"worker {i}: {e!r}" for i, e in sorted(self.failures.items()))
        super().__init__(f"broadcast '{request_type}' failed on {len(self.failures)} worker(s): {detail}")


class NotResidentError(OrchestratorError, KeyError):
    pass


class MissingResultError(OrchestratorError):
    def __init__(self, missing: Iterable[str]):
        self.missing: List[str] = list(missing)
        super().__init__(f"no evaluation result for ids: {self.missing}")


class DiagramExtractionError(OrchestratorError):
    pass


class RenderError(OrchestratorError):
    pass
