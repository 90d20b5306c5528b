"""Fixed-size pool of identical worker processes sharing one script folder."""
from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from .channel import EVENT_EXIT, EVENT_INVALID, EVENT_LOG, EVENT_UNMATCHED, ChannelEvent
from .config_loader import PoolSettings
from .errors import BroadcastError, OrchestratorError, SpawnError
from .logging import core_logger
from .worker import WorkerHandle
from .worker_protocol import HANDSHAKE, RESET, RESET_COMPLETED, Message, make_message


# applied only where the parent environment leaves them unset
DEFAULT_WORKER_ENV = {"TERM": "xterm"}


def worker_environment(settings: PoolSettings, environ: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Defaults, then the parent environment, then the configured ``worker_env``."""
    env = dict(DEFAULT_WORKER_ENV)
    env.update(os.environ if environ is None else environ)
    env.update(settings.worker_env)
    return env


class ProcessPool:
    def __init__(self, cwd: Path, settings: Optional[PoolSettings] = None):
        self.cwd = Path(cwd)
        self.settings = settings or PoolSettings()
        self._workers: List[WorkerHandle] = []
        self._stopping = False

    @property
    def workers(self) -> Tuple[WorkerHandle, ...]:
        return tuple(self._workers)

    @property
    def size(self) -> int:
        return len(self._workers)

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def worker(self, index: int) -> WorkerHandle:
        if not self._workers:
            raise OrchestratorError("process pool is not running")
        return self._workers[index]

    async def start(self, worker_count: Optional[int] = None):
        """Spawn and handshake every worker; on any failure nothing is left running."""
        if self._workers:
            raise OrchestratorError("process pool already started")
        count = self.settings.worker_count if worker_count is None else worker_count
        if count < 1:
            raise ValueError(f"worker_count must be >= 1, got {count}")
        env = worker_environment(self.settings)
        started: List[WorkerHandle] = []
        self._stopping = False
        try:
            for i in range(count):
                handle = await WorkerHandle.spawn(
                    i,
                    self.settings.worker_argv(i, count),
                    self.cwd,
                    env=env,
                    timeout=self.settings.exchange_timeout_s,
                )
                handle.subscribe(lambda event, h=handle: self._on_event(h, event))
                started.append(handle)
            try:
                await self._fan_out(started, make_message(HANDSHAKE), HANDSHAKE)
            except BroadcastError as e:
                raise SpawnError(f"handshake failed: {e}") from e
        except BaseException:
            self._stopping = True
            await asyncio.gather(*(h.kill() for h in started), return_exceptions=True)
            raise
        self._workers = started
        core_logger.info(f"process pool started workers={count} cwd={self.cwd}")

    async def stop(self):
        """Terminate every worker. Not graceful unless ``graceful_stop_s`` is set."""
        self._stopping = True
        workers, self._workers = self._workers, []
        grace = self.settings.graceful_stop_s
        await asyncio.gather(*(h.terminate(grace) if grace > 0 else h.kill() for h in workers))
        if workers:
            core_logger.info(f"process pool stopped workers={len(workers)}")

    async def reset(self):
        """Reset trained parameters on every worker; loaded objects are kept."""
        await self.broadcast(make_message(RESET), RESET_COMPLETED)

    async def broadcast(self, message: Message, expect: Optional[str] = None) -> List[Message]:
        """Run the same exchange on every worker, all or nothing."""
        if not self._workers:
            raise OrchestratorError("process pool is not running")
        return await self._fan_out(self._workers, message, expect)

    async def _fan_out(self, workers: Sequence[WorkerHandle], message: Message, expect: Optional[str]) -> List[Message]:
        failures: Dict[int, BaseException] = {}
        replies: List[Message] = []
        if self.settings.parallel_broadcast:
            results = await asyncio.gather(*(w.exchange(message, expect) for w in workers), return_exceptions=True)
            for w, r in zip(workers, results):
                if isinstance(r, BaseException):
                    failures[w.index] = r
                else:
                    replies.append(r)
        else:
            for w in workers:
                try:
                    replies.append(await w.exchange(message, expect))
                except OrchestratorError as e:
                    failures[w.index] = e
                    break
        if failures:
            raise BroadcastError(message.type, failures)
        return replies

    def _on_event(self, handle: WorkerHandle, event: ChannelEvent):
        if event.kind == EVENT_LOG:
            core_logger.error(f"worker {event.worker_index}: {event.payload.get('message', '')}")
        elif event.kind == EVENT_EXIT:
            if self._stopping:
                core_logger.debug(f"worker {event.worker_index} exited during stop")
            else:
                core_logger.error(
                    f"worker {event.worker_index} exited unexpectedly ({event.payload}, pid={handle.pid}); "
                    "the pool must be restarted"
                )
        elif event.kind == EVENT_UNMATCHED:
            core_logger.warning(f"worker {event.worker_index}: discarded reply type={event.payload.type}")
        elif event.kind == EVENT_INVALID:
            core_logger.warning(f"worker {event.worker_index}: non-protocol output {event.payload[:200]!r}")


__all__ = ["DEFAULT_WORKER_ENV", "ProcessPool", "worker_environment"]
