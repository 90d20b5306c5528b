"""A spawned worker process coupled to its message channel."""
from __future__ import annotations

import asyncio
import signal
from pathlib import Path
from typing import Dict, List, Optional

from .channel import EVENT_EXIT, ChannelEvent, MessageChannel, Observer
from .errors import SpawnError, WorkerCrashedError
from .logging import core_logger
from .worker_protocol import Message

# evaluation replies can be large; readline() fails past this many bytes
STREAM_LIMIT = 64 * 1024 * 1024


class WorkerHandle:
    def __init__(self, index: int, process: asyncio.subprocess.Process, channel: MessageChannel):
        self.index = index
        self.process = process
        self.channel = channel
        self.alive = True
        channel.subscribe(self._on_event)

    @classmethod
    async def spawn(
        cls,
        index: int,
        argv: List[str],
        cwd: Path,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> "WorkerHandle":
        core_logger.debug(f"spawn worker index={index} cwd={cwd} cmd={' '.join(argv)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd),
                env=env,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                limit=STREAM_LIMIT,
            )
        except OSError as e:
            raise SpawnError(f"worker {index}: failed to start {argv[0]!r}: {e}") from e
        channel = MessageChannel(proc.stdout, proc.stdin, index=index, timeout=timeout)
        handle = cls(index, proc, channel)
        channel.start()
        return handle

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid

    @property
    def returncode(self) -> Optional[int]:
        return self.process.returncode

    def _on_event(self, event: ChannelEvent):
        if event.kind == EVENT_EXIT:
            self.alive = False

    def subscribe(self, observer: Observer):
        return self.channel.subscribe(observer)

    async def send(self, message: Message):
        await self.channel.send(message)

    async def exchange(self, message: Message, expect: Optional[str] = None, **kwargs) -> Message:
        if not self.alive:
            raise WorkerCrashedError(f"worker {self.index} is not running (returncode={self.returncode})")
        return await self.channel.exchange(message, expect, **kwargs)

    async def kill(self):
        """Forced, immediate termination; in-flight exchanges fail."""
        self.alive = False
        await self.channel.close()
        if self.process.returncode is None:
            try:
                self.process.kill()
            except ProcessLookupError:
                pass
        await self.process.wait()

    async def terminate(self, grace: float):
        """SIGTERM, then SIGKILL if the process is still running after ``grace`` seconds."""
        self.alive = False
        await self.channel.close()
        if self.process.returncode is None:
            try:
                self.process.send_signal(signal.SIGTERM)
                await asyncio.wait_for(self.process.wait(), grace)
            except ProcessLookupError:
                pass
            except asyncio.TimeoutError:
                core_logger.warning(f"worker {self.index} ignored SIGTERM for {grace}s; killing")
                self.process.kill()
        await self.process.wait()

    def __repr__(self):
        return f"WorkerHandle(index={self.index}, pid={self.pid}, alive={self.alive})"


__all__ = ["WorkerHandle", "STREAM_LIMIT"]
