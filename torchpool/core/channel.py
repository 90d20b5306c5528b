"""Duplex JSON-line message channel bound to one worker's stdio streams.

The only interaction primitive is :meth:`MessageChannel.exchange`: write one
request and wait for the reply carrying the expected ``type`` tag. Exchanges
on a channel never overlap; concurrent callers queue on a lock.

Everything that does not answer the outstanding exchange (``log`` messages,
stray or late replies, non-JSON output, end of stream) is handed to the
subscribed observers as a :class:`ChannelEvent`.
"""
from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from .errors import (
    ChannelClosedError,
    ExchangeTimeoutError,
    ProtocolError,
    WorkerCrashedError,
    WorkerReplyError,
)
from .logging import core_logger
from .worker_protocol import ERROR, LOG, REPLY_FOR, Message, decode_line

# event kinds
EVENT_LOG = "log"
EVENT_UNMATCHED = "unmatched"
EVENT_INVALID = "invalid"
EVENT_EXIT = "exit"
EVENT_CLOSED = "closed"

_DEFAULT = object()


@dataclass(frozen=True)
class ChannelEvent:
    kind: str
    worker_index: int
    payload: Any = None


Observer = Callable[[ChannelEvent], None]


@dataclass
class _Pending:
    request_id: int
    request_type: str
    expect: str
    future: asyncio.Future

    def resolve(self, reply: Message):
        if not self.future.done():
            self.future.set_result(reply)

    def fail(self, exc: BaseException):
        if not self.future.done():
            self.future.set_exception(exc)


class MessageChannel:
    def __init__(self, reader: asyncio.StreamReader, writer, *, index: int = 0, timeout: Optional[float] = None):
        self.index = index
        self.timeout = timeout
        self.suspect = False
        self._reader = reader
        self._writer = writer
        self._lock = asyncio.Lock()
        self._ids = itertools.count(1)
        self._pending: Dict[int, _Pending] = {}
        self._observers: List[Observer] = []
        self._reader_task: Optional[asyncio.Task] = None
        self._closed = False
        self._eof = False
        # set once the worker has echoed a request id
        self._echoes_request_id = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def at_eof(self) -> bool:
        return self._eof

    @property
    def busy(self) -> bool:
        return bool(self._pending)

    def start(self):
        if self._reader_task is None:
            self._reader_task = asyncio.get_running_loop().create_task(self._read_loop())

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        self._observers.append(observer)

        def _unsubscribe():
            if observer in self._observers:
                self._observers.remove(observer)

        return _unsubscribe

    async def send(self, message: Message):
        """Write a message without waiting for any reply."""
        self._ensure_open()
        await self._write(message)

    async def exchange(self, message: Message, expect: Optional[str] = None, *, timeout: Any = _DEFAULT) -> Message:
        """Send ``message`` and return the reply whose type is ``expect``.

        ``expect`` defaults to the protocol reply type for the request.
        ``timeout`` overrides the channel deadline; ``None`` waits forever.
        """
        if expect is None:
            try:
                expect = REPLY_FOR[message.type]
            except KeyError:
                raise ProtocolError(f"no known reply type for request '{message.type}'") from None
        deadline = self.timeout if timeout is _DEFAULT else timeout
        async with self._lock:
            self._ensure_open()
            if self.suspect and not self._echoes_request_id:
                # a late reply could not be told apart from the answer to this request
                raise WorkerCrashedError(f"worker {self.index}: channel suspect after a timed out exchange")
            request_id = next(self._ids)
            pending = _Pending(request_id, message.type, expect, asyncio.get_running_loop().create_future())
            self._pending[request_id] = pending
            try:
                await self._write(message.with_request_id(request_id))
                try:
                    return await asyncio.wait_for(pending.future, deadline)
                except asyncio.TimeoutError:
                    self.suspect = True
                    raise ExchangeTimeoutError(
                        f"worker {self.index}: no '{expect}' reply to '{message.type}' within {deadline}s"
                    ) from None
            finally:
                self._pending.pop(request_id, None)
                if pending.future.done() and not pending.future.cancelled():
                    # mark a failure set by the reader as retrieved when the write raised first
                    pending.future.exception()
                else:
                    pending.future.cancel()

    async def close(self):
        """Stop reading; pending exchanges fail and later replies are discarded."""
        if self._closed:
            return
        self._closed = True
        self._fail_pending(ChannelClosedError(f"worker {self.index}: channel closed"))
        if self._reader_task is not None and not self._reader_task.done():
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
        close = getattr(self._writer, "close", None)
        if close is not None:
            try:
                close()
            except (BrokenPipeError, ConnectionResetError, RuntimeError):
                pass

    def _ensure_open(self):
        if self._closed:
            raise ChannelClosedError(f"worker {self.index}: channel closed")
        if self._eof:
            raise WorkerCrashedError(f"worker {self.index}: process output stream ended")

    async def _write(self, message: Message):
        try:
            self._writer.write(message.encode())
            await self._writer.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise WorkerCrashedError(f"worker {self.index}: write of '{message.type}' failed: {e}") from e

    async def _read_loop(self):
        reason: Optional[str] = None
        try:
            while True:
                line = await self._reader.readline()
                if not line:
                    reason = "end of stream"
                    break
                line = line.strip()
                if not line:
                    continue
                try:
                    msg = decode_line(line)
                except ProtocolError:
                    self._emit(EVENT_INVALID, line.decode("utf-8", errors="replace"))
                    continue
                self._dispatch(msg)
        except (ValueError, asyncio.IncompleteReadError, ConnectionResetError) as e:
            # ValueError: line longer than the stream limit
            reason = f"read failed: {e}"
            core_logger.error(f"worker {self.index}: {reason}")
        finally:
            self._eof = True
            if self._closed:
                self._emit(EVENT_CLOSED)
            else:
                self._fail_pending(WorkerCrashedError(f"worker {self.index}: {reason or 'reader stopped'} during exchange"))
                self._emit(EVENT_EXIT, reason)

    def _dispatch(self, msg: Message):
        if msg.type == LOG:
            self._emit(EVENT_LOG, msg)
            return
        rid = msg.request_id
        if rid is not None:
            self._echoes_request_id = True
            pending = self._pending.get(rid)
            if pending is None:
                # late reply to a timed out or abandoned exchange
                self._emit(EVENT_UNMATCHED, msg)
                return
            if msg.failed:
                pending.fail(WorkerReplyError(self._error_text(pending, msg), msg))
            elif msg.type != pending.expect:
                pending.fail(
                    ProtocolError(
                        f"worker {self.index}: expected '{pending.expect}' reply to '{pending.request_type}', got '{msg.type}'"
                    )
                )
            else:
                pending.resolve(msg)
            return
        # no correlation id: fall back to the type tag of the outstanding exchange
        for pending in self._pending.values():
            if msg.type == pending.expect:
                if msg.failed:
                    pending.fail(WorkerReplyError(self._error_text(pending, msg), msg))
                else:
                    pending.resolve(msg)
                return
        if msg.type == ERROR and len(self._pending) == 1:
            pending = next(iter(self._pending.values()))
            pending.fail(WorkerReplyError(self._error_text(pending, msg), msg))
            return
        self._emit(EVENT_UNMATCHED, msg)

    def _error_text(self, pending: _Pending, msg: Message) -> str:
        detail = msg.get("error") or msg.get("message") or msg.to_dict()
        return f"worker {self.index}: '{pending.request_type}' failed: {detail}"

    def _fail_pending(self, exc: BaseException):
        for pending in list(self._pending.values()):
            pending.fail(exc)

    def _emit(self, kind: str, payload: Any = None):
        event = ChannelEvent(kind, self.index, payload)
        for observer in list(self._observers):
            try:
                observer(event)
            except Exception:  # noqa: BLE001
                core_logger.exception(f"worker {self.index}: channel observer failed on {kind} event")


__all__ = [
    "MessageChannel",
    "ChannelEvent",
    "EVENT_LOG",
    "EVENT_UNMATCHED",
    "EVENT_INVALID",
    "EVENT_EXIT",
    "EVENT_CLOSED",
]
