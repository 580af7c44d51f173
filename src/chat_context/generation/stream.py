"""Cooperative pause/resume/stop control over a generation stream.

The controller owns one consuming task. Commands from other tasks travel
through a single `asyncio.Queue` and are applied by the consuming task in the
order they were issued, so buffer and state are only ever written from one
place. While streaming, each pending `recv()` is raced against the next
command; while paused, only the command queue is awaited, so a stop ends a
pause as reliably as a resume does.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from enum import Enum

from chat_context.config import StreamConfig
from chat_context.errors import EndOfStream
from chat_context.generation.backend import StreamHandle
from chat_context.types import StreamChunk, StreamEvent, StreamResult, StreamState

logger = logging.getLogger(__name__)


class StreamCommand(str, Enum):
    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"


class StreamController:
    """State machine driving one generation stream to a terminal state.

    Lifecycle: IDLE -> STREAMING on `start`; PAUSE/RESUME toggle between
    STREAMING and PAUSED; STOP, end of stream and receive errors end in
    STOPPED, DONE and FAILED respectively. The source is closed exactly once
    on every exit path and text received before a stop is kept.

    `on_state(previous, current)` is called for every transition that
    actually happens, so commands the consumer ignores are not reported.
    """

    def __init__(
        self,
        config: StreamConfig | None = None,
        *,
        on_event: Callable[[StreamEvent], None] | None = None,
        on_state: Callable[[StreamState, StreamState], None] | None = None,
    ) -> None:
        self.config = config or StreamConfig()
        self._on_event = on_event
        self._on_state = on_state
        self._state = StreamState.IDLE
        self._parts: list[str] = []
        self._error: BaseException | None = None
        self._stop_requested = False
        self._commands: asyncio.Queue[StreamCommand] = asyncio.Queue()
        self._source: StreamHandle | None = None
        self._task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def text(self) -> str:
        return "".join(self._parts)

    @property
    def is_finished(self) -> bool:
        return self._state.is_terminal

    def start(self, source: StreamHandle) -> None:
        if self._state is not StreamState.IDLE:
            raise RuntimeError(f"stream already started (state={self._state.value})")
        self._source = source
        self._set_state(StreamState.STREAMING)
        self._task = asyncio.get_running_loop().create_task(self._consume())

    def pause(self) -> bool:
        return self._send(StreamCommand.PAUSE)

    def resume(self) -> bool:
        return self._send(StreamCommand.RESUME)

    def stop(self) -> bool:
        return self._send(StreamCommand.STOP)

    def result(self) -> StreamResult:
        if not self._state.is_terminal:
            raise RuntimeError(f"stream has not finished (state={self._state.value})")
        return StreamResult(text=self.text, state=self._state, error=self._error)

    async def wait(self) -> StreamResult:
        """Wait for the consuming task and return the final result."""
        if self._task is None:
            raise RuntimeError("stream has not been started")
        await asyncio.shield(self._task)
        return self.result()

    def _send(self, command: StreamCommand) -> bool:
        if self._state.is_terminal:
            return False
        self._commands.put_nowait(command)
        return True

    # ------------------------------------------------------------------
    # consuming task
    # ------------------------------------------------------------------

    async def _consume(self) -> None:
        assert self._source is not None
        recv_task: asyncio.Task[StreamChunk] | None = None
        try:
            while True:
                self._drain_commands()
                if self._stop_requested:
                    self._set_state(StreamState.STOPPED)
                    break

                if self._state is StreamState.PAUSED:
                    self._apply(await self._commands.get())
                    continue

                if recv_task is None:
                    recv_task = asyncio.ensure_future(self._source.recv())
                command_task = asyncio.ensure_future(self._commands.get())
                try:
                    await asyncio.wait(
                        {recv_task, command_task},
                        timeout=self.config.idle_timeout_seconds,
                        return_when=asyncio.FIRST_COMPLETED,
                    )
                except asyncio.CancelledError:
                    command_task.cancel()
                    raise
                commanded = command_task.done()
                if commanded:
                    self._apply(command_task.result())
                else:
                    # A cancelled get() leaves its item queued for the drain below.
                    command_task.cancel()

                # Commands issued before this increment arrived win over it;
                # a received increment is held until the stream resumes.
                commanded = self._drain_commands() or commanded
                if self._stop_requested or self._state is not StreamState.STREAMING:
                    continue
                if not recv_task.done():
                    if commanded:
                        continue
                    self._fail(
                        TimeoutError(f"no output within {self.config.idle_timeout_seconds}s")
                    )
                    break

                finished, recv_task = recv_task, None
                try:
                    chunk = finished.result()
                except EndOfStream:
                    self._set_state(StreamState.DONE)
                    break
                except Exception as exc:
                    self._fail(exc)
                    break

                try:
                    self._append(chunk)
                except Exception as exc:
                    self._fail(exc)
                    break
        except asyncio.CancelledError:
            if not self._state.is_terminal:
                self._set_state(StreamState.STOPPED)
            raise
        finally:
            if recv_task is not None:
                await _discard(recv_task)
            await self._release()
            logger.debug("stream finished: state=%s chars=%d", self._state.value, len(self.text))

    def _drain_commands(self) -> bool:
        drained = False
        while True:
            try:
                command = self._commands.get_nowait()
            except asyncio.QueueEmpty:
                return drained
            self._apply(command)
            drained = True

    def _apply(self, command: StreamCommand) -> None:
        if command is StreamCommand.STOP:
            self._stop_requested = True
        elif command is StreamCommand.PAUSE:
            if self._state is StreamState.STREAMING:
                self._set_state(StreamState.PAUSED)
            else:
                logger.warning("ignoring pause while %s", self._state.value)
        elif command is StreamCommand.RESUME:
            if self._state is StreamState.PAUSED:
                self._set_state(StreamState.STREAMING)
            else:
                logger.warning("ignoring resume while %s", self._state.value)

    def _append(self, chunk: StreamChunk) -> None:
        if chunk.content:
            self._parts.append(chunk.content)
            self._emit(StreamEvent(kind="text", content=chunk.content))
        for call in chunk.tool_calls:
            self._emit(StreamEvent(kind="tool_call", content=call.name, tool_call=call))

    def _emit(self, event: StreamEvent) -> None:
        if self._on_event is not None:
            self._on_event(event)

    def _set_state(self, state: StreamState) -> None:
        previous, self._state = self._state, state
        if self._on_state is None or previous is state:
            return
        try:
            self._on_state(previous, state)
        except Exception as exc:
            logger.warning("state listener failed on %s -> %s: %r", previous.value, state.value, exc)

    def _fail(self, exc: BaseException) -> None:
        logger.warning("stream failed after %d chars: %r", len(self.text), exc)
        self._error = exc
        self._set_state(StreamState.FAILED)

    async def _release(self) -> None:
        if self._closed or self._source is None:
            return
        self._closed = True
        try:
            await self._source.close()
        except Exception as exc:
            logger.warning("closing generation stream failed: %r", exc)


async def _discard(task: asyncio.Task[StreamChunk]) -> None:
    """Cancel an unused receive and wait for it so the source is idle before close."""
    if not task.done():
        task.cancel()
        await asyncio.wait({task})
    if not task.cancelled():
        task.exception()
