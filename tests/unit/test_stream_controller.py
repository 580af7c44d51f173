import asyncio

import pytest

from chat_context.config import StreamConfig
from chat_context.errors import EndOfStream
from chat_context.generation.stream import StreamController
from chat_context.types import StreamChunk, StreamEvent, StreamState, ToolCall


class ScriptedSource:
    """Replays a fixed list of increments; exceptions in the list are raised."""

    def __init__(self, *items: object) -> None:
        self._items = list(items)
        self.close_calls = 0

    async def recv(self) -> StreamChunk:
        await asyncio.sleep(0)
        if not self._items:
            raise EndOfStream()
        item = self._items.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, StreamChunk):
            return item
        return StreamChunk(content=str(item))

    async def close(self) -> None:
        self.close_calls += 1


class GatedSource:
    """Hands out increments only when the test pushes them."""

    def __init__(self) -> None:
        self._pending: asyncio.Queue[str | None] = asyncio.Queue()
        self.close_calls = 0

    def push(self, content: str) -> None:
        self._pending.put_nowait(content)

    def finish(self) -> None:
        self._pending.put_nowait(None)

    async def recv(self) -> StreamChunk:
        content = await self._pending.get()
        if content is None:
            raise EndOfStream()
        return StreamChunk(content=content)

    async def close(self) -> None:
        self.close_calls += 1


async def _until(predicate, timeout: float = 1.0) -> None:
    async def _poll() -> None:
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


@pytest.mark.asyncio
async def test_stream_runs_to_completion() -> None:
    source = ScriptedSource("Hel", "lo ", "world")
    events: list[StreamEvent] = []
    controller = StreamController(on_event=events.append)

    controller.start(source)
    result = await controller.wait()

    assert result.state is StreamState.DONE
    assert result.text == "Hello world"
    assert result.error is None
    assert [event.content for event in events] == ["Hel", "lo ", "world"]
    assert source.close_calls == 1
    assert controller.is_finished


@pytest.mark.asyncio
async def test_stop_after_first_increment_keeps_partial_text() -> None:
    source = ScriptedSource("Hel", "lo")
    controller = StreamController(on_event=lambda event: controller.stop())

    controller.start(source)
    result = await controller.wait()

    assert result.state is StreamState.STOPPED
    assert result.text == "Hel"
    assert source.close_calls == 1


@pytest.mark.asyncio
async def test_receive_error_fails_stream_with_partial_text() -> None:
    source = ScriptedSource("partial ", ConnectionError("connection reset"), "never")
    controller = StreamController()

    controller.start(source)
    result = await controller.wait()

    assert result.state is StreamState.FAILED
    assert result.text == "partial "
    assert isinstance(result.error, ConnectionError)
    assert source.close_calls == 1


@pytest.mark.asyncio
async def test_pause_holds_increments_until_resume() -> None:
    source = GatedSource()
    controller = StreamController()
    controller.start(source)

    source.push("a")
    await _until(lambda: controller.text == "a")
    assert controller.pause()
    await _until(lambda: controller.state is StreamState.PAUSED)

    source.push("b")
    await asyncio.sleep(0.05)
    assert controller.text == "a"
    assert controller.state is StreamState.PAUSED

    assert controller.resume()
    source.push("c")
    source.finish()
    result = await controller.wait()

    assert result.state is StreamState.DONE
    assert result.text == "abc"
    assert source.close_calls == 1


@pytest.mark.asyncio
async def test_stop_ends_a_pause() -> None:
    source = GatedSource()
    controller = StreamController()
    controller.start(source)
    source.push("a")
    await _until(lambda: controller.text == "a")

    controller.pause()
    await _until(lambda: controller.state is StreamState.PAUSED)
    controller.stop()
    result = await asyncio.wait_for(controller.wait(), 1)

    assert result.state is StreamState.STOPPED
    assert result.text == "a"
    assert source.close_calls == 1


@pytest.mark.asyncio
async def test_stop_interrupts_a_blocked_receive() -> None:
    source = GatedSource()
    controller = StreamController()
    controller.start(source)
    await asyncio.sleep(0.01)

    controller.stop()
    result = await asyncio.wait_for(controller.wait(), 1)

    assert result.state is StreamState.STOPPED
    assert result.text == ""
    assert source.close_calls == 1


@pytest.mark.asyncio
async def test_commands_are_applied_in_issue_order() -> None:
    source = ScriptedSource("one ", "two")
    controller = StreamController()

    controller.start(source)
    controller.pause()
    controller.resume()
    result = await asyncio.wait_for(controller.wait(), 1)

    assert result.state is StreamState.DONE
    assert result.text == "one two"


@pytest.mark.asyncio
async def test_resume_while_streaming_is_ignored() -> None:
    source = ScriptedSource("x", "y")
    controller = StreamController()

    controller.start(source)
    assert controller.resume()
    result = await controller.wait()

    assert result.state is StreamState.DONE
    assert result.text == "xy"


@pytest.mark.asyncio
async def test_commands_after_finish_are_rejected() -> None:
    controller = StreamController()
    controller.start(ScriptedSource("done"))
    await controller.wait()

    assert controller.pause() is False
    assert controller.resume() is False
    assert controller.stop() is False
    assert controller.state is StreamState.DONE


@pytest.mark.asyncio
async def test_lifecycle_misuse_raises() -> None:
    controller = StreamController()
    with pytest.raises(RuntimeError):
        controller.result()
    with pytest.raises(RuntimeError):
        await controller.wait()

    controller.start(ScriptedSource("x"))
    with pytest.raises(RuntimeError):
        controller.start(ScriptedSource("y"))
    await controller.wait()


@pytest.mark.asyncio
async def test_tool_calls_are_reported_as_events() -> None:
    call = ToolCall(name="search", id="call-1", arguments={"q": "bm25"})
    source = ScriptedSource(StreamChunk(content="", tool_calls=(call,)), "answer")
    events: list[StreamEvent] = []
    controller = StreamController(on_event=events.append)

    controller.start(source)
    result = await controller.wait()

    assert result.text == "answer"
    assert events[0].kind == "tool_call"
    assert events[0].tool_call == call
    assert events[1].kind == "text"


@pytest.mark.asyncio
async def test_idle_timeout_fails_stream() -> None:
    source = GatedSource()
    controller = StreamController(StreamConfig(idle_timeout_seconds=0.05))

    controller.start(source)
    result = await asyncio.wait_for(controller.wait(), 1)

    assert result.state is StreamState.FAILED
    assert isinstance(result.error, TimeoutError)
    assert source.close_calls == 1


@pytest.mark.asyncio
async def test_event_handler_error_fails_stream() -> None:
    def _explode(event: StreamEvent) -> None:
        raise ValueError("renderer broke")

    source = ScriptedSource("a", "b")
    controller = StreamController(on_event=_explode)

    controller.start(source)
    result = await controller.wait()

    assert result.state is StreamState.FAILED
    assert isinstance(result.error, ValueError)
    assert source.close_calls == 1


@pytest.mark.asyncio
async def test_cancelling_the_waiter_does_not_cancel_the_stream() -> None:
    source = GatedSource()
    controller = StreamController()
    controller.start(source)

    waiter = asyncio.ensure_future(controller.wait())
    await asyncio.sleep(0.01)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    assert controller.state is StreamState.STREAMING
    source.push("late")
    source.finish()
    result = await controller.wait()
    assert result.text == "late"


@pytest.mark.asyncio
async def test_state_listener_sees_only_real_transitions() -> None:
    transitions: list[tuple[StreamState, StreamState]] = []
    controller = StreamController(on_state=lambda old, new: transitions.append((old, new)))

    controller.start(ScriptedSource("x"))
    controller.pause()
    controller.pause()
    controller.resume()
    controller.resume()
    await controller.wait()

    assert transitions == [
        (StreamState.IDLE, StreamState.STREAMING),
        (StreamState.STREAMING, StreamState.PAUSED),
        (StreamState.PAUSED, StreamState.STREAMING),
        (StreamState.STREAMING, StreamState.DONE),
    ]
