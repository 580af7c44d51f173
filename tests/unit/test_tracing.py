import pytest

from chat_context.obs.tracing import Timer, TraceStore, estimate_token_count
from chat_context.types import StreamState


def _record(store: TraceStore, *, state: StreamState, latency_ms: float, context_size: int = 2):
    return store.create_record(
        session_id="s1",
        question="what is bm25?",
        answer="a ranking function",
        state=state,
        history_size=4,
        context_size=context_size,
        relevance_strategy="lexical",
        latency_ms=latency_ms,
    )


def test_trace_store_records_and_summarises_turns() -> None:
    store = TraceStore()
    first = _record(store, state=StreamState.DONE, latency_ms=10.0, context_size=2)
    _record(store, state=StreamState.STOPPED, latency_ms=20.0, context_size=4)
    store.create_record(
        session_id="s1",
        question="again",
        answer="",
        state=StreamState.FAILED,
        history_size=6,
        context_size=0,
        relevance_strategy="semantic",
        latency_ms=30.0,
        error=ConnectionError("reset"),
    )

    summary = store.summary()

    assert store.get(first.trace_id) is first
    assert first.input_tokens == estimate_token_count("what is bm25?")
    assert summary["total_turns"] == 3
    assert summary["avg_latency_ms"] == pytest.approx(20.0)
    assert summary["avg_context_size"] == pytest.approx(2.0)
    assert (summary["done"], summary["stopped"], summary["failed"]) == (1, 1, 1)
    assert store.list_recent(1)[0].error == "ConnectionError('reset')"


def test_trace_store_evicts_oldest_records() -> None:
    store = TraceStore(max_records=2)
    oldest = _record(store, state=StreamState.DONE, latency_ms=1.0)
    _record(store, state=StreamState.DONE, latency_ms=2.0)
    _record(store, state=StreamState.DONE, latency_ms=3.0)

    assert len(store.list_recent()) == 2
    with pytest.raises(KeyError):
        store.get(oldest.trace_id)


def test_empty_summary_and_timer() -> None:
    assert TraceStore().summary()["total_turns"] == 0

    with Timer() as timer:
        pass

    assert timer.elapsed_ms >= 0.0
    assert estimate_token_count("Hello, world!") == 4
