"""Per-turn tracing and aggregate chat metrics."""

from __future__ import annotations

import re
import time
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone

from chat_context.types import StreamState

_TOKEN_PATTERN = re.compile(r"\w+|[^\w\s]", flags=re.UNICODE)


@dataclass(slots=True)
class TurnRecord:
    trace_id: str
    timestamp_utc: str
    session_id: str
    question: str
    answer: str
    state: StreamState
    history_size: int
    context_size: int
    relevance_strategy: str
    input_tokens: int
    output_tokens: int
    latency_ms: float
    error: str | None = None


class TraceStore:
    """In-memory trace storage for chat turns."""

    def __init__(self, max_records: int = 1000) -> None:
        self._records: dict[str, TurnRecord] = {}
        self._max_records = max_records

    def create_record(
        self,
        *,
        session_id: str,
        question: str,
        answer: str,
        state: StreamState,
        history_size: int,
        context_size: int,
        relevance_strategy: str,
        latency_ms: float,
        error: BaseException | None = None,
    ) -> TurnRecord:
        trace_id = str(uuid.uuid4())
        record = TurnRecord(
            trace_id=trace_id,
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            session_id=session_id,
            question=question,
            answer=answer,
            state=state,
            history_size=history_size,
            context_size=context_size,
            relevance_strategy=relevance_strategy,
            input_tokens=estimate_token_count(question),
            output_tokens=estimate_token_count(answer),
            latency_ms=latency_ms,
            error=repr(error) if error is not None else None,
        )
        self._records[trace_id] = record
        while len(self._records) > self._max_records:
            del self._records[next(iter(self._records))]
        return record

    def get(self, trace_id: str) -> TurnRecord:
        record = self._records.get(trace_id)
        if record is None:
            raise KeyError(f"Trace not found: {trace_id}")
        return record

    def list_recent(self, limit: int = 20) -> list[TurnRecord]:
        return list(self._records.values())[-limit:]

    def summary(self) -> dict[str, float | int]:
        """Aggregate latency, token and outcome metrics over stored turns."""
        records = list(self._records.values())
        total = len(records)
        states = Counter(record.state for record in records)
        if total == 0:
            return {
                "total_turns": 0,
                "avg_latency_ms": 0.0,
                "p95_latency_ms": 0.0,
                "avg_context_size": 0.0,
                "total_input_tokens": 0,
                "total_output_tokens": 0,
                "done": 0,
                "stopped": 0,
                "failed": 0,
            }

        latencies = sorted(record.latency_ms for record in records)
        p95_index = max(0, int((len(latencies) * 0.95) - 1))
        return {
            "total_turns": total,
            "avg_latency_ms": sum(latencies) / total,
            "p95_latency_ms": latencies[p95_index],
            "avg_context_size": sum(record.context_size for record in records) / total,
            "total_input_tokens": sum(record.input_tokens for record in records),
            "total_output_tokens": sum(record.output_tokens for record in records),
            "done": states[StreamState.DONE],
            "stopped": states[StreamState.STOPPED],
            "failed": states[StreamState.FAILED],
        }


class Timer:
    """Simple context timer used around chat turns."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0


def estimate_token_count(text: str) -> int:
    return len(_TOKEN_PATTERN.findall(text))
