"""Chat turn orchestration: history, relevance filtering, prompt, stream."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from chat_context.config import SessionConfig, StreamConfig
from chat_context.errors import GenerationError
from chat_context.generation.backend import GenerationBackend
from chat_context.generation.stream import StreamController
from chat_context.history.cache import HistoryCache
from chat_context.history.filter import HistoryFilter
from chat_context.obs.tracing import Timer, TraceStore
from chat_context.prompt import ChatPromptFormatter, PromptFormatter
from chat_context.types import ChatMessage, ChatReply, StreamEvent, StreamState

logger = logging.getLogger(__name__)


class ChatSession:
    """Runs one chat turn end to end for any number of session ids.

    History load and save failures are logged and never fail a turn. Prompt
    formatting errors abort the turn before the backend is called. A stream
    that fails or is stopped still produces a reply with whatever text was
    received, and that partial text is written to history.
    """

    def __init__(
        self,
        *,
        backend: GenerationBackend,
        cache: HistoryCache,
        history_filter: HistoryFilter | None = None,
        formatter: PromptFormatter | None = None,
        trace_store: TraceStore | None = None,
        config: SessionConfig | None = None,
        stream_config: StreamConfig | None = None,
    ) -> None:
        self.backend = backend
        self.cache = cache
        self.history_filter = history_filter or HistoryFilter()
        self.formatter = formatter or ChatPromptFormatter()
        self.trace_store = trace_store or TraceStore()
        self.config = config or SessionConfig()
        self.stream_config = stream_config or StreamConfig()

    async def respond(
        self,
        session_id: str,
        user_input: str,
        *,
        controller: StreamController | None = None,
        on_event: Callable[[StreamEvent], None] | None = None,
    ) -> ChatReply:
        """Generate a reply to `user_input` and append the turn to history.

        Pass an unstarted `controller` to keep a handle for pause/resume/stop
        from another task; `on_event` is only used when the session creates
        the controller itself.

        Raises:
            PromptFormatError: The prompt could not be rendered.
            GenerationError: The backend refused to open a stream.
            RuntimeError: `controller` has already been started.
        """
        controller = controller or StreamController(self.stream_config, on_event=on_event)
        if controller.state is not StreamState.IDLE:
            raise RuntimeError(f"controller already used (state={controller.state.value})")

        with Timer() as timer:
            history = await self._load(session_id)
            selection = await self.history_filter.select(
                history, user_input, self.config.history_budget
            )
            messages = self.formatter.format(
                {
                    "role": self.config.role,
                    "style": self.config.style,
                    "question": user_input,
                    "chat_history": selection.messages,
                }
            )

            try:
                source = await self.backend.stream(messages)
            except Exception as exc:
                logger.error("opening generation stream failed: %r", exc)
                raise GenerationError(f"generation backend failed: {exc}") from exc

            try:
                controller.start(source)
            except BaseException:
                await source.close()
                raise

            try:
                result = await controller.wait()
            except asyncio.CancelledError:
                controller.stop()
                raise

            updated = [
                *history,
                ChatMessage.user(user_input),
                ChatMessage.assistant(result.text),
            ]
            await self._save(session_id, updated)

        record = self.trace_store.create_record(
            session_id=session_id,
            question=user_input,
            answer=result.text,
            state=result.state,
            history_size=len(history),
            context_size=len(selection.messages),
            relevance_strategy=selection.strategy,
            latency_ms=timer.elapsed_ms,
            error=result.error,
        )
        logger.info(
            "session %s turn finished: state=%s context=%d/%d latency_ms=%.1f",
            session_id,
            result.state.value,
            len(selection.messages),
            len(history),
            timer.elapsed_ms,
        )
        return ChatReply(
            session_id=session_id,
            text=result.text,
            state=result.state,
            context_size=len(selection.messages),
            trace_id=record.trace_id,
            error=result.error,
        )

    async def get_history(self, session_id: str) -> list[ChatMessage]:
        return await asyncio.wait_for(
            self.cache.load_history(session_id), timeout=self.config.cache_timeout_seconds
        )

    async def clear_history(self, session_id: str) -> None:
        await asyncio.wait_for(
            self.cache.save_history(session_id, []), timeout=self.config.cache_timeout_seconds
        )

    async def close(self) -> None:
        try:
            await self.cache.close()
        except Exception as exc:
            logger.warning("closing history cache failed: %r", exc)

    async def _load(self, session_id: str) -> list[ChatMessage]:
        try:
            return await self.get_history(session_id)
        except Exception as exc:
            logger.warning("loading history for %s failed, using empty history: %r", session_id, exc)
            return []

    async def _save(self, session_id: str, history: list[ChatMessage]) -> None:
        try:
            await asyncio.wait_for(
                self.cache.save_history(session_id, history),
                timeout=self.config.cache_timeout_seconds,
            )
        except Exception as exc:
            logger.warning("saving history for %s failed: %r", session_id, exc)
