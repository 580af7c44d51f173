"""Deterministic backend used when no language model is configured."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence

from chat_context.generation.backend import IteratorStream, StreamHandle
from chat_context.ranking.bm25 import RankingEngine
from chat_context.types import ChatMessage, Role, StreamChunk


class DeterministicBackend:
    """Streams a canned reply built from the prompt, word by word.

    It keeps the same streaming contract as `LangChainChatBackend`, so the
    pause/stop controls and history handling can be used offline. The reply
    names the question's most distinctive terms, weighted against the
    conversation context included in the prompt.
    """

    def __init__(self, *, delay_seconds: float = 0.0, keyword_count: int = 3) -> None:
        self.delay_seconds = delay_seconds
        self.keyword_count = keyword_count

    async def stream(self, messages: Sequence[ChatMessage]) -> StreamHandle:
        return IteratorStream(self._words(build_reply(messages, self.keyword_count)))

    async def _words(self, reply: str) -> AsyncIterator[StreamChunk]:
        for index, word in enumerate(reply.split(" ")):
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            yield StreamChunk(content=word if index == 0 else f" {word}")


def build_reply(messages: Sequence[ChatMessage], keyword_count: int = 3) -> str:
    question = next(
        (message.content for message in reversed(messages) if message.role is Role.USER), ""
    )
    context = [message.content for message in messages if message.role is not Role.SYSTEM]
    keywords = RankingEngine(context).extract_keywords(question, keyword_count)
    if not keywords:
        return "No language model is configured, so I cannot answer right now."
    return (
        "No language model is configured, so I cannot answer right now. "
        f"Key terms in your question: {', '.join(keywords)}."
    )
