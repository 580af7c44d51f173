"""Relevance strategies used to rank prior messages against a question."""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Sequence

from chat_context.config import RankingConfig
from chat_context.history.embedder import Embedder, cosine_similarity
from chat_context.ranking.bm25 import RankingEngine
from chat_context.types import ChatMessage


class RelevanceStrategy(ABC):
    """Scores every message of a history against the current question."""

    name: str = "base"

    @abstractmethod
    async def score(self, query: str, messages: Sequence[ChatMessage]) -> list[float]:
        """Return one score per message, in message order."""


class LexicalRelevance(RelevanceStrategy):
    """BM25 relevance with the conversation itself as the corpus."""

    name = "lexical"

    def __init__(self, config: RankingConfig | None = None) -> None:
        self.config = config or RankingConfig()

    async def score(self, query: str, messages: Sequence[ChatMessage]) -> list[float]:
        engine = RankingEngine((message.content for message in messages), self.config)
        return [engine.score_against_text(query, message.content) for message in messages]


class SemanticRelevance(RelevanceStrategy):
    """Cosine similarity between the question and message embeddings."""

    name = "semantic"

    def __init__(self, embedder: Embedder) -> None:
        self.embedder = embedder

    async def score(self, query: str, messages: Sequence[ChatMessage]) -> list[float]:
        vectors = await asyncio.gather(
            self.embedder.embed(query),
            *(self.embedder.embed(message.content) for message in messages),
        )
        query_vector, message_vectors = vectors[0], vectors[1:]
        return [cosine_similarity(query_vector, vector) for vector in message_vectors]
