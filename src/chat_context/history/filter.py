"""Selects the prior turns worth re-sending to the generation backend."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

from chat_context.config import HistoryConfig, RankingConfig
from chat_context.history.embedder import Embedder
from chat_context.history.relevance import (
    LexicalRelevance,
    RelevanceStrategy,
    SemanticRelevance,
)
from chat_context.types import ChatMessage

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class HistorySelection:
    """Messages kept by one filter call and the strategy that ranked them."""

    messages: list[ChatMessage]
    strategy: str


class HistoryFilter:
    """Keeps the `budget` most relevant messages, in chronological order.

    Relevance comes from embeddings when an embedder is configured and
    answers in time; otherwise, or whenever the embedder fails, BM25 over the
    conversation is used instead. Callers never see an embedder error.

    Ties prefer the more recent message. A configured `min_score` only
    applies when the history is larger than the budget.
    """

    def __init__(
        self,
        embedder: Embedder | None = None,
        *,
        config: HistoryConfig | None = None,
        ranking_config: RankingConfig | None = None,
    ) -> None:
        self.config = config or HistoryConfig()
        self._lexical = LexicalRelevance(ranking_config)
        self._strategy: RelevanceStrategy = (
            SemanticRelevance(embedder) if embedder is not None else self._lexical
        )

    @property
    def strategy(self) -> RelevanceStrategy:
        return self._strategy

    async def filter(
        self,
        history: Sequence[ChatMessage],
        query: str,
        budget: int | None = None,
    ) -> list[ChatMessage]:
        selection = await self.select(history, query, budget)
        return selection.messages

    async def select(
        self,
        history: Sequence[ChatMessage],
        query: str,
        budget: int | None = None,
    ) -> HistorySelection:
        limit = self.config.budget if budget is None else budget
        if limit < 0:
            raise ValueError(f"budget must be non-negative, got {limit}")
        if limit >= len(history):
            return HistorySelection(messages=list(history), strategy="all")
        if limit == 0:
            return HistorySelection(messages=[], strategy="none")

        scores, strategy = await self._score(query, history)
        ranked = sorted(range(len(history)), key=lambda i: (scores[i], i), reverse=True)
        if self.config.min_score is not None:
            ranked = [i for i in ranked if scores[i] >= self.config.min_score]
        keep = sorted(ranked[:limit])
        logger.debug("kept %d of %d messages via %s relevance", len(keep), len(history), strategy)
        return HistorySelection(messages=[history[i] for i in keep], strategy=strategy)

    async def _score(
        self, query: str, history: Sequence[ChatMessage]
    ) -> tuple[list[float], str]:
        if self._strategy is not self._lexical:
            try:
                scores = await asyncio.wait_for(
                    self._strategy.score(query, history),
                    timeout=self.config.embed_timeout_seconds,
                )
            except Exception as exc:
                logger.warning(
                    "%s relevance unavailable, falling back to lexical: %r",
                    self._strategy.name,
                    exc,
                )
            else:
                return scores, self._strategy.name

        return await self._lexical.score(query, history), self._lexical.name
