"""Embedding providers for semantic history relevance."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections import Counter
from hashlib import blake2b
from math import log1p, sqrt
from typing import Any

from chat_context.ranking.bm25 import tokenize


class Embedder(ABC):
    """Embedding provider used for semantic history relevance."""

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Embed one text."""


class HashingEmbedder(Embedder):
    """Offline embedder: hashed, log-scaled term counts, L2-normalised.

    Messages sharing vocabulary land close together, which is enough to rank
    history without a model. Tokens are the same ones BM25 sees.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    async def embed(self, text: str) -> list[float]:
        vector = [0.0] * self.dimension
        for token, count in Counter(tokenize(text)).items():
            slot, sign = self._bucket(token)
            vector[slot] += sign * (1.0 + log1p(count))

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]

    def _bucket(self, token: str) -> tuple[int, float]:
        digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
        slot = int.from_bytes(digest[:4], "little") % self.dimension
        return slot, (-1.0 if digest[4] & 1 else 1.0)


class LangChainEmbedder(Embedder):
    """Adapts any `langchain_core.embeddings.Embeddings` implementation."""

    def __init__(self, embeddings: Any) -> None:
        self._embeddings = embeddings

    async def embed(self, text: str) -> list[float]:
        vector = await self._embeddings.aembed_query(text)
        return [float(value) for value in vector]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
