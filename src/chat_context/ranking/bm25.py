"""BM25 ranking over an incrementally maintained corpus.

Scoring uses the Okapi BM25 formulation:

    idf(t)   = max(0, ln((N - df + 0.5) / (df + 0.5)))
    score    = sum over query tokens of
               idf(t) * tf * (k1 + 1) / (tf + k1 * (1 - b + b * dl / avgdl))

`df` is floored to 1 so unseen terms never divide by zero, and an empty
corpus scores every term 0.
"""

from __future__ import annotations

import logging
import math
import re
import threading
from collections import Counter, OrderedDict
from collections.abc import Iterable

from chat_context.config import RankingConfig
from chat_context.ranking.locks import ReadWriteLock
from chat_context.types import ScoredDocument

logger = logging.getLogger(__name__)

_TOKEN_PATTERN = re.compile(r"\w+", flags=re.UNICODE)


def tokenize(text: str) -> list[str]:
    """Lower-case word tokens, dropping single-character noise."""
    return [token for token in _TOKEN_PATTERN.findall(text.lower()) if len(token) > 1]


class RankingEngine:
    """Term statistics for a corpus plus BM25 scoring against it.

    Reads may run concurrently from many threads; `add_document` and
    `set_parameters` take the write side of a `ReadWriteLock`, so the index,
    the parameters and the score cache always change together.
    """

    def __init__(
        self,
        corpus: Iterable[str] = (),
        config: RankingConfig | None = None,
    ) -> None:
        config = config or RankingConfig()
        self._k1 = config.k1
        self._b = config.b
        self._lock = ReadWriteLock()

        self._documents: list[str] = []
        self._term_counts: list[Counter[str]] = []
        self._doc_lengths: list[int] = []
        self._doc_freq: Counter[str] = Counter()
        self._vocabulary: Counter[str] = Counter()
        self._total_length = 0
        self._avg_length = 0.0

        self._version = 0
        self._cache: OrderedDict[tuple[str, int, int], float] = OrderedDict()
        self._cache_size = config.cache_size
        self._cache_lock = threading.Lock()

        for document in corpus:
            self._append(document)

    # ------------------------------------------------------------------
    # mutations
    # ------------------------------------------------------------------

    def add_document(self, document: str) -> int:
        """Append one document and return its index."""
        with self._lock.write():
            index = self._append(document)
            self._invalidate()
        logger.debug("indexed document %d (%d tokens)", index, self._doc_lengths[index])
        return index

    def set_parameters(self, k1: float, b: float) -> None:
        if k1 < 0:
            raise ValueError(f"k1 must be non-negative, got {k1}")
        if not 0.0 <= b <= 1.0:
            raise ValueError(f"b must be within [0, 1], got {b}")
        with self._lock.write():
            self._k1 = k1
            self._b = b
            self._invalidate()

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------

    def score(self, query: str, index: int) -> float:
        """BM25 score of `query` against the corpus document at `index`."""
        query_tokens = tokenize(query)
        with self._lock.read():
            if not 0 <= index < len(self._documents):
                raise IndexError(f"document index out of range: {index}")
            key = (query, index, self._version)
            with self._cache_lock:
                cached = self._cache.get(key)
                if cached is not None:
                    self._cache.move_to_end(key)
            if cached is not None:
                return cached
            value = self._score_counts(
                query_tokens,
                self._term_counts[index],
                self._doc_lengths[index],
                self._avg_length,
            )
            with self._cache_lock:
                self._cache[key] = value
                while len(self._cache) > self._cache_size:
                    self._cache.popitem(last=False)
            return value

    def score_all(self, query: str) -> list[float]:
        """Score `query` against every document, in corpus order."""
        query_tokens = tokenize(query)
        with self._lock.read():
            return [
                self._score_counts(query_tokens, counts, length, self._avg_length)
                for counts, length in zip(self._term_counts, self._doc_lengths, strict=True)
            ]

    def rank(self, query: str, top_k: int = 10) -> list[ScoredDocument]:
        """Best-scoring documents first; ties keep corpus order."""
        scores = self.score_all(query)
        with self._lock.read():
            documents = list(self._documents)
        order = sorted(range(len(scores)), key=lambda i: (-scores[i], i))
        return [
            ScoredDocument(index=i, text=documents[i], score=scores[i])
            for i in order[: max(0, top_k)]
        ]

    def score_against_text(self, query: str, text: str) -> float:
        """Score `query` against a document that is not part of the corpus.

        Length normalisation uses the corpus average, or the text's own length
        when the corpus offers none.
        """
        query_tokens = tokenize(query)
        text_tokens = tokenize(text)
        with self._lock.read():
            avg_length = self._avg_length or float(len(text_tokens))
            return self._score_counts(
                query_tokens, Counter(text_tokens), len(text_tokens), avg_length
            )

    def extract_keywords(self, text: str, top_n: int) -> list[str]:
        """Rank the distinct tokens of `text` by corpus rarity and local weight.

        Weight is `idf * (tf / len(tokens)) * ln(N + 1)`. Equal weights keep
        the order in which the tokens first appear in `text`.
        """
        tokens = tokenize(text)
        if not tokens or top_n <= 0:
            return []

        counts = Counter(tokens)
        first_seen: dict[str, int] = {}
        for position, token in enumerate(tokens):
            first_seen.setdefault(token, position)

        with self._lock.read():
            scale = math.log(len(self._documents) + 1)
            weights = {
                token: self._idf(token) * (freq / len(tokens)) * scale
                for token, freq in counts.items()
            }

        ranked = sorted(weights, key=lambda token: (-weights[token], first_seen[token]))
        return ranked[:top_n]

    def idf(self, term: str) -> float:
        with self._lock.read():
            return self._idf(term.lower())

    @property
    def document_count(self) -> int:
        with self._lock.read():
            return len(self._documents)

    @property
    def vocabulary_size(self) -> int:
        with self._lock.read():
            return len(self._vocabulary)

    @property
    def average_length(self) -> float:
        with self._lock.read():
            return self._avg_length

    @property
    def parameters(self) -> tuple[float, float]:
        with self._lock.read():
            return self._k1, self._b

    @property
    def version(self) -> int:
        with self._lock.read():
            return self._version

    # ------------------------------------------------------------------
    # internals; callers hold the appropriate lock
    # ------------------------------------------------------------------

    def _append(self, document: str) -> int:
        tokens = tokenize(document)
        counts = Counter(tokens)

        self._documents.append(document)
        self._term_counts.append(counts)
        self._doc_lengths.append(len(tokens))
        self._vocabulary.update(counts)
        self._doc_freq.update(counts.keys())
        self._total_length += len(tokens)
        self._avg_length = self._total_length / len(self._documents)
        return len(self._documents) - 1

    def _invalidate(self) -> None:
        with self._cache_lock:
            self._version += 1
            self._cache.clear()

    def _idf(self, term: str) -> float:
        total = len(self._documents)
        if total == 0:
            return 0.0
        df = max(1, self._doc_freq.get(term, 0))
        return max(0.0, math.log((total - df + 0.5) / (df + 0.5)))

    def _score_counts(
        self,
        query_tokens: list[str],
        doc_counts: Counter[str],
        doc_length: int,
        avg_length: float,
    ) -> float:
        if doc_length == 0 or avg_length <= 0:
            return 0.0
        norm = self._k1 * (1 - self._b + self._b * doc_length / avg_length)
        score = 0.0
        for token in query_tokens:
            tf = doc_counts.get(token, 0)
            if tf == 0:
                continue
            score += self._idf(token) * tf * (self._k1 + 1) / (tf + norm)
        return score
