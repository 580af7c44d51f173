import math
from concurrent.futures import ThreadPoolExecutor

import pytest

from chat_context.config import RankingConfig
from chat_context.ranking.bm25 import RankingEngine, tokenize

CORPUS = ["the cat sat", "the dog ran", "cats and dogs"]


def test_tokenize_lowercases_and_drops_single_characters() -> None:
    assert tokenize("A cat's TOY, x y zz") == ["cat", "toy", "zz"]


def test_exact_matches_outrank_inflected_forms() -> None:
    engine = RankingEngine(CORPUS)

    cat_doc = engine.score("cat dog", 0)
    dog_doc = engine.score("cat dog", 1)
    plural_doc = engine.score("cat dog", 2)

    assert cat_doc > 0.0
    assert dog_doc > 0.0
    assert plural_doc < cat_doc
    assert plural_doc < dog_doc


def test_scores_are_non_negative_and_zero_without_overlap() -> None:
    engine = RankingEngine(CORPUS + ["", "a"])

    for query in ("cat dog", "the", "the the the", "unknown words", ""):
        for index in range(engine.document_count):
            assert engine.score(query, index) >= 0.0

    assert engine.score("cat", 3) == 0.0
    assert engine.score("cat", 4) == 0.0
    assert engine.score("zebra", 0) == 0.0


def test_incremental_add_matches_full_rebuild() -> None:
    corpus = CORPUS + [
        "the quick brown fox jumps over the lazy dog",
        "dogs and cats living together",
    ]
    incremental = RankingEngine(corpus[:2])
    for document in corpus[2:]:
        incremental.add_document(document)
    rebuilt = RankingEngine(corpus)

    assert incremental.document_count == rebuilt.document_count
    assert incremental.vocabulary_size == rebuilt.vocabulary_size
    assert incremental.average_length == pytest.approx(rebuilt.average_length)
    for query in ("cat dog", "the lazy fox", "cats together", "sat"):
        for index in range(len(corpus)):
            assert incremental.score(query, index) == pytest.approx(rebuilt.score(query, index))
        assert incremental.score_all(query) == pytest.approx(rebuilt.score_all(query))


def test_idf_is_non_increasing_in_document_frequency() -> None:
    total = 10
    values = []
    for df in range(0, total + 1):
        docs = ["term filler"] * df + ["other filler"] * (total - df)
        values.append(RankingEngine(docs).idf("term"))

    assert all(later <= earlier for earlier, later in zip(values, values[1:]))
    assert values[0] == pytest.approx(math.log((total - 1 + 0.5) / 1.5))
    assert values[-1] == 0.0


def test_empty_corpus_scores_zero() -> None:
    engine = RankingEngine()

    assert engine.document_count == 0
    assert engine.idf("anything") == 0.0
    assert engine.score_against_text("cat", "the cat sat") == 0.0
    with pytest.raises(IndexError):
        engine.score("cat", 0)


def test_score_against_text_matches_in_corpus_score() -> None:
    engine = RankingEngine(CORPUS)

    for index, document in enumerate(CORPUS):
        assert engine.score_against_text("cat dog sat", document) == pytest.approx(
            engine.score("cat dog sat", index)
        )


def test_parameters_change_invalidates_cached_scores() -> None:
    engine = RankingEngine(["the cat sat on the mat today", "dog", "bird", "fish"])
    version = engine.version
    before = engine.score("cat", 0)

    engine.set_parameters(1.5, 0.0)

    assert engine.version == version + 1
    assert engine.parameters == (1.5, 0.0)
    assert engine.score("cat", 0) != pytest.approx(before)


def test_add_document_invalidates_cached_scores() -> None:
    engine = RankingEngine(["cat", "dog", "bird"])
    before = engine.score("cat", 0)

    engine.add_document("cat cat cat")

    assert engine.score("cat", 0) != pytest.approx(before)


def test_set_parameters_rejects_invalid_values() -> None:
    engine = RankingEngine(CORPUS)

    with pytest.raises(ValueError):
        engine.set_parameters(-1.0, 0.75)
    with pytest.raises(ValueError):
        engine.set_parameters(1.2, 1.5)


def test_config_parameters_are_applied() -> None:
    engine = RankingEngine(CORPUS, RankingConfig(k1=1.2, b=0.5))

    assert engine.parameters == (1.2, 0.5)


def test_extract_keywords_ranks_rare_terms_and_breaks_ties_by_position() -> None:
    engine = RankingEngine(["the cat sat", "the dog ran", "the bird flew"])

    keywords = engine.extract_keywords("the cat and the zebra", 4)

    assert keywords == ["cat", "and", "zebra", "the"]
    assert engine.extract_keywords("the cat and the zebra", 2) == ["cat", "and"]
    assert engine.extract_keywords("", 3) == []
    assert engine.extract_keywords("cat", 0) == []


def test_rank_orders_by_score_then_index() -> None:
    engine = RankingEngine(["dog", "cat", "cat cat", "fish", "bird"])

    ranked = engine.rank("cat", top_k=3)

    assert [hit.index for hit in ranked][:2] == [2, 1]
    assert ranked[-1].score == 0.0
    assert ranked[-1].index == 0


def test_concurrent_reads_and_writes_keep_index_consistent() -> None:
    engine = RankingEngine(CORPUS)

    def _read(_: int) -> float:
        return sum(engine.score_all("cat dog"))

    def _write(i: int) -> int:
        return engine.add_document(f"document number {i} about cats")

    with ThreadPoolExecutor(max_workers=8) as pool:
        reads = [pool.submit(_read, i) for i in range(50)]
        writes = [pool.submit(_write, i) for i in range(20)]
        results = [future.result() for future in reads + writes]

    assert all(value >= 0 for value in results)
    assert engine.document_count == len(CORPUS) + 20
    rebuilt = RankingEngine(hit.text for hit in engine.rank("", top_k=100))
    assert rebuilt.average_length == pytest.approx(engine.average_length)


def test_score_cache_is_bounded() -> None:
    engine = RankingEngine(CORPUS, RankingConfig(cache_size=2))

    first = engine.score("cat", 0)
    for query in ("dog", "sat", "ran", "cats"):
        engine.score(query, 1)

    assert len(engine._cache) == 2
    assert engine.score("cat", 0) == first
