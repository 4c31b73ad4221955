"""Tests for hybrid search."""

from __future__ import annotations

import pytest

from chat_archive.core.errors import StorageError
from chat_archive.models.entities import ScoredMessage
from chat_archive.retrieval.hybrid import fuse_scores, paginate
from chat_archive.retrieval.search import HybridSearchRanker, SearchScope
from conftest import make_message


class FixedEmbedder:
    provider = "fixed"
    model_name = "fixed"
    dimension = 2

    def __init__(self, vector=(1.0, 0.0), error: Exception | None = None) -> None:
        self.vector = list(vector)
        self.error = error
        self.calls = 0

    def embed(self, texts):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return [self.vector for _ in texts]


def _hit(mid: int, score: float, chat_id: int = 1) -> ScoredMessage:
    return ScoredMessage(message=make_message(chat_id, mid), score=score)


def test_fusion_rewards_agreement_without_lowering_lexical() -> None:
    lexical = [_hit(1, 0.9), _hit(2, 0.4)]
    vector = [_hit(1, 0.2), _hit(2, 0.5), _hit(3, 0.7)]
    fused = {result.message.platform_message_id: result for result in fuse_scores(lexical, vector, 0.3)}
    assert fused[1].score == pytest.approx(0.9)
    assert fused[1].source == "both"
    assert fused[2].score == pytest.approx(0.8)
    assert fused[3].score == pytest.approx(0.7)
    assert fused[3].source == "vector"


def test_fused_score_at_least_lexical() -> None:
    lexical = [_hit(mid, mid / 10) for mid in range(1, 10)]
    vector = [_hit(mid, (10 - mid) / 10 - 0.5) for mid in range(1, 10)]
    lexical_scores = {hit.message.key: hit.score for hit in lexical}
    for result in fuse_scores(lexical, vector, 0.3):
        assert result.score >= lexical_scores[result.message.key]


def test_same_id_in_different_chats_is_distinct() -> None:
    fused = fuse_scores([_hit(1, 0.5, chat_id=1)], [_hit(1, 0.5, chat_id=2)], 0.3)
    assert len(fused) == 2


def test_paginate() -> None:
    fused = fuse_scores([_hit(mid, mid / 10) for mid in range(1, 8)], [], 0.3)
    assert [r.message.platform_message_id for r in paginate(fused, 2, 3)] == [5, 4, 3]
    assert paginate(fused, 10, 3) == []


@pytest.fixture
def seeded(store):
    store.upsert_messages(
        [
            make_message(1, 1, "deploy the release on friday"),
            make_message(1, 2, "weekend hiking trip"),
            make_message(1, 3, "release notes drafted"),
            make_message(2, 4, "friday release party"),
        ]
    )
    store.upsert_embeddings(1, [(1, [0.0, 1.0]), (2, [1.0, 0.0]), (3, [0.6, 0.8])], model="fixed")
    store.upsert_embeddings(2, [(4, [0.8, 0.6])], model="fixed")
    return store


def test_lexical_results_suppress_vector_step_when_enough(seeded) -> None:
    embedder = FixedEmbedder()
    ranker = HybridSearchRanker(seeded, embedder, overfetch=100)
    page = ranker.search("release", limit=2)
    assert embedder.calls == 0
    assert page.vector_used is False
    assert page.total == 3
    assert len(page.items) == 2
    assert {item.source for item in page.items} == {"lexical"}


def test_no_lexical_matches_returns_raw_vector_scores(seeded) -> None:
    ranker = HybridSearchRanker(seeded, FixedEmbedder(), overfetch=100, fusion_bonus=0.3)
    page = ranker.search("mountains", limit=10)
    assert page.vector_used is True
    assert [item.source for item in page.items] == ["vector"] * 4
    scores = {item.message.platform_message_id: item.score for item in page.items}
    assert scores[2] == pytest.approx(1.0)
    assert scores[4] == pytest.approx(0.8, abs=1e-6)
    assert scores[1] == pytest.approx(0.0, abs=1e-6)


def test_vector_failure_degrades_to_lexical(seeded, caplog) -> None:
    embedder = FixedEmbedder(error=RuntimeError("provider outage"))
    ranker = HybridSearchRanker(seeded, embedder, overfetch=100)
    lexical_only = seeded.lexical_search("friday", None, 100)
    with caplog.at_level("WARNING"):
        page = ranker.search("friday", limit=10)
    assert embedder.calls == 1
    assert page.vector_used is False
    assert page.vector_error == "provider outage"
    assert [item.message.key for item in page.items] == [hit.message.key for hit in lexical_only]
    assert page.items


def test_scope_by_chat_and_folder(seeded) -> None:
    ranker = HybridSearchRanker(seeded, FixedEmbedder(), overfetch=100)
    assert {i.message.chat_id for i in ranker.search("release", SearchScope(chat_id=2), limit=1).items} == {2}

    seeded.upsert_folder(9, "Party", [2])
    page = ranker.search("release", SearchScope(folder_id=9), limit=1)
    assert [item.message.key for item in page.items] == [(2, 4)]


def test_empty_folder_is_an_error(seeded) -> None:
    ranker = HybridSearchRanker(seeded, FixedEmbedder(), overfetch=100)
    with pytest.raises(ValueError):
        ranker.search("release", SearchScope(folder_id=404))


def test_blank_query_returns_nothing(seeded) -> None:
    page = HybridSearchRanker(seeded, FixedEmbedder()).search("   ")
    assert page.total == 0
    assert page.items == []


def test_overfetch_keeps_best_lexical_matches(store) -> None:
    store.upsert_messages(
        [
            make_message(1, 1, "release"),
            make_message(1, 2, "release checklist for the mobile app"),
            make_message(1, 3, "release retro moved to thursday afternoon"),
        ]
    )
    ranker = HybridSearchRanker(store, FixedEmbedder(), overfetch=2)
    page = ranker.search("release", limit=1)
    assert [item.message.platform_message_id for item in page.items] == [1]


def test_storage_failure_ends_search_with_fatal_event(seeded) -> None:
    def broken(query, chat_ids, limit):
        raise StorageError("database is locked")

    seeded.lexical_search = broken
    events = []
    with pytest.raises(StorageError):
        HybridSearchRanker(seeded, FixedEmbedder()).search("release", callback=events.append)
    assert events[-1].terminal
    assert events[-1].status == "failed"
    assert events[-1].result == "fatal"
