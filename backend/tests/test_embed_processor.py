"""Tests for the embedding batch processor."""

from __future__ import annotations

import threading
import time

import pytest

from chat_archive.core.errors import StorageError
from chat_archive.core.retry import RetryPolicy
from chat_archive.ingest.embed_processor import EmbeddingBatchProcessor
from conftest import RecordingEmbedder, make_message


def _processor(store, embedder, batch_size=10, concurrency=4) -> EmbeddingBatchProcessor:
    return EmbeddingBatchProcessor(
        store,
        embedder,
        batch_size=batch_size,
        concurrency=concurrency,
        retry_policy=RetryPolicy(max_attempts=1),
    )


def test_failed_batch_is_counted_and_skipped(store) -> None:
    store.upsert_messages([make_message(1, mid) for mid in range(1, 31)])
    embedder = RecordingEmbedder(fail_calls={2})
    events = list(_processor(store, embedder).embed_pending(1))

    final = events[-1]
    assert final.status == "completed"
    assert final.result == "partial"
    assert final.metadata["failed"] == 10
    assert final.metadata["processed"] == 20
    assert store.count_embeddings(1, embedder.dimension) == 20
    assert [len(call) for call in embedder.calls] == [10, 10, 10]


@pytest.mark.parametrize("batch_size,concurrency", [(1, 1), (3, 2), (7, 10), (50, 4)])
def test_processed_plus_failed_equals_total(store, batch_size, concurrency) -> None:
    store.upsert_messages([make_message(1, mid) for mid in range(1, 24)])
    embedder = RecordingEmbedder(fail_calls={1})
    final = list(_processor(store, embedder, batch_size, concurrency).embed_pending(1))[-1]
    stats = final.metadata
    assert stats["processed"] + stats["failed"] == stats["total"] == 23


def test_progress_after_every_sub_batch(store) -> None:
    store.upsert_messages([make_message(1, mid) for mid in range(1, 11)])
    events = list(_processor(store, RecordingEmbedder(), batch_size=10, concurrency=4).embed_pending(1))
    running = [event for event in events if not event.terminal]
    # start + ceil(10 / 4) sub-batches
    assert len(running) == 4
    assert [event.metadata["processed"] for event in running[1:]] == [4, 8, 10]
    assert events[-1].percent == 100
    assert events[-1].result == "success"


def test_concurrency_cap_is_honoured(store) -> None:
    store.upsert_messages([make_message(1, mid) for mid in range(1, 21)])
    lock = threading.Lock()
    in_flight = {"now": 0, "peak": 0}
    original = store.upsert_embeddings

    def slow_upsert(chat_id, updates, model):
        with lock:
            in_flight["now"] += 1
            in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
        time.sleep(0.01)
        try:
            return original(chat_id, updates, model)
        finally:
            with lock:
                in_flight["now"] -= 1

    store.upsert_embeddings = slow_upsert
    list(_processor(store, RecordingEmbedder(), batch_size=20, concurrency=3).embed_pending(1))
    assert 1 <= in_flight["peak"] <= 3


def test_empty_content_is_embedded(store) -> None:
    store.upsert_messages([make_message(1, 1, content=""), make_message(1, 2, content="hi")])
    embedder = RecordingEmbedder()
    final = list(_processor(store, embedder).embed_pending(1))[-1]
    assert final.metadata["processed"] == 2
    assert sorted(embedder.calls[0]) == ["", "hi"]


def test_nothing_pending_succeeds(store) -> None:
    final = list(_processor(store, RecordingEmbedder()).embed_pending(1))[-1]
    assert final.result == "success"
    assert final.metadata["total"] == 0


def test_every_batch_failing_is_fatal(store) -> None:
    store.upsert_messages([make_message(1, mid) for mid in range(1, 6)])
    final = list(_processor(store, RecordingEmbedder(fail_calls={1})).embed_pending(1))[-1]
    assert final.status == "failed"
    assert final.result == "fatal"


def test_rejects_out_of_range_concurrency(store) -> None:
    with pytest.raises(ValueError):
        list(_processor(store, RecordingEmbedder()).embed_pending(1, concurrency=11))


def test_job_recorded(store) -> None:
    store.upsert_messages([make_message(1, 1)])
    final = list(_processor(store, RecordingEmbedder()).embed_pending(1))[-1]
    job = store.get_job(final.job_id)
    assert job["kind"] == "embed"
    assert job["result"] == "success"


def test_unreadable_archive_ends_with_fatal_event(store) -> None:
    def broken(chat_id, dimension):
        raise StorageError("database is locked")

    store.find_messages_missing_embedding = broken
    events = list(_processor(store, RecordingEmbedder()).embed_pending(1))
    assert [event.terminal for event in events] == [False, True]
    assert events[-1].status == "failed"
    assert events[-1].result == "fatal"
    assert events[-1].metadata["errorKind"] == "StorageError"
    assert store.get_job(events[-1].job_id)["result"] == "fatal"
