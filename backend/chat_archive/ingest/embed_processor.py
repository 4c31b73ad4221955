"""Batch embedding of archived messages."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, wait
from typing import Iterator, Sequence

from chat_archive.core.errors import EmbeddingError, StorageError
from chat_archive.core.logging import get_logger, log_context
from chat_archive.core.metrics import EMBEDDINGS_WRITTEN
from chat_archive.core.progress import JobResult, ProgressCallback, ProgressEvent, percent_of
from chat_archive.core.retry import RetryPolicy
from chat_archive.ingest.embeddings import Embedder
from chat_archive.ingest.jobs import JobReporter
from chat_archive.ingest.types import EmbedStats
from chat_archive.models.entities import EmbeddingJob
from chat_archive.storage.store import ArchiveStore

logger = get_logger(__name__)

MAX_CONCURRENCY = 10


class EmbeddingBatchProcessor:
    """Embed every message of a chat that lacks a vector of the embedder's dimension.

    Messages are sent to the provider ``batch_size`` at a time. Each batch's
    vectors are then persisted in sub-batches of ``concurrency`` calls that run
    in parallel; a sub-batch completes fully before the next one starts, so no
    more than ``concurrency`` writes are ever in flight. A failed batch is
    counted and skipped.
    """

    def __init__(
        self,
        store: ArchiveStore,
        embedder: Embedder,
        batch_size: int = 1000,
        concurrency: int = 4,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.batch_size = batch_size
        self.concurrency = concurrency
        self.retry_policy = retry_policy or RetryPolicy()

    @classmethod
    def from_settings(cls, settings, store: ArchiveStore, embedder: Embedder) -> "EmbeddingBatchProcessor":
        return cls(
            store,
            embedder,
            batch_size=settings.embed_batch_size,
            concurrency=settings.embed_concurrency,
            retry_policy=RetryPolicy.from_settings(settings),
        )

    def embed_pending(
        self,
        chat_id: int,
        batch_size: int | None = None,
        concurrency: int | None = None,
        callback: ProgressCallback | None = None,
        job_id: str | None = None,
    ) -> Iterator[ProgressEvent]:
        batch_size = batch_size or self.batch_size
        concurrency = concurrency or self.concurrency
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if not 1 <= concurrency <= MAX_CONCURRENCY:
            raise ValueError(f"concurrency must be between 1 and {MAX_CONCURRENCY}")

        reporter = JobReporter("embed", chat_id=chat_id, store=self.store, callback=callback, job_id=job_id)
        dimension = self.embedder.dimension
        try:
            pending = self.store.find_messages_missing_embedding(chat_id, dimension)
        except StorageError as exc:
            yield reporter.start(f"Embedding chat {chat_id}", chatId=chat_id, dimension=dimension)
            yield reporter.finish(
                "fatal",
                f"Could not load pending messages: {exc}",
                error=str(exc),
                errorKind=type(exc).__name__,
            )
            return
        stats = EmbedStats(total=len(pending))
        yield reporter.start(
            f"Embedding {stats.total} messages",
            chatId=chat_id,
            dimension=dimension,
            **stats.to_dict(),
        )

        try:
            with ThreadPoolExecutor(max_workers=concurrency, thread_name_prefix="embed") as executor:
                for start in range(0, stats.total, batch_size):
                    job = EmbeddingJob(batch=pending[start : start + batch_size], dimension=dimension)
                    stats.batches += 1
                    vectors = self._embed_batch(chat_id, job, stats)
                    if vectors is None:
                        yield reporter.progress(
                            percent_of(stats.processed + stats.failed, stats.total),
                            f"Embedding batch {stats.batches} failed",
                            **stats.to_dict(),
                        )
                        continue
                    pairs = [
                        (message.platform_message_id, vector) for message, vector in zip(job.batch, vectors)
                    ]
                    for offset in range(0, len(pairs), concurrency):
                        self._persist(executor, chat_id, pairs[offset : offset + concurrency], job, stats)
                        yield reporter.progress(
                            percent_of(stats.processed + stats.failed, stats.total),
                            f"Embedded {stats.processed}/{stats.total} messages",
                            **stats.to_dict(),
                        )
                    job.status = "done" if job.failed_count == 0 else "partial"
        except GeneratorExit:
            reporter.finish("aborted", "Embedding cancelled", **stats.to_dict())
            raise

        result = _result_for(stats)
        yield reporter.finish(
            result,
            f"Embedded {stats.processed} of {stats.total} messages ({stats.failed} failed)",
            **stats.to_dict(),
        )

    def run(
        self,
        chat_id: int,
        batch_size: int | None = None,
        concurrency: int | None = None,
        callback: ProgressCallback | None = None,
    ) -> ProgressEvent:
        """Drive :meth:`embed_pending` to completion and return the terminal event."""
        event: ProgressEvent | None = None
        for event in self.embed_pending(chat_id, batch_size, concurrency, callback=callback):
            pass
        assert event is not None
        return event

    def _embed_batch(self, chat_id: int, job: EmbeddingJob, stats: EmbedStats) -> list[list[float]] | None:
        texts = [message.content or "" for message in job.batch]
        try:
            vectors = self.retry_policy.call(
                lambda: self.embedder.embed(texts),
                description=f"embedding batch {stats.batches}",
            )
            if len(vectors) != len(texts):
                raise EmbeddingError(f"Provider returned {len(vectors)} vectors for {len(texts)} texts")
        except Exception as exc:
            job.status = "failed"
            job.failed_count = len(job.batch)
            stats.failed += len(job.batch)
            stats.failed_batches += 1
            EMBEDDINGS_WRITTEN.labels(status="failed").inc(len(job.batch))
            logger.warning(
                "Embedding batch %s failed: %s",
                stats.batches,
                exc,
                extra=log_context(chat_id=chat_id, batch=stats.batches, size=len(job.batch)),
            )
            return None
        return vectors

    def _persist(
        self,
        executor: ThreadPoolExecutor,
        chat_id: int,
        pairs: Sequence[tuple[int, list[float]]],
        job: EmbeddingJob,
        stats: EmbedStats,
    ) -> None:
        futures = [
            executor.submit(self.store.upsert_embeddings, chat_id, [pair], self.embedder.model_name)
            for pair in pairs
        ]
        wait(futures)
        for (message_id, _), future in zip(pairs, futures):
            exc = future.exception()
            if exc is None:
                stats.processed += 1
                EMBEDDINGS_WRITTEN.labels(status="written").inc()
                continue
            stats.failed += 1
            job.failed_count += 1
            EMBEDDINGS_WRITTEN.labels(status="failed").inc()
            logger.warning(
                "Persisting embedding for message %s failed: %s",
                message_id,
                exc,
                extra=log_context(chat_id=chat_id, message_id=message_id),
            )


def _result_for(stats: EmbedStats) -> JobResult:
    if stats.total > 0 and stats.processed == 0:
        return "fatal"
    if stats.failed:
        return "partial"
    return "success"


__all__ = ["EmbeddingBatchProcessor", "MAX_CONCURRENCY"]
