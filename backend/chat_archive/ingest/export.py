"""Export job orchestration: remote history into the local archive."""

from __future__ import annotations

import threading
from dataclasses import replace
from datetime import timedelta
from pathlib import Path
from typing import Any, Literal, Sequence

import orjson

from chat_archive.core.errors import (
    AuthExpiredError,
    RateLimitedError,
    RemoteError,
    StorageError,
    TakeoutInitDelayError,
    is_fatal,
)
from chat_archive.core.logging import get_logger, log_context
from chat_archive.core.metrics import ARCHIVED_MESSAGES
from chat_archive.core.progress import JobResult, ProgressCallback, ProgressEvent, percent_of
from chat_archive.fetch.engine import MessageFetchEngine
from chat_archive.ingest.jobs import JobReporter
from chat_archive.ingest.types import ExportStats
from chat_archive.models.entities import FetchOptions, Message
from chat_archive.storage.store import ArchiveStore
from chat_archive.utils.time import utc_now

logger = get_logger(__name__)

ExportFormat = Literal["database", "json"]


class ExportJob:
    """Drive the fetch engine for one chat and persist what it yields.

    Messages are upserted in batches of ``batch_size``; a failed batch is
    counted and the export continues. The sync cursor only advances once the
    run ends with every batch stored. With ``export_format="json"`` the
    messages are written to ``<export_path>/<chat_id>_<date>.json`` instead
    and the archive and cursor are left untouched.

    Rate limits end the job with a ``waiting`` payload instead of sleeping, so
    the caller decides whether to resume. ``cancel`` may be called from
    another thread.
    """

    def __init__(
        self,
        engine: MessageFetchEngine,
        store: ArchiveStore,
        batch_size: int = 200,
        callback: ProgressCallback | None = None,
        job_id: str | None = None,
        export_format: ExportFormat = "database",
        export_path: Path | None = None,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        if export_format not in ("database", "json"):
            raise ValueError(f"Unknown export format: {export_format}")
        if export_format == "json" and export_path is None:
            raise ValueError("json export needs an export_path")
        self.engine = engine
        self.store = store
        self.batch_size = batch_size
        self.callback = callback
        self.job_id = job_id
        self.export_format = export_format
        self.export_path = export_path
        self.output_file: Path | None = None
        self.stats = ExportStats()
        self._cancelled = threading.Event()
        self._highest_stored: int | None = None
        self._exported: list[Message] = []
        self._resuming = False

    def cancel(self) -> None:
        self._cancelled.set()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(self, chat_id: int, options: FetchOptions | None = None) -> ProgressEvent:
        options = replace(options or FetchOptions(), record_cursor=False)
        reporter = JobReporter("export", chat_id=chat_id, store=self.store, callback=self.callback, job_id=self.job_id)
        self.job_id = reporter.job_id
        self.stats = stats = ExportStats()
        self._highest_stored = None
        self._exported = []
        self._resuming = bool(options.resume_offset_id)
        self.output_file = None
        reporter.start(
            f"Exporting chat {chat_id}",
            chatId=chat_id,
            method=options.method,
            format=self.export_format,
        )

        try:
            if self.export_format == "database":
                self._record_chat(chat_id)
            stats.total = self._expected_total(chat_id, options)
            self._consume(chat_id, options, reporter)
        except (RateLimitedError, TakeoutInitDelayError) as exc:
            self._commit_cursor(chat_id, reporter)
            resume_time = utc_now() + timedelta(seconds=exc.wait_seconds)
            return reporter.finish(
                "aborted",
                f"Rate limited; wait {exc.wait_seconds}s before resuming",
                type="waiting",
                waitSeconds=exc.wait_seconds,
                resumeTime=resume_time.isoformat(),
                **self._summary(chat_id),
            )
        except Exception as exc:
            self._commit_cursor(chat_id, reporter)
            if not is_fatal(exc):
                logger.exception("Export of chat %s failed", chat_id, extra=log_context(job_id=reporter.job_id))
            return reporter.finish(
                "fatal",
                f"Export failed: {exc}",
                error=str(exc),
                errorKind=_error_kind(exc),
                **self._summary(chat_id),
            )
        self._commit_cursor(chat_id, reporter)
        self._update_gauge()
        result = self._result()
        if result == "aborted":
            message = f"Export cancelled after {stats.processed} messages"
        else:
            message = f"Exported {stats.processed} messages ({stats.failed} failed)"
        return reporter.finish(result, message, **self._summary(chat_id))

    def _consume(self, chat_id: int, options: FetchOptions, reporter: JobReporter) -> None:
        stats = self.stats
        buffer: list[Message] = []
        stream = self.engine.fetch_messages(chat_id, options)
        try:
            for message in stream:
                buffer.append(message)
                if len(buffer) >= self.batch_size:
                    self._flush(chat_id, buffer, reporter)
                    buffer = []
                if self.cancelled:
                    logger.info("Export of chat %s cancelled", chat_id, extra=log_context(job_id=reporter.job_id))
                    break
        finally:
            # Release the takeout session before persisting the tail.
            stream.close()
            if buffer:
                self._flush(chat_id, buffer, reporter)
            if self.export_format == "json":
                self._write_json(chat_id, reporter)

    def _flush(self, chat_id: int, batch: Sequence[Message], reporter: JobReporter) -> None:
        stats = self.stats
        stats.batches += 1
        try:
            if self.export_format == "json":
                self._exported.extend(batch)
                stats.processed += len(batch)
            else:
                stats.processed += self.store.upsert_messages(batch)
                highest = max(message.platform_message_id for message in batch)
                if self._highest_stored is None or highest > self._highest_stored:
                    self._highest_stored = highest
        except StorageError as exc:
            stats.failed += len(batch)
            stats.failed_batches += 1
            logger.warning(
                "Persisting batch %s for chat %s failed: %s",
                stats.batches,
                chat_id,
                exc,
                extra=log_context(job_id=reporter.job_id, size=len(batch)),
            )
        done = stats.processed + stats.failed
        percent = percent_of(done, stats.total) if stats.total else 0
        reporter.progress(
            min(percent, 99),
            f"Archived {stats.processed} messages",
            **stats.to_dict(),
        )

    def _write_json(self, chat_id: int, reporter: JobReporter) -> None:
        stats = self.stats
        assert self.export_path is not None
        target = self.export_path.expanduser() / f"{chat_id}_{utc_now().date().isoformat()}.json"
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            records: list[Any] = list(self._exported)
            # A resumed walk continues the file written by the interrupted run.
            if self._resuming and target.exists():
                records = orjson.loads(target.read_bytes()) + records
            target.write_bytes(orjson.dumps(records, option=orjson.OPT_INDENT_2))
        except (OSError, orjson.JSONEncodeError, orjson.JSONDecodeError) as exc:
            logger.error(
                "Writing export file %s failed: %s",
                target,
                exc,
                extra=log_context(job_id=reporter.job_id, chat_id=chat_id),
            )
            # Nothing reached disk, so every collected message counts as failed.
            stats.failed += stats.processed
            stats.processed = 0
            stats.failed_batches = stats.batches
            return
        self.output_file = target
        logger.info("Exported chat %s to %s", chat_id, target, extra=log_context(job_id=reporter.job_id))

    def _commit_cursor(self, chat_id: int, reporter: JobReporter) -> None:
        cursors = self.engine.cursor_store
        if self.export_format != "database" or cursors is None or self._highest_stored is None:
            return
        if self.stats.failed:
            logger.warning(
                "Leaving sync cursor for chat %s unchanged; %s messages were not stored",
                chat_id,
                self.stats.failed,
                extra=log_context(job_id=reporter.job_id),
            )
            return
        try:
            cursors.advance(chat_id, self._highest_stored)
        except StorageError as exc:
            logger.warning("Could not advance sync cursor for chat %s: %s", chat_id, exc)

    def _record_chat(self, chat_id: int) -> None:
        try:
            chat = self.engine.provider.get_chat(chat_id)
        except (RateLimitedError, AuthExpiredError):
            raise
        except RemoteError as exc:
            logger.warning("Chat metadata unavailable for chat %s: %s", chat_id, exc)
            return
        if chat is not None:
            self.store.upsert_chat(chat)

    def _expected_total(self, chat_id: int, options: FetchOptions) -> int | None:
        try:
            count = self.engine.provider.get_history_count(chat_id)
        except (RateLimitedError, AuthExpiredError):
            raise
        except RemoteError as exc:
            logger.warning("History count unavailable for chat %s: %s", chat_id, exc)
            count = None
        if options.limit:
            return min(options.limit, count) if count is not None else options.limit
        return count

    def _result(self) -> JobResult:
        stats = self.stats
        if self.cancelled:
            return "aborted"
        if stats.failed and stats.processed == 0:
            return "fatal"
        if stats.failed:
            return "partial"
        return "success"

    def _summary(self, chat_id: int) -> dict[str, Any]:
        summary: dict[str, Any] = {"chatId": chat_id, "format": self.export_format, **self.stats.to_dict()}
        if self.output_file is not None:
            summary["outputFile"] = str(self.output_file)
        run = self.engine.last_run
        if run is not None and run.chat_id == chat_id:
            summary.update(
                pagesFetched=run.pages_fetched,
                lastOffsetId=run.last_offset_id,
                lowerBound=run.lower_bound,
                highestMessageId=run.highest_message_id,
                takeoutFinished=run.takeout_finished,
            )
        return summary

    def _update_gauge(self) -> None:
        try:
            ARCHIVED_MESSAGES.set(self.store.count_messages())
        except StorageError as exc:
            logger.debug("Could not refresh archive size gauge: %s", exc)


def _error_kind(exc: BaseException) -> str:
    if isinstance(exc, RemoteError):
        return exc.kind
    return type(exc).__name__


__all__ = ["ExportJob", "ExportFormat"]
