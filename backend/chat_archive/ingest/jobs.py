"""Job bookkeeping shared by export and embedding runs."""

from __future__ import annotations

import time
from typing import Any

from chat_archive.core.errors import StorageError
from chat_archive.core.logging import bind_job, get_logger, log_context, restore_job
from chat_archive.core.metrics import JOB_DURATION
from chat_archive.core.progress import JobResult, JobStatus, ProgressCallback, ProgressEvent, clamp_percent
from chat_archive.storage.store import ArchiveStore
from chat_archive.utils.ids import new_id

logger = get_logger(__name__)

_RESULT_STATUS: dict[str, JobStatus] = {
    "success": "completed",
    "partial": "completed",
    "aborted": "failed",
    "fatal": "failed",
}


class JobReporter:
    """Emit progress events for one job and persist its terminal state."""

    def __init__(
        self,
        kind: str,
        chat_id: int | None = None,
        store: ArchiveStore | None = None,
        callback: ProgressCallback | None = None,
        job_id: str | None = None,
    ) -> None:
        self.kind = kind
        self.chat_id = chat_id
        self.store = store
        self.callback = callback
        self.job_id = job_id or new_id(kind)
        self.final_event: ProgressEvent | None = None
        self.last_percent = 0
        self._started = time.perf_counter()
        self._log_binding: dict[str, Any] | None = None

    @property
    def elapsed_ms(self) -> int:
        return int((time.perf_counter() - self._started) * 1000)

    def start(self, message: str, **metadata: Any) -> ProgressEvent:
        self._started = time.perf_counter()
        if self._log_binding is None:
            self._log_binding = bind_job(job_id=self.job_id, job_kind=self.kind, chat_id=self.chat_id)
        if self.store is not None:
            try:
                self.store.start_job(self.job_id, self.kind, self.chat_id)
            except StorageError as exc:
                logger.warning("Could not record start of job %s: %s", self.job_id, exc)
        logger.info(message)
        return self._emit(ProgressEvent(self.job_id, self.kind, 0, message, metadata=dict(metadata)))

    def progress(self, percent: float, message: str, **metadata: Any) -> ProgressEvent:
        self.last_percent = clamp_percent(percent)
        return self._emit(
            ProgressEvent(self.job_id, self.kind, self.last_percent, message, metadata=dict(metadata))
        )

    def finish(self, result: JobResult, message: str, **metadata: Any) -> ProgressEvent:
        status = _RESULT_STATUS[result]
        duration_ms = self.elapsed_ms
        payload = {**metadata, "durationMs": duration_ms}
        event = ProgressEvent(
            self.job_id,
            self.kind,
            100 if status == "completed" else self.last_percent,
            message,
            status=status,
            result=result,
            metadata=payload,
        )
        JOB_DURATION.labels(kind=self.kind, result=result).observe(duration_ms / 1000)
        if self.store is not None:
            try:
                self.store.finish_job(self.job_id, status, result, payload)
            except StorageError as exc:
                logger.warning("Could not record end of job %s: %s", self.job_id, exc)
        log = logger.info if status == "completed" else logger.error
        log(
            message,
            extra=log_context(result=result, duration_ms=duration_ms),
        )
        if self._log_binding is not None:
            restore_job(self._log_binding)
            self._log_binding = None
        self.final_event = event
        return self._emit(event)

    def _emit(self, event: ProgressEvent) -> ProgressEvent:
        if self.callback is not None:
            self.callback(event)
        return event


__all__ = ["JobReporter"]
