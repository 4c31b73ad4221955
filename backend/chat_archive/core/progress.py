"""Progress events emitted by long-running jobs."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Literal

JobStatus = Literal["pending", "running", "completed", "failed"]
JobResult = Literal["success", "partial", "aborted", "fatal"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"completed", "failed"})


@dataclass(slots=True)
class ProgressEvent:
    """One progress update: percent in ``[0, 100]`` plus a human-readable message."""

    job_id: str
    kind: str
    percent: int
    message: str
    status: JobStatus = "running"
    result: JobResult | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(tz=timezone.utc))

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "kind": self.kind,
            "percent": self.percent,
            "message": self.message,
            "status": self.status,
            "result": self.result,
            "metadata": self.metadata,
            "created_at": self.created_at.isoformat(),
        }


ProgressCallback = Callable[[ProgressEvent], None]


def clamp_percent(value: float) -> int:
    return max(0, min(100, int(value)))


def percent_of(done: int, total: int) -> int:
    """Integer percentage of ``done`` out of ``total``; an empty job counts as complete."""
    if total <= 0:
        return 100
    return clamp_percent(round(done * 100 / total))


__all__ = [
    "JobStatus",
    "JobResult",
    "ProgressEvent",
    "ProgressCallback",
    "TERMINAL_STATUSES",
    "clamp_percent",
    "percent_of",
]
