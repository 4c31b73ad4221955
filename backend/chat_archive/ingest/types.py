"""Common job data structures."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(slots=True)
class ExportStats:
    """Aggregated export statistics."""

    processed: int = 0
    failed: int = 0
    total: int | None = None
    batches: int = 0
    failed_batches: int = 0

    def to_dict(self) -> dict[str, int | None]:
        return {
            "processedMessages": self.processed,
            "failedMessages": self.failed,
            "totalMessages": self.total,
            "batches": self.batches,
            "failedBatches": self.failed_batches,
        }


@dataclass(slots=True)
class EmbedStats:
    """Aggregated embedding statistics; ``processed + failed == total`` once finished."""

    total: int = 0
    processed: int = 0
    failed: int = 0
    batches: int = 0
    failed_batches: int = 0

    @property
    def remaining(self) -> int:
        return self.total - self.processed - self.failed

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "processed": self.processed,
            "failed": self.failed,
            "batches": self.batches,
            "failedBatches": self.failed_batches,
        }


__all__ = ["ExportStats", "EmbedStats"]
