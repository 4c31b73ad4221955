"""Internal dataclasses representing archived and transient entities."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

MessageType = Literal["text", "photo", "document", "video", "sticker", "other"]
# Platform tombstone for deleted or service entries; never persisted.
EMPTY_TYPE = "empty"


@dataclass(slots=True)
class Message:
    chat_id: int
    platform_message_id: int
    type: str
    content: str
    created_at: datetime
    media_ref: str | None = None
    from_id: str | None = None
    from_name: str | None = None
    reply_to_id: int | None = None

    @property
    def key(self) -> tuple[int, int]:
        return (self.chat_id, self.platform_message_id)

    @property
    def is_empty(self) -> bool:
        return self.type == EMPTY_TYPE


@dataclass(slots=True)
class Chat:
    id: int
    title: str
    type: str = "user"
    message_count: int = 0


@dataclass(slots=True)
class SyncCursor:
    chat_id: int
    last_message_id: int
    last_sync_time: datetime


@dataclass(slots=True)
class TakeoutSession:
    session_id: int
    file_size_quota: int
    created_at: datetime


@dataclass(slots=True)
class EmbeddingJob:
    batch: list[Message]
    dimension: int
    status: Literal["pending", "partial", "failed", "done"] = "pending"
    failed_count: int = 0


@dataclass(slots=True)
class SearchResult:
    message: Message
    score: float
    source: Literal["lexical", "vector", "both"]


@dataclass(slots=True)
class SearchPage:
    items: list[SearchResult]
    total: int
    vector_used: bool = False
    vector_error: str | None = None


@dataclass(slots=True)
class ScoredMessage:
    """Storage-level hit: a message plus its raw similarity score."""

    message: Message
    score: float


@dataclass(slots=True)
class FetchOptions:
    """Filters and paging controls for one fetch run."""

    method: Literal["takeout", "getMessage"] = "takeout"
    page_size: int = 100
    start_time: datetime | None = None
    end_time: datetime | None = None
    min_id: int | None = None
    max_id: int | None = None
    message_types: list[str] | None = None
    limit: int = 0
    incremental: bool = False
    resume_offset_id: int = 0
    # Off when the consumer advances the cursor itself once messages are stored.
    record_cursor: bool = True


__all__ = [
    "MessageType",
    "EMPTY_TYPE",
    "Message",
    "Chat",
    "SyncCursor",
    "TakeoutSession",
    "EmbeddingJob",
    "SearchResult",
    "SearchPage",
    "ScoredMessage",
    "FetchOptions",
]
