"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

from chat_archive.core.progress import ProgressEvent
from chat_archive.models.entities import Chat, FetchOptions, Message, MessageType, SearchPage, SyncCursor


class SyncRequest(BaseModel):
    chat_id: int
    method: Literal["takeout", "getMessage"] | None = None
    page_size: int | None = Field(default=None, ge=1, le=100)
    batch_size: int | None = Field(default=None, ge=1, description="Messages per persistence batch")
    start_time: datetime | None = None
    end_time: datetime | None = None
    min_id: int | None = Field(default=None, ge=1)
    max_id: int | None = Field(default=None, ge=1)
    message_types: list[MessageType] | None = None
    limit: int = Field(default=0, ge=0, description="0 fetches until history is exhausted")
    incremental: bool = False
    resume_offset_id: int = Field(default=0, ge=0)
    format: Literal["database", "json"] = Field(default="database", description="Archive or write a JSON file")
    export_path: str | None = Field(default=None, description="Directory for json exports")

    def to_options(self, default_method: str, default_page_size: int) -> FetchOptions:
        return FetchOptions(
            method=self.method or default_method,  # type: ignore[arg-type]
            page_size=self.page_size or default_page_size,
            start_time=self.start_time,
            end_time=self.end_time,
            min_id=self.min_id,
            max_id=self.max_id,
            message_types=list(self.message_types) if self.message_types else None,
            limit=self.limit,
            incremental=self.incremental,
            resume_offset_id=self.resume_offset_id,
        )


class EmbedRequest(BaseModel):
    chat_id: int
    batch_size: int | None = Field(default=None, ge=1, le=10000)
    concurrency: int | None = Field(default=None, ge=1, le=10)


class ProgressEventModel(BaseModel):
    job_id: str
    kind: str
    percent: int
    message: str
    status: Literal["pending", "running", "completed", "failed"]
    result: Literal["success", "partial", "aborted", "fatal"] | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    @classmethod
    def from_event(cls, event: ProgressEvent) -> "ProgressEventModel":
        return cls(
            job_id=event.job_id,
            kind=event.kind,
            percent=event.percent,
            message=event.message,
            status=event.status,
            result=event.result,
            metadata=event.metadata,
            created_at=event.created_at,
        )


class JobResponse(BaseModel):
    job_id: str
    status: Literal["pending", "running", "completed", "failed"]
    result: Literal["success", "partial", "aborted", "fatal"] | None
    message: str
    metadata: dict[str, Any]
    events: list[ProgressEventModel]

    @classmethod
    def from_events(cls, events: list[ProgressEvent]) -> "JobResponse":
        final = events[-1]
        return cls(
            job_id=final.job_id,
            status=final.status,
            result=final.result,
            message=final.message,
            metadata=final.metadata,
            events=[ProgressEventModel.from_event(event) for event in events],
        )


class SearchRequest(BaseModel):
    query: str = Field(min_length=1)
    chat_id: int | None = None
    folder_id: int | None = None
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class MessageModel(BaseModel):
    chat_id: int
    message_id: int
    type: str
    content: str
    created_at: datetime
    media_ref: str | None = None
    from_id: str | None = None
    from_name: str | None = None
    reply_to_id: int | None = None

    @classmethod
    def from_message(cls, message: Message) -> "MessageModel":
        return cls(
            chat_id=message.chat_id,
            message_id=message.platform_message_id,
            type=message.type,
            content=message.content,
            created_at=message.created_at,
            media_ref=message.media_ref,
            from_id=message.from_id,
            from_name=message.from_name,
            reply_to_id=message.reply_to_id,
        )


class SearchHit(BaseModel):
    message: MessageModel
    score: float
    source: Literal["lexical", "vector", "both"]


class SearchResponse(BaseModel):
    items: list[SearchHit]
    total: int
    vector_used: bool
    vector_error: str | None = None

    @classmethod
    def from_page(cls, page: SearchPage) -> "SearchResponse":
        return cls(
            items=[
                SearchHit(message=MessageModel.from_message(item.message), score=item.score, source=item.source)
                for item in page.items
            ],
            total=page.total,
            vector_used=page.vector_used,
            vector_error=page.vector_error,
        )


class ChatResponse(BaseModel):
    id: int
    title: str
    type: str
    message_count: int

    @classmethod
    def from_chat(cls, chat: Chat) -> "ChatResponse":
        return cls(id=chat.id, title=chat.title, type=chat.type, message_count=chat.message_count)


class CursorResponse(BaseModel):
    chat_id: int
    last_message_id: int
    last_sync_time: datetime

    @classmethod
    def from_cursor(cls, cursor: SyncCursor) -> "CursorResponse":
        return cls(
            chat_id=cursor.chat_id,
            last_message_id=cursor.last_message_id,
            last_sync_time=cursor.last_sync_time,
        )


class FolderRequest(BaseModel):
    title: str
    chat_ids: list[int]


class FolderResponse(BaseModel):
    id: int
    title: str
    chat_ids: list[int]


class DeleteResponse(BaseModel):
    status: Literal["ok", "noop"]
    deleted: int


__all__ = [
    "SyncRequest",
    "EmbedRequest",
    "ProgressEventModel",
    "JobResponse",
    "SearchRequest",
    "MessageModel",
    "SearchHit",
    "SearchResponse",
    "ChatResponse",
    "CursorResponse",
    "FolderRequest",
    "FolderResponse",
    "DeleteResponse",
]
