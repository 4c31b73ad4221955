"""Remote History Provider interface."""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from chat_archive.models.entities import Chat, Message, TakeoutSession


@runtime_checkable
class RemoteHistoryProvider(Protocol):
    """Narrow view of the remote messaging API used by the fetch engine.

    Paging follows the platform's offset semantics: ``offset_id`` of 0 starts
    at the newest message, otherwise only messages with a smaller id are
    returned. ``min_id`` and ``max_id`` are exclusive bounds where 0 means
    unbounded. Pages are ordered newest first.

    Implementations raise the errors from ``chat_archive.core.errors``:
    ``RateLimitedError``, ``AuthExpiredError``, ``TransientNetworkError`` or
    ``RemoteError`` for anything else.
    """

    def get_history_page(
        self,
        chat_id: int,
        offset_id: int,
        limit: int,
        min_id: int = 0,
        max_id: int = 0,
    ) -> list[Message]:
        """Fetch one page of history through the regular API."""

    def open_takeout(self, quota: int) -> TakeoutSession:
        """Open a bulk-export session with the given file-size quota."""

    def takeout_query(
        self,
        session: TakeoutSession,
        chat_id: int,
        offset_id: int,
        limit: int,
        min_id: int = 0,
        max_id: int = 0,
    ) -> list[Message]:
        """Fetch one page of history wrapped in the takeout session."""

    def finish_takeout(self, session: TakeoutSession, success: bool) -> None:
        """Commit or abort the takeout session."""

    def get_history_count(self, chat_id: int) -> int | None:
        """Total message count reported by the platform, if known."""

    def get_chat(self, chat_id: int) -> Chat | None:
        """Chat metadata, or None when the chat is unknown."""


__all__ = ["RemoteHistoryProvider"]
