"""Per-chat sync high-water marks."""

from __future__ import annotations

from datetime import datetime

from chat_archive.core.logging import get_logger, log_context
from chat_archive.models.entities import SyncCursor
from chat_archive.storage.store import ArchiveStore
from chat_archive.utils.time import utc_now

logger = get_logger(__name__)


class SyncCursorStore:
    """Monotone view over the ``sync_cursors`` table.

    ``last_message_id`` never decreases for a chat. A regressive ``set`` is
    clamped to the stored value and logged, since it indicates a caller bug.
    """

    def __init__(self, store: ArchiveStore) -> None:
        self.store = store

    def get(self, chat_id: int) -> SyncCursor | None:
        return self.store.get_sync_cursor(chat_id)

    def set(self, chat_id: int, last_message_id: int, last_sync_time: datetime | None = None) -> SyncCursor:
        current = self.store.get_sync_cursor(chat_id)
        if current is not None and last_message_id < current.last_message_id:
            logger.warning(
                "Ignoring regressive sync cursor for chat %s: %s < %s",
                chat_id,
                last_message_id,
                current.last_message_id,
                extra=log_context(chat_id=chat_id),
            )
        return self.store.set_sync_cursor(chat_id, last_message_id, last_sync_time or utc_now())

    def advance(self, chat_id: int, message_id: int) -> SyncCursor:
        """Move the cursor up to ``message_id`` if it is newer than the stored one."""
        current = self.store.get_sync_cursor(chat_id)
        if current is not None and message_id <= current.last_message_id:
            return current
        cursor = self.store.set_sync_cursor(chat_id, message_id, utc_now())
        logger.debug("Sync cursor for chat %s now %s", chat_id, cursor.last_message_id)
        return cursor

    def clear(self, chat_id: int) -> bool:
        removed = self.store.delete_sync_cursor(chat_id)
        if removed:
            logger.info("Cleared sync cursor", extra=log_context(chat_id=chat_id))
        return removed


__all__ = ["SyncCursorStore"]
