"""Offset-based history pagination."""

from __future__ import annotations

from typing import Callable

from chat_archive.core.logging import get_logger
from chat_archive.models.entities import Message

logger = get_logger(__name__)

PageFetcher = Callable[[int, int], list[Message]]


class CursorPaginator:
    """Walk history backwards one page at a time.

    ``fetch_page(offset_id, limit)`` returns up to ``limit`` messages older
    than ``offset_id`` (0 = newest). The caller moves the cursor with
    :meth:`advance` using the id of the last message it consumed; the cursor
    only ever moves toward older ids. A page shorter than ``page_size`` marks
    the history as exhausted.
    """

    def __init__(self, fetch_page: PageFetcher, page_size: int = 100, offset_id: int = 0) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self._fetch_page = fetch_page
        self.page_size = page_size
        self.offset_id = offset_id
        self.exhausted = False
        self.pages_fetched = 0

    def next_page(self) -> list[Message]:
        if self.exhausted:
            return []
        page = self._fetch_page(self.offset_id, self.page_size)
        self.pages_fetched += 1
        if len(page) < self.page_size:
            self.exhausted = True
        logger.debug(
            "Fetched page %s at offset %s (%s messages)",
            self.pages_fetched,
            self.offset_id,
            len(page),
        )
        return page

    def advance(self, message_id: int) -> None:
        if message_id <= 0:
            return
        if self.offset_id == 0 or message_id < self.offset_id:
            self.offset_id = message_id


__all__ = ["CursorPaginator", "PageFetcher"]
