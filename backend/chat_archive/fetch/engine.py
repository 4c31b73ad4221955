"""Message fetch engine: filtered, resumable history walks."""

from __future__ import annotations

import time
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Callable, Iterator

from chat_archive.core.errors import RateLimitedError
from chat_archive.core.logging import get_logger, log_context
from chat_archive.core.metrics import MESSAGES_FETCHED, PAGES_FETCHED, RATE_LIMITS
from chat_archive.core.retry import RetryPolicy
from chat_archive.fetch.paginator import CursorPaginator
from chat_archive.fetch.takeout import DEFAULT_QUOTA, TakeoutSessionManager
from chat_archive.models.entities import FetchOptions, Message, TakeoutSession
from chat_archive.remote.base import RemoteHistoryProvider
from chat_archive.sync.cursor_store import SyncCursorStore
from chat_archive.utils.time import ensure_aware

logger = get_logger(__name__)


@dataclass(slots=True)
class FetchStats:
    """Counters for the most recent ``fetch_messages`` run."""

    chat_id: int
    method: str
    pages_fetched: int = 0
    messages_seen: int = 0
    messages_yielded: int = 0
    duplicates_skipped: int = 0
    last_offset_id: int = 0
    highest_message_id: int | None = None
    lower_bound: int | None = None
    takeout_session_id: int | None = None
    takeout_finished: bool | None = None
    stalled: bool = False


class MessageFetchEngine:
    """Yield a chat's messages newest first, one remote page at a time.

    Each call to :meth:`fetch_messages` starts a fresh cursor walk. Consumers
    may stop iterating at any point; closing the generator (explicitly or by
    dropping it) releases the takeout session before returning.
    """

    def __init__(
        self,
        provider: RemoteHistoryProvider,
        cursor_store: SyncCursorStore | None = None,
        retry_policy: RetryPolicy | None = None,
        takeout_quota: int = DEFAULT_QUOTA,
        takeout_finish_retries: int = 3,
        takeout_finish_wait: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.provider = provider
        self.cursor_store = cursor_store
        self.retry_policy = retry_policy or RetryPolicy(sleep=sleep)
        self.takeout_quota = takeout_quota
        self.takeout_finish_retries = takeout_finish_retries
        self.takeout_finish_wait = takeout_finish_wait
        self.sleep = sleep
        self.last_run: FetchStats | None = None

    @classmethod
    def from_settings(
        cls,
        settings,
        provider: RemoteHistoryProvider,
        cursor_store: SyncCursorStore | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> "MessageFetchEngine":
        return cls(
            provider,
            cursor_store=cursor_store,
            retry_policy=RetryPolicy.from_settings(settings, sleep=sleep),
            takeout_quota=settings.takeout_file_max_size,
            takeout_finish_retries=settings.takeout_finish_retries,
            takeout_finish_wait=settings.takeout_finish_wait,
            sleep=sleep,
        )

    def new_takeout_manager(self) -> TakeoutSessionManager:
        return TakeoutSessionManager(
            self.provider,
            quota=self.takeout_quota,
            finish_policy=RetryPolicy(
                max_attempts=self.takeout_finish_retries,
                base_delay=self.takeout_finish_wait,
                max_delay=self.takeout_finish_wait,
                sleep=self.sleep,
            ),
        )

    def fetch_messages(self, chat_id: int, options: FetchOptions | None = None) -> Iterator[Message]:
        options = options or FetchOptions()
        if options.method not in ("takeout", "getMessage"):
            raise ValueError(f"Unknown fetch method: {options.method}")
        if options.page_size <= 0:
            raise ValueError("page_size must be positive")

        lower_bound = self._lower_bound(chat_id, options)
        upper_bound = options.max_id or None
        stats = FetchStats(chat_id=chat_id, method=options.method, lower_bound=lower_bound)
        self.last_run = stats

        manager = self.new_takeout_manager() if options.method == "takeout" else None
        scope = manager.session_scope() if manager is not None else nullcontext(None)
        logger.info(
            "Fetching history",
            extra=log_context(
                chat_id=chat_id,
                method=options.method,
                lower_bound=lower_bound,
                upper_bound=upper_bound,
                limit=options.limit,
            ),
        )
        try:
            with scope as session:
                if session is not None:
                    stats.takeout_session_id = session.session_id
                yield from self._walk(chat_id, options, session, manager, stats, lower_bound, upper_bound)
        except RateLimitedError as exc:
            RATE_LIMITS.inc()
            logger.warning(
                "Rate limited while fetching chat %s; wait %ss",
                chat_id,
                exc.wait_seconds,
                extra=log_context(chat_id=chat_id, wait_seconds=exc.wait_seconds),
            )
            raise
        finally:
            if manager is not None and stats.takeout_session_id is not None:
                stats.takeout_finished = manager.finish_error is None

    def _walk(
        self,
        chat_id: int,
        options: FetchOptions,
        session: TakeoutSession | None,
        manager: TakeoutSessionManager | None,
        stats: FetchStats,
        lower_bound: int | None,
        upper_bound: int | None,
    ) -> Iterator[Message]:
        # The remote bounds are exclusive; ours are inclusive.
        remote_min = lower_bound - 1 if lower_bound else 0
        remote_max = upper_bound + 1 if upper_bound else 0
        allowed_types = set(options.message_types) if options.message_types else None
        start_time = ensure_aware(options.start_time) if options.start_time is not None else None
        end_time = ensure_aware(options.end_time) if options.end_time is not None else None

        def query(offset_id: int, limit: int) -> list[Message]:
            if manager is not None and session is not None:
                return manager.run_query(session, chat_id, offset_id, limit, remote_min, remote_max)
            return self.provider.get_history_page(chat_id, offset_id, limit, remote_min, remote_max)

        def fetch_page(offset_id: int, limit: int) -> list[Message]:
            return self.retry_policy.call(
                lambda: query(offset_id, limit),
                description=f"history page for chat {chat_id}",
            )

        paginator = CursorPaginator(fetch_page, page_size=options.page_size, offset_id=options.resume_offset_id)
        last_yielded: int | None = None
        done = False
        while not done and not paginator.exhausted:
            offset_before = paginator.offset_id
            page = paginator.next_page()
            stats.pages_fetched = paginator.pages_fetched
            PAGES_FETCHED.labels(method=options.method).inc()
            if not page:
                break
            stats.messages_seen += len(page)
            for message in page:
                message_id = message.platform_message_id
                if last_yielded is not None and message_id >= last_yielded:
                    stats.duplicates_skipped += 1
                    continue
                if lower_bound is not None and message_id < lower_bound:
                    done = True
                    break
                if upper_bound is not None and message_id > upper_bound:
                    continue
                if message.is_empty:
                    continue
                if end_time is not None and message.created_at > end_time:
                    continue
                if start_time is not None and message.created_at < start_time:
                    done = True
                    break
                if allowed_types is not None and message.type not in allowed_types:
                    continue

                yield message

                last_yielded = message_id
                paginator.advance(message_id)
                stats.messages_yielded += 1
                MESSAGES_FETCHED.labels(method=options.method).inc()
                if stats.highest_message_id is None or message_id > stats.highest_message_id:
                    stats.highest_message_id = message_id
                if options.limit and stats.messages_yielded >= options.limit:
                    done = True
                    break
            else:
                # Skipped messages still count as consumed for paging.
                paginator.advance(page[-1].platform_message_id)
            stats.last_offset_id = paginator.offset_id
            if options.record_cursor:
                self._record_progress(chat_id, stats)
            if not done and not paginator.exhausted and paginator.offset_id == offset_before:
                logger.warning(
                    "Stopping walk: a full page left the offset at %s",
                    offset_before,
                    extra=log_context(chat_id=chat_id, page=paginator.pages_fetched, page_size=len(page)),
                )
                stats.stalled = True
                break

        logger.info(
            "Finished fetching history",
            extra=log_context(
                chat_id=chat_id,
                pages=stats.pages_fetched,
                yielded=stats.messages_yielded,
                offset_id=stats.last_offset_id,
            ),
        )

    def _lower_bound(self, chat_id: int, options: FetchOptions) -> int | None:
        lower = options.min_id or None
        if options.incremental and self.cursor_store is not None:
            cursor = self.cursor_store.get(chat_id)
            if cursor is not None:
                lower = max(lower or 0, cursor.last_message_id + 1)
        return lower

    def _record_progress(self, chat_id: int, stats: FetchStats) -> None:
        if self.cursor_store is None or stats.highest_message_id is None:
            return
        self.cursor_store.advance(chat_id, stats.highest_message_id)


__all__ = ["MessageFetchEngine", "FetchStats"]
