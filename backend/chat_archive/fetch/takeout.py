"""Takeout session lifecycle."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Literal

from chat_archive.core.errors import (
    AuthExpiredError,
    RateLimitedError,
    TakeoutError,
)
from chat_archive.core.logging import get_logger, log_context
from chat_archive.core.metrics import TAKEOUT_SESSIONS
from chat_archive.core.retry import RetryPolicy
from chat_archive.models.entities import Message, TakeoutSession
from chat_archive.remote.base import RemoteHistoryProvider

logger = get_logger(__name__)

SessionState = Literal["closed", "opening", "open", "finishing"]

DEFAULT_QUOTA = 1024 * 1024 * 1024


class TakeoutSessionManager:
    """Open, use, and release a single takeout session.

    State moves ``closed -> opening -> open -> finishing -> closed``. A failed
    open returns straight to ``closed`` without issuing any query. ``finish``
    runs at most once per successful ``open``; its own failures are logged and
    never raised so they cannot mask the outcome of the export.
    """

    def __init__(
        self,
        provider: RemoteHistoryProvider,
        quota: int = DEFAULT_QUOTA,
        finish_retries: int = 3,
        finish_wait: float = 30.0,
        finish_policy: RetryPolicy | None = None,
    ) -> None:
        self.provider = provider
        self.quota = quota
        self.state: SessionState = "closed"
        self.session: TakeoutSession | None = None
        self.finish_error: BaseException | None = None
        self._finish_policy = finish_policy or RetryPolicy(
            max_attempts=finish_retries,
            base_delay=finish_wait,
            max_delay=finish_wait,
        )

    def open(self) -> TakeoutSession:
        if self.state != "closed":
            raise TakeoutError(f"Cannot open takeout session while {self.state}")
        self.state = "opening"
        try:
            session = self.provider.open_takeout(self.quota)
        except (RateLimitedError, AuthExpiredError, TakeoutError):
            self.state = "closed"
            TAKEOUT_SESSIONS.labels(event="open_failed").inc()
            raise
        except Exception as exc:
            self.state = "closed"
            TAKEOUT_SESSIONS.labels(event="open_failed").inc()
            raise TakeoutError(f"Init takeout session failed: {exc}") from exc
        self.session = session
        self.state = "open"
        TAKEOUT_SESSIONS.labels(event="opened").inc()
        logger.info(
            "Takeout session opened",
            extra=log_context(session_id=session.session_id, quota=session.file_size_quota),
        )
        return session

    def run_query(
        self,
        session: TakeoutSession,
        chat_id: int,
        offset_id: int,
        limit: int,
        min_id: int = 0,
        max_id: int = 0,
    ) -> list[Message]:
        if self.state != "open" or self.session is None or session.session_id != self.session.session_id:
            raise TakeoutError("Takeout query issued without an open session")
        return self.provider.takeout_query(session, chat_id, offset_id, limit, min_id, max_id)

    def finish(self, session: TakeoutSession, success: bool) -> bool:
        """Release the session; returns False when the platform never confirmed it."""
        if self.state != "open" or self.session is None or session.session_id != self.session.session_id:
            raise TakeoutError(f"Cannot finish takeout session while {self.state}")
        self.state = "finishing"
        try:
            self._finish_policy.call(
                lambda: self.provider.finish_takeout(session, success),
                description="finish takeout",
            )
        except Exception as exc:
            self.finish_error = exc
            TAKEOUT_SESSIONS.labels(event="finish_failed").inc()
            logger.warning(
                "Finishing takeout session %s failed: %s",
                session.session_id,
                exc,
                extra=log_context(session_id=session.session_id, success=success),
            )
            return False
        finally:
            self.session = None
            self.state = "closed"
        TAKEOUT_SESSIONS.labels(event="finished").inc()
        logger.info(
            "Takeout session finished",
            extra=log_context(session_id=session.session_id, success=success),
        )
        return True

    @contextmanager
    def session_scope(self) -> Iterator[TakeoutSession]:
        """Scoped acquisition: finish runs on every exit path, including cancellation."""
        session = self.open()
        success = False
        try:
            yield session
            success = True
        except GeneratorExit:
            success = True
            raise
        finally:
            self.finish(session, success)


__all__ = ["TakeoutSessionManager", "SessionState", "DEFAULT_QUOTA"]
