"""Test fixtures for Chat Archive."""

from __future__ import annotations

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
    sys.path.insert(0, str(BACKEND_ROOT))

from chat_archive.core.errors import TakeoutError  # noqa: E402
from chat_archive.models.entities import Chat, Message, TakeoutSession  # noqa: E402

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_message(chat_id: int, message_id: int, content: str | None = None, type: str = "text") -> Message:
    return Message(
        chat_id=chat_id,
        platform_message_id=message_id,
        type=type,
        content=content if content is not None else f"message {message_id}",
        created_at=BASE_TIME + timedelta(minutes=message_id),
    )


class FakeProvider:
    """In-memory remote history with error injection and call tracking."""

    def __init__(self, messages: dict[int, list[Message]] | None = None) -> None:
        self.messages = {
            chat_id: sorted(items, key=lambda m: m.platform_message_id, reverse=True)
            for chat_id, items in (messages or {}).items()
        }
        self.calls: list[tuple[str, int, int]] = []
        self.opened: list[int] = []
        self.finished: list[tuple[int, bool]] = []
        self.open_error: Exception | None = None
        self.finish_errors: list[Exception] = []
        # Keyed by 1-based page call number.
        self.page_errors: dict[int, Exception] = {}
        self.page_calls = 0
        self._next_session = 1

    def _page(self, chat_id: int, offset_id: int, limit: int, min_id: int, max_id: int) -> list[Message]:
        self.page_calls += 1
        error = self.page_errors.pop(self.page_calls, None)
        if error is not None:
            raise error
        page = []
        for message in self.messages.get(chat_id, []):
            mid = message.platform_message_id
            if offset_id and mid >= offset_id:
                continue
            if max_id and mid >= max_id:
                continue
            if min_id and mid <= min_id:
                break
            page.append(message)
            if len(page) >= limit:
                break
        return page

    def get_history_page(self, chat_id, offset_id, limit, min_id=0, max_id=0):
        self.calls.append(("history", offset_id, limit))
        return self._page(chat_id, offset_id, limit, min_id, max_id)

    def open_takeout(self, quota):
        if self.open_error is not None:
            raise self.open_error
        session = TakeoutSession(session_id=self._next_session, file_size_quota=quota, created_at=BASE_TIME)
        self._next_session += 1
        self.opened.append(session.session_id)
        return session

    def takeout_query(self, session, chat_id, offset_id, limit, min_id=0, max_id=0):
        if session.session_id not in self.opened or any(s == session.session_id for s, _ in self.finished):
            raise TakeoutError("query outside session")
        self.calls.append(("takeout", offset_id, limit))
        return self._page(chat_id, offset_id, limit, min_id, max_id)

    def finish_takeout(self, session, success):
        if self.finish_errors:
            raise self.finish_errors.pop(0)
        self.finished.append((session.session_id, success))

    def get_history_count(self, chat_id):
        return len(self.messages.get(chat_id, []))

    def get_chat(self, chat_id):
        if chat_id not in self.messages:
            return None
        return Chat(id=chat_id, title=f"Chat {chat_id}")


class RecordingEmbedder:
    """Deterministic embedder that can fail chosen calls."""

    provider = "test"
    model_name = "test-embedder"

    def __init__(self, dimension: int = 4, fail_calls: set[int] | None = None) -> None:
        self.dimension = dimension
        self.fail_calls = fail_calls or set()
        self.calls: list[list[str]] = []

    def embed(self, texts):
        self.calls.append(list(texts))
        if len(self.calls) in self.fail_calls:
            from chat_archive.core.errors import EmbeddingError

            raise EmbeddingError("provider outage")
        return [[1.0] + [0.0] * (self.dimension - 1) for _ in texts]


@pytest.fixture(autouse=True)
def reset_state(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Reset global singletons and environment between tests."""
    monkeypatch.setenv("CHARC_DB_PATH", str(tmp_path / "archive.db"))
    monkeypatch.delenv("CHARC_CONFIG", raising=False)
    monkeypatch.delenv("CHARC_EXPORT_FILE", raising=False)

    from chat_archive.api import dependencies as deps
    from chat_archive.core.config import get_settings

    get_settings.cache_clear()
    deps.reset()
    yield
    get_settings.cache_clear()
    deps.reset()


@pytest.fixture
def store(tmp_path: Path):
    from chat_archive.db.sqlite import SQLiteDatabase
    from chat_archive.storage.store import ArchiveStore

    db = SQLiteDatabase(tmp_path / "store.db")
    db.ensure_schema()
    yield ArchiveStore(db)
    db.close()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def sleep(sleeps: list[float]):
    return sleeps.append
