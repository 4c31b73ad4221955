"""History provider backed by a desktop chat-export JSON file."""

from __future__ import annotations

import itertools
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Mapping

import orjson

from chat_archive.core.errors import RemoteError, TakeoutError
from chat_archive.core.logging import get_logger, log_context
from chat_archive.models.entities import EMPTY_TYPE, Chat, Message, TakeoutSession
from chat_archive.utils.text import normalize
from chat_archive.utils.time import ensure_aware, from_unix, utc_now

logger = get_logger(__name__)

_CHAT_TYPES = {
    "personal_chat": "user",
    "bot_chat": "user",
    "saved_messages": "user",
    "private_group": "group",
    "private_supergroup": "group",
    "public_supergroup": "group",
    "private_channel": "channel",
    "public_channel": "channel",
}

_MEDIA_TYPES = {
    "sticker": "sticker",
    "video_file": "video",
    "video_message": "video",
    "animation": "video",
    "voice_message": "document",
    "audio_file": "document",
}


class ExportFileProvider:
    """Serve history pages out of an exported archive as if it were the live API.

    Accepts either a full account export (``{"chats": {"list": [...]}}``) or a
    single-chat export (``{"id": ..., "messages": [...]}``). Entries that cannot
    be parsed are logged, counted in ``skipped_messages`` and left out. Takeout
    sessions are tracked in memory so the same lifecycle rules apply as remotely.
    """

    def __init__(self, path: Path) -> None:
        self.path = path.expanduser()
        self._chats: dict[int, Chat] = {}
        self._messages: dict[int, list[Message]] = {}
        self._sessions: set[int] = set()
        self._session_ids = itertools.count(1)
        self.skipped_messages = 0
        self._lock = threading.Lock()
        self._load()

    # RemoteHistoryProvider ---------------------------------------------

    def get_history_page(
        self,
        chat_id: int,
        offset_id: int,
        limit: int,
        min_id: int = 0,
        max_id: int = 0,
    ) -> list[Message]:
        return self._page(chat_id, offset_id, limit, min_id, max_id)

    def open_takeout(self, quota: int) -> TakeoutSession:
        with self._lock:
            session = TakeoutSession(
                session_id=next(self._session_ids),
                file_size_quota=quota,
                created_at=utc_now(),
            )
            self._sessions.add(session.session_id)
        logger.debug("Opened export-file takeout session %s", session.session_id)
        return session

    def takeout_query(
        self,
        session: TakeoutSession,
        chat_id: int,
        offset_id: int,
        limit: int,
        min_id: int = 0,
        max_id: int = 0,
    ) -> list[Message]:
        if session.session_id not in self._sessions:
            raise TakeoutError("TAKEOUT_INVALID: session is not open")
        return self._page(chat_id, offset_id, limit, min_id, max_id)

    def finish_takeout(self, session: TakeoutSession, success: bool) -> None:
        with self._lock:
            if session.session_id not in self._sessions:
                raise TakeoutError("TAKEOUT_INVALID: session is not open")
            self._sessions.discard(session.session_id)
        logger.debug("Finished export-file takeout session %s (success=%s)", session.session_id, success)

    def get_history_count(self, chat_id: int) -> int | None:
        return len(self._require_chat(chat_id))

    def get_chat(self, chat_id: int) -> Chat | None:
        return self._chats.get(chat_id)

    # Helpers -----------------------------------------------------------

    def list_chats(self) -> list[Chat]:
        return list(self._chats.values())

    @property
    def open_sessions(self) -> int:
        return len(self._sessions)

    def _page(self, chat_id: int, offset_id: int, limit: int, min_id: int, max_id: int) -> list[Message]:
        page: list[Message] = []
        for message in self._require_chat(chat_id):
            message_id = message.platform_message_id
            if offset_id and message_id >= offset_id:
                continue
            if max_id and message_id >= max_id:
                continue
            if min_id and message_id <= min_id:
                break
            page.append(message)
            if len(page) >= limit:
                break
        return page

    def _require_chat(self, chat_id: int) -> list[Message]:
        messages = self._messages.get(chat_id)
        if messages is None:
            raise RemoteError(f"Chat {chat_id} not found in export", code="PEER_ID_INVALID")
        return messages

    def _load(self) -> None:
        raw = orjson.loads(self.path.read_bytes())
        if isinstance(raw, Mapping) and isinstance(raw.get("chats"), Mapping):
            chat_entries = raw["chats"].get("list") or []
        elif isinstance(raw, Mapping) and "messages" in raw:
            chat_entries = [raw]
        else:
            raise ValueError(f"Unrecognised export format: {self.path}")
        for entry in chat_entries:
            chat_id = int(entry["id"])
            chat = Chat(
                id=chat_id,
                title=entry.get("name") or str(chat_id),
                type=_CHAT_TYPES.get(entry.get("type", ""), "user"),
            )
            messages: list[Message] = []
            for item in entry.get("messages") or []:
                try:
                    messages.append(_parse_message(chat_id, item))
                except (KeyError, TypeError, ValueError) as exc:
                    self.skipped_messages += 1
                    logger.warning(
                        "Skipping unreadable export entry: %s",
                        exc,
                        extra=log_context(chat_id=chat_id, entry_id=_entry_id(item)),
                    )
            messages.sort(key=lambda message: message.platform_message_id, reverse=True)
            chat.message_count = len(messages)
            self._chats[chat_id] = chat
            self._messages[chat_id] = messages
        logger.info(
            "Loaded %s chats from export %s",
            len(self._chats),
            self.path,
            extra=log_context(skipped=self.skipped_messages),
        )


def _parse_message(chat_id: int, item: Mapping[str, Any]) -> Message:
    reply_to = item.get("reply_to_message_id")
    return Message(
        chat_id=chat_id,
        platform_message_id=int(item["id"]),
        type=_message_type(item),
        content=_flatten_text(item.get("text")),
        created_at=_parse_date(item),
        media_ref=item.get("photo") or item.get("file"),
        from_id=item.get("from_id"),
        from_name=item.get("from"),
        reply_to_id=int(reply_to) if reply_to is not None else None,
    )


def _entry_id(item: Any) -> Any:
    return item.get("id") if isinstance(item, Mapping) else None


def _message_type(item: Mapping[str, Any]) -> str:
    if item.get("type") == "service":
        return EMPTY_TYPE
    media_type = item.get("media_type")
    if media_type:
        return _MEDIA_TYPES.get(media_type, "other")
    if item.get("photo"):
        return "photo"
    if item.get("file"):
        return "document"
    return "text"


def _flatten_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return normalize(value)
    parts: list[str] = []
    for part in value:
        if isinstance(part, str):
            parts.append(part)
        elif isinstance(part, Mapping):
            parts.append(str(part.get("text", "")))
    return normalize("".join(parts))


def _parse_date(item: Mapping[str, Any]) -> datetime:
    unix = item.get("date_unixtime")
    if unix is not None:
        return from_unix(int(unix))
    date = item.get("date")
    if date:
        return ensure_aware(datetime.fromisoformat(date))
    raise ValueError(f"Message {item.get('id')} has no date")


__all__ = ["ExportFileProvider"]
