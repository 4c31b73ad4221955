"""Tests for the export-file history provider."""

from __future__ import annotations

from pathlib import Path

import orjson
import pytest

from chat_archive.core.errors import RemoteError, TakeoutError
from chat_archive.core.retry import RetryPolicy
from chat_archive.fetch.engine import MessageFetchEngine
from chat_archive.models.entities import EMPTY_TYPE, FetchOptions
from chat_archive.remote.base import RemoteHistoryProvider
from chat_archive.remote.export_file import ExportFileProvider


def _write_export(path: Path) -> Path:
    payload = {
        "chats": {
            "list": [
                {
                    "id": 11,
                    "name": "Book club",
                    "type": "private_group",
                    "messages": [
                        {"id": 1, "type": "message", "date_unixtime": "1700000000", "from": "Ana", "text": "hello"},
                        {"id": 2, "type": "service", "date_unixtime": "1700000060", "action": "pin_message", "text": ""},
                        {
                            "id": 3,
                            "type": "message",
                            "date": "2023-11-14T22:15:00",
                            "text": ["see ", {"type": "link", "text": "https://example.org"}, "  now"],
                        },
                        {"id": 4, "type": "message", "date_unixtime": "1700000200", "photo": "photos/p.jpg", "text": ""},
                        {
                            "id": 5,
                            "type": "message",
                            "date_unixtime": "1700000300",
                            "file": "files/a.ogg",
                            "media_type": "voice_message",
                            "text": "",
                            "reply_to_message_id": 3,
                        },
                    ],
                }
            ]
        }
    }
    target = path / "result.json"
    target.write_bytes(orjson.dumps(payload))
    return target


def test_parses_messages_and_chat(tmp_path: Path) -> None:
    provider = ExportFileProvider(_write_export(tmp_path))
    assert isinstance(provider, RemoteHistoryProvider)
    chat = provider.get_chat(11)
    assert chat.title == "Book club"
    assert chat.type == "group"
    assert provider.get_history_count(11) == 5

    page = provider.get_history_page(11, 0, 10)
    by_id = {m.platform_message_id: m for m in page}
    assert [m.platform_message_id for m in page] == [5, 4, 3, 2, 1]
    assert by_id[2].type == EMPTY_TYPE
    assert by_id[3].content == "see https://example.org now"
    assert by_id[4].type == "photo"
    assert by_id[5].type == "document"
    assert by_id[5].reply_to_id == 3
    assert by_id[1].from_name == "Ana"
    assert by_id[1].created_at.tzinfo is not None


def test_offset_and_exclusive_bounds(tmp_path: Path) -> None:
    provider = ExportFileProvider(_write_export(tmp_path))
    assert [m.platform_message_id for m in provider.get_history_page(11, 4, 10)] == [3, 2, 1]
    assert [m.platform_message_id for m in provider.get_history_page(11, 0, 10, min_id=2, max_id=5)] == [4, 3]
    assert [m.platform_message_id for m in provider.get_history_page(11, 0, 2)] == [5, 4]


def test_takeout_sessions_are_tracked(tmp_path: Path) -> None:
    provider = ExportFileProvider(_write_export(tmp_path))
    session = provider.open_takeout(1024)
    assert provider.open_sessions == 1
    assert len(provider.takeout_query(session, 11, 0, 10)) == 5
    provider.finish_takeout(session, success=True)
    assert provider.open_sessions == 0
    with pytest.raises(TakeoutError):
        provider.takeout_query(session, 11, 0, 10)


def test_unknown_chat(tmp_path: Path) -> None:
    provider = ExportFileProvider(_write_export(tmp_path))
    with pytest.raises(RemoteError) as excinfo:
        provider.get_history_page(99, 0, 10)
    assert excinfo.value.code == "PEER_ID_INVALID"
    assert provider.get_chat(99) is None


def test_engine_over_export_file(tmp_path: Path) -> None:
    provider = ExportFileProvider(_write_export(tmp_path))
    engine = MessageFetchEngine(provider, retry_policy=RetryPolicy(max_attempts=1))
    ids = [m.platform_message_id for m in engine.fetch_messages(11, FetchOptions(page_size=2))]
    assert ids == [5, 4, 3, 1]
    assert provider.open_sessions == 0


def test_single_chat_export(tmp_path: Path) -> None:
    target = tmp_path / "single.json"
    target.write_bytes(
        orjson.dumps({"id": 3, "name": "Solo", "type": "personal_chat", "messages": [{"id": 9, "date_unixtime": "1"}]})
    )
    provider = ExportFileProvider(target)
    assert [chat.id for chat in provider.list_chats()] == [3]
    assert provider.get_history_page(3, 0, 5)[0].content == ""


def test_unreadable_entries_are_skipped_and_counted(tmp_path: Path) -> None:
    payload = {
        "id": 21,
        "name": "Notes",
        "messages": [
            {"id": 1, "type": "message", "date_unixtime": "1700000000", "text": "kept"},
            {"id": 2, "type": "message", "text": "no date"},
            {"id": "x", "type": "message", "date_unixtime": "1700000100", "text": "bad id"},
            {"id": 4, "type": "message", "date": "yesterday", "text": "bad date"},
        ],
    }
    target = tmp_path / "partial.json"
    target.write_bytes(orjson.dumps(payload))
    provider = ExportFileProvider(target)
    assert provider.skipped_messages == 3
    assert provider.get_history_count(21) == 1
    assert [m.content for m in provider.get_history_page(21, 0, 10)] == ["kept"]
