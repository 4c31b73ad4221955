"""Archive persistence over SQLite."""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, Sequence

import orjson
from rapidfuzz import fuzz

from chat_archive.core.errors import StorageError
from chat_archive.core.logging import get_logger
from chat_archive.db.sqlite import SQLiteDatabase
from chat_archive.models.entities import Chat, Message, ScoredMessage, SyncCursor
from chat_archive.utils.text import query_terms
from chat_archive.utils.time import from_unix, now_ms, to_unix
from chat_archive.utils.vectors import cosine_similarity, from_bytes, to_bytes

logger = get_logger(__name__)

_MESSAGE_COLUMNS = (
    "chat_id, message_id, type, content, created_ts, media_ref, from_id, from_name, reply_to_id"
)


class ArchiveStore:
    """Storage interface consumed by the fetch, embedding, and search components.

    Message writes are idempotent upserts keyed by ``(chat_id, message_id)``;
    cursor writes are upserts keyed by ``chat_id`` that never lower the stored id.
    """

    def __init__(self, db: SQLiteDatabase) -> None:
        self.db = db
        db.register_function("casefold", 1, _casefold)
        db.register_function("lexical_score", 2, _lexical_score)

    # Chats -------------------------------------------------------------

    def upsert_chat(self, chat: Chat) -> None:
        now = now_ms()
        with self._guard("upsert chat"):
            self.db.execute(
                """
                INSERT INTO chats (id, title, type, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET title = excluded.title, type = excluded.type,
                  updated_at = excluded.updated_at
                """,
                [chat.id, chat.title, chat.type, now, now],
            )
            self.db.commit()

    def list_chats(self) -> list[Chat]:
        rows = self._query(
            """
            SELECT chats.id, chats.title, chats.type, COUNT(messages.message_id) AS message_count
            FROM chats
            LEFT JOIN messages ON messages.chat_id = chats.id
            GROUP BY chats.id
            ORDER BY chats.title
            """,
            [],
        )
        return [
            Chat(id=row["id"], title=row["title"], type=row["type"], message_count=row["message_count"])
            for row in rows
        ]

    def delete_chat(self, chat_id: int) -> int:
        """Remove a chat with its messages, embeddings, and sync cursor."""
        with self._guard("delete chat"), self.db.transaction() as cursor:
            cursor.execute("DELETE FROM message_embeddings WHERE chat_id = ?", [chat_id])
            deleted = cursor.execute("DELETE FROM messages WHERE chat_id = ?", [chat_id]).rowcount
            cursor.execute("DELETE FROM sync_cursors WHERE chat_id = ?", [chat_id])
            cursor.execute("DELETE FROM folder_chats WHERE chat_id = ?", [chat_id])
            cursor.execute("DELETE FROM chats WHERE id = ?", [chat_id])
        return deleted

    # Folders -----------------------------------------------------------

    def upsert_folder(self, folder_id: int, title: str, chat_ids: Sequence[int]) -> None:
        with self._guard("upsert folder"), self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO folders (id, title, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET title = excluded.title, updated_at = excluded.updated_at
                """,
                [folder_id, title, now_ms()],
            )
            cursor.execute("DELETE FROM folder_chats WHERE folder_id = ?", [folder_id])
            cursor.executemany(
                "INSERT OR IGNORE INTO folder_chats (folder_id, chat_id) VALUES (?, ?)",
                [(folder_id, chat_id) for chat_id in chat_ids],
            )

    def chat_ids_in_folder(self, folder_id: int) -> list[int]:
        rows = self._query(
            "SELECT chat_id FROM folder_chats WHERE folder_id = ? ORDER BY chat_id",
            [folder_id],
        )
        return [row["chat_id"] for row in rows]

    # Messages ----------------------------------------------------------

    def upsert_messages(self, messages: Sequence[Message]) -> int:
        if not messages:
            return 0
        archived_at = now_ms()
        with self._guard("upsert messages"):
            self.db.executemany(
                f"""
                INSERT INTO messages ({_MESSAGE_COLUMNS}, archived_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(chat_id, message_id) DO UPDATE SET
                  type = excluded.type,
                  content = excluded.content,
                  created_ts = excluded.created_ts,
                  media_ref = excluded.media_ref,
                  from_id = excluded.from_id,
                  from_name = excluded.from_name,
                  reply_to_id = excluded.reply_to_id
                """,
                [
                    (
                        message.chat_id,
                        message.platform_message_id,
                        message.type,
                        message.content or "",
                        to_unix(message.created_at),
                        message.media_ref,
                        message.from_id,
                        message.from_name,
                        message.reply_to_id,
                        archived_at,
                    )
                    for message in messages
                ],
            )
            self.db.commit()
        return len(messages)

    def get_messages(self, chat_id: int, limit: int = 100, offset: int = 0) -> list[Message]:
        rows = self._query(
            f"""
            SELECT {_MESSAGE_COLUMNS} FROM messages
            WHERE chat_id = ?
            ORDER BY message_id DESC
            LIMIT ? OFFSET ?
            """,
            [chat_id, limit, offset],
        )
        return [_row_to_message(row) for row in rows]

    def count_messages(self, chat_id: int | None = None) -> int:
        if chat_id is None:
            row = self._query_one("SELECT COUNT(*) AS count FROM messages", [])
        else:
            row = self._query_one("SELECT COUNT(*) AS count FROM messages WHERE chat_id = ?", [chat_id])
        return int(row["count"]) if row else 0

    def message_id_bounds(self, chat_id: int) -> tuple[int | None, int | None]:
        row = self._query_one(
            "SELECT MIN(message_id) AS min_id, MAX(message_id) AS max_id FROM messages WHERE chat_id = ?",
            [chat_id],
        )
        if row is None:
            return (None, None)
        return (row["min_id"], row["max_id"])

    # Embeddings --------------------------------------------------------

    def find_messages_missing_embedding(self, chat_id: int, dimension: int) -> list[Message]:
        rows = self._query(
            f"""
            SELECT {", ".join("messages." + column.strip() for column in _MESSAGE_COLUMNS.split(","))}
            FROM messages
            LEFT JOIN message_embeddings emb
              ON emb.chat_id = messages.chat_id
             AND emb.message_id = messages.message_id
             AND emb.dim = ?
            WHERE messages.chat_id = ? AND emb.message_id IS NULL
            ORDER BY messages.message_id DESC
            """,
            [dimension, chat_id],
        )
        return [_row_to_message(row) for row in rows]

    def upsert_embeddings(
        self,
        chat_id: int,
        updates: Sequence[tuple[int, Sequence[float]]],
        model: str,
    ) -> int:
        """Store ``(message_id, vector)`` pairs; the vector length is the dimension key."""
        if not updates:
            return 0
        created_at = now_ms()
        with self._guard("upsert embeddings"):
            self.db.executemany(
                """
                INSERT INTO message_embeddings (chat_id, message_id, dim, model, vector, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
                ON CONFLICT(chat_id, message_id, dim) DO UPDATE SET
                  model = excluded.model,
                  vector = excluded.vector,
                  created_at = excluded.created_at
                """,
                [
                    (chat_id, message_id, len(vector), model, to_bytes(vector), created_at)
                    for message_id, vector in updates
                ],
            )
            self.db.commit()
        return len(updates)

    def count_embeddings(self, chat_id: int, dimension: int) -> int:
        row = self._query_one(
            "SELECT COUNT(*) AS count FROM message_embeddings WHERE chat_id = ? AND dim = ?",
            [chat_id, dimension],
        )
        return int(row["count"]) if row else 0

    # Search ------------------------------------------------------------

    def lexical_search(
        self,
        query: str,
        chat_ids: Sequence[int] | None,
        limit: int,
    ) -> list[ScoredMessage]:
        """Messages containing every query term, closest token-sort similarity first.

        Matching and scoring both run on casefolded text, so non-ASCII scripts
        compare case-insensitively. Ranking happens in SQL before ``limit``.
        """
        terms = query_terms(query)
        if not terms:
            return []
        clauses = ["instr(casefold(content), ?) > 0" for _ in terms]
        scope_sql, scope_params = _scope_clause(chat_ids)
        rows = self._query(
            f"""
            SELECT {_MESSAGE_COLUMNS}, lexical_score(?, content) AS score FROM messages
            WHERE {" AND ".join(clauses)}{scope_sql}
            ORDER BY score DESC, created_ts DESC, message_id DESC
            LIMIT ?
            """,
            [" ".join(terms), *terms, *scope_params, limit],
        )
        return [ScoredMessage(message=_row_to_message(row), score=row["score"]) for row in rows]

    def vector_search(
        self,
        embedding: Sequence[float],
        chat_ids: Sequence[int] | None,
        limit: int,
    ) -> list[ScoredMessage]:
        """Cosine similarity over stored vectors of the query's dimension."""
        scope_sql, scope_params = _scope_clause(chat_ids, column="emb.chat_id")
        rows = self._query(
            f"""
            SELECT {", ".join("m." + column.strip() for column in _MESSAGE_COLUMNS.split(","))}, emb.vector
            FROM message_embeddings emb
            JOIN messages m ON m.chat_id = emb.chat_id AND m.message_id = emb.message_id
            WHERE emb.dim = ?{scope_sql}
            """,
            [len(embedding), *scope_params],
        )
        scored = [
            ScoredMessage(
                message=_row_to_message(row),
                score=cosine_similarity(embedding, from_bytes(row["vector"])),
            )
            for row in rows
        ]
        scored.sort(key=lambda hit: hit.score, reverse=True)
        return scored[:limit]

    # Sync cursors ------------------------------------------------------

    def get_sync_cursor(self, chat_id: int) -> SyncCursor | None:
        row = self._query_one(
            "SELECT chat_id, last_message_id, last_sync_time FROM sync_cursors WHERE chat_id = ?",
            [chat_id],
        )
        if row is None:
            return None
        return SyncCursor(
            chat_id=row["chat_id"],
            last_message_id=row["last_message_id"],
            last_sync_time=from_unix(row["last_sync_time"] / 1000),
        )

    def set_sync_cursor(self, chat_id: int, last_message_id: int, last_sync_time: datetime) -> SyncCursor:
        """Upsert a cursor; the stored id only ever grows."""
        with self._guard("set sync cursor"):
            self.db.execute(
                """
                INSERT INTO sync_cursors (chat_id, last_message_id, last_sync_time)
                VALUES (?, ?, ?)
                ON CONFLICT(chat_id) DO UPDATE SET
                  last_message_id = MAX(sync_cursors.last_message_id, excluded.last_message_id),
                  last_sync_time = excluded.last_sync_time
                """,
                [chat_id, last_message_id, int(to_unix(last_sync_time) * 1000)],
            )
            self.db.commit()
        cursor = self.get_sync_cursor(chat_id)
        assert cursor is not None
        return cursor

    def delete_sync_cursor(self, chat_id: int) -> bool:
        with self._guard("delete sync cursor"):
            deleted = self.db.execute("DELETE FROM sync_cursors WHERE chat_id = ?", [chat_id]).rowcount
            self.db.commit()
        return deleted > 0

    # Jobs --------------------------------------------------------------

    def start_job(self, job_id: str, kind: str, chat_id: int | None) -> None:
        with self._guard("start job"):
            self.db.execute(
                "INSERT INTO jobs (id, kind, chat_id, status, started_at) VALUES (?, ?, ?, ?, ?)",
                [job_id, kind, chat_id, "running", now_ms()],
            )
            self.db.commit()

    def finish_job(self, job_id: str, status: str, result: str, stats: dict[str, Any]) -> None:
        with self._guard("finish job"):
            self.db.execute(
                "UPDATE jobs SET finished_at = ?, status = ?, result = ?, stats_json = ? WHERE id = ?",
                [now_ms(), status, result, orjson.dumps(stats, default=str).decode("utf-8"), job_id],
            )
            self.db.commit()

    def get_job(self, job_id: str) -> dict[str, Any] | None:
        row = self._query_one(
            "SELECT id, kind, chat_id, status, result, stats_json, started_at, finished_at FROM jobs WHERE id = ?",
            [job_id],
        )
        if row is None:
            return None
        payload = dict(row)
        payload["stats"] = orjson.loads(row["stats_json"]) if row["stats_json"] else {}
        payload.pop("stats_json")
        return payload

    def _query(self, sql: str, params: Sequence[Any]) -> list[sqlite3.Row]:
        with self._guard("query"):
            return self.db.query(sql, params)

    def _query_one(self, sql: str, params: Sequence[Any]) -> sqlite3.Row | None:
        with self._guard("query"):
            return self.db.query_one(sql, params)

    # ------------------------------------------------------------------

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """Translate sqlite3 failures into StorageError."""
        try:
            yield
        except sqlite3.Error as exc:
            logger.error("Storage failure during %s: %s", operation, exc)
            raise StorageError(f"Storage failure during {operation}: {exc}") from exc


def _casefold(text: str | None) -> str:
    return (text or "").casefold()


def _lexical_score(normalized_query: str, content: str | None) -> float:
    return fuzz.token_sort_ratio(normalized_query, _casefold(content)) / 100.0


def _scope_clause(chat_ids: Sequence[int] | None, column: str = "chat_id") -> tuple[str, list[Any]]:
    if chat_ids is None:
        return "", []
    if not chat_ids:
        return " AND 0", []
    placeholders = ",".join("?" for _ in chat_ids)
    return f" AND {column} IN ({placeholders})", list(chat_ids)


def _row_to_message(row: sqlite3.Row) -> Message:
    return Message(
        chat_id=row["chat_id"],
        platform_message_id=row["message_id"],
        type=row["type"],
        content=row["content"] or "",
        created_at=from_unix(row["created_ts"]),
        media_ref=row["media_ref"],
        from_id=row["from_id"],
        from_name=row["from_name"],
        reply_to_id=row["reply_to_id"],
    )


__all__ = ["ArchiveStore"]
