"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from fastapi import HTTPException

from chat_archive.core.config import Settings, get_settings
from chat_archive.db.sqlite import SQLiteDatabase
from chat_archive.fetch.engine import MessageFetchEngine
from chat_archive.ingest.embed_processor import EmbeddingBatchProcessor
from chat_archive.ingest.embeddings import Embedder
from chat_archive.ingest.embeddings import get_embedder as build_embedder
from chat_archive.remote.base import RemoteHistoryProvider
from chat_archive.remote.export_file import ExportFileProvider
from chat_archive.retrieval import HybridSearchRanker
from chat_archive.storage.store import ArchiveStore
from chat_archive.sync.cursor_store import SyncCursorStore

_DB: SQLiteDatabase | None = None
_STORE: ArchiveStore | None = None
_EMBEDDER: Embedder | None = None
_PROVIDER: RemoteHistoryProvider | None = None
_RANKER: HybridSearchRanker | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        settings = get_app_settings()
        db = SQLiteDatabase(settings.db_path)
        db.ensure_schema()
        _DB = db
    return _DB


def get_store() -> ArchiveStore:
    global _STORE
    if _STORE is None:
        _STORE = ArchiveStore(get_database())
    return _STORE


def get_cursor_store() -> SyncCursorStore:
    return SyncCursorStore(get_store())


def get_embedder() -> Embedder:
    global _EMBEDDER
    if _EMBEDDER is None:
        _EMBEDDER = build_embedder(get_app_settings())
    return _EMBEDDER


def set_provider(provider: RemoteHistoryProvider | None) -> None:
    """Install the remote client owned by the running session."""
    global _PROVIDER
    _PROVIDER = provider


def get_provider() -> RemoteHistoryProvider:
    global _PROVIDER
    if _PROVIDER is None:
        settings = get_app_settings()
        if settings.export_file is None:
            raise HTTPException(status_code=503, detail="No remote history provider configured")
        _PROVIDER = ExportFileProvider(settings.export_file)
    return _PROVIDER


def get_fetch_engine() -> MessageFetchEngine:
    return MessageFetchEngine.from_settings(get_app_settings(), get_provider(), cursor_store=get_cursor_store())


def get_embed_processor() -> EmbeddingBatchProcessor:
    return EmbeddingBatchProcessor.from_settings(get_app_settings(), get_store(), get_embedder())


def get_search_ranker() -> HybridSearchRanker:
    global _RANKER
    if _RANKER is None:
        _RANKER = HybridSearchRanker.from_settings(get_app_settings(), get_store(), get_embedder())
    return _RANKER


def reset() -> None:
    """Drop cached singletons; the next request rebuilds them from settings."""
    global _DB, _STORE, _EMBEDDER, _PROVIDER, _RANKER
    if _DB is not None:
        _DB.close()
    get_app_settings.cache_clear()
    _DB = None
    _STORE = None
    _EMBEDDER = None
    _PROVIDER = None
    _RANKER = None


__all__ = [
    "get_app_settings",
    "get_database",
    "get_store",
    "get_cursor_store",
    "get_embedder",
    "get_provider",
    "set_provider",
    "get_fetch_engine",
    "get_embed_processor",
    "get_search_ranker",
    "reset",
]
