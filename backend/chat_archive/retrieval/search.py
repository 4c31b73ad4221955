"""Search orchestration."""

from __future__ import annotations

import time
from dataclasses import dataclass

from chat_archive.core.errors import StorageError
from chat_archive.core.logging import get_logger, log_context
from chat_archive.core.metrics import SEARCH_LATENCY
from chat_archive.core.progress import ProgressCallback
from chat_archive.ingest.embeddings import Embedder
from chat_archive.ingest.jobs import JobReporter
from chat_archive.models.entities import ScoredMessage, SearchPage
from chat_archive.retrieval.hybrid import DEFAULT_FUSION_BONUS, fuse_scores, paginate
from chat_archive.storage.store import ArchiveStore
from chat_archive.utils.text import query_terms

logger = get_logger(__name__)

DEFAULT_OVERFETCH = 1000


@dataclass(slots=True)
class SearchScope:
    """A single chat, the chats of a folder, or (both unset) the whole archive."""

    chat_id: int | None = None
    folder_id: int | None = None


class HybridSearchRanker:
    """Lexical search first, vector search only when lexical falls short."""

    def __init__(
        self,
        store: ArchiveStore,
        embedder: Embedder,
        overfetch: int = DEFAULT_OVERFETCH,
        fusion_bonus: float = DEFAULT_FUSION_BONUS,
    ) -> None:
        self.store = store
        self.embedder = embedder
        self.overfetch = overfetch
        self.fusion_bonus = fusion_bonus

    @classmethod
    def from_settings(cls, settings, store: ArchiveStore, embedder: Embedder) -> "HybridSearchRanker":
        return cls(
            store,
            embedder,
            overfetch=settings.search_overfetch,
            fusion_bonus=settings.search_fusion_bonus,
        )

    def resolve_scope(self, scope: SearchScope | None) -> list[int] | None:
        if scope is None:
            return None
        if scope.chat_id is not None:
            return [scope.chat_id]
        if scope.folder_id is not None:
            chat_ids = self.store.chat_ids_in_folder(scope.folder_id)
            if not chat_ids:
                raise ValueError(f"Folder {scope.folder_id} has no chats")
            return chat_ids
        return None

    def search(
        self,
        query: str,
        scope: SearchScope | None = None,
        limit: int = 20,
        offset: int = 0,
        callback: ProgressCallback | None = None,
    ) -> SearchPage:
        if limit <= 0:
            raise ValueError("limit must be positive")
        if offset < 0:
            raise ValueError("offset must be non-negative")
        reporter = JobReporter("search", callback=callback)
        start = time.perf_counter()
        reporter.start("Searching archive", query=query)

        try:
            chat_ids = self.resolve_scope(scope)
            if not query_terms(query):
                reporter.finish("success", "Empty query", total=0)
                return SearchPage(items=[], total=0)
            lexical = self.store.lexical_search(query, chat_ids, self.overfetch)
        except (StorageError, ValueError) as exc:
            reporter.finish("fatal", f"Search failed: {exc}", error=str(exc), errorKind=type(exc).__name__)
            raise
        reporter.progress(50, f"{len(lexical)} lexical matches", lexical=len(lexical))

        vector: list[ScoredMessage] = []
        vector_used = False
        vector_error: str | None = None
        if len(lexical) < limit:
            try:
                embedding = self.embedder.embed([query])[0]
                vector = self.store.vector_search(embedding, chat_ids, self.overfetch)
                vector_used = True
            except Exception as exc:
                vector_error = str(exc)
                logger.warning(
                    "Vector search failed, returning lexical results only: %s",
                    exc,
                    extra=log_context(query=query, lexical=len(lexical)),
                )

        fused = fuse_scores(lexical, vector, self.fusion_bonus)
        page = SearchPage(
            items=paginate(fused, offset, limit),
            total=len(fused),
            vector_used=vector_used,
            vector_error=vector_error,
        )
        SEARCH_LATENCY.labels(vector=str(vector_used).lower()).observe(time.perf_counter() - start)
        reporter.finish(
            "success",
            f"{page.total} matches",
            total=page.total,
            lexical=len(lexical),
            vector=len(vector),
            vectorError=vector_error,
        )
        return page


__all__ = ["HybridSearchRanker", "SearchScope", "DEFAULT_OVERFETCH"]
