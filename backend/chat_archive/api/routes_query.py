"""Query API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from chat_archive.api.dependencies import get_search_ranker
from chat_archive.core.metrics import REQUEST_COUNT
from chat_archive.models.dto import SearchRequest, SearchResponse
from chat_archive.retrieval.search import HybridSearchRanker, SearchScope

router = APIRouter()


@router.post("/search", response_model=SearchResponse, summary="Hybrid lexical and vector search")
def run_search(
    request: SearchRequest,
    ranker: HybridSearchRanker = Depends(get_search_ranker),
) -> SearchResponse:
    scope = SearchScope(chat_id=request.chat_id, folder_id=request.folder_id)
    try:
        page = ranker.search(request.query, scope=scope, limit=request.limit, offset=request.offset)
    except ValueError as exc:
        REQUEST_COUNT.labels(endpoint="search", method="POST", status="404").inc()
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    REQUEST_COUNT.labels(endpoint="search", method="POST", status="200").inc()
    return SearchResponse.from_page(page)


__all__ = ["router"]
