"""Hybrid search utilities."""

from __future__ import annotations

from typing import Sequence

from chat_archive.models.entities import ScoredMessage, SearchResult

DEFAULT_FUSION_BONUS = 0.3


def fuse_scores(
    lexical: Sequence[ScoredMessage],
    vector: Sequence[ScoredMessage],
    fusion_bonus: float = DEFAULT_FUSION_BONUS,
) -> list[SearchResult]:
    """Merge lexical and vector hits keyed by ``(chat_id, message_id)``.

    A message found by both gets ``max(lexical, vector + fusion_bonus)``, so
    agreement can lift a result but never pulls it below its lexical score.
    Single-source hits keep their own score. Output is sorted by score, then
    newest first.
    """
    fused: dict[tuple[int, int], SearchResult] = {}
    for hit in lexical:
        key = hit.message.key
        current = fused.get(key)
        if current is None or hit.score > current.score:
            fused[key] = SearchResult(message=hit.message, score=hit.score, source="lexical")
    for hit in vector:
        key = hit.message.key
        current = fused.get(key)
        if current is None:
            fused[key] = SearchResult(message=hit.message, score=hit.score, source="vector")
        elif current.source == "vector":
            current.score = max(current.score, hit.score)
        else:
            current.score = max(current.score, hit.score + fusion_bonus)
            current.source = "both"
    return sorted(
        fused.values(),
        key=lambda result: (result.score, result.message.created_at, result.message.platform_message_id),
        reverse=True,
    )


def paginate(results: Sequence[SearchResult], offset: int, limit: int) -> list[SearchResult]:
    if offset < 0 or limit < 0:
        raise ValueError("offset and limit must be non-negative")
    return list(results[offset : offset + limit])


__all__ = ["fuse_scores", "paginate", "DEFAULT_FUSION_BONUS"]
