"""Retrieval orchestration components."""

from .hybrid import fuse_scores, paginate
from .search import HybridSearchRanker, SearchScope

__all__ = [
    "HybridSearchRanker",
    "SearchScope",
    "fuse_scores",
    "paginate",
]
