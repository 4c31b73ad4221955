"""Text processing helpers."""

from __future__ import annotations

import re


WHITESPACE_RE = re.compile(r"\s+")


def normalize(text: str) -> str:
    """Collapse whitespace and strip."""
    return WHITESPACE_RE.sub(" ", text).strip()


def query_terms(query: str) -> list[str]:
    """Casefolded, de-duplicated whitespace terms of a search query."""
    seen: set[str] = set()
    terms: list[str] = []
    for term in normalize(query).casefold().split(" "):
        if term and term not in seen:
            seen.add(term)
            terms.append(term)
    return terms
