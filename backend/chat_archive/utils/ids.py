"""ID helpers."""

from __future__ import annotations

import uuid


def new_id(prefix: str | None = None) -> str:
    """Random job identifier, optionally prefixed with the job kind."""
    base = uuid.uuid4().hex[:16]
    return f"{prefix}-{base}" if prefix else base


__all__ = ["new_id"]
