"""Embedding providers."""

from __future__ import annotations

import hashlib
import re
from abc import ABC, abstractmethod
from typing import Any, Sequence

import requests

from chat_archive.core.errors import EmbeddingError
from chat_archive.core.logging import get_logger
from chat_archive.utils.vectors import normalize

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\w+")

DEFAULT_TIMEOUT = 30.0


class Embedder(ABC):
    """One vector per input text, same order, all of length ``dimension``."""

    provider: str
    model_name: str
    dimension: int

    @abstractmethod
    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Generate vectors for each text input."""


class HashedEmbedder(Embedder):
    """Lightweight hashed embedding model with deterministic output."""

    provider = "hashed"

    def __init__(self, dimension: int = 1536, model_name: str = "hashed") -> None:
        if dimension <= 0:
            raise EmbeddingError("Embedding dimension must be > 0")
        self.dimension = int(dimension)
        self.model_name = model_name

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for text in texts:
            vector = [0.0] * self.dimension
            for token in _tokenize(text or ""):
                vector[_hash_token(token, self.dimension)] += 1.0
            vectors.append(normalize(vector))
        return vectors


class _HTTPEmbedder(Embedder):
    """Shared request/validation logic for JSON-over-HTTP providers."""

    def __init__(
        self,
        base_url: str,
        model_name: str,
        dimension: int,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        if dimension <= 0:
            raise EmbeddingError("Embedding dimension must be > 0")
        self.base_url = base_url.rstrip("/")
        self.model_name = model_name
        self.dimension = int(dimension)
        self._timeout = timeout
        self._session = session or requests.Session()

    def _post(self, path: str, payload: dict[str, Any], headers: dict[str, str] | None = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self._session.post(url, json=payload, headers=headers, timeout=self._timeout)
        except requests.Timeout as exc:
            raise EmbeddingError(f"{self.provider} embedding request timed out", retryable=True) from exc
        except requests.RequestException as exc:
            raise EmbeddingError(f"{self.provider} embedding request failed: {exc}", retryable=True) from exc
        if response.status_code >= 400:
            retryable = response.status_code == 429 or response.status_code >= 500
            raise EmbeddingError(
                f"{self.provider} embedding request returned HTTP {response.status_code}",
                retryable=retryable,
            )
        try:
            return response.json()
        except ValueError as exc:
            raise EmbeddingError(f"Invalid JSON from {self.provider} embedding provider") from exc

    def _validate(self, rows: Any, expected: int) -> list[list[float]]:
        if not isinstance(rows, list) or len(rows) != expected:
            raise EmbeddingError("Embedding response shape is invalid")
        vectors: list[list[float]] = []
        for row in rows:
            if not isinstance(row, list):
                raise EmbeddingError("Embedding row is missing vector data")
            if len(row) != self.dimension:
                raise EmbeddingError(
                    f"Embedding dimension mismatch: expected {self.dimension}, got {len(row)}"
                )
            try:
                vectors.append(normalize([float(value) for value in row]))
            except (TypeError, ValueError) as exc:
                raise EmbeddingError("Embedding contains non-numeric values") from exc
        return vectors


class OpenAIEmbedder(_HTTPEmbedder):
    """OpenAI-compatible ``/embeddings`` endpoint."""

    provider = "openai"

    def __init__(
        self,
        api_key: str,
        model_name: str = "text-embedding-3-small",
        dimension: int = 1536,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        if not api_key or not api_key.strip():
            raise EmbeddingError("OpenAI embedding API key is empty")
        super().__init__(base_url, model_name, dimension, timeout=timeout, session=session)
        self._api_key = api_key

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        payload = {"model": self.model_name, "input": list(texts), "dimensions": self.dimension}
        data = self._post("/embeddings", payload, headers={"Authorization": f"Bearer {self._api_key}"})
        rows = data.get("data") if isinstance(data, dict) else None
        if isinstance(rows, list):
            rows = sorted(rows, key=lambda row: row.get("index", 0) if isinstance(row, dict) else 0)
            rows = [row.get("embedding") if isinstance(row, dict) else None for row in rows]
        return self._validate(rows, len(texts))


class OllamaEmbedder(_HTTPEmbedder):
    """Local Ollama ``/api/embed`` endpoint."""

    provider = "ollama"

    def __init__(
        self,
        model_name: str = "nomic-embed-text",
        dimension: int = 768,
        base_url: str = "http://localhost:11434",
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        super().__init__(base_url, model_name, dimension, timeout=timeout, session=session)

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        data = self._post("/api/embed", {"model": self.model_name, "input": list(texts)})
        rows = data.get("embeddings") if isinstance(data, dict) else None
        return self._validate(rows, len(texts))


def get_embedder(settings) -> Embedder:
    """Build the configured embedding provider."""
    provider = settings.embedding_provider
    if provider == "hashed":
        return HashedEmbedder(dimension=settings.embedding_dim)
    if provider == "openai":
        return OpenAIEmbedder(
            api_key=settings.embedding_api_key or "",
            model_name=settings.embedding_model,
            dimension=settings.embedding_dim,
            base_url=settings.embedding_api_base or "https://api.openai.com/v1",
        )
    if provider == "ollama":
        return OllamaEmbedder(
            model_name=settings.embedding_model,
            dimension=settings.embedding_dim,
            base_url=settings.embedding_api_base or "http://localhost:11434",
        )
    raise EmbeddingError(f"Unknown embedding provider: {provider}")


def _tokenize(text: str) -> list[str]:
    return _TOKEN_RE.findall(text.lower())


def _hash_token(token: str, dim: int) -> int:
    digest = hashlib.blake2b(token.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big") % dim


__all__ = [
    "Embedder",
    "HashedEmbedder",
    "OpenAIEmbedder",
    "OllamaEmbedder",
    "get_embedder",
]
