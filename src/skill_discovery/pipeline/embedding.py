"""Embedding helpers for prompt clustering."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable
from typing import Protocol

import numpy as np

logger = logging.getLogger(__name__)


class TextEmbeddingClient(Protocol):
    """Protocol for text embedding providers."""

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        """Return one embedding vector per input text."""


class EmbeddingExtractionError(ValueError):
    """Raised when text embeddings are missing or malformed."""


class EmbeddingCache:
    """In-memory map from prompt text to its embedding vector."""

    def __init__(self) -> None:
        self._vectors: dict[str, list[float]] = {}

    @staticmethod
    def _key(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    def get(self, text: str) -> list[float] | None:
        return self._vectors.get(self._key(text))

    def set(self, text: str, vector: list[float]) -> None:
        self._vectors[self._key(text)] = vector

    def __len__(self) -> int:
        return len(self._vectors)


def truncate_to_words(text: str, max_words: int) -> str:
    """Keep the first `max_words` whitespace-separated words of a prompt."""

    words = text.split()
    if len(words) <= max_words:
        return text
    return " ".join(words[:max_words])


def embed_texts_in_batches(
    texts: list[str],
    embedding_client: TextEmbeddingClient,
    *,
    batch_size: int = 64,
    cache: EmbeddingCache | None = None,
    progress_callback: Callable[[int, int], None] | None = None,
) -> np.ndarray:
    """Embed text inputs in batches and return a 2D array.

    Texts already present in `cache`, and repeats within `texts`, are sent to
    the provider only once.
    """

    if batch_size <= 0:
        raise EmbeddingExtractionError(f"batch_size must be positive, got {batch_size}.")

    if not texts:
        raise EmbeddingExtractionError("Cannot embed an empty text list.")

    store = cache if cache is not None else EmbeddingCache()
    pending: list[str] = []
    seen_pending: set[str] = set()
    for text in texts:
        if store.get(text) is None and text not in seen_pending:
            pending.append(text)
            seen_pending.add(text)

    if len(pending) < len(texts):
        logger.info("Embedding cache covers %d/%d texts.", len(texts) - len(pending), len(texts))

    embedded = 0
    for start_idx in range(0, len(pending), batch_size):
        batch = pending[start_idx : start_idx + batch_size]
        batch_vectors = embedding_client.embed_texts(batch)
        if len(batch_vectors) != len(batch):
            raise EmbeddingExtractionError(
                f"Embedding count mismatch for batch starting at {start_idx}: "
                f"{len(batch_vectors)} != {len(batch)}."
            )
        for text, vector in zip(batch, batch_vectors, strict=True):
            store.set(text, [float(value) for value in vector])
        embedded += len(batch)
        if progress_callback is not None:
            progress_callback(embedded, len(pending))

    vectors = [store.get(text) for text in texts]
    dim = len(vectors[0] or [])
    if dim == 0:
        raise EmbeddingExtractionError("Embedding provider returned empty vectors.")

    result = np.empty((len(texts), dim), dtype=float)
    for index, vector in enumerate(vectors):
        if vector is None or len(vector) != dim:
            raise EmbeddingExtractionError(
                "Inconsistent embedding dimensions: "
                f"expected {dim}, got {0 if vector is None else len(vector)}."
            )
        result[index] = vector
    return result
