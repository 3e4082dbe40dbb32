"""Embedding abstractions, batched generation and similarity."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from math import sqrt
from typing import Any, Protocol

from kb_engine.config import EmbeddingConfig
from kb_engine.errors import DimensionMismatchError, EmbeddingProviderError

logger = logging.getLogger(__name__)

_COST_PER_MILLION_TOKENS = 0.02


@dataclass(slots=True)
class IndexedEmbedding:
    """One provider result; `index` is the position in the submitted batch."""

    index: int
    embedding: list[float]


@dataclass(slots=True)
class EmbeddingResult:
    text: str
    embedding: list[float]
    index: int


class EmbeddingProvider(Protocol):
    """Minimal provider contract: a batch in, indexed vectors out (any order)."""

    def create(self, texts: list[str], *, timeout: float | None = None) -> list[IndexedEmbedding]:
        """Embed one batch."""


class OpenAIEmbeddingProvider:
    """OpenAI embeddings endpoint via the official client."""

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        *,
        api_key: str | None = None,
        client: Any | None = None,
    ) -> None:
        if client is None:
            from openai import OpenAI

            client = OpenAI(api_key=api_key)
        self.model = model
        self._client = client

    def create(self, texts: list[str], *, timeout: float | None = None) -> list[IndexedEmbedding]:
        response = self._client.embeddings.create(model=self.model, input=texts, timeout=timeout)
        return [
            IndexedEmbedding(index=item.index, embedding=list(item.embedding))
            for item in response.data
        ]


class Embedder(ABC):
    """Embedder interface used by ingest and retrieval components."""

    @abstractmethod
    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        """Embed many documents."""

    @abstractmethod
    def embed_query(self, text: str) -> list[float]:
        """Embed one query."""


class BatchedEmbedder(Embedder):
    """Provider-backed embedder that preserves input order.

    Texts are sent in batches of at most `max_batch_size`. Each batch's
    results are re-sorted by the provider's declared index before being
    appended, so `embed(texts)[i]` always belongs to `texts[i]`. Any failing
    batch aborts the whole call with `EmbeddingProviderError`; partial
    results are never returned.
    """

    def __init__(
        self,
        provider: EmbeddingProvider,
        config: EmbeddingConfig | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.provider = provider
        self.config = config or EmbeddingConfig()
        self._sleep = sleep

    def embed(self, texts: list[str], *, timeout: float | None = None) -> list[list[float]]:
        vectors: list[list[float]] = []
        size = self.config.max_batch_size
        for start in range(0, len(texts), size):
            vectors.extend(self._embed_batch(texts[start : start + size], start, timeout))
        return vectors

    def embed_documents(self, texts: list[str]) -> list[list[float]]:
        return self.embed(texts)

    def embed_query(self, text: str) -> list[float]:
        return self.embed([text])[0]

    def embed_with_progress(
        self,
        texts: list[str],
        on_progress: Callable[[int, int], None] | None = None,
        *,
        timeout: float | None = None,
    ) -> list[EmbeddingResult]:
        """Embed in small sub-batches, pausing between them to ease rate limits."""

        results: list[EmbeddingResult] = []
        size = min(self.config.max_batch_size, self.config.progress_batch_size)
        total = len(texts)

        for start in range(0, total, size):
            batch = texts[start : start + size]
            embeddings = self._embed_batch(batch, start, timeout)
            results.extend(
                EmbeddingResult(text=text, embedding=embedding, index=start + offset)
                for offset, (text, embedding) in enumerate(zip(batch, embeddings, strict=True))
            )
            processed = min(start + size, total)
            logger.debug("Embedded %d/%d texts", processed, total)
            if on_progress is not None:
                on_progress(processed, total)
            if processed < total:
                self._sleep(self.config.inter_batch_delay_seconds)

        return results

    def _embed_batch(
        self, batch: list[str], start: int, timeout: float | None
    ) -> list[list[float]]:
        try:
            items = self.provider.create(
                batch, timeout=timeout if timeout is not None else self.config.timeout_seconds
            )
        except Exception as exc:
            logger.error("Embedding batch starting at %d failed: %s", start, exc)
            raise EmbeddingProviderError(
                f"Embedding batch starting at {start} failed: {exc}", batch_start=start
            ) from exc

        ordered = sorted(items, key=lambda item: item.index)
        if [item.index for item in ordered] != list(range(len(batch))):
            raise EmbeddingProviderError(
                f"Provider returned {len(ordered)} embeddings for {len(batch)} texts",
                batch_start=start,
            )
        for item in ordered:
            if len(item.embedding) != self.config.dimensions:
                raise EmbeddingProviderError(
                    f"Expected {self.config.dimensions} dimensions, got {len(item.embedding)}",
                    batch_start=start,
                )
        return [item.embedding for item in ordered]


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Normalized dot product. Zero vectors score 0.0."""

    if len(a) != len(b):
        raise DimensionMismatchError(
            f"Embeddings must have the same dimension ({len(a)} != {len(b)})"
        )
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)


def estimate_embedding_cost(token_count: int) -> float:
    """USD estimate at $0.02 per million tokens."""
    return (token_count / 1_000_000) * _COST_PER_MILLION_TOKENS
