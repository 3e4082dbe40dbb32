"""Exception taxonomy for unrecoverable engine conditions.

Expected failures (fetch errors, disallowed robots, empty extraction) are
reported through result objects instead.
"""

from __future__ import annotations


class KnowledgeBaseError(Exception):
    """Base error for the knowledge-base engine."""


class EmbeddingProviderError(KnowledgeBaseError):
    """An embedding batch failed; no partial embeddings are returned."""

    def __init__(self, message: str, *, batch_start: int | None = None) -> None:
        super().__init__(message)
        self.batch_start = batch_start


class PipelineIntegrityError(KnowledgeBaseError):
    """A document pipeline produced unusable output (no text, no chunks, count mismatch)."""


class DimensionMismatchError(KnowledgeBaseError, ValueError):
    """Two vectors of different dimensionality were compared."""


class InvalidTransitionError(KnowledgeBaseError):
    """A document status change not allowed by the lifecycle."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move document from {current!r} to {target!r}")
        self.current = current
        self.target = target
