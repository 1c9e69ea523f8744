"""
Exception hierarchy for the ragask engine.

Unit-scoped errors (LoadError, ChunkError, EnrichmentError) exclude a single
unit from the stream and let the run continue. Batch-scoped errors
(EmbeddingError, StoreError) are fatal for the run that raised them.
"""
from typing import Any, Dict, Optional


class RagAskError(Exception):
    """Base exception for all ragask errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        """Return string representation including details."""
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class UnitError(RagAskError):
    """Base for errors that affect a single unit only."""

    def __init__(
        self,
        message: str,
        unit_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if unit_id:
            details["unit_id"] = unit_id
        super().__init__(message, details)


class LoadError(UnitError):
    """Raised when the filesystem cannot be read.

    Fatal when raised for the corpus root, unit-scoped for a single file.
    """


class ChunkError(UnitError):
    """Raised when content cannot be split for its content class."""


class EnrichmentError(UnitError):
    """Raised when metadata generation fails for a chunk after retries."""


class EmbeddingError(RagAskError):
    """Raised when a batch embedding call fails or returns unusable vectors."""


class StoreError(RagAskError):
    """Raised when vector store operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if operation:
            details["operation"] = operation
        super().__init__(message, details)


class GenerationError(RagAskError):
    """Raised when a text generation call fails after retries."""


class CacheError(RagAskError):
    """Raised when the fingerprint cache backend is unavailable."""


class PipelineRunError(RagAskError):
    """Raised when an indexing run aborts; carries the partial run report."""

    def __init__(self, cause: RagAskError, report: Any) -> None:
        self.cause = cause
        self.report = report
        super().__init__(f"Pipeline run failed: {cause.message}", dict(cause.details))
