"""Batched embedding stage."""
import logging
from typing import List, Protocol

from ragask.errors import EmbeddingError
from ragask.models.unit import Unit
from ragask.services.pipeline import BatchTransform
from ragask.services.retry import call_with_retry

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    """Anything that embeds a batch of texts, one vector per text, in order."""

    async def embed(self, texts: List[str]) -> List[List[float]]: ...


class BatchEmbedder(BatchTransform):
    """
    Embeds chunks one batch per call.

    Vector ``i`` of a response is assigned to chunk ``i`` of the batch. A failed
    call fails the whole batch; a vector of the wrong size is fatal and never
    retried.
    """

    name = "embed"

    def __init__(
        self,
        embedder: Embedder,
        batch_size: int,
        dimension: int,
        attempts: int = 3,
        initial_delay: float = 1.0,
        timeout: float = 120.0,
    ):
        """
        Initialize BatchEmbedder.

        Args:
            embedder: Embedding capability
            batch_size: Number of chunks per embedding call
            dimension: Vector size declared for the destination namespace
            attempts: Attempts per batch before the error propagates
            initial_delay: Backoff before the second attempt in seconds
            timeout: Per-call timeout in seconds
        """
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        self.embedder = embedder
        self.batch_size = batch_size
        self.dimension = dimension
        self.attempts = attempts
        self.initial_delay = initial_delay
        self.timeout = timeout

    async def transform_batch(self, units: List[Unit]) -> List[Unit]:
        texts = [unit.as_embeddable() for unit in units]
        logger.debug(f"Embedding batch of {len(texts)} chunks")

        try:
            vectors = await call_with_retry(
                lambda: self.embedder.embed(texts),
                attempts=self.attempts,
                initial_delay=self.initial_delay,
                timeout=self.timeout,
                retry_on=(EmbeddingError,),
                label="embed_batch",
            )
        except TimeoutError as e:
            raise EmbeddingError(f"Embedding batch timed out: {e}", {"batch_size": len(units)}) from e
        except EmbeddingError as e:
            raise EmbeddingError(
                f"Embedding batch of {len(units)} chunks failed: {e.message}",
                dict(e.details, batch_size=len(units)),
            ) from e

        if len(vectors) != len(units):
            raise EmbeddingError(
                "Embedding call returned a different number of vectors than inputs",
                {"expected": len(units), "received": len(vectors)},
            )

        for unit, vector in zip(units, vectors):
            if len(vector) != self.dimension:
                raise EmbeddingError(
                    f"Embedding dimension {len(vector)} does not match namespace dimension {self.dimension}",
                    {"unit_id": unit.unit_id, "expected": self.dimension, "received": len(vector)},
                )

        for unit, vector in zip(units, vectors):
            unit.embedding = [float(x) for x in vector]
        return units
