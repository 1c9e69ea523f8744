"""Retrieval engine for multi-question similarity search."""
import logging
from typing import Dict, List

from ragask.models.chunk import ScoredChunk
from ragask.services.vector_store import VectorStore

logger = logging.getLogger(__name__)


class Retriever:
    """Search a namespace once per query embedding and merge the hits."""

    def __init__(self, vector_store: VectorStore, namespace: str, top_k: int = 10, max_chunks: int = 20):
        """
        Initialize the retriever.

        Args:
            vector_store: Store to search
            namespace: Namespace the questions are answered from
            top_k: Hits requested per query embedding
            max_chunks: Cap on the merged result set
        """
        if top_k < 1 or max_chunks < 1:
            raise ValueError("top_k and max_chunks must be positive")
        self.vector_store = vector_store
        self.namespace = namespace
        self.top_k = top_k
        self.max_chunks = max_chunks
        logger.info(f"Initialized Retriever for {namespace} (top_k={top_k}, max_chunks={max_chunks})")

    async def retrieve(self, embeddings: List[List[float]]) -> List[ScoredChunk]:
        """
        Retrieve and merge chunks for every query embedding.

        Hits are deduplicated by chunk id keeping the highest score, sorted by
        score (best first) and capped at ``max_chunks``.

        Args:
            embeddings: One vector per question

        Returns:
            Merged list of scored chunks, empty if there are no embeddings

        Raises:
            StoreError: If a search fails
        """
        if not embeddings:
            logger.warning("No query embeddings provided, returning empty results")
            return []

        best: Dict[str, ScoredChunk] = {}
        for vector in embeddings:
            hits = await self.vector_store.search(self.namespace, vector, self.top_k)
            for hit in hits:
                current = best.get(hit.chunk_id)
                if current is None or hit.score > current.score:
                    best[hit.chunk_id] = hit

        merged = sorted(best.values(), key=lambda chunk: chunk.score, reverse=True)[: self.max_chunks]

        if merged:
            logger.info(
                f"Retrieved {len(merged)} unique chunks for {len(embeddings)} questions "
                f"(top score: {merged[0].score:.3f})"
            )
        else:
            logger.info(f"No chunks found in {self.namespace}")
        return merged
