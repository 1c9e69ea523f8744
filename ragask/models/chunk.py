"""Chunk data models used on the retrieval side."""
from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class VectorRecord:
    """A row written to the vector store."""
    chunk_id: str
    vector: List[float]
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ScoredChunk:
    """Chunk with similarity score from retrieval."""
    chunk_id: str
    metadata: Dict[str, Any]
    score: float

    @property
    def text(self) -> str:
        return self.metadata.get("content", "")

    @property
    def path(self) -> str:
        return self.metadata.get("path", "unknown")
