"""Query context models."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ragask.models.chunk import ScoredChunk


class QueryState(str, Enum):
    """States a query moves through; FAILED can follow any non-terminal state."""
    RECEIVED = "received"
    EXPANDED = "expanded"
    EMBEDDED = "embedded"
    RETRIEVED = "retrieved"
    COMPRESSED = "compressed"
    ANSWERED = "answered"
    FAILED = "failed"


@dataclass
class QueryContext:
    """Per-question state. Lives for a single query call and is never persisted."""
    original: str
    expansions: List[str] = field(default_factory=list)
    embeddings: List[List[float]] = field(default_factory=list)
    candidates: List[ScoredChunk] = field(default_factory=list)
    response: Optional[str] = None
    answer: Optional[str] = None
    compressed: bool = False
    state: QueryState = QueryState.RECEIVED
    error: Optional[Exception] = None

    @property
    def questions(self) -> List[str]:
        """Original question followed by its expansions."""
        return [self.original] + self.expansions

    def fail(self, error: Exception) -> None:
        self.error = error
        self.state = QueryState.FAILED
