"""Request/response models for the HTTP surface."""
from typing import List, Optional

from pydantic import BaseModel, Field


class IndexRequest(BaseModel):
    """Body of POST /index."""
    root_path: str = Field(..., description="Corpus root to index")


class IndexResponse(BaseModel):
    """Summary of an indexing run."""
    namespace: str
    loaded: int
    skipped: int
    errored: int
    stored: int


class QueryRequest(BaseModel):
    """Body of POST /query."""
    question: str = Field(..., description="Natural-language question")
    root_path: Optional[str] = Field(None, description="Indexed corpus root; the configured root if omitted")


class Source(BaseModel):
    """A retrieved chunk cited by the answer."""
    path: str
    chunk_id: str
    relevance_score: float


class QueryResponse(BaseModel):
    """Answer plus the context it was drawn from."""
    answer: str
    questions: List[str]
    sources: List[Source]
    compressed: bool = False
    error: Optional[str] = None
