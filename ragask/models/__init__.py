"""Data models for ragask."""
from .unit import ContentClass, Unit, fingerprint_of
from .chunk import ScoredChunk, VectorRecord
from .query import QueryContext, QueryState
from .report import RunReport
from .api import IndexRequest, IndexResponse, QueryRequest, QueryResponse, Source

__all__ = [
    "ContentClass",
    "Unit",
    "fingerprint_of",
    "ScoredChunk",
    "VectorRecord",
    "QueryContext",
    "QueryState",
    "RunReport",
    "IndexRequest",
    "IndexResponse",
    "QueryRequest",
    "QueryResponse",
    "Source",
]
