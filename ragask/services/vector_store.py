"""Vector stores and the store writer sink."""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import numpy as np
from supabase import Client, create_client

from ragask.errors import StoreError
from ragask.models.chunk import ScoredChunk, VectorRecord
from ragask.models.unit import Unit
from ragask.services.pipeline import Sink

logger = logging.getLogger(__name__)


class VectorStore(ABC):
    """
    Namespaced vector store.

    Every namespace is declared with one embedding dimension; vectors of any
    other size are rejected before anything is written.
    """

    def __init__(self) -> None:
        self._dimensions: Dict[str, int] = {}

    async def ensure_namespace(self, namespace: str, dimension: int) -> None:
        """
        Declare ``namespace`` with ``dimension``, creating it if needed.

        Raises:
            StoreError: If the namespace exists with another dimension
        """
        existing = await self._load_dimension(namespace)
        if existing is None:
            await self._create_namespace(namespace, dimension)
            logger.info(f"Created namespace {namespace} ({dimension} dimensions)")
        elif existing != dimension:
            raise StoreError(
                f"Namespace {namespace} holds {existing}-dimensional vectors, not {dimension}",
                operation="ensure_namespace",
                details={"namespace": namespace, "expected": existing, "received": dimension},
            )
        self._dimensions[namespace] = dimension

    def dimension_of(self, namespace: str) -> Optional[int]:
        return self._dimensions.get(namespace)

    async def upsert(self, namespace: str, records: List[VectorRecord]) -> None:
        """
        Insert or overwrite records keyed by chunk id.

        Raises:
            StoreError: If the namespace is undeclared, a vector has the wrong
                dimension, or the backend fails. Nothing is written in the
                first two cases.
        """
        if not records:
            return
        dimension = self._dimensions.get(namespace)
        if dimension is None:
            dimension = await self._load_dimension(namespace)
            if dimension is None:
                raise StoreError(f"Unknown namespace: {namespace}", operation="upsert")
            self._dimensions[namespace] = dimension

        for record in records:
            if len(record.vector) != dimension:
                raise StoreError(
                    f"Vector for {record.chunk_id} has {len(record.vector)} dimensions, "
                    f"namespace {namespace} expects {dimension}",
                    operation="upsert",
                    details={"namespace": namespace},
                )
        await self._write(namespace, records)

    @abstractmethod
    async def search(self, namespace: str, vector: List[float], top_k: int) -> List[ScoredChunk]:
        """Return the ``top_k`` most similar records, best first."""

    @abstractmethod
    async def count(self, namespace: str) -> int:
        """Number of records in ``namespace``."""

    @abstractmethod
    async def clear(self, namespace: str) -> None:
        """Delete every record of ``namespace``."""

    @abstractmethod
    async def _load_dimension(self, namespace: str) -> Optional[int]:
        """Declared dimension of ``namespace`` or None if it does not exist."""

    @abstractmethod
    async def _create_namespace(self, namespace: str, dimension: int) -> None:
        """Persist the declaration of a new namespace."""

    @abstractmethod
    async def _write(self, namespace: str, records: List[VectorRecord]) -> None:
        """Persist validated records."""


class InMemoryVectorStore(VectorStore):
    """Process-local store using cosine similarity; for tests and small corpora."""

    def __init__(self) -> None:
        super().__init__()
        self._declared: Dict[str, int] = {}
        self._records: Dict[str, Dict[str, VectorRecord]] = {}

    async def _load_dimension(self, namespace: str) -> Optional[int]:
        return self._declared.get(namespace)

    async def _create_namespace(self, namespace: str, dimension: int) -> None:
        self._declared[namespace] = dimension
        self._records.setdefault(namespace, {})

    async def _write(self, namespace: str, records: List[VectorRecord]) -> None:
        rows = self._records.setdefault(namespace, {})
        for record in records:
            rows[record.chunk_id] = record

    async def search(self, namespace: str, vector: List[float], top_k: int) -> List[ScoredChunk]:
        if top_k <= 0:
            raise ValueError("top_k must be positive")
        rows = list(self._records.get(namespace, {}).values())
        if not rows:
            return []

        matrix = np.array([r.vector for r in rows], dtype=float)
        query = np.array(vector, dtype=float)
        if matrix.shape[1] != query.shape[0]:
            raise StoreError(
                f"Query vector has {query.shape[0]} dimensions, namespace {namespace} expects {matrix.shape[1]}",
                operation="search",
            )

        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(query)
        norms[norms == 0] = 1.0
        scores = matrix @ query / norms

        order = np.argsort(-scores)[:top_k]
        return [
            ScoredChunk(chunk_id=rows[i].chunk_id, metadata=dict(rows[i].metadata), score=float(scores[i]))
            for i in order
        ]

    async def count(self, namespace: str) -> int:
        return len(self._records.get(namespace, {}))

    async def clear(self, namespace: str) -> None:
        self._records[namespace] = {}

    def ids(self, namespace: str) -> List[str]:
        return sorted(self._records.get(namespace, {}))


class SupabaseVectorStore(VectorStore):
    """Store chunk embeddings and enable similarity search using Supabase pgvector.

    Expected schema::

        CREATE TABLE vector_namespaces (
          namespace text PRIMARY KEY,
          dimension int NOT NULL
        );
        CREATE TABLE document_chunks (
          namespace text NOT NULL,
          chunk_id text NOT NULL,
          metadata jsonb NOT NULL,
          embedding vector NOT NULL,
          PRIMARY KEY (namespace, chunk_id)
        );

    and an RPC ``match_chunks(query_embedding vector, match_namespace text,
    match_count int)`` returning ``chunk_id, metadata, similarity`` ordered by
    ``1 - (embedding <=> query_embedding)`` descending.
    """

    def __init__(
        self,
        supabase_url: Optional[str],
        supabase_key: Optional[str],
        table_name: str = "document_chunks",
        namespace_table: str = "vector_namespaces",
        client: Optional[Client] = None,
    ):
        """
        Initialize the vector store with Supabase client.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key
            table_name: Name of the table to store chunks
            namespace_table: Name of the table declaring namespaces
            client: Pre-built client (overrides url/key)

        Raises:
            ValueError: If Supabase credentials are missing
        """
        super().__init__()
        if client is None:
            if not supabase_url or not supabase_key:
                raise ValueError("SUPABASE_URL and SUPABASE_KEY environment variables are required")
            client = create_client(supabase_url, supabase_key)

        self.client: Client = client
        self.table_name = table_name
        self.namespace_table = namespace_table

        logger.info(f"Initialized VectorStore with table: {table_name}")

    async def _execute(self, operation: str, build):
        try:
            return await asyncio.to_thread(lambda: build().execute())
        except Exception as e:
            error_msg = f"Vector store {operation} failed: {str(e)}"
            logger.error(error_msg)
            raise StoreError(error_msg, operation=operation) from e

    async def _load_dimension(self, namespace: str) -> Optional[int]:
        response = await self._execute(
            "load_namespace",
            lambda: self.client.table(self.namespace_table).select("dimension").eq("namespace", namespace).limit(1),
        )
        if not response.data:
            return None
        return int(response.data[0]["dimension"])

    async def _create_namespace(self, namespace: str, dimension: int) -> None:
        await self._execute(
            "create_namespace",
            lambda: self.client.table(self.namespace_table).insert({"namespace": namespace, "dimension": dimension}),
        )

    async def _write(self, namespace: str, records: List[VectorRecord]) -> None:
        rows = [
            {
                "namespace": namespace,
                "chunk_id": record.chunk_id,
                "metadata": record.metadata,
                "embedding": record.vector,
            }
            for record in records
        ]
        # Upsert keeps re-insertion of the same chunk id idempotent
        await self._execute(
            "upsert",
            lambda: self.client.table(self.table_name).upsert(rows, on_conflict="namespace,chunk_id"),
        )
        logger.info(f"Successfully upserted {len(rows)} chunks into {namespace}")

    async def search(self, namespace: str, vector: List[float], top_k: int) -> List[ScoredChunk]:
        if not vector:
            raise ValueError("Query embedding cannot be empty")
        if top_k <= 0:
            raise ValueError("top_k must be positive")

        response = await self._execute(
            "search",
            lambda: self.client.rpc(
                "match_chunks",
                {
                    "query_embedding": vector,
                    "match_namespace": namespace,
                    "match_count": top_k,
                },
            ),
        )

        scored_chunks = [
            ScoredChunk(
                chunk_id=row["chunk_id"],
                metadata=row.get("metadata") or {},
                score=float(row["similarity"]),
            )
            for row in response.data
        ]
        logger.debug(f"Found {len(scored_chunks)} chunks for query in {namespace}")
        return scored_chunks

    async def count(self, namespace: str) -> int:
        response = await self._execute(
            "count",
            lambda: self.client.table(self.table_name).select("chunk_id", count="exact").eq("namespace", namespace),
        )
        return response.count if response.count is not None else 0

    async def clear(self, namespace: str) -> None:
        await self._execute(
            "clear",
            lambda: self.client.table(self.table_name).delete().eq("namespace", namespace),
        )
        logger.info(f"Cleared all chunks from namespace {namespace}")


class StoreWriter(Sink):
    """Upserts embedded chunks into a namespace, one batch per call."""

    name = "store"

    def __init__(self, store: VectorStore, namespace: str, dimension: int, batch_size: int = 50):
        self.vector_store = store
        self.namespace = namespace
        self.dimension = dimension
        self.batch_size = batch_size

    async def setup(self) -> None:
        await self.vector_store.ensure_namespace(self.namespace, self.dimension)

    async def store(self, units: List[Unit]) -> None:
        records = []
        for unit in units:
            if unit.embedding is None:
                raise StoreError(f"Chunk {unit.unit_id} has no embedding", operation="upsert")
            records.append(VectorRecord(unit.unit_id, unit.embedding, unit.as_record_metadata()))
        await self.vector_store.upsert(self.namespace, records)
        logger.debug(f"Stored batch of {len(records)} chunks in {self.namespace}")
