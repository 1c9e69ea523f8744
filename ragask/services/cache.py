"""
Fingerprint cache and the cache filter stage.

A fingerprint record says "content with this hash is fully indexed in this
namespace". Records are only written from ``CacheFilter.on_persisted``, i.e.
after every chunk derived from the content has been stored.

Backend failures are handled fail-open: lookups that raise ``CacheError``
are treated as misses (the unit is reprocessed) and failed commits are only
logged. Re-running an index therefore never aborts because the cache is down;
it just costs extra generation and embedding calls.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional, Set, Tuple

from supabase import Client, create_client

from ragask.errors import CacheError
from ragask.models.unit import Unit
from ragask.services.pipeline import Filter

logger = logging.getLogger(__name__)


class FingerprintCache(ABC):
    """Narrow contract of a fingerprint store."""

    @abstractmethod
    async def exists(self, namespace: str, fingerprint: str) -> bool:
        """Whether ``fingerprint`` is indexed in ``namespace``. Raises CacheError."""

    @abstractmethod
    async def commit(self, namespace: str, fingerprint: str) -> None:
        """Mark ``fingerprint`` as indexed in ``namespace``. Raises CacheError."""

    async def clear(self, namespace: str) -> None:
        """Forget every record of ``namespace``."""


class InMemoryFingerprintCache(FingerprintCache):
    """Process-local cache, used for tests and one-shot runs."""

    def __init__(self) -> None:
        self._records: Set[Tuple[str, str]] = set()

    async def exists(self, namespace: str, fingerprint: str) -> bool:
        return (namespace, fingerprint) in self._records

    async def commit(self, namespace: str, fingerprint: str) -> None:
        self._records.add((namespace, fingerprint))

    async def clear(self, namespace: str) -> None:
        self._records = {r for r in self._records if r[0] != namespace}


class SupabaseFingerprintCache(FingerprintCache):
    """Fingerprint records in a Supabase table.

    Expected table::

        CREATE TABLE indexed_fingerprints (
          namespace text NOT NULL,
          fingerprint text NOT NULL,
          indexed_at timestamptz DEFAULT now(),
          PRIMARY KEY (namespace, fingerprint)
        );
    """

    def __init__(
        self,
        supabase_url: Optional[str],
        supabase_key: Optional[str],
        table_name: str = "indexed_fingerprints",
        client: Optional[Client] = None,
    ):
        """
        Initialize the cache with a Supabase client.

        Args:
            supabase_url: Supabase project URL
            supabase_key: Supabase API key
            table_name: Name of the fingerprint table
            client: Pre-built client (overrides url/key)

        Raises:
            ValueError: If Supabase credentials are missing
        """
        if client is None:
            if not supabase_url or not supabase_key:
                raise ValueError("SUPABASE_URL and SUPABASE_KEY are required for the fingerprint cache")
            client = create_client(supabase_url, supabase_key)

        self.client: Client = client
        self.table_name = table_name
        logger.info(f"Initialized SupabaseFingerprintCache with table: {table_name}")

    async def exists(self, namespace: str, fingerprint: str) -> bool:
        def _lookup():
            return (
                self.client.table(self.table_name)
                .select("fingerprint")
                .eq("namespace", namespace)
                .eq("fingerprint", fingerprint)
                .limit(1)
                .execute()
            )

        try:
            response = await asyncio.to_thread(_lookup)
        except Exception as e:
            raise CacheError(f"Fingerprint lookup failed: {str(e)}", {"namespace": namespace}) from e
        return bool(response.data)

    async def commit(self, namespace: str, fingerprint: str) -> None:
        def _upsert():
            return (
                self.client.table(self.table_name)
                .upsert({"namespace": namespace, "fingerprint": fingerprint})
                .execute()
            )

        try:
            await asyncio.to_thread(_upsert)
        except Exception as e:
            raise CacheError(f"Fingerprint commit failed: {str(e)}", {"namespace": namespace}) from e

    async def clear(self, namespace: str) -> None:
        def _delete():
            return self.client.table(self.table_name).delete().eq("namespace", namespace).execute()

        try:
            await asyncio.to_thread(_delete)
            logger.info(f"Cleared fingerprint records for namespace {namespace}")
        except Exception as e:
            raise CacheError(f"Failed to clear fingerprint cache: {str(e)}", {"namespace": namespace}) from e


class CacheFilter(Filter):
    """Drops units whose content is already indexed in the namespace."""

    name = "cache_filter"

    def __init__(self, cache: FingerprintCache, namespace: str):
        self.cache = cache
        self.namespace = namespace
        # Origins that passed the filter and await a commit
        self._tagged: Set[str] = set()

    async def keep(self, unit: Unit) -> bool:
        try:
            if await self.cache.exists(self.namespace, unit.lineage_fingerprint):
                logger.debug(f"Skipping cached unit {unit.path}")
                return False
        except CacheError as e:
            logger.warning(f"Cache unavailable, reprocessing {unit.path}: {e}")
        self._tagged.add(unit.origin_id)
        return True

    async def on_persisted(self, origin: Unit) -> None:
        if origin.origin_id not in self._tagged:
            return
        self._tagged.discard(origin.origin_id)
        try:
            await self.cache.commit(self.namespace, origin.lineage_fingerprint)
            logger.debug(f"Committed fingerprint for {origin.path}")
        except CacheError as e:
            logger.warning(f"Could not commit fingerprint for {origin.path}: {e}")
