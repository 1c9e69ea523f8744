"""Tests for fingerprint caches and the cache filter."""
import asyncio

import pytest
from unittest.mock import MagicMock, patch

from conftest import make_unit
from ragask.errors import CacheError
from ragask.services.cache import CacheFilter, FingerprintCache, InMemoryFingerprintCache, SupabaseFingerprintCache


class BrokenCache(FingerprintCache):
    """Backend that is always unreachable."""

    def __init__(self):
        self.commit_calls = 0

    async def exists(self, namespace, fingerprint):
        raise CacheError("connection refused")

    async def commit(self, namespace, fingerprint):
        self.commit_calls += 1
        raise CacheError("connection refused")


class TestInMemoryFingerprintCache:
    """Tests for InMemoryFingerprintCache."""

    def test_commit_then_exists(self):
        async def scenario():
            cache = InMemoryFingerprintCache()
            assert not await cache.exists("ns", "abc")
            await cache.commit("ns", "abc")
            return await cache.exists("ns", "abc"), await cache.exists("other", "abc")

        assert asyncio.run(scenario()) == (True, False)

    def test_clear_only_affects_namespace(self):
        async def scenario():
            cache = InMemoryFingerprintCache()
            await cache.commit("ns", "abc")
            await cache.commit("other", "abc")
            await cache.clear("ns")
            return await cache.exists("ns", "abc"), await cache.exists("other", "abc")

        assert asyncio.run(scenario()) == (False, True)


class TestCacheFilter:
    """Tests for CacheFilter."""

    def test_unseen_unit_is_kept_and_committed_after_persist(self):
        async def scenario():
            cache = InMemoryFingerprintCache()
            cache_filter = CacheFilter(cache, "ns")
            unit = make_unit("content", "a.md")

            kept = await cache_filter.transform(unit)
            before = await cache.exists("ns", unit.fingerprint)
            await cache_filter.on_persisted(unit)
            after = await cache.exists("ns", unit.fingerprint)
            return kept, before, after

        kept, before, after = asyncio.run(scenario())
        assert len(kept) == 1
        assert before is False
        assert after is True

    def test_cached_unit_is_dropped(self):
        async def scenario():
            cache = InMemoryFingerprintCache()
            unit = make_unit("content", "a.md")
            await cache.commit("ns", unit.fingerprint)
            return await CacheFilter(cache, "ns").transform(unit)

        assert asyncio.run(scenario()) == []

    def test_untagged_origin_is_not_committed(self):
        async def scenario():
            cache = InMemoryFingerprintCache()
            unit = make_unit("content", "a.md")
            await CacheFilter(cache, "ns").on_persisted(unit)
            return await cache.exists("ns", unit.fingerprint)

        assert asyncio.run(scenario()) is False

    def test_fail_open_on_lookup_and_commit(self):
        async def scenario():
            cache = BrokenCache()
            cache_filter = CacheFilter(cache, "ns")
            unit = make_unit("content", "a.md")
            kept = await cache_filter.transform(unit)
            await cache_filter.on_persisted(unit)
            return kept, cache.commit_calls

        kept, commit_calls = asyncio.run(scenario())
        assert len(kept) == 1
        assert commit_calls == 1


class TestSupabaseFingerprintCache:
    """Tests for SupabaseFingerprintCache with a mocked client."""

    def test_initialization_without_credentials(self):
        with pytest.raises(ValueError, match="SUPABASE_URL and SUPABASE_KEY"):
            SupabaseFingerprintCache(supabase_url=None, supabase_key="key")

    @patch('ragask.services.cache.create_client')
    def test_exists_queries_namespace_and_fingerprint(self, mock_create_client):
        mock_client = MagicMock()
        query = mock_client.table.return_value.select.return_value.eq.return_value.eq.return_value.limit.return_value
        query.execute.return_value = MagicMock(data=[{"fingerprint": "abc"}])
        mock_create_client.return_value = mock_client

        cache = SupabaseFingerprintCache("https://test.supabase.co", "test_key")

        assert asyncio.run(cache.exists("ns", "abc")) is True
        mock_client.table.assert_called_with("indexed_fingerprints")

    def test_backend_failure_raises_cache_error(self):
        mock_client = MagicMock()
        mock_client.table.side_effect = Exception("connection refused")

        cache = SupabaseFingerprintCache(None, None, client=mock_client)

        with pytest.raises(CacheError):
            asyncio.run(cache.exists("ns", "abc"))
        with pytest.raises(CacheError):
            asyncio.run(cache.commit("ns", "abc"))
