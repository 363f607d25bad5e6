"""
Result Cache Tests.
"""

from datetime import datetime, timezone

import pytest

from riskgate.exceptions import CacheUnavailableError
from riskgate.schemas.decision import Decision, DecisionStatus
from riskgate.services.cache import InMemoryResultCache, RedisResultCache


def _decision(key: str = "idem-1", score: float = 12.0) -> Decision:
    return Decision(
        decision_id=f"dec_{key}",
        idempotency_key=key,
        subject_id="subject-1",
        jurisdiction="US",
        status=DecisionStatus.APPROVED,
        score=score,
        reasoning="test",
        policy_version="1",
        timestamp=datetime(2026, 3, 2, tzinfo=timezone.utc),
    )


class _FakeRedis:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.store: dict[str, str] = {}
        self.expiries: dict[str, int] = {}

    async def get(self, key):
        if self.fail:
            raise ConnectionError("redis down")
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self.fail:
            raise ConnectionError("redis down")
        self.store[key] = value
        self.expiries[key] = ex


class TestInMemoryResultCache:

    @pytest.fixture
    def cache(self, clock):
        return InMemoryResultCache(default_ttl=60, max_ttl=300, max_entries=3, clock=clock)

    @pytest.mark.asyncio
    async def test_miss_then_hit(self, cache):
        assert await cache.get("idem-1") is None
        await cache.put("idem-1", _decision())
        assert await cache.get("idem-1") == _decision()

    @pytest.mark.asyncio
    async def test_lazy_expiry(self, cache, clock):
        await cache.put("idem-1", _decision())
        clock.advance(59)
        assert await cache.get("idem-1") is not None
        clock.advance(1)
        assert await cache.get("idem-1") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_ttl_clamped_to_max(self, cache, clock):
        await cache.put("idem-1", _decision(), ttl=10_000)
        clock.advance(300)
        assert await cache.get("idem-1") is None

    @pytest.mark.asyncio
    async def test_evicts_earliest_expiry_only_when_full(self, cache):
        await cache.put("a", _decision("a"), ttl=100)
        await cache.put("b", _decision("b"), ttl=10)
        await cache.put("c", _decision("c"), ttl=200)
        assert len(cache) == 3

        await cache.put("d", _decision("d"), ttl=50)
        assert len(cache) == 3
        assert await cache.get("b") is None
        assert await cache.get("a") is not None

    @pytest.mark.asyncio
    async def test_overwrite_does_not_evict(self, cache):
        for key in ("a", "b", "c"):
            await cache.put(key, _decision(key))
        await cache.put("a", _decision("a", score=99))
        assert len(cache) == 3
        assert (await cache.get("a")).score == 99


class TestRedisResultCache:

    @pytest.mark.asyncio
    async def test_json_round_trip_with_clamped_ttl(self):
        client = _FakeRedis()
        cache = RedisResultCache(default_ttl=60, max_ttl=120, client=client)
        await cache.put("idem-1", _decision(), ttl=1_000)
        assert client.expiries["riskgate:decision:idem-1"] == 120
        assert await cache.get("idem-1") == _decision()

    @pytest.mark.asyncio
    async def test_connection_errors_raise_cache_unavailable(self):
        cache = RedisResultCache(client=_FakeRedis(fail=True))
        with pytest.raises(CacheUnavailableError):
            await cache.get("idem-1")
        with pytest.raises(CacheUnavailableError):
            await cache.put("idem-1", _decision())

    @pytest.mark.asyncio
    async def test_corrupt_payload_raises_cache_unavailable(self):
        client = _FakeRedis()
        client.store["riskgate:decision:idem-1"] = "{not json"
        cache = RedisResultCache(client=client)
        with pytest.raises(CacheUnavailableError):
            await cache.get("idem-1")
