"""Tests for CacheService and the cache-aside helper."""

import json

import pytest
import redis

from gatekeeper.core.exceptions import CacheUnavailableError
from gatekeeper.services.cache_service import (
    CacheService,
    cache_aside,
    deserialize_cache_value,
    serialize_cache_value,
)
from tests.conftest import FakeRedis, broken_redis_client


class TestLifecycle:
    """connect / disconnect / health."""

    def test_connect_builds_client_from_url(self, monkeypatch):
        fake = FakeRedis()
        calls = []

        def from_url(url, **kwargs):
            calls.append((url, kwargs))
            return fake

        monkeypatch.setattr(redis, "from_url", from_url)
        service = CacheService(url="redis://cache:6379/2", socket_timeout=0.25)

        assert service.connect() is True
        assert service.connected
        assert calls[0][0] == "redis://cache:6379/2"
        assert calls[0][1]["socket_timeout"] == 0.25
        assert calls[0][1]["decode_responses"] is True

    def test_disconnect_closes_client(self):
        fake = FakeRedis()
        service = CacheService(client=fake)
        service.disconnect()
        assert fake.closed
        assert not service.connected
        service.disconnect()

    def test_client_requires_connect(self):
        service = CacheService()
        with pytest.raises(CacheUnavailableError):
            service.client

    def test_health_check(self):
        assert CacheService(client=FakeRedis()).health_check() is True
        assert CacheService().health_check() is False
        assert CacheService(client=broken_redis_client()).health_check() is False


class TestReadsAndWrites:
    """Key/value operations against a working client."""

    def test_set_and_get_json(self, cache, fake_redis):
        cache.set_json("k", {"a": 1}, ttl_seconds=30)
        assert cache.get_json("k") == {"a": 1}
        assert fake_redis.ttls["k"] == 30

    def test_set_without_ttl(self, cache, fake_redis):
        cache.set("plain", "v", ttl_seconds=0)
        assert cache.get("plain") == "v"
        assert "plain" not in fake_redis.ttls

    def test_non_json_entry_is_a_miss(self, cache):
        cache.set("bad", "{not json")
        assert cache.get_json("bad") is None

    def test_delete(self, cache):
        cache.set("k", "v")
        assert cache.delete("k") is True
        assert cache.get("k") is None

    def test_replace_set(self, cache, fake_redis):
        fake_redis.sadd("holders", "stale")
        assert cache.replace_set("holders", ["u1", "u2", "u1"], ttl_seconds=60) == 2
        assert fake_redis.smembers("holders") == {"u1", "u2"}
        assert fake_redis.ttls["holders"] == 60

    def test_replace_set_with_no_members_clears_key(self, cache, fake_redis):
        fake_redis.sadd("holders", "u1")
        assert cache.replace_set("holders", []) == 0
        assert not fake_redis.exists("holders")

    def test_is_member(self, cache):
        assert cache.is_member("holders", "u1") is None
        cache.replace_set("holders", ["u1"])
        assert cache.is_member("holders", "u1") is True
        assert cache.is_member("holders", "u2") is False


class TestDegradedCache:
    """A failing client never raises from reads or best-effort writes."""

    @pytest.mark.parametrize("error", [redis.ConnectionError, redis.TimeoutError])
    def test_reads_are_misses(self, error):
        service = CacheService(client=broken_redis_client(error))
        assert service.get("k") is None
        assert service.get_json("k") is None
        assert service.is_member("holders", "u1") is None

    def test_best_effort_writes(self, broken_cache):
        broken_cache.set("k", "v")
        broken_cache.set_json("k", [1])
        assert broken_cache.delete("k") is False

    def test_replace_set_raises(self, broken_cache):
        with pytest.raises(CacheUnavailableError):
            broken_cache.replace_set("holders", ["u1"])

    def test_disconnected_reads_are_misses(self):
        service = CacheService()
        assert service.get("k") is None
        assert service.is_member("holders", "u1") is None


class TestCacheAside:
    """cache_aside(cache, key_builder, ttl)."""

    def test_miss_then_hit(self, cache, fake_redis):
        calls = []

        def lookup(user_id):
            calls.append(user_id)
            return {"id": user_id}

        cached = cache_aside(cache, lambda user_id: f"user:{user_id}", 120)(lookup)
        assert cached("u1") == {"id": "u1"}
        assert cached("u1") == {"id": "u1"}
        assert calls == ["u1"]
        assert fake_redis.ttls["user:u1"] == 120

    def test_none_is_not_cached(self, cache):
        calls = []

        def lookup(key):
            calls.append(key)
            return None

        cached = cache_aside(cache, lambda key: f"x:{key}")(lookup)
        assert cached("a") is None
        assert cached("a") is None
        assert len(calls) == 2

    def test_sets_round_trip(self, cache, fake_redis):
        cached = cache_aside(cache, lambda u: f"roles:{u}")(lambda u: {"channel:1:read", "global:admin"})
        assert cached("u1") == {"channel:1:read", "global:admin"}
        stored = json.loads(fake_redis.get("roles:u1"))
        assert stored["__cacheType"] == "set"
        assert cached("u1") == {"channel:1:read", "global:admin"}

    def test_broken_cache_calls_through(self, broken_cache):
        cached = cache_aside(broken_cache, lambda u: f"roles:{u}")(lambda u: {"a:b"})
        assert cached("u1") == {"a:b"}

    def test_preserves_function_name(self, cache):
        def get_role_id(role_key):
            return 1

        assert cache_aside(cache, str)(get_role_id).__name__ == "get_role_id"

    def test_serialize_passthrough(self):
        assert serialize_cache_value([1, 2]) == [1, 2]
        assert deserialize_cache_value({"a": 1}) == {"a": 1}
        assert deserialize_cache_value(serialize_cache_value(set())) == set()
