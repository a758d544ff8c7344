"""
Shared pytest fixtures for the Gatekeeper test suite.

The role store runs on a file-backed SQLite database per test so that
threaded tests share one database. Redis is replaced by ``FakeRedis``, an
in-process double covering the commands the cache layer issues.
"""

import threading
import time
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
import redis

from gatekeeper.db.base import Base
from gatekeeper.db.session import make_engine, make_session_factory
from gatekeeper.permissions.role_key import GLOBAL_ADMIN, RoleKey
from gatekeeper.services.cache_service import CacheService
from gatekeeper.services.invite_code_service import InviteCodeService
from gatekeeper.services.invite_code_store import InviteCodeStore
from gatekeeper.services.permission_cache import PermissionCache
from gatekeeper.services.policy_engine import PolicyEngine
from gatekeeper.services.role_store import RoleStore

import gatekeeper.models  # noqa: F401  (register tables on Base.metadata)


# ============================================================================
# Redis test double
# ============================================================================


class FakePipeline:
    """Queues commands and applies them under the owner's lock on execute()."""

    def __init__(self, owner: "FakeRedis"):
        self._owner = owner
        self._commands = []

    def _queue(self, name, *args):
        self._commands.append((name, args))
        return self

    def delete(self, *keys):
        return self._queue("delete", *keys)

    def sadd(self, key, *members):
        return self._queue("sadd", key, *members)

    def expire(self, key, seconds):
        return self._queue("expire", key, seconds)

    def exists(self, *keys):
        return self._queue("exists", *keys)

    def sismember(self, key, member):
        return self._queue("sismember", key, member)

    def execute(self):
        with self._owner.lock:
            results = [getattr(self._owner, name)(*args) for name, args in self._commands]
        self._commands = []
        return results

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self._commands = []


class FakeRedis:
    """Strings and sets with TTLs, expired lazily against ``clock``."""

    def __init__(self, clock=time.monotonic):
        self.lock = threading.RLock()
        self.clock = clock
        self.values = {}
        self.sets = {}
        self.ttls = {}
        self.deadlines = {}
        self.closed = False

    def _purge(self, key):
        deadline = self.deadlines.get(key)
        if deadline is not None and self.clock() >= deadline:
            self.values.pop(key, None)
            self.sets.pop(key, None)
            self.ttls.pop(key, None)
            self.deadlines.pop(key, None)

    def _forget_ttl(self, key):
        self.ttls.pop(key, None)
        self.deadlines.pop(key, None)

    def ping(self):
        return True

    def close(self):
        self.closed = True

    def get(self, key):
        with self.lock:
            self._purge(key)
            return self.values.get(key)

    def set(self, key, value):
        with self.lock:
            self.sets.pop(key, None)
            self._forget_ttl(key)
            self.values[key] = str(value)
            return True

    def setex(self, key, seconds, value):
        with self.lock:
            self.set(key, value)
            self.expire(key, seconds)
            return True

    def delete(self, *keys):
        with self.lock:
            removed = 0
            for key in keys:
                self._purge(key)
                found = self.values.pop(key, None) is not None
                found = (self.sets.pop(key, None) is not None) or found
                self._forget_ttl(key)
                removed += int(found)
            return removed

    def exists(self, *keys):
        with self.lock:
            for key in keys:
                self._purge(key)
            return sum(1 for key in keys if key in self.values or key in self.sets)

    def sadd(self, key, *members):
        with self.lock:
            self._purge(key)
            bucket = self.sets.setdefault(key, set())
            before = len(bucket)
            bucket.update(str(m) for m in members)
            return len(bucket) - before

    def sismember(self, key, member):
        with self.lock:
            self._purge(key)
            return int(str(member) in self.sets.get(key, set()))

    def smembers(self, key):
        with self.lock:
            self._purge(key)
            return set(self.sets.get(key, set()))

    def expire(self, key, seconds):
        with self.lock:
            self._purge(key)
            if key not in self.values and key not in self.sets:
                return False
            self.ttls[key] = seconds
            self.deadlines[key] = self.clock() + seconds
            return True

    def pipeline(self, transaction=True):
        return FakePipeline(self)


def broken_redis_client(error=redis.ConnectionError):
    """A client whose every command fails the way an unreachable Redis does."""
    client = MagicMock()
    for name in ("get", "set", "setex", "delete", "ping", "pipeline", "close"):
        getattr(client, name).side_effect = error("Connection refused")
    return client


class FrozenClock:
    """Callable clock for services; advance() moves time forward."""

    def __init__(self, now=None):
        self.now = now or datetime.now(timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **delta):
        self.now = self.now + timedelta(**delta)
        return self.now


class ManualTimer:
    """Monotonic seconds for ``FakeRedis``; advance() lets keys expire."""

    def __init__(self):
        self.seconds = 0.0

    def __call__(self):
        return self.seconds

    def advance(self, seconds):
        self.seconds += seconds
        return self.seconds


# ============================================================================
# Storage fixtures
# ============================================================================


@pytest.fixture
def engine(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'gatekeeper.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture
def role_store(session_factory):
    return RoleStore(session_factory)


@pytest.fixture
def invite_store(session_factory):
    return InviteCodeStore(session_factory)


@pytest.fixture
def redis_timer():
    return ManualTimer()


@pytest.fixture
def fake_redis(redis_timer):
    return FakeRedis(clock=redis_timer)


@pytest.fixture
def cache(fake_redis):
    return CacheService(url="redis://fake:6379/0", client=fake_redis)


@pytest.fixture
def broken_cache():
    return CacheService(url="redis://down:6379/0", client=broken_redis_client())


@pytest.fixture
def permission_cache(cache, role_store):
    return PermissionCache(cache, role_store, concurrency=4, ttl_seconds=3600)


@pytest.fixture
def policy_engine(role_store, permission_cache, cache):
    return PolicyEngine(role_store, permission_cache, cache, use_hierarchy=False)


@pytest.fixture
def hierarchy_policy_engine(role_store, permission_cache, cache):
    return PolicyEngine(role_store, permission_cache, cache, use_hierarchy=True)


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def invite_service(invite_store, policy_engine, clock):
    return InviteCodeService(invite_store, policy_engine, clock=clock)


# ============================================================================
# Factories
# ============================================================================


@pytest.fixture
def make_user(role_store):
    def _make(identity, email=None):
        return role_store.create_user(identity, email=email)
    return _make


@pytest.fixture
def make_role(role_store):
    def _make(role_key):
        return role_store.create_role(RoleKey.coerce(role_key))
    return _make


@pytest.fixture
def give_role(role_store, make_user, make_role):
    """Create the user and role if needed and grant directly in the store."""
    def _give(identity, role_key, granter=None):
        make_user(identity)
        role_id = make_role(role_key)
        assert role_store.insert_grant(granter, identity, role_id)
        return role_id
    return _give


@pytest.fixture
def admin(give_role):
    give_role("admin-1", GLOBAL_ADMIN)
    return "admin-1"
