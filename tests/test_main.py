"""Tests for application wiring, lifecycle and seeds."""

import logging

from gatekeeper.db.seeds.seed_roles import default_role_keys, seed_roles
from gatekeeper.db.seeds.seed_super_admin import seed_super_admin
from gatekeeper.main import Gatekeeper
from gatekeeper.services.cache_service import CacheService
from tests.conftest import broken_redis_client


class TestGatekeeper:
    """start / stop and the context manager."""

    def test_context_manager_connects_and_disconnects(self, engine, fake_redis):
        cache = CacheService(client=fake_redis)
        with Gatekeeper(engine=engine, cache=cache) as gk:
            assert gk.cache.connected
            assert gk.database_ok()
        assert not cache.connected
        assert fake_redis.closed

    def test_start_warms_cache(self, engine, fake_redis, session_factory):
        db = session_factory()
        seed_roles(db)
        seed_super_admin(db)
        db.close()

        gk = Gatekeeper(engine=engine, cache=CacheService(client=fake_redis))
        gk.start(warm_cache=True)
        try:
            assert fake_redis.smembers("role:global:admin:users") == {"super-admin"}
        finally:
            gk.stop()

    def test_start_with_cache_down(self, engine, caplog):
        gk = Gatekeeper(engine=engine, cache=CacheService(client=broken_redis_client()))
        with caplog.at_level(logging.WARNING, logger="gatekeeper"):
            gk.start(warm_cache=True)
        assert "Redis not available" in caplog.text
        gk.stop()

    def test_services_share_one_cache(self, engine, fake_redis):
        gk = Gatekeeper(engine=engine, cache=CacheService(client=fake_redis))
        assert gk.policy_engine.cache is gk.cache
        assert gk.permission_cache.cache is gk.cache
        assert gk.invite_service.policy_engine is gk.policy_engine


class TestSeeds:
    """Default roles and the super admin."""

    def test_default_roles_skip_channels(self):
        keys = {str(k) for k in default_role_keys()}
        assert "global:admin" in keys
        assert "broadcast:create" in keys
        assert not any(k.startswith("channel:") for k in keys)

    def test_seed_roles_idempotent(self, session_factory, role_store):
        with session_factory() as db:
            added = seed_roles(db)
            assert added == len(default_role_keys())
            assert seed_roles(db) == 0
        assert len(role_store.get_roles()) == added

    def test_super_admin_needs_roles(self, session_factory):
        with session_factory() as db:
            assert seed_super_admin(db) is None

    def test_super_admin(self, session_factory, role_store, policy_engine):
        with session_factory() as db:
            seed_roles(db)
            admin = seed_super_admin(db, identity="root", email="Root@Example.com")
            seed_super_admin(db, identity="root")
        assert admin.id == "root"
        assert role_store.get_user_by_email("root@example.com").id == "root"
        assert policy_engine.validate("root", "channel:1:admin") is True
