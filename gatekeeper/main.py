"""Gatekeeper application entry point: logging setup and component wiring."""

import logging
from typing import Optional

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from gatekeeper.core.config import Settings, settings as default_settings
from gatekeeper.core.exceptions import InfrastructureError
from gatekeeper.db.base import Base
from gatekeeper.db.session import make_engine, make_session_factory
from gatekeeper.permissions.implication import ImplicationEngine
from gatekeeper.services.cache_service import CacheService
from gatekeeper.services.invite_code_service import InviteCodeService
from gatekeeper.services.invite_code_store import InviteCodeStore
from gatekeeper.services.permission_cache import PermissionCache
from gatekeeper.services.policy_engine import PolicyEngine
from gatekeeper.services.role_store import RoleStore

logger = logging.getLogger("gatekeeper")


def configure_logging(config: Optional[Settings] = None) -> None:
    config = config or default_settings
    level = config.LOG_LEVEL or ("DEBUG" if config.DEBUG else "INFO")
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


class Gatekeeper:
    """Owns the engine, the Redis client and the services built on them.

    Usage::

        with Gatekeeper() as gk:
            gk.policy_engine.validate("user-1", "channel:7:read")
    """

    def __init__(
        self,
        config: Optional[Settings] = None,
        engine: Optional[Engine] = None,
        cache: Optional[CacheService] = None,
    ):
        self.config = config or default_settings
        self.engine = engine or make_engine(self.config.DATABASE_URL, echo=self.config.DEBUG)
        self.session_factory = make_session_factory(self.engine)
        self.cache = cache or CacheService(
            self.config.REDIS_URL, socket_timeout=self.config.REDIS_SOCKET_TIMEOUT
        )

        self.role_store = RoleStore(self.session_factory)
        self.invite_store = InviteCodeStore(self.session_factory)
        self.permission_cache = PermissionCache(
            self.cache,
            self.role_store,
            concurrency=self.config.CACHE_POPULATE_CONCURRENCY,
            ttl_seconds=self.config.PERMISSION_CACHE_TTL_SECONDS,
        )
        self.policy_engine = PolicyEngine(
            self.role_store,
            self.permission_cache,
            self.cache,
            implication=ImplicationEngine(),
            use_hierarchy=self.config.POLICY_USE_HIERARCHY,
            role_id_ttl_seconds=self.config.ROLE_ID_CACHE_TTL_SECONDS,
            user_roles_ttl_seconds=self.config.USER_ROLES_CACHE_TTL_SECONDS,
        )
        self.invite_service = InviteCodeService(
            self.invite_store,
            self.policy_engine,
            max_attempts=self.config.INVITE_CODE_MAX_ATTEMPTS,
            default_expiration_hours=self.config.INVITE_CODE_EXPIRATION_HOURS,
        )

    def create_tables(self) -> None:
        Base.metadata.create_all(bind=self.engine)

    def drop_tables(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    def database_ok(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as exc:
            logger.error("Database health check failed: %s", exc)
            return False

    def start(self, warm_cache: Optional[bool] = None) -> "Gatekeeper":
        """Connect the cache, log dependency health and optionally warm the cache."""
        logger.info("Starting %s", self.config.APP_NAME)

        if self.database_ok():
            logger.info("Role store connected")
        else:
            logger.warning("Role store not available")

        if self.cache.connect():
            logger.info("Redis connected")
        else:
            logger.warning("Redis not available, permission checks will use the role store")

        if warm_cache is None:
            warm_cache = self.config.CACHE_WARM_ON_STARTUP
        if warm_cache:
            try:
                self.policy_engine.populate_cache()
            except InfrastructureError as exc:
                logger.error("Failed to warm permission cache: %s", exc.message)
        return self

    def stop(self) -> None:
        logger.info("Shutting down %s", self.config.APP_NAME)
        self.cache.disconnect()
        self.engine.dispose()

    def __enter__(self) -> "Gatekeeper":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()
