"""Permission cache: role key -> set of identities holding it, kept in Redis."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Iterable, Optional

from gatekeeper.core.config import settings
from gatekeeper.core.exceptions import GatekeeperError
from gatekeeper.permissions.role_key import RoleKeyLike
from gatekeeper.services.cache_service import CacheService
from gatekeeper.services.role_store import RoleStore

logger = logging.getLogger("gatekeeper")


def holders_key(role_key: RoleKeyLike) -> str:
    return f"role:{role_key}:users"


class PermissionCache:
    """Holder sets for role keys, populated from the role store.

    A holder set is always rebuilt from the store rather than appended to, so
    a cached set never claims more than the store did when it was written.
    """

    def __init__(
        self,
        cache: CacheService,
        role_store: RoleStore,
        concurrency: Optional[int] = None,
        ttl_seconds: Optional[int] = None,
    ):
        self.cache = cache
        self.role_store = role_store
        self.concurrency = max(1, concurrency or settings.CACHE_POPULATE_CONCURRENCY)
        self.ttl_seconds = ttl_seconds or settings.PERMISSION_CACHE_TTL_SECONDS

    holders_key = staticmethod(holders_key)

    def refresh(self, role_key: RoleKeyLike, ttl_seconds: Optional[int] = None) -> bool:
        """Rebuild one holder set. Returns whether the key now holds members.

        Raises ``StoreUnavailableError`` or ``CacheUnavailableError``.
        """
        role_key = str(role_key)
        holders = self.role_store.get_user_ids_for_role(role_key)
        written = self.cache.replace_set(
            holders_key(role_key), holders, ttl_seconds or self.ttl_seconds
        )
        if written:
            logger.debug("Cached %s holders for %s", written, role_key)
        else:
            logger.debug("No holders for %s; cache key cleared", role_key)
        return written > 0

    def populate(self, role_keys: Iterable[RoleKeyLike], ttl_seconds: Optional[int] = None) -> int:
        """Warm holder sets for ``role_keys`` with bounded parallelism.

        A failure for one key is logged and does not stop the others. Returns
        the number of keys cached with at least one holder.
        """
        role_keys = [str(k) for k in role_keys]
        if not role_keys:
            return 0

        cached = 0
        failed = 0
        with ThreadPoolExecutor(max_workers=self.concurrency) as pool:
            futures = {
                pool.submit(self.refresh, role_key, ttl_seconds): role_key
                for role_key in role_keys
            }
            for future in as_completed(futures):
                role_key = futures[future]
                try:
                    if future.result():
                        cached += 1
                except GatekeeperError as exc:
                    failed += 1
                    logger.warning("Failed to populate cache for %s: %s", role_key, exc.message)

        logger.info(
            "Permission cache populated: %s/%s role keys cached, %s failed",
            cached, len(role_keys), failed,
        )
        return cached

    def is_member(self, role_key: RoleKeyLike, identity: str) -> Optional[bool]:
        """True/False when the holder set is cached, None when unknown."""
        return self.cache.is_member(holders_key(role_key), identity)

    def invalidate(self, role_key: RoleKeyLike) -> bool:
        return self.cache.delete(holders_key(role_key))
