"""Policy engine: permission checks and grants over the role store and cache."""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Set, Tuple

from gatekeeper.core.config import settings
from gatekeeper.core.exceptions import (
    Forbidden,
    InfrastructureError,
    MalformedRoleKey,
    RoleNotFound,
    UnknownIdentity,
)
from gatekeeper.permissions.implication import ImplicationEngine
from gatekeeper.permissions.role_key import (
    ADMIN_ACTION,
    GLOBAL_ADMIN_KEY,
    RoleKey,
    RoleKeyLike,
    check_action,
)
from gatekeeper.services.cache_service import CacheService, cache_aside
from gatekeeper.services.permission_cache import PermissionCache
from gatekeeper.services.role_store import RoleStore

logger = logging.getLogger("gatekeeper")


def role_id_key(role_key: str) -> str:
    return f"role:id:{role_key}"


def user_roles_key(identity: str) -> str:
    return f"roles:{identity}"


@dataclass(frozen=True)
class GrantOutcome:
    """Result of a grant: the durable write, then the cache refresh."""
    granted: bool
    cache_refreshed: bool = False
    refresh_error: Optional[str] = None


class PolicyEngine:
    """Authorization entry point.

    ``validate`` checks the cached holder set first and falls back to the
    identity's held roles from the role store. A cache that is down or cold
    only makes a check slower, never changes its answer. Cached role sets
    may deny on their own, but an allow drawn from them is re-read from the
    role store first. Role store failures raise ``StoreUnavailableError`` and
    are never turned into a denial.
    """

    def __init__(
        self,
        role_store: RoleStore,
        permission_cache: PermissionCache,
        cache: CacheService,
        implication: Optional[ImplicationEngine] = None,
        use_hierarchy: Optional[bool] = None,
        superuser_key: str = GLOBAL_ADMIN_KEY,
        role_id_ttl_seconds: Optional[int] = None,
        user_roles_ttl_seconds: Optional[int] = None,
    ):
        self.role_store = role_store
        self.permission_cache = permission_cache
        self.cache = cache
        self.implication = implication or ImplicationEngine()
        self.use_hierarchy = (
            settings.POLICY_USE_HIERARCHY if use_hierarchy is None else use_hierarchy
        )
        self.superuser_key = superuser_key

        self._lookup_role_id = cache_aside(
            cache,
            role_id_key,
            role_id_ttl_seconds or settings.ROLE_ID_CACHE_TTL_SECONDS,
            name="get_role_id",
        )(role_store.get_role_id)
        self._lookup_roles_for_user = cache_aside(
            cache,
            user_roles_key,
            user_roles_ttl_seconds or settings.USER_ROLES_CACHE_TTL_SECONDS,
            name="get_roles_for_user",
        )(role_store.get_roles_for_user)

    # ==================== CHECKS ====================

    def validate(self, identity: str, role_key: RoleKeyLike) -> bool:
        """Return whether ``identity`` holds ``role_key``.

        Raises ``MalformedRoleKey`` for a key that does not parse.
        """
        if not role_key:
            return False
        required = RoleKey.coerce(role_key)
        logger.debug("Validate perms: %s -> %s", identity, required)

        role_id = self._lookup_role_id(required.key)
        if role_id is not None and self.permission_cache.is_member(required, identity):
            logger.debug("Permission cache hit: %s holds %s", identity, required)
            return True

        def decide(held: Set[str]) -> bool:
            if role_id is None:
                # Unprovisioned keys are only reachable through the superuser role.
                return self.superuser_key in held
            return self._held_grants(held, required)

        held = self.get_roles_for_user(identity)
        allowed = decide(held)
        if allowed:
            held, allowed = self._confirm_with_store(identity, held, decide)

        logger.debug(
            "Permission validation: identity=%s role=%s role_id=%s held=%s allowed=%s",
            identity, required, role_id, sorted(held), allowed,
        )
        return allowed

    def validate_any(self, identity: str, role_keys: Iterable[RoleKeyLike]) -> bool:
        """True if any of ``role_keys`` validates. Held roles are fetched once."""
        required = [RoleKey.coerce(k) for k in role_keys if k]
        if not required:
            return False

        provisioned: List[RoleKey] = []
        for role_key in required:
            if self._lookup_role_id(role_key.key) is None:
                continue
            if self.permission_cache.is_member(role_key, identity):
                return True
            provisioned.append(role_key)

        def decide(held: Set[str]) -> bool:
            if self.superuser_key in held:
                return True
            return any(self._held_grants(held, role_key) for role_key in provisioned)

        held = self.get_roles_for_user(identity)
        if not decide(held):
            return False
        return self._confirm_with_store(identity, held, decide)[1]

    def require(self, identity: str, *role_keys: RoleKeyLike) -> None:
        """Raise ``Forbidden`` unless ``identity`` holds one of ``role_keys``."""
        if not self.validate_any(identity, role_keys):
            logger.info("Denied %s: requires one of %s", identity, [str(k) for k in role_keys])
            raise Forbidden("Insufficient permission")

    def has_implied_role(self, identity: str, role_key: RoleKeyLike) -> bool:
        """Check ``role_key`` against the full hierarchy expansion of held roles."""
        def decide(held: Set[str]) -> bool:
            return self.implication.has_permission(self._parse_held(held), role_key)

        held = self.get_roles_for_user(identity)
        if not decide(held):
            return False
        return self._confirm_with_store(identity, held, decide)[1]

    def _confirm_with_store(
        self, identity: str, held: Set[str], decide: Callable[[Set[str]], bool]
    ) -> Tuple[Set[str], bool]:
        """Re-run an allow that rests on cached held roles against the store.

        A read that started before a revoke can write the old role set back
        after the revoke cleared it, so cached roles are trusted to deny only.
        """
        fresh = self.role_store.get_roles_for_user(identity)
        if fresh != held:
            logger.info("Cached roles for %s were stale, dropping them", identity)
            self.cache.delete(user_roles_key(identity))
        return fresh, decide(fresh)

    def _held_grants(self, held: Set[str], required: RoleKey) -> bool:
        if self.superuser_key in held:
            return True
        if self.use_hierarchy:
            return self.implication.has_permission(self._parse_held(held), required)
        return required.key in held or required.with_action(ADMIN_ACTION).key in held

    @staticmethod
    def _parse_held(held: Iterable[str]) -> List[RoleKey]:
        parsed = []
        for raw in held:
            try:
                parsed.append(RoleKey.parse(raw))
            except MalformedRoleKey as exc:
                logger.warning("Skipping stored role key: %s", exc.message)
        return parsed

    # ==================== READS ====================

    def get_roles_for_user(self, identity: str) -> Set[str]:
        return set(self._lookup_roles_for_user(identity))

    def get_all_implied_roles_for_user(self, identity: str) -> Set[RoleKey]:
        """Held roles plus everything they imply in the hierarchy."""
        held = self._parse_held(self.get_roles_for_user(identity))
        return self.implication.expand_all(held)

    def identity_exists(self, identity: str) -> bool:
        return self.role_store.check_if_user_exists(identity)

    # ==================== GRANTS ====================

    def grant(self, granter: Optional[str], grantee: str, role_key: RoleKeyLike) -> bool:
        return self.grant_with_report(granter, grantee, role_key).granted

    def grant_with_report(
        self, granter: Optional[str], grantee: str, role_key: RoleKeyLike
    ) -> GrantOutcome:
        """Grant ``role_key`` to ``grantee``.

        The grant is durable once the role store accepts it. Refreshing the
        cache afterwards is best effort and its failure is reported on the
        outcome instead of failing the grant.
        """
        required = RoleKey.coerce(role_key)
        role_id = self._lookup_role_id(required.key)
        if role_id is None:
            raise RoleNotFound(required.key)
        if not self.role_store.check_if_user_exists(grantee):
            raise UnknownIdentity(grantee)

        if not self.role_store.insert_grant(granter, grantee, role_id):
            logger.warning("Failed to assign %s to %s", required, grantee)
            return GrantOutcome(granted=False)

        refreshed, error = self._refresh_after_change(grantee, required)
        return GrantOutcome(granted=True, cache_refreshed=refreshed, refresh_error=error)

    def create_role_and_assign(
        self,
        granter: Optional[str],
        grantee: str,
        role_key: RoleKeyLike,
        description: Optional[str] = None,
    ) -> bool:
        """Provision ``role_key`` if needed, then grant it to ``grantee``."""
        required = check_action(role_key)
        role_id = self.role_store.create_role(required, description=description)
        logger.debug("Role %s provisioned as %s", required, role_id)
        return self.grant(granter, grantee, required)

    def revoke(self, revoker: Optional[str], grantee: str, role_key: RoleKeyLike) -> bool:
        """Remove a grant. Returns whether ``grantee`` held it."""
        required = RoleKey.coerce(role_key)
        role_id = self._lookup_role_id(required.key)
        if role_id is None:
            raise RoleNotFound(required.key)

        if not self.role_store.delete_grant(grantee, role_id):
            return False
        logger.info("%s revoked %s from %s", revoker, required, grantee)

        refreshed, _ = self._refresh_after_change(grantee, required)
        if not refreshed:
            # A holder set that could not be rebuilt must not outlive the grant.
            self.permission_cache.invalidate(required)
        # Drop role sets cached by reads that overlapped the delete.
        self.cache.delete(user_roles_key(grantee))
        return True

    def _refresh_after_change(self, identity: str, role_key: RoleKey):
        self.cache.delete(user_roles_key(identity))
        try:
            self.permission_cache.refresh(role_key)
        except InfrastructureError as exc:
            logger.warning("Cache refresh failed for %s: %s", role_key, exc.message)
            return False, exc.message
        return True, None

    # ==================== CACHE ====================

    def populate_cache(self, ttl_seconds: Optional[int] = None, limit: Optional[int] = None) -> int:
        """Warm holder sets for up to ``limit`` provisioned roles."""
        role_keys = self.role_store.get_roles(limit or settings.CACHE_WARM_LIMIT)
        count = self.permission_cache.populate(role_keys, ttl_seconds)
        logger.info("Cached %s role keys", count)
        return count
