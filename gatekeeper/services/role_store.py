"""Role store: durable roles, users and grants backed by SQLAlchemy."""

import logging
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from gatekeeper.db.session import session_scope
from gatekeeper.models import Role, User, UserRole
from gatekeeper.permissions.role_key import RoleKey

logger = logging.getLogger("gatekeeper")


class RoleStore:
    """Lookups and grant operations against the role tables.

    Each call opens its own session so a store instance can be shared across
    threads.
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    # ==================== ROLES ====================

    def get_role_id(self, role_key: str) -> Optional[int]:
        """Return the role id for ``role_key`` or None when unprovisioned."""
        with session_scope(self._session_factory, "get_role_id") as db:
            role_id = db.execute(
                select(Role.role_id).where(Role.role_key == role_key)
            ).scalar_one_or_none()
        if role_id is None:
            logger.debug("Role %s not found", role_key)
        return role_id

    def get_role(self, role_key: str) -> Optional[Role]:
        with session_scope(self._session_factory, "get_role") as db:
            return db.execute(
                select(Role).where(Role.role_key == role_key)
            ).scalar_one_or_none()

    def get_roles(self, limit: int = 5000) -> List[str]:
        """Provisioned role keys, oldest first."""
        with session_scope(self._session_factory, "get_roles") as db:
            rows = db.execute(
                select(Role.role_key).order_by(Role.role_id).limit(limit)
            ).scalars().all()
        return list(rows)

    def create_role(
        self,
        role_key: RoleKey,
        description: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> int:
        """Provision ``role_key`` and return its id.

        Creating a role that already exists, including one inserted by a
        concurrent caller, returns the existing id.
        """
        with session_scope(self._session_factory, "create_role") as db:
            existing = db.execute(
                select(Role.role_id).where(Role.role_key == role_key.key)
            ).scalar_one_or_none()
            if existing is not None:
                return existing

            role = Role.from_role_key(role_key, description=description, metadata=metadata)
            db.add(role)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                winner = db.execute(
                    select(Role.role_id).where(Role.role_key == role_key.key)
                ).scalar_one_or_none()
                if winner is None:
                    raise
                logger.debug("Role %s was created concurrently", role_key)
                return winner

            logger.info("Created role %s (role id %s)", role_key, role.role_id)
            return role.role_id

    # ==================== USERS ====================

    def check_if_user_exists(self, identity: str) -> bool:
        with session_scope(self._session_factory, "check_if_user_exists") as db:
            count = db.execute(
                select(func.count()).select_from(User).where(User.id == identity)
            ).scalar_one()
        return count > 0

    def get_user_by_email(self, email: str) -> Optional[User]:
        with session_scope(self._session_factory, "get_user_by_email") as db:
            return db.execute(
                select(User).where(User.email == email.lower().strip())
            ).scalar_one_or_none()

    def create_user(
        self, identity: str, email: Optional[str] = None, full_name: Optional[str] = None
    ) -> User:
        """Create an identity if it does not already exist."""
        with session_scope(self._session_factory, "create_user") as db:
            user = db.get(User, identity)
            if user is not None:
                return user
            user = User(
                id=identity,
                email=email.lower().strip() if email else None,
                full_name=full_name,
            )
            db.add(user)
            db.commit()
            return user

    # ==================== GRANTS ====================

    def get_roles_for_user(self, identity: str) -> Set[str]:
        with session_scope(self._session_factory, "get_roles_for_user") as db:
            rows = db.execute(
                select(Role.role_key)
                .join(UserRole, UserRole.role_id == Role.role_id)
                .where(UserRole.user_id == identity)
                .distinct()
            ).scalars().all()
        return set(rows)

    def get_user_ids_for_role(self, role_key: str) -> List[str]:
        with session_scope(self._session_factory, "get_user_ids_for_role") as db:
            rows = db.execute(
                select(UserRole.user_id)
                .join(Role, UserRole.role_id == Role.role_id)
                .where(Role.role_key == role_key)
            ).scalars().all()
        return list(rows)

    def insert_grant(self, granter: Optional[str], grantee: str, role_id: int) -> bool:
        """Grant ``role_id`` to ``grantee``.

        Repeating a grant is a no-op that still reports success. Returns False
        when the row could not be written for any other integrity reason.
        """
        with session_scope(self._session_factory, "insert_grant") as db:
            if db.get(UserRole, (grantee, role_id)) is not None:
                return True
            db.add(UserRole(user_id=grantee, role_id=role_id, assigned_by=granter))
            try:
                db.commit()
            except IntegrityError as exc:
                db.rollback()
                if db.get(UserRole, (grantee, role_id)) is not None:
                    return True
                logger.error("Error granting role %s to %s: %s", role_id, grantee, exc)
                return False
        logger.info("Granted role %s to %s (by %s)", role_id, grantee, granter)
        return True

    def delete_grant(self, grantee: str, role_id: int) -> bool:
        """Remove a grant. Returns whether a row was deleted."""
        with session_scope(self._session_factory, "delete_grant") as db:
            result = db.execute(
                delete(UserRole).where(
                    UserRole.user_id == grantee, UserRole.role_id == role_id
                )
            )
            db.commit()
        deleted = result.rowcount > 0
        if deleted:
            logger.info("Revoked role %s from %s", role_id, grantee)
        return deleted
