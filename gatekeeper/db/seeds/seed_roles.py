"""Seed the non-channel roles into the database."""

from typing import List

from sqlalchemy.orm import Session

from gatekeeper.models.role import Role
from gatekeeper.permissions.hierarchy import ROLE_HIERARCHIES
from gatekeeper.permissions.role_key import RoleKey

# Channel roles are per channel and get provisioned when a channel is set up.
SCOPED_NAMESPACES = ("channel",)


def default_role_keys() -> List[RoleKey]:
    return [
        RoleKey(namespace=namespace, subject=None, action=action)
        for namespace, actions in ROLE_HIERARCHIES.items()
        if namespace not in SCOPED_NAMESPACES
        for action in actions
    ]


def seed_roles(db: Session) -> int:
    """Insert default roles if they don't already exist. Returns how many were added."""
    added = 0
    for role_key in default_role_keys():
        existing = db.query(Role).filter(Role.role_key == role_key.key).first()
        if not existing:
            db.add(Role.from_role_key(role_key, description=f"Default {role_key} role"))
            added += 1

    db.commit()
    print(f"✅ Seeded {added} roles ({len(default_role_keys())} defaults)")
    return added
