"""Seed the super-admin identity from env vars."""

from typing import Optional

from sqlalchemy.orm import Session

from gatekeeper.core.config import settings
from gatekeeper.models.grant import UserRole
from gatekeeper.models.role import Role
from gatekeeper.models.user import User
from gatekeeper.permissions.role_key import GLOBAL_ADMIN_KEY


def seed_super_admin(
    db: Session, identity: Optional[str] = None, email: Optional[str] = None
) -> Optional[User]:
    """Create the super-admin user and grant it ``global:admin`` if not already present."""
    identity = identity or settings.SUPER_ADMIN_ID
    email = email or settings.SUPER_ADMIN_EMAIL

    super_admin_role = db.query(Role).filter(Role.role_key == GLOBAL_ADMIN_KEY).first()
    if not super_admin_role:
        print(f"⚠️  {GLOBAL_ADMIN_KEY} role not found. Run seed_roles first.")
        return None

    admin = db.get(User, identity)
    if admin is None:
        admin = User(id=identity, email=email.lower(), full_name="Super Admin")
        db.add(admin)
        db.flush()
        print(f"✅ Created super admin: {identity} ({email})")
    else:
        print(f"ℹ️  Super admin '{identity}' already exists, skipping.")

    grant = db.get(UserRole, (identity, super_admin_role.role_id))
    if grant is None:
        db.add(UserRole(user_id=identity, role_id=super_admin_role.role_id, assigned_by=None))
        print(f"✅ Granted {GLOBAL_ADMIN_KEY} to {identity}")

    db.commit()
    return admin
