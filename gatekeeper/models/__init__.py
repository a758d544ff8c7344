"""Models package: import all models so metadata.create_all can discover them."""

from gatekeeper.models.user import User
from gatekeeper.models.role import Role
from gatekeeper.models.grant import UserRole
from gatekeeper.models.invite_code import InviteCode, InviteCodeStatus

__all__ = [
    "User", "Role", "UserRole", "InviteCode", "InviteCodeStatus",
]
