"""Invite code model."""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, JSON, String

from gatekeeper.core.clock import ensure_utc, utcnow
from gatekeeper.db.base import Base


class InviteCodeStatus(str, enum.Enum):
    active = "active"
    used = "used"
    expired = "expired"
    revoked = "revoked"


class InviteCode(Base):
    """Single-use code that grants a bundle of role keys when redeemed.

    Status is derived, never stored: revoked, else used, else expired,
    else active.
    """
    __tablename__ = "invite_codes"
    __table_args__ = (
        CheckConstraint(
            "used_at IS NULL OR revoked_at IS NULL",
            name="ck_invite_codes_single_terminal_state",
        ),
    )

    code_id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(8), unique=True, nullable=False, index=True)
    role_keys = Column(JSON, nullable=False)  # ordered list of role key strings
    created_by = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False, index=True)
    used_by = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
    revoked_by = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    revoked_at = Column(DateTime(timezone=True), nullable=True)

    def status_at(self, now: Optional[datetime] = None) -> InviteCodeStatus:
        now = now or utcnow()
        if self.revoked_at is not None:
            return InviteCodeStatus.revoked
        if self.used_by is not None:
            return InviteCodeStatus.used
        if ensure_utc(self.expires_at) < now:
            return InviteCodeStatus.expired
        return InviteCodeStatus.active
