"""Role grant model (user <-> role assignment)."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, JSON, String
from sqlalchemy.orm import relationship

from gatekeeper.core.clock import utcnow
from gatekeeper.db.base import Base


class UserRole(Base):
    """A role held by a user. At most one row per (user, role)."""
    __tablename__ = "user_roles"
    __table_args__ = (
        Index("ix_user_roles_user_assigned_by", "user_id", "assigned_by"),
    )

    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    role_id = Column(
        Integer, ForeignKey("roles.role_id", ondelete="CASCADE"), primary_key=True, index=True
    )
    assigned_by = Column(String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    assigned_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    metadata_json = Column("metadata", JSON, nullable=True)

    user = relationship("User", back_populates="grants", foreign_keys=[user_id])
    role = relationship("Role", lazy="joined")
