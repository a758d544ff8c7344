"""Role model for RBAC."""

from sqlalchemy import (
    CheckConstraint, Column, DateTime, Index, Integer, JSON, String, Text,
)

from gatekeeper.core.clock import utcnow
from gatekeeper.db.base import Base
from gatekeeper.permissions.role_key import RoleKey


class Role(Base):
    """A provisioned permission, identified by its canonical role key."""
    __tablename__ = "roles"
    __table_args__ = (
        CheckConstraint("role_key <> ''", name="ck_roles_role_key"),
        Index("ix_roles_namespace_subject", "namespace", "subject_id"),
    )

    role_id = Column(Integer, primary_key=True, autoincrement=True)
    namespace = Column(String(50), nullable=False)
    subject_id = Column(String(255), nullable=True)
    action = Column(String(50), nullable=False)
    role_key = Column(String(255), unique=True, nullable=False, index=True)
    channel_id = Column(Integer, nullable=True, index=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    description = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    @classmethod
    def from_role_key(cls, role_key: RoleKey, description=None, metadata=None) -> "Role":
        channel_id = None
        if role_key.namespace == "channel" and role_key.subject and role_key.subject.isdigit():
            channel_id = int(role_key.subject)
        return cls(
            namespace=role_key.namespace,
            subject_id=role_key.subject,
            action=role_key.action,
            role_key=role_key.key,
            channel_id=channel_id,
            metadata_json=metadata,
            description=description,
        )

    def to_role_key(self) -> RoleKey:
        return RoleKey.parse(self.role_key)
