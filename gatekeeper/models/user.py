"""User model."""

from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship

from gatekeeper.core.clock import utcnow
from gatekeeper.db.base import Base


class User(Base):
    """An identity that roles can be granted to."""
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), unique=True, nullable=True, index=True)
    full_name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    grants = relationship(
        "UserRole",
        back_populates="user",
        lazy="selectin",
        foreign_keys="[UserRole.user_id]",
    )
