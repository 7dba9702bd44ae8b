"""Role model for RBAC."""

import uuid

from sqlalchemy import Column, String, Text, Boolean, DateTime
from party_admin.db.base import Base, utcnow


class Role(Base):
    """Named bundle of permissions assignable to admin accounts.

    ``name`` is the stable identifier and must not change once an account
    references the role. Roles are deactivated, never deleted.
    """
    __tablename__ = "roles"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(50), unique=True, nullable=False, index=True)
    display_name = Column(String(100), nullable=False)
    description = Column(String(255), nullable=True)
    permissions_json = Column(Text, nullable=True)  # JSON object: key -> bool | [resources]
    is_active = Column(Boolean, default=True, nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
