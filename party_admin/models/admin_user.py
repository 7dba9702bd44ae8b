"""Admin user (directory record) model."""

from sqlalchemy import Column, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from party_admin.db.base import Base, utcnow


class AdminUser(Base):
    """Directory record of an administrative account.

    ``id`` is the identity provider's user id; the two records are paired
    one-to-one and created/deleted together by the account service.
    """
    __tablename__ = "admin_users"

    id = Column(String(36), primary_key=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    role_id = Column(String(36), ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False, index=True)
    invited_by = Column(String(36), ForeignKey("admin_users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
    last_login = Column(DateTime, nullable=True)

    role = relationship("Role")
