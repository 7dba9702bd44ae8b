"""Audit log model — append-only."""

from sqlalchemy import Column, Integer, String, Text, DateTime
from party_admin.db.base import Base, utcnow


class AuditLog(Base):
    """Immutable audit trail for account mutations.

    This table is APPEND-ONLY: no UPDATE or DELETE operations should ever
    be performed on it (enforced at application level). Actor and resource
    ids are plain strings so entries outlive the accounts they mention.
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    actor_id = Column(String(36), nullable=True, index=True)
    actor_email = Column(String(255), nullable=True)
    action = Column(String(100), nullable=False, index=True)  # e.g. "account.created"
    resource_type = Column(String(50), nullable=False, index=True)  # account, role, identity
    resource_id = Column(String(100), nullable=True)
    old_value_json = Column(Text, nullable=True)
    new_value_json = Column(Text, nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)
