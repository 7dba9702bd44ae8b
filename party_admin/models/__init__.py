"""Models package — import all models so metadata.create_all can discover them."""

from party_admin.models.role import Role
from party_admin.models.admin_user import AdminUser
from party_admin.models.audit_log import AuditLog

__all__ = ["Role", "AdminUser", "AuditLog"]
