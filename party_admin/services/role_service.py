"""Role registry — catalogue of assignable roles."""

import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from party_admin.core.config import settings
from party_admin.core.exceptions import ResourceNotFoundError
from party_admin.models.role import Role
from party_admin.services.cache_service import cache_service

logger = logging.getLogger("party_admin.roles")

ACTIVE_ROLES_CACHE_KEY = "roles:active"


def permissions_of(role: Optional[Role]) -> Dict[str, Any]:
    """Parse a role's stored permissions; malformed or missing JSON yields ``{}``."""
    if role is None or not role.permissions_json:
        return {}
    try:
        value = json.loads(role.permissions_json)
    except ValueError:
        logger.warning("Role %s has malformed permissions_json", role.name)
        return {}
    return value if isinstance(value, dict) else {}


def serialize_role(role: Role) -> Dict[str, Any]:
    return {
        "id": role.id,
        "name": role.name,
        "display_name": role.display_name,
        "description": role.description,
        "permissions": permissions_of(role),
        "is_active": role.is_active,
        "created_at": role.created_at.isoformat() if role.created_at else None,
    }


class RoleService:
    """Read access to roles plus the administrative active toggle."""

    @staticmethod
    def list_active_roles(db: Session) -> List[Dict[str, Any]]:
        """Active roles for selection lists, oldest first then by name.

        Served from Redis when possible. The result is advisory: account
        mutations always re-read the role through :meth:`get_role`.
        """
        cached = cache_service.get_json(ACTIVE_ROLES_CACHE_KEY)
        if cached is not None:
            return cached

        roles = (
            db.query(Role)
            .filter(Role.is_active.is_(True))
            .order_by(Role.created_at, Role.name)
            .all()
        )
        result = [serialize_role(r) for r in roles]
        cache_service.set_json(ACTIVE_ROLES_CACHE_KEY, result, settings.ROLE_CACHE_TTL_SECONDS)
        return result

    @staticmethod
    def get_role(db: Session, role_id: str) -> Role:
        """Get a role by id, active or not."""
        role = db.get(Role, role_id)
        if role is None:
            raise ResourceNotFoundError(f"Role {role_id} not found")
        return role

    @staticmethod
    def get_role_by_name(db: Session, name: str) -> Role:
        role = db.query(Role).filter(Role.name == name).first()
        if role is None:
            raise ResourceNotFoundError(f"Role '{name}' not found")
        return role

    @staticmethod
    def get_assignable_role(db: Session, role_id: Optional[str]) -> Role:
        """Return the role only if it exists and is active."""
        role = db.get(Role, role_id) if role_id else None
        if role is None or not role.is_active:
            raise ResourceNotFoundError("Invalid or inactive role")
        return role

    @staticmethod
    def set_active(db: Session, name: str, active: bool) -> Role:
        """Activate or deactivate a role. Accounts already holding it keep it."""
        role = RoleService.get_role_by_name(db, name)
        role.is_active = active
        db.commit()
        db.refresh(role)
        RoleService.invalidate_cache()
        logger.info("Role %s is_active=%s", name, active)
        return role

    @staticmethod
    def invalidate_cache() -> None:
        cache_service.delete(ACTIVE_ROLES_CACHE_KEY)


role_service = RoleService()
