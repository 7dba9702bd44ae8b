"""Role/permission resolver.

Pure functions, no I/O. The same code answers the advisory UI queries
(``/api/permissions``), the row policies of the account store and the
privileged creation gateway, so the three layers can never disagree.

Two role names carry hard-coded capabilities on top of whatever is stored
in ``roles.permissions_json``:

* ``super_admin`` (top tier) may manage everyone, including other super admins.
* ``admin`` (mid tier) may manage everyone except super admins.

Any other role is read-only as far as account management goes.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

TOP_TIER = "super_admin"
MID_TIER = "admin"
WILDCARD = "*"

MANAGEMENT_FLAGS = (
    "can_manage_super_admins",
    "can_manage_admins",
    "can_manage_users",
    "can_view_all_data",
    "can_modify_system_settings",
)

_COMPUTED_FLAGS: Dict[str, Dict[str, bool]] = {
    TOP_TIER: {
        "can_manage_super_admins": True,
        "can_manage_admins": True,
        "can_manage_users": True,
        "can_view_all_data": True,
        "can_modify_system_settings": True,
    },
    MID_TIER: {
        "can_manage_super_admins": False,
        "can_manage_admins": True,
        "can_manage_users": True,
        "can_view_all_data": True,
        "can_modify_system_settings": False,
    },
}

_READ_ONLY_FLAGS: Dict[str, bool] = {flag: False for flag in MANAGEMENT_FLAGS}


def effective_role(role_name: Optional[str], role_active: bool) -> Optional[str]:
    """Return the role name an actor may act with.

    A deactivated role is treated as no role at all.
    """
    if not role_name or not role_active:
        return None
    return role_name


def resolve(
    role_name: Optional[str],
    stored_permissions: Optional[Mapping[str, Any]] = None,
    role_active: bool = True,
) -> Dict[str, Any]:
    """Compute the permission grant for an actor holding ``role_name``.

    Stored permissions come first, then the computed management flags are
    laid over them; a stored ``can_manage_users: true`` on a plain role is
    therefore overwritten with ``False``.
    """
    role = effective_role(role_name, role_active)
    grant: Dict[str, Any] = dict(stored_permissions or {}) if role else {}
    grant.update(_COMPUTED_FLAGS.get(role, _READ_ONLY_FLAGS))
    return grant


def has_permission(grant: Mapping[str, Any], key: str, resource: Optional[str] = None) -> bool:
    """Check a single permission key, optionally scoped to a resource.

    ``{"*": true}`` grants everything. List-valued keys such as
    ``{"read": ["members", "settings"]}`` match a listed resource or ``"*"``.
    """
    if grant.get(WILDCARD):
        return True
    value = grant.get(key)
    if resource is None:
        return bool(value)
    if isinstance(value, (list, tuple, set)):
        return WILDCARD in value or resource in value
    return value is True


def can_manage(actor_role: Optional[str], target_role: Optional[str], is_self: bool) -> bool:
    """Decide whether ``actor_role`` may edit or delete an account holding ``target_role``.

    ``actor_role`` must be the actor's effective role (see
    :func:`effective_role`). The tier check on the target dominates the
    self-service exception: only a super admin ever manages a super admin
    account.
    """
    if actor_role == TOP_TIER:
        return True
    if target_role == TOP_TIER:
        return False
    if actor_role == MID_TIER:
        return True
    return is_self


def can_assign_role(actor_role: Optional[str], role_name: str) -> bool:
    """Whether ``actor_role`` may give ``role_name`` to an account."""
    if actor_role == TOP_TIER:
        return True
    if actor_role == MID_TIER:
        return role_name != TOP_TIER
    return False


@dataclass(frozen=True)
class Actor:
    """An authenticated account acting on the directory.

    Carries the raw role data only; the grant is recomputed on every call
    to :meth:`permissions` so a role change takes effect on the next check.
    """

    id: str
    email: str
    role_name: Optional[str]
    role_active: bool
    stored_permissions: Mapping[str, Any] = field(default_factory=dict)

    @property
    def effective_role(self) -> Optional[str]:
        return effective_role(self.role_name, self.role_active)

    def permissions(self) -> Dict[str, Any]:
        return resolve(self.role_name, self.stored_permissions, self.role_active)

    def can_manage(self, target_id: str, target_role: Optional[str]) -> bool:
        return can_manage(self.effective_role, target_role, self.id == target_id)
