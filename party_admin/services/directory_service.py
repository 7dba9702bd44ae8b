"""User directory projection — read side of the admin account directory."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session, aliased

from party_admin.core.exceptions import AuthenticationError, ResourceNotFoundError
from party_admin.core.permissions import Actor, MID_TIER, TOP_TIER, resolve
from party_admin.models.admin_user import AdminUser
from party_admin.models.role import Role
from party_admin.services.account_store import role_name_of
from party_admin.services.role_service import permissions_of

logger = logging.getLogger("party_admin.directory")

NEVER_LOGGED_IN = "Never logged in"
LONG_INACTIVE = "Long inactive"
ACTIVITY_THRESHOLDS = (
    (timedelta(days=1), "Active"),
    (timedelta(days=7), "Recently active"),
    (timedelta(days=30), "Inactive"),
)

UNKNOWN_ROLE_NAME = "unknown"
UNKNOWN_ROLE_DISPLAY_NAME = "Unknown Role"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive timestamps (SQLite, MySQL DATETIME) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def activity_status(last_login: Optional[datetime], now: Optional[datetime] = None) -> str:
    """Classify how recently an account signed in. Never stored."""
    if last_login is None:
        return NEVER_LOGGED_IN
    now = as_utc(now) or datetime.now(timezone.utc)
    age = now - as_utc(last_login)
    for limit, label in ACTIVITY_THRESHOLDS:
        if age < limit:
            return label
    return LONG_INACTIVE


@dataclass
class AccountView:
    """One directory row joined with its role and inviter."""

    id: str
    email: str
    full_name: str
    role_id: str
    role_name: str
    role_display_name: str
    role_description: Optional[str]
    role_is_active: bool
    created_at: datetime
    last_login: Optional[datetime]
    activity_status: str
    days_since_created: int
    days_since_last_login: Optional[int] = None
    invited_by: Optional[str] = None
    invited_by_name: Optional[str] = None
    invited_by_email: Optional[str] = None
    role_permissions: Dict[str, Any] = field(default_factory=dict)


def _build_view(
    account: AdminUser,
    role: Optional[Role],
    inviter: Optional[AdminUser],
    now: datetime,
) -> AccountView:
    created_at = as_utc(account.created_at)
    last_login = as_utc(account.last_login)
    if role is None:
        logger.warning("Account %s references missing role %s", account.id, account.role_id)
    return AccountView(
        id=account.id,
        email=account.email,
        full_name=account.full_name,
        role_id=account.role_id,
        role_name=role.name if role is not None else UNKNOWN_ROLE_NAME,
        role_display_name=role.display_name if role is not None else UNKNOWN_ROLE_DISPLAY_NAME,
        role_description=role.description if role is not None else None,
        role_permissions=permissions_of(role),
        role_is_active=bool(role.is_active) if role is not None else False,
        created_at=created_at,
        last_login=last_login,
        activity_status=activity_status(last_login, now),
        days_since_created=(now - created_at).days,
        days_since_last_login=(now - last_login).days if last_login else None,
        invited_by=account.invited_by,
        invited_by_name=inviter.full_name if inviter is not None else None,
        invited_by_email=inviter.email if inviter is not None else None,
    )


class DirectoryService:
    """Directory listing, actor resolution and the advisory permission queries."""

    @staticmethod
    def _query(db: Session):
        inviter = aliased(AdminUser)
        return (
            db.query(AdminUser, Role, inviter)
            .outerjoin(Role, AdminUser.role_id == Role.id)
            .outerjoin(inviter, AdminUser.invited_by == inviter.id)
        )

    @staticmethod
    def list_users(
        db: Session,
        search: Optional[str] = None,
        role_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[AccountView]:
        """All directory accounts, newest first.

        Dangling role references fall back to the ``unknown`` role fields
        instead of failing the listing.
        """
        now = as_utc(now) or datetime.now(timezone.utc)
        query = DirectoryService._query(db)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(AdminUser.full_name.ilike(pattern), AdminUser.email.ilike(pattern)))
        if role_id:
            query = query.filter(AdminUser.role_id == role_id)

        rows = query.order_by(AdminUser.created_at.desc(), AdminUser.email).all()
        return [_build_view(account, role, inviter, now) for account, role, inviter in rows]

    @staticmethod
    def get_user(db: Session, account_id: str, now: Optional[datetime] = None) -> AccountView:
        now = as_utc(now) or datetime.now(timezone.utc)
        row = DirectoryService._query(db).filter(AdminUser.id == account_id).first()
        if row is None:
            raise ResourceNotFoundError(f"User {account_id} not found")
        account, role, inviter = row
        return _build_view(account, role, inviter, now)

    @staticmethod
    def stats(views: Iterable[AccountView]) -> Dict[str, int]:
        views = list(views)
        return {
            "total_users": len(views),
            "super_admins": sum(1 for v in views if v.role_name == TOP_TIER),
            "admins": sum(1 for v in views if v.role_name == MID_TIER),
            "active_users": sum(1 for v in views if v.activity_status == "Active"),
        }

    @staticmethod
    def resolve_actor(db: Session, account_id: str) -> Actor:
        """Load the directory standing of an authenticated identity.

        Raises:
            AuthenticationError: the identity has no directory record.
        """
        account = db.get(AdminUser, account_id)
        if account is None:
            raise AuthenticationError("User is not an admin")
        role = account.role
        return Actor(
            id=account.id,
            email=account.email,
            role_name=role.name if role is not None else None,
            role_active=bool(role.is_active) if role is not None else False,
            stored_permissions=permissions_of(role),
        )

    @staticmethod
    def get_permissions(db: Session, account_id: str) -> Dict[str, Any]:
        """Resolved permission map for an account; all flags false if unknown."""
        try:
            actor = DirectoryService.resolve_actor(db, account_id)
        except AuthenticationError:
            return resolve(None)
        return actor.permissions()

    @staticmethod
    def can_manage_account(db: Session, actor: Actor, target_id: str) -> bool:
        """Per-target check used for UI gating; the account service re-checks."""
        target = db.get(AdminUser, target_id)
        if target is None:
            return False
        return actor.can_manage(target.id, role_name_of(target))


directory_service = DirectoryService()
