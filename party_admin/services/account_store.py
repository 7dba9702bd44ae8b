"""Directory table access with row-level policies.

Every write to ``admin_users`` goes through an :class:`AccountStore`. A
store is either scoped to an :class:`Actor` or opened with the service
role (``actor=None``), which bypasses the policies. The policies are the
authoritative copy of the management rules and are evaluated with the
same resolver functions the account service and the UI queries use:

* managers (``admin``/``super_admin`` with an active role) may insert,
  update and delete rows whose role they could manage, both before and
  after the change;
* any account may update its own ``email``/``full_name``, never its own
  role through this path.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from party_admin.core.exceptions import (
    AuthorizationError, ExternalDependencyError, ResourceConflictError,
)
from party_admin.core.permissions import Actor, MID_TIER, TOP_TIER, can_manage
from party_admin.core.validators import normalize_email
from party_admin.models.admin_user import AdminUser
from party_admin.models.role import Role

logger = logging.getLogger("party_admin.store")

MANAGER_ROLES = (MID_TIER, TOP_TIER)
PROFILE_FIELDS = frozenset({"email", "full_name"})


def role_name_of(account: AdminUser) -> Optional[str]:
    """Role name of an account, active or not; ``None`` if the reference dangles."""
    return account.role.name if account.role is not None else None


class AccountStore:
    """Gateway to ``admin_users`` enforcing row policies for one actor."""

    def __init__(self, db: Session, actor: Optional[Actor]):
        self.db = db
        self.actor = actor

    @classmethod
    def as_service(cls, db: Session) -> "AccountStore":
        return cls(db, None)

    # ---- reads ----

    def get(self, account_id: str) -> Optional[AdminUser]:
        return self.db.get(AdminUser, account_id)

    def find_by_email(self, email: str) -> Optional[AdminUser]:
        return (
            self.db.query(AdminUser)
            .filter(func.lower(AdminUser.email) == normalize_email(email))
            .first()
        )

    # ---- policies ----

    def _manager_can_write(self, role_name: Optional[str]) -> bool:
        role = self.actor.effective_role
        return role in MANAGER_ROLES and can_manage(role, role_name, False)

    def _deny(self, operation: str, account_id: Optional[str]) -> None:
        logger.warning(
            "Row policy denied %s on admin_users %s for actor %s",
            operation, account_id, self.actor.id,
        )
        raise AuthorizationError("Insufficient permissions for this account")

    def check_insert(self, role: Role) -> None:
        if self.actor is None:
            return
        if not self._manager_can_write(role.name):
            self._deny("insert", None)

    def check_update(self, account: AdminUser, changes: Dict[str, Any], new_role: Optional[Role] = None) -> None:
        if self.actor is None:
            return
        old_role = role_name_of(account)
        new_role_name = new_role.name if new_role is not None else old_role
        if self._manager_can_write(old_role) and self._manager_can_write(new_role_name):
            return
        if (
            set(changes) <= PROFILE_FIELDS
            and self.actor.can_manage(account.id, old_role)
        ):
            return
        self._deny("update", account.id)

    def check_delete(self, account: AdminUser) -> None:
        if self.actor is None:
            return
        if not self._manager_can_write(role_name_of(account)):
            self._deny("delete", account.id)

    # ---- writes ----

    def _commit(self, action: str) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning("Directory %s violated a constraint: %s", action, e.orig)
            if "email" in str(e.orig).lower():
                raise ResourceConflictError("Email already exists")
            raise ExternalDependencyError("Directory store rejected the change")
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Directory %s failed: %s", action, e)
            raise ExternalDependencyError("Directory store unavailable")

    def insert(
        self,
        account_id: str,
        email: str,
        full_name: str,
        role: Role,
        invited_by: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> AdminUser:
        self.check_insert(role)
        account = AdminUser(
            id=account_id,
            email=email,
            full_name=full_name,
            role_id=role.id,
            invited_by=invited_by,
        )
        if created_at is not None:
            account.created_at = created_at
        self.db.add(account)
        self._commit("insert")
        self.db.refresh(account)
        return account

    def update(self, account: AdminUser, changes: Dict[str, Any], new_role: Optional[Role] = None) -> AdminUser:
        self.check_update(account, changes, new_role)
        for key, value in changes.items():
            setattr(account, key, value)
        self._commit("update")
        self.db.refresh(account)
        return account

    def delete(self, account: AdminUser) -> None:
        self.check_delete(account)
        self.db.delete(account)
        self._commit("delete")

    def touch_last_login(self, account: AdminUser, at: datetime) -> None:
        account.last_login = at
        self._commit("last_login update")
