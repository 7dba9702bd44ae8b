"""Account lifecycle — create, update, delete and reset admin accounts.

An account lives in two systems: the identity provider (credentials) and
the ``admin_users`` directory. Neither shares a transaction with the
other, so every operation here orders its steps so a failure leaves
either nothing behind or a logged, audited inconsistency:

* create: identity first, then directory; a failed directory insert is
  compensated by deleting the identity again (bounded retry).
* update: identity first, then directory; a failed directory write after
  the identity changed raises :class:`InconsistentStateError`.
* delete: identity first, then the explicit directory cascade.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from party_admin.core.config import settings
from party_admin.core.exceptions import (
    AuthorizationError, InconsistentStateError, PartyAdminError,
    ResourceConflictError, ResourceNotFoundError, ValidationError,
)
from party_admin.core.permissions import Actor, TOP_TIER, can_assign_role
from party_admin.core.validators import validate_email, validate_full_name, validate_password
from party_admin.identity.base import IdentityProvider, IdentityUser
from party_admin.models.admin_user import AdminUser
from party_admin.services.account_store import AccountStore, role_name_of
from party_admin.services.audit_service import audit_service
from party_admin.services.notification_service import notification_service
from party_admin.services.role_service import role_service

logger = logging.getLogger("party_admin.accounts")

REQUIRED_FIELDS_MESSAGE = "Missing required fields: email, password, full_name, role_id"
SYSTEM_ACTOR_EMAIL = "system"


def _actor_ref(actor: Optional[Actor]):
    if actor is None:
        return None, SYSTEM_ACTOR_EMAIL
    return actor.id, actor.email


def _snapshot(account: AdminUser) -> Dict[str, Any]:
    return {
        "email": account.email,
        "full_name": account.full_name,
        "role_id": account.role_id,
    }


def _store_for(db: Session, actor: Optional[Actor]) -> AccountStore:
    return AccountStore.as_service(db) if actor is None else AccountStore(db, actor)


class AccountService:
    """Multi-step account mutations across identity provider and directory."""

    @staticmethod
    def _check_assignable(actor: Actor, role_name: str) -> None:
        if can_assign_role(actor.effective_role, role_name):
            return
        if role_name == TOP_TIER:
            raise AuthorizationError("Only super admins can assign super admin role")
        raise AuthorizationError("Insufficient permissions to assign this role")

    @staticmethod
    def _email_taken(db: Session, identity: IdentityProvider, email: str, exclude_id: Optional[str] = None) -> bool:
        existing = AccountStore.as_service(db).find_by_email(email)
        if existing is not None and existing.id != exclude_id:
            return True
        identity_user = identity.find_user_by_email(email)
        return identity_user is not None and identity_user.id != exclude_id

    @staticmethod
    def create_account(
        db: Session,
        identity: IdentityProvider,
        email: Optional[str],
        full_name: Optional[str],
        password: Optional[str],
        role_id: Optional[str],
        actor: Optional[Actor],
        send_welcome_email: bool = False,
    ) -> AdminUser:
        """Create an identity plus its directory record.

        ``actor=None`` runs with the service role and is only used by the
        bootstrap seed.

        Raises:
            ValidationError: missing fields, bad email or short password.
            ResourceConflictError: the email is already registered.
            ResourceNotFoundError: the role is unknown or inactive.
            AuthorizationError: the actor may not create this account.
            ExternalDependencyError: a backing store failed.
        """
        if not email or not password or not full_name or not role_id:
            raise ValidationError(REQUIRED_FIELDS_MESSAGE)
        email = validate_email(email)
        full_name = validate_full_name(full_name)
        validate_password(password)

        if AccountService._email_taken(db, identity, email):
            raise ResourceConflictError("A user with this email already exists")

        role = role_service.get_assignable_role(db, role_id)

        store = _store_for(db, actor)
        if actor is not None:
            if not actor.permissions().get("can_manage_users"):
                raise AuthorizationError("Insufficient permissions to create users")
            AccountService._check_assignable(actor, role.name)
            store.check_insert(role)

        actor_id, actor_email = _actor_ref(actor)
        identity_user = identity.create_user(
            email,
            password,
            email_confirm=True,
            user_metadata={"full_name": full_name},
            app_metadata={"is_admin": True, "created_by": actor_id},
        )
        logger.info("Identity %s created for %s", identity_user.id, email)

        try:
            account = store.insert(
                identity_user.id, email, full_name, role, invited_by=actor_id,
            )
        except Exception as e:
            logger.error("Directory insert for %s failed, compensating: %s", email, e)
            AccountService._compensate_identity(db, identity, identity_user, actor)
            raise

        audit_service.log(
            db, actor_id, actor_email,
            action="account.created",
            resource_type="account",
            resource_id=account.id,
            new_value={"email": email, "full_name": full_name, "role": role.name},
        )

        if send_welcome_email:
            AccountService._send_welcome(identity, email, full_name, role.name)
        return account

    @staticmethod
    def _send_welcome(identity: IdentityProvider, email: str, full_name: str, role_name: str) -> None:
        """Best effort; the account already exists whatever happens here."""
        try:
            identity.invite_user_by_email(email, {"full_name": full_name, "welcome_message": True})
        except PartyAdminError as e:
            logger.warning("Failed to send welcome invitation to %s: %s", email, e)
        notification_service.enqueue_welcome(email, full_name, role_name)

    @staticmethod
    def _compensate_identity(
        db: Session,
        identity: IdentityProvider,
        identity_user: IdentityUser,
        actor: Optional[Actor],
    ) -> bool:
        """Delete an identity whose directory insert failed."""
        attempts = max(1, settings.COMPENSATION_ATTEMPTS)
        for attempt in range(1, attempts + 1):
            try:
                identity.delete_user(identity_user.id)
            except ResourceNotFoundError:
                return True
            except PartyAdminError as e:
                logger.warning(
                    "Compensating delete of identity %s failed (attempt %d/%d): %s",
                    identity_user.id, attempt, attempts, e,
                )
                if attempt < attempts:
                    time.sleep(settings.COMPENSATION_BACKOFF_SECONDS * attempt)
                continue
            logger.info("Identity %s removed after failed directory insert", identity_user.id)
            return True

        logger.error(
            "Orphaned identity %s (%s): compensation exhausted after %d attempts",
            identity_user.id, identity_user.email, attempts,
        )
        actor_id, actor_email = _actor_ref(actor)
        audit_service.log(
            db, actor_id, actor_email,
            action="account.orphaned_identity",
            resource_type="identity",
            resource_id=identity_user.id,
            new_value={"email": identity_user.email},
        )
        return False

    @staticmethod
    def update_account(
        db: Session,
        identity: IdentityProvider,
        account_id: str,
        actor: Actor,
        email: Optional[str] = None,
        full_name: Optional[str] = None,
        role_id: Optional[str] = None,
    ) -> AdminUser:
        """Apply a partial update. Fields left as ``None`` are unchanged."""
        store = AccountStore(db, actor)
        account = store.get(account_id)
        if account is None:
            raise ResourceNotFoundError("User not found")
        if not actor.can_manage(account.id, role_name_of(account)):
            raise AuthorizationError("Insufficient permissions to manage this user")

        changes: Dict[str, Any] = {}
        if full_name is not None:
            full_name = validate_full_name(full_name)
            if full_name != account.full_name:
                changes["full_name"] = full_name
        if email is not None:
            email = validate_email(email)
            if email != account.email:
                if AccountService._email_taken(db, identity, email, exclude_id=account.id):
                    raise ResourceConflictError("A user with this email already exists")
                changes["email"] = email

        new_role = None
        if role_id is not None and role_id != account.role_id:
            new_role = role_service.get_assignable_role(db, role_id)
            AccountService._check_assignable(actor, new_role.name)
            changes["role_id"] = new_role.id

        if not changes:
            return account

        store.check_update(account, changes, new_role)
        before = _snapshot(account)

        identity_touched = False
        if "email" in changes or "full_name" in changes:
            identity.update_user(
                account.id,
                email=changes.get("email"),
                user_metadata={"full_name": changes["full_name"]} if "full_name" in changes else None,
            )
            identity_touched = True

        try:
            account = store.update(account, changes, new_role)
        except PartyAdminError as e:
            if not identity_touched:
                raise
            logger.error(
                "Account %s inconsistent: identity updated but directory update failed: %s",
                account_id, e,
            )
            audit_service.log(
                db, actor.id, actor.email,
                action="account.inconsistent",
                resource_type="account",
                resource_id=account_id,
                old_value=before,
                new_value=changes,
            )
            raise InconsistentStateError("Account update was only partially applied")

        audit_service.log(
            db, actor.id, actor.email,
            action="account.updated",
            resource_type="account",
            resource_id=account.id,
            old_value=before,
            new_value=changes,
        )
        return account

    @staticmethod
    def delete_account(db: Session, identity: IdentityProvider, account_id: str, actor: Actor) -> None:
        if actor.id == account_id:
            raise AuthorizationError("You cannot delete your own account")

        store = AccountStore(db, actor)
        account = store.get(account_id)
        if account is None:
            raise ResourceNotFoundError("User not found")
        if not actor.can_manage(account.id, role_name_of(account)):
            raise AuthorizationError("Insufficient permissions to delete this user")
        store.check_delete(account)

        before = _snapshot(account)
        try:
            identity.delete_user(account.id)
        except ResourceNotFoundError:
            logger.warning("Identity %s already absent, removing directory record", account.id)

        AccountService._cascade_directory_delete(db, account, actor, before)
        audit_service.log(
            db, actor.id, actor.email,
            action="account.deleted",
            resource_type="account",
            resource_id=account_id,
            old_value=before,
        )

    @staticmethod
    def _cascade_directory_delete(db: Session, account: AdminUser, actor: Actor, before: Dict[str, Any]) -> None:
        """Remove the directory record of a deleted identity.

        Runs with the service role; the actor was checked before the
        identity was deleted.
        """
        account_id = account.id
        try:
            AccountStore.as_service(db).delete(account)
        except PartyAdminError as e:
            logger.error(
                "Account %s inconsistent: identity deleted but directory record remains: %s",
                account_id, e,
            )
            audit_service.log(
                db, actor.id, actor.email,
                action="account.inconsistent",
                resource_type="account",
                resource_id=account_id,
                old_value=before,
            )
            raise InconsistentStateError("Account deletion was only partially applied")

    @staticmethod
    def reset_password(
        db: Session,
        identity: IdentityProvider,
        account_id: str,
        actor: Actor,
        new_password: Optional[str],
    ) -> None:
        validate_password(new_password)
        account = AccountStore(db, actor).get(account_id)
        if account is None:
            raise ResourceNotFoundError("User not found")
        if not actor.can_manage(account.id, role_name_of(account)):
            raise AuthorizationError("Insufficient permissions to manage this user")

        identity.update_user(account.id, password=new_password)
        audit_service.log(
            db, actor.id, actor.email,
            action="account.password_reset",
            resource_type="account",
            resource_id=account.id,
        )

    @staticmethod
    def record_sign_in(db: Session, account_id: str, at: Optional[datetime] = None) -> Optional[AdminUser]:
        """Stamp ``last_login``; identities without a directory record are ignored."""
        store = AccountStore.as_service(db)
        account = store.get(account_id)
        if account is None:
            return None
        store.touch_last_login(account, at or datetime.now(timezone.utc))
        return account

    @staticmethod
    def reconcile(db: Session, identity: IdentityProvider, fix: bool = False) -> Dict[str, Any]:
        """Compare the identity provider with the directory.

        With ``fix``, orphaned identities created by this service
        (``app_metadata.is_admin``) are deleted and directory records whose
        identity is gone are removed. Other identities are only reported.
        """
        identities = identity.list_users()
        store = AccountStore.as_service(db)
        accounts = db.query(AdminUser).all()

        identity_ids = {u.id for u in identities}
        account_ids = {a.id for a in accounts}
        orphans = [u for u in identities if u.id not in account_ids]
        dangling = [a for a in accounts if a.id not in identity_ids]

        report: Dict[str, Any] = {
            "orphaned_identities": [
                {"id": u.id, "email": u.email, "is_admin": u.is_managed_admin} for u in orphans
            ],
            "accounts_without_identity": [{"id": a.id, "email": a.email} for a in dangling],
            "fixed": [],
        }
        if not fix:
            return report

        for user in orphans:
            if not user.is_managed_admin:
                continue
            try:
                identity.delete_user(user.id)
            except ResourceNotFoundError:
                pass
            report["fixed"].append({"id": user.id, "action": "identity_deleted"})
            audit_service.log(
                db, None, SYSTEM_ACTOR_EMAIL,
                action="account.orphaned_identity",
                resource_type="identity",
                resource_id=user.id,
                old_value={"email": user.email},
                new_value={"resolution": "deleted"},
            )

        for account in dangling:
            before = _snapshot(account)
            account_id = account.id
            store.delete(account)
            report["fixed"].append({"id": account_id, "action": "directory_record_deleted"})
            audit_service.log(
                db, None, SYSTEM_ACTOR_EMAIL,
                action="account.deleted",
                resource_type="account",
                resource_id=account_id,
                old_value=before,
            )

        logger.info("Reconcile fixed %d records", len(report["fixed"]))
        return report


account_service = AccountService()
