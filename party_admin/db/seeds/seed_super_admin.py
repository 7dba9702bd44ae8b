"""Seed the bootstrap super-admin account from env vars."""

from typing import Optional

from sqlalchemy.orm import Session
from party_admin.core.config import settings
from party_admin.core.exceptions import ResourceNotFoundError
from party_admin.identity.base import IdentityProvider
from party_admin.models.admin_user import AdminUser
from party_admin.services.account_service import account_service
from party_admin.services.account_store import AccountStore
from party_admin.services.role_service import role_service


def seed_super_admin(db: Session, identity: IdentityProvider) -> Optional[AdminUser]:
    """Create the super-admin account if not already present.

    Runs through the account service with the service role, so the
    identity and the directory record are created together.
    """
    try:
        role = role_service.get_role_by_name(db, "super_admin")
    except ResourceNotFoundError:
        print("⚠️  super_admin role not found. Run seed_roles first.")
        return None

    existing = AccountStore.as_service(db).find_by_email(settings.SUPER_ADMIN_EMAIL)
    if existing:
        print(f"ℹ️  Super admin '{settings.SUPER_ADMIN_EMAIL}' already exists, skipping.")
        return existing

    account = account_service.create_account(
        db,
        identity,
        email=settings.SUPER_ADMIN_EMAIL,
        full_name=settings.SUPER_ADMIN_NAME,
        password=settings.SUPER_ADMIN_PASSWORD,
        role_id=role.id,
        actor=None,
    )
    print(f"✅ Created super admin: {settings.SUPER_ADMIN_EMAIL}")
    return account
