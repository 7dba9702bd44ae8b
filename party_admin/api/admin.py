"""Admin / Audit API router — directory reads and account management."""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from party_admin.core.exceptions import AuthorizationError
from party_admin.core.permissions import Actor
from party_admin.core.security import get_current_actor
from party_admin.db.session import get_db
from party_admin.identity.base import IdentityProvider
from party_admin.identity.provider import get_identity_provider
from party_admin.schemas.schemas import (
    AccountViewOut, AuditLogOut, AuditLogPage, MessageResponse,
    PasswordResetRequest, UserListResponse, UserStatsResponse, UserUpdateRequest,
)
from party_admin.services.account_service import account_service
from party_admin.services.audit_service import audit_service
from party_admin.services.directory_service import directory_service

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/users", response_model=UserListResponse)
async def admin_list_users(
    search: Optional[str] = Query(None),
    role_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """List directory accounts, newest first."""
    views = directory_service.list_users(db, search=search, role_id=role_id)
    return UserListResponse(
        users=[AccountViewOut.model_validate(v) for v in views],
        total=len(views),
    )


@router.get("/users/stats", response_model=UserStatsResponse)
async def admin_user_stats(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return directory_service.stats(directory_service.list_users(db))


@router.get("/users/{user_id}", response_model=AccountViewOut)
async def admin_get_user(
    user_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return AccountViewOut.model_validate(directory_service.get_user(db, user_id))


@router.put("/users/{user_id}", response_model=AccountViewOut)
async def admin_update_user(
    user_id: str,
    body: UserUpdateRequest,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
    actor: Actor = Depends(get_current_actor),
):
    """Update email, full name or role of an account."""
    account_service.update_account(
        db, identity, user_id, actor,
        email=body.email,
        full_name=body.full_name,
        role_id=body.role_id,
    )
    return AccountViewOut.model_validate(directory_service.get_user(db, user_id))


@router.delete("/users/{user_id}", response_model=MessageResponse)
async def admin_delete_user(
    user_id: str,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
    actor: Actor = Depends(get_current_actor),
):
    account_service.delete_account(db, identity, user_id, actor)
    return MessageResponse(message="User deleted successfully")


@router.post("/users/{user_id}/reset-password", response_model=MessageResponse)
async def admin_reset_password(
    user_id: str,
    body: PasswordResetRequest,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
    actor: Actor = Depends(get_current_actor),
):
    account_service.reset_password(db, identity, user_id, actor, body.new_password)
    return MessageResponse(message="Password updated successfully")


@router.get("/audit", response_model=AuditLogPage)
async def list_audit_logs(
    actor_id: Optional[str] = Query(None),
    action: Optional[str] = Query(None),
    resource_type: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Query audit logs (admins with full data visibility only)."""
    if not actor.permissions().get("can_view_all_data"):
        raise AuthorizationError("Insufficient permissions to view audit logs")
    result = audit_service.query_logs(
        db,
        actor_id=actor_id,
        action=action,
        resource_type=resource_type,
        page=page,
        page_size=page_size,
    )
    return AuditLogPage(
        logs=[AuditLogOut.model_validate(log) for log in result["logs"]],
        total=result["total"],
        page=result["page"],
        page_size=result["page_size"],
    )
