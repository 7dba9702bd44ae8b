"""Auth API router — login, me."""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from party_admin.db.session import get_db
from party_admin.core.permissions import Actor
from party_admin.core.security import get_current_actor
from party_admin.identity.base import IdentityProvider
from party_admin.identity.provider import get_identity_provider
from party_admin.schemas.schemas import AccountViewOut, LoginRequest, TokenResponse
from party_admin.services.auth_service import auth_service
from party_admin.services.audit_service import audit_service
from party_admin.services.directory_service import directory_service

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
async def login(
    body: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """Authenticate and return an access token."""
    result = auth_service.authenticate(db, identity, body.email, body.password)
    user = result["user"]
    audit_service.log_from_request(
        db, request,
        actor_id=user.id,
        actor_email=user.email,
        action="user.login",
        resource_type="account",
        resource_id=user.id,
    )
    return TokenResponse(
        access_token=result["access_token"],
        token_type=result["token_type"],
        expires_in=result["expires_in"],
        user=AccountViewOut.model_validate(user),
    )


@router.get("/me", response_model=AccountViewOut)
async def get_me(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Get the current admin's directory entry."""
    return AccountViewOut.model_validate(directory_service.get_user(db, actor.id))
