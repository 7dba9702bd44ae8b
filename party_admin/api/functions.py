"""Privileged function endpoints (``/functions/v1``)."""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from party_admin.db.session import get_db
from party_admin.identity.base import IdentityProvider
from party_admin.identity.provider import get_identity_provider
from party_admin.services.gateway_service import gateway_service

router = APIRouter(prefix="/functions/v1", tags=["functions"])


@router.post("/create-user")
async def create_user(
    request: Request,
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
):
    """Create an admin account on behalf of the signed-in caller."""
    try:
        payload = await request.json()
    except ValueError:
        payload = {}
    if not isinstance(payload, dict):
        payload = {}

    status_code, body = gateway_service.create_user(
        db, identity, request.headers.get("Authorization"), payload,
    )
    return JSONResponse(status_code=status_code, content=body)
