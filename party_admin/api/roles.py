"""Roles API router — active role catalogue."""

from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from party_admin.core.permissions import Actor
from party_admin.core.security import get_current_actor
from party_admin.db.session import get_db
from party_admin.schemas.schemas import RoleOut
from party_admin.services.role_service import role_service, serialize_role

router = APIRouter(prefix="/roles", tags=["roles"])


@router.get("", response_model=List[RoleOut])
async def list_roles(
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Active roles, oldest first."""
    return role_service.list_active_roles(db)


@router.get("/{role_id}", response_model=RoleOut)
async def get_role(
    role_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return serialize_role(role_service.get_role(db, role_id))
