"""Permission query API router.

Advisory only: these answers drive what the UI shows. Every mutation
re-checks through the account service and the store policies.
"""

from typing import Any, Dict, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from party_admin.core.permissions import Actor
from party_admin.core.security import get_current_actor
from party_admin.db.session import get_db
from party_admin.schemas.schemas import CanManageResponse
from party_admin.services.directory_service import directory_service

router = APIRouter(prefix="/permissions", tags=["permissions"])


@router.get("", response_model=Dict[str, Any])
async def get_permissions(
    user_id: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Resolved permissions of ``user_id`` (defaults to the caller)."""
    if user_id is None or user_id == actor.id:
        return actor.permissions()
    return directory_service.get_permissions(db, user_id)


@router.get("/can-manage/{target_id}", response_model=CanManageResponse)
async def can_manage(
    target_id: str,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return CanManageResponse(
        target_id=target_id,
        can_manage=directory_service.can_manage_account(db, actor, target_id),
    )
