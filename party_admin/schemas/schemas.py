"""Pydantic schemas for API request/response serialization."""

from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime


# ---- Auth ----
class LoginRequest(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=1)


# ---- Directory ----
class AccountViewOut(BaseModel):
    id: str
    email: str
    full_name: str
    role_id: str
    role_name: str
    role_display_name: str
    role_description: Optional[str] = None
    role_permissions: Dict[str, Any] = {}
    role_is_active: bool = False
    invited_by: Optional[str] = None
    invited_by_name: Optional[str] = None
    invited_by_email: Optional[str] = None
    created_at: datetime
    last_login: Optional[datetime] = None
    activity_status: str
    days_since_created: int
    days_since_last_login: Optional[int] = None

    class Config:
        from_attributes = True

class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    user: Optional[AccountViewOut] = None

class UserListResponse(BaseModel):
    users: List[AccountViewOut]
    total: int

class UserStatsResponse(BaseModel):
    total_users: int
    super_admins: int
    admins: int
    active_users: int

class UserUpdateRequest(BaseModel):
    email: Optional[str] = None
    full_name: Optional[str] = None
    role_id: Optional[str] = None

class PasswordResetRequest(BaseModel):
    new_password: str


# ---- Roles ----
class RoleOut(BaseModel):
    id: str
    name: str
    display_name: str
    description: Optional[str] = None
    permissions: Dict[str, Any] = {}
    is_active: bool
    created_at: Optional[datetime] = None


# ---- Permissions ----
class CanManageResponse(BaseModel):
    target_id: str
    can_manage: bool


# ---- Audit ----
class AuditLogOut(BaseModel):
    id: int
    actor_id: Optional[str] = None
    actor_email: Optional[str] = None
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    ip_address: Optional[str] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class AuditLogPage(BaseModel):
    logs: List[AuditLogOut]
    total: int
    page: int
    page_size: int


# ---- Generic ----
class MessageResponse(BaseModel):
    success: bool = True
    message: str


