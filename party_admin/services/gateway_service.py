"""Privileged creation gateway.

The only entry point through which a signed-in admin creates another
account. It re-verifies the caller from the bearer token on every call
and then hands over to the account service, which applies the same
checks again against the row policies.
"""

import logging
from typing import Any, Dict, Mapping, Optional, Tuple

from fastapi import status
from sqlalchemy.orm import Session

from party_admin.core.config import settings
from party_admin.core.exceptions import (
    AuthenticationError, AuthorizationError, PartyAdminError, ValidationError,
)
from party_admin.core.permissions import TOP_TIER
from party_admin.core.validators import validate_email, validate_password
from party_admin.identity.base import IdentityProvider
from party_admin.models.role import Role
from party_admin.services.account_service import REQUIRED_FIELDS_MESSAGE, account_service
from party_admin.services.directory_service import directory_service

logger = logging.getLogger("party_admin.gateway")

REQUIRED_FIELDS = ("email", "password", "full_name", "role_id")


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise AuthenticationError("No authorization header")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("Unauthorized")
    return token.strip()


def _failure_status(error: PartyAdminError) -> int:
    if settings.GATEWAY_DISTINCT_AUTH_STATUS and isinstance(
        error, (AuthenticationError, AuthorizationError)
    ):
        return error.status_code
    return status.HTTP_400_BAD_REQUEST


class GatewayService:

    @staticmethod
    def create_user(
        db: Session,
        identity: IdentityProvider,
        authorization: Optional[str],
        payload: Mapping[str, Any],
    ) -> Tuple[int, Dict[str, Any]]:
        """Run the creation request and return ``(status_code, envelope)``.

        Failures keep their exception type in the log; the envelope only
        carries the message.
        """
        try:
            account = GatewayService._create(db, identity, authorization, payload)
        except PartyAdminError as e:
            logger.warning("create-user rejected (%s): %s", type(e).__name__, e.message)
            return _failure_status(e), {"success": False, "error": e.message}

        return status.HTTP_200_OK, {
            "success": True,
            "message": "User created successfully",
            "user": {
                "id": account.id,
                "email": account.email,
                "full_name": account.full_name,
                "role_id": account.role_id,
                "created_at": account.created_at.isoformat() if account.created_at else None,
            },
        }

    @staticmethod
    def _create(db: Session, identity: IdentityProvider, authorization: Optional[str], payload: Mapping[str, Any]):
        token = _bearer_token(authorization)
        try:
            caller = identity.get_user(token)
        except AuthenticationError as e:
            raise AuthenticationError("Unauthorized") from e

        actor = directory_service.resolve_actor(db, caller.id)
        if not actor.permissions().get("can_manage_users"):
            raise AuthorizationError("Insufficient permissions to create users")

        if any(not payload.get(name) for name in REQUIRED_FIELDS):
            raise ValidationError(REQUIRED_FIELDS_MESSAGE)
        if any(not isinstance(payload.get(name), str) for name in REQUIRED_FIELDS):
            raise ValidationError("Fields email, password, full_name and role_id must be strings")
        email = validate_email(payload["email"])
        validate_password(payload["password"])

        role = db.get(Role, payload["role_id"])
        if role is not None and role.name == TOP_TIER and actor.effective_role != TOP_TIER:
            raise AuthorizationError("Only super admins can assign super admin role")

        account = account_service.create_account(
            db,
            identity,
            email=email,
            full_name=payload["full_name"],
            password=payload["password"],
            role_id=payload["role_id"],
            actor=actor,
            send_welcome_email=payload.get("send_welcome_email") is True,
        )
        logger.info("Account %s created by %s", account.email, actor.email)
        return account


gateway_service = GatewayService()
