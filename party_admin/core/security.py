"""Bearer authentication dependencies."""

from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from party_admin.core.exceptions import AuthenticationError
from party_admin.core.permissions import Actor
from party_admin.db.session import get_db
from party_admin.identity.base import IdentityProvider
from party_admin.identity.provider import get_identity_provider
from party_admin.services.directory_service import directory_service

# JWT bearer scheme
security_scheme = HTTPBearer(auto_error=False)


def bearer_token(credentials: Optional[HTTPAuthorizationCredentials]) -> str:
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("No authorization header")
    return credentials.credentials


def authenticate_actor(db: Session, identity: IdentityProvider, token: str) -> Actor:
    """Resolve a bearer token to a directory actor.

    Raises:
        AuthenticationError: invalid token, or no directory record.
    """
    user = identity.get_user(token)
    return directory_service.resolve_actor(db, user.id)


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    db: Session = Depends(get_db),
    identity: IdentityProvider = Depends(get_identity_provider),
) -> Actor:
    """Extract the acting admin from the Bearer token."""
    return authenticate_actor(db, identity, bearer_token(credentials))
