"""Auth service — password sign-in for directory accounts."""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy.orm import Session

from party_admin.identity.base import IdentityProvider
from party_admin.services.account_service import account_service
from party_admin.services.directory_service import directory_service

logger = logging.getLogger("party_admin.auth")


class AuthService:
    """Handles authentication against the identity provider."""

    @staticmethod
    def authenticate(db: Session, identity: IdentityProvider, email: str, password: str) -> Dict[str, Any]:
        """Sign in and return the access token plus the caller's directory view.

        Raises:
            AuthenticationError: bad credentials, or the identity has no
                directory record.
        """
        session = identity.sign_in_with_password(email, password)
        user_id = session.user.id

        # Resolves the directory record before touching it; non-admins stop here.
        directory_service.resolve_actor(db, user_id)
        account_service.record_sign_in(db, user_id, datetime.now(timezone.utc))
        logger.info("User %s signed in", email)

        return {
            "access_token": session.access_token,
            "token_type": session.token_type,
            "expires_in": session.expires_in,
            "user": directory_service.get_user(db, user_id),
        }


auth_service = AuthService()
