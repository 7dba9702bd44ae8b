"""Identity provider interface.

The identity provider owns credentials and issues access tokens. It is a
separate system from the directory database: nothing here may assume the
two share a transaction.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional


@dataclass
class IdentityUser:
    id: str
    email: str
    created_at: datetime
    last_sign_in_at: Optional[datetime] = None
    email_confirmed_at: Optional[datetime] = None
    user_metadata: Dict[str, Any] = field(default_factory=dict)
    app_metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_managed_admin(self) -> bool:
        return bool(self.app_metadata.get("is_admin"))


@dataclass
class IdentitySession:
    access_token: str
    expires_in: int
    user: IdentityUser
    token_type: str = "bearer"


class IdentityProvider(ABC):
    """Operations the account service needs from an identity provider.

    Implementations raise ``ResourceConflictError`` for a duplicate email,
    ``ResourceNotFoundError`` for an unknown user id,
    ``AuthenticationError`` for bad credentials or tokens and
    ``ExternalDependencyError`` for anything else.
    """

    @abstractmethod
    def create_user(
        self,
        email: str,
        password: str,
        *,
        email_confirm: bool = True,
        user_metadata: Optional[Dict[str, Any]] = None,
        app_metadata: Optional[Dict[str, Any]] = None,
    ) -> IdentityUser:
        ...

    @abstractmethod
    def get_user_by_id(self, user_id: str) -> Optional[IdentityUser]:
        ...

    @abstractmethod
    def find_user_by_email(self, email: str) -> Optional[IdentityUser]:
        ...

    @abstractmethod
    def list_users(self) -> List[IdentityUser]:
        ...

    @abstractmethod
    def update_user(
        self,
        user_id: str,
        *,
        email: Optional[str] = None,
        password: Optional[str] = None,
        user_metadata: Optional[Dict[str, Any]] = None,
    ) -> IdentityUser:
        ...

    @abstractmethod
    def delete_user(self, user_id: str) -> None:
        ...

    @abstractmethod
    def get_user(self, access_token: str) -> IdentityUser:
        """Return the user an access token belongs to."""

    @abstractmethod
    def sign_in_with_password(self, email: str, password: str) -> IdentitySession:
        ...

    @abstractmethod
    def invite_user_by_email(self, email: str, data: Optional[Dict[str, Any]] = None) -> None:
        ...
