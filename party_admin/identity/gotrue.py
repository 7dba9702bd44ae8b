"""GoTrue (Supabase Auth) admin client.

Uses the service-role key for every admin call, so this client must only
ever run server-side. Do not log keys or access tokens.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from party_admin.core.config import settings
from party_admin.core.exceptions import (
    AuthenticationError, ExternalDependencyError,
    ResourceConflictError, ResourceNotFoundError,
)
from party_admin.identity.base import IdentityProvider, IdentitySession, IdentityUser

logger = logging.getLogger("party_admin.identity")

_CONFLICT_CODES = {"email_exists", "user_already_exists"}


def _parse_ts(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _to_user(data: Dict[str, Any]) -> IdentityUser:
    return IdentityUser(
        id=data["id"],
        email=data.get("email") or "",
        created_at=_parse_ts(data.get("created_at")),
        last_sign_in_at=_parse_ts(data.get("last_sign_in_at")),
        email_confirmed_at=_parse_ts(data.get("email_confirmed_at")),
        user_metadata=data.get("user_metadata") or {},
        app_metadata=data.get("app_metadata") or {},
    )


class GoTrueIdentityProvider(IdentityProvider):
    def __init__(
        self,
        base_url: Optional[str] = None,
        service_role_key: Optional[str] = None,
        anon_key: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = (base_url or settings.GOTRUE_URL).rstrip("/")
        self._service_key = service_role_key or settings.GOTRUE_SERVICE_ROLE_KEY or ""
        self._anon_key = anon_key or settings.GOTRUE_ANON_KEY or self._service_key
        self._client = httpx.Client(
            base_url=self.base_url,
            timeout=settings.GOTRUE_TIMEOUT_SECONDS,
            transport=transport,
        )

    def _admin_headers(self) -> Dict[str, str]:
        return {"apikey": self._service_key, "Authorization": f"Bearer {self._service_key}"}

    def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            return self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.error("GoTrue %s %s failed: %s", method, path, e)
            raise ExternalDependencyError("Identity provider unavailable")

    @staticmethod
    def _raise_for(r: httpx.Response, action: str) -> None:
        if r.is_success:
            return
        try:
            body = r.json()
        except ValueError:
            body = {}
        code = body.get("error_code") or body.get("code")
        if r.status_code == 404:
            raise ResourceNotFoundError("User not found")
        if code in _CONFLICT_CODES or r.status_code == 409:
            raise ResourceConflictError("Email already exists")
        if r.status_code in (401, 403):
            raise AuthenticationError("Unauthorized")
        logger.error("GoTrue %s failed with %s: %s", action, r.status_code, body.get("msg"))
        raise ExternalDependencyError(f"Failed to {action}")

    def create_user(
        self,
        email: str,
        password: str,
        *,
        email_confirm: bool = True,
        user_metadata: Optional[Dict[str, Any]] = None,
        app_metadata: Optional[Dict[str, Any]] = None,
    ) -> IdentityUser:
        payload = {
            "email": email,
            "password": password,
            "email_confirm": email_confirm,
            "user_metadata": user_metadata or {},
            "app_metadata": app_metadata or {},
        }
        r = self._request("POST", "/admin/users", json=payload, headers=self._admin_headers())
        self._raise_for(r, "create user")
        return _to_user(r.json())

    def get_user_by_id(self, user_id: str) -> Optional[IdentityUser]:
        r = self._request("GET", f"/admin/users/{user_id}", headers=self._admin_headers())
        if r.status_code == 404:
            return None
        self._raise_for(r, "load user")
        return _to_user(r.json())

    def find_user_by_email(self, email: str) -> Optional[IdentityUser]:
        # The admin API has no exact-email lookup; scan the listing.
        target = email.lower()
        for user in self.list_users():
            if user.email.lower() == target:
                return user
        return None

    def list_users(self) -> List[IdentityUser]:
        users: List[IdentityUser] = []
        page = 1
        while True:
            r = self._request(
                "GET", "/admin/users",
                params={"page": page, "per_page": 200},
                headers=self._admin_headers(),
            )
            self._raise_for(r, "list users")
            batch = r.json().get("users") or []
            users.extend(_to_user(u) for u in batch)
            if len(batch) < 200:
                return users
            page += 1

    def update_user(
        self,
        user_id: str,
        *,
        email: Optional[str] = None,
        password: Optional[str] = None,
        user_metadata: Optional[Dict[str, Any]] = None,
    ) -> IdentityUser:
        payload: Dict[str, Any] = {}
        if email is not None:
            payload["email"] = email
        if password is not None:
            payload["password"] = password
        if user_metadata is not None:
            payload["user_metadata"] = user_metadata
        r = self._request("PUT", f"/admin/users/{user_id}", json=payload, headers=self._admin_headers())
        self._raise_for(r, "update user")
        return _to_user(r.json())

    def delete_user(self, user_id: str) -> None:
        r = self._request("DELETE", f"/admin/users/{user_id}", headers=self._admin_headers())
        self._raise_for(r, "delete user")

    def get_user(self, access_token: str) -> IdentityUser:
        r = self._request(
            "GET", "/user",
            headers={"apikey": self._anon_key, "Authorization": f"Bearer {access_token}"},
        )
        if r.status_code in (401, 403, 404):
            raise AuthenticationError("Unauthorized")
        self._raise_for(r, "verify token")
        return _to_user(r.json())

    def sign_in_with_password(self, email: str, password: str) -> IdentitySession:
        r = self._request(
            "POST", "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password},
            headers={"apikey": self._anon_key},
        )
        if r.status_code in (400, 401):
            raise AuthenticationError("Invalid email or password")
        self._raise_for(r, "sign in")
        body = r.json()
        return IdentitySession(
            access_token=body["access_token"],
            expires_in=int(body.get("expires_in") or 3600),
            token_type=body.get("token_type") or "bearer",
            user=_to_user(body["user"]),
        )

    def invite_user_by_email(self, email: str, data: Optional[Dict[str, Any]] = None) -> None:
        r = self._request(
            "POST", "/invite",
            json={"email": email, "data": data or {}},
            headers=self._admin_headers(),
        )
        self._raise_for(r, "invite user")
