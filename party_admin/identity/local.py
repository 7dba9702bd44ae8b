"""Self-hosted identity provider backed by its own database.

Used for development, tests and single-host deployments. It deliberately
runs on a separate engine from the directory so that account creation keeps
the same two-system shape as a hosted provider.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import Column, String, Text, DateTime, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from party_admin.core.config import settings
from party_admin.core.crypto import (
    hash_password, verify_password, create_access_token, decode_token,
)
from party_admin.core.exceptions import (
    AuthenticationError, ExternalDependencyError,
    ResourceConflictError, ResourceNotFoundError,
)
from party_admin.core.validators import normalize_email
from party_admin.db.session import create_db_engine
from party_admin.identity.base import IdentityProvider, IdentitySession, IdentityUser

logger = logging.getLogger("party_admin.identity")

IdentityBase = declarative_base()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IdentityRecord(IdentityBase):
    """Credential record owned by the identity provider."""
    __tablename__ = "auth_users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    email_confirmed_at = Column(DateTime, nullable=True)
    user_metadata_json = Column(Text, nullable=True)
    app_metadata_json = Column(Text, nullable=True)
    invited_at = Column(DateTime, nullable=True)
    last_sign_in_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=_utcnow, nullable=False)
    updated_at = Column(DateTime, default=_utcnow, onupdate=_utcnow, nullable=False)


def _to_user(record: IdentityRecord) -> IdentityUser:
    return IdentityUser(
        id=record.id,
        email=record.email,
        created_at=record.created_at,
        last_sign_in_at=record.last_sign_in_at,
        email_confirmed_at=record.email_confirmed_at,
        user_metadata=json.loads(record.user_metadata_json or "{}"),
        app_metadata=json.loads(record.app_metadata_json or "{}"),
    )


def _find_by_email(db, email: str) -> Optional[IdentityRecord]:
    return (
        db.query(IdentityRecord)
        .filter(func.lower(IdentityRecord.email) == normalize_email(email))
        .first()
    )


class LocalIdentityProvider(IdentityProvider):
    """Identity provider storing credentials in ``auth_users``."""

    def __init__(self, url: Optional[str] = None):
        self.engine = create_db_engine(url or settings.IDENTITY_DATABASE_URL)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_schema(self) -> None:
        IdentityBase.metadata.create_all(bind=self.engine)

    def drop_schema(self) -> None:
        IdentityBase.metadata.drop_all(bind=self.engine)

    def create_user(
        self,
        email: str,
        password: str,
        *,
        email_confirm: bool = True,
        user_metadata: Optional[Dict[str, Any]] = None,
        app_metadata: Optional[Dict[str, Any]] = None,
    ) -> IdentityUser:
        record = IdentityRecord(
            email=normalize_email(email),
            hashed_password=hash_password(password),
            email_confirmed_at=_utcnow() if email_confirm else None,
            user_metadata_json=json.dumps(user_metadata or {}),
            app_metadata_json=json.dumps(app_metadata or {}),
        )
        with self._session_factory() as db:
            db.add(record)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise ResourceConflictError("Email already exists")
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Identity store insert failed for %s: %s", email, e)
                raise ExternalDependencyError("Failed to create user")
            db.refresh(record)
            return _to_user(record)

    def get_user_by_id(self, user_id: str) -> Optional[IdentityUser]:
        with self._session_factory() as db:
            record = db.get(IdentityRecord, user_id)
            return _to_user(record) if record else None

    def find_user_by_email(self, email: str) -> Optional[IdentityUser]:
        with self._session_factory() as db:
            record = _find_by_email(db, email)
            return _to_user(record) if record else None

    def list_users(self) -> List[IdentityUser]:
        with self._session_factory() as db:
            records = db.query(IdentityRecord).order_by(IdentityRecord.created_at).all()
            return [_to_user(r) for r in records]

    def update_user(
        self,
        user_id: str,
        *,
        email: Optional[str] = None,
        password: Optional[str] = None,
        user_metadata: Optional[Dict[str, Any]] = None,
    ) -> IdentityUser:
        with self._session_factory() as db:
            record = db.get(IdentityRecord, user_id)
            if record is None:
                raise ResourceNotFoundError(f"Identity {user_id} not found")
            if email is not None:
                record.email = normalize_email(email)
            if password is not None:
                record.hashed_password = hash_password(password)
            if user_metadata is not None:
                merged = json.loads(record.user_metadata_json or "{}")
                merged.update(user_metadata)
                record.user_metadata_json = json.dumps(merged)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise ResourceConflictError("Email already exists")
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Identity store update failed for %s: %s", user_id, e)
                raise ExternalDependencyError("Failed to update user")
            db.refresh(record)
            return _to_user(record)

    def delete_user(self, user_id: str) -> None:
        with self._session_factory() as db:
            record = db.get(IdentityRecord, user_id)
            if record is None:
                raise ResourceNotFoundError(f"Identity {user_id} not found")
            db.delete(record)
            try:
                db.commit()
            except SQLAlchemyError as e:
                db.rollback()
                logger.error("Identity store delete failed for %s: %s", user_id, e)
                raise ExternalDependencyError("Failed to delete user")

    def get_user(self, access_token: str) -> IdentityUser:
        payload = decode_token(access_token)
        user = self.get_user_by_id(str(payload.get("sub")))
        if user is None:
            raise AuthenticationError("Unauthorized")
        return user

    def sign_in_with_password(self, email: str, password: str) -> IdentitySession:
        with self._session_factory() as db:
            record = _find_by_email(db, email)
            if not record or not verify_password(password, record.hashed_password):
                raise AuthenticationError("Invalid email or password")
            if record.email_confirmed_at is None:
                raise AuthenticationError("Email not confirmed")

            record.last_sign_in_at = _utcnow()
            db.commit()
            db.refresh(record)

            token = create_access_token({"sub": record.id, "email": record.email})
            return IdentitySession(
                access_token=token,
                expires_in=settings.JWT_EXPIRY_MINUTES * 60,
                user=_to_user(record),
            )

    def invite_user_by_email(self, email: str, data: Optional[Dict[str, Any]] = None) -> None:
        with self._session_factory() as db:
            record = _find_by_email(db, email)
            if record is None:
                raise ResourceNotFoundError(f"Identity {email} not found")
            record.invited_at = _utcnow()
            if data:
                merged = json.loads(record.user_metadata_json or "{}")
                merged.update(data)
                record.user_metadata_json = json.dumps(merged)
            db.commit()
        logger.info("Recorded invitation for %s", email)
