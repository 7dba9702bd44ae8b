"""Shared fixtures: in-memory directory, in-memory identity store, seeded roles."""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["IDENTITY_DATABASE_URL"] = "sqlite://"
os.environ["CACHE_ENABLED"] = "false"
os.environ["CELERY_TASK_ALWAYS_EAGER"] = "true"
os.environ["COMPENSATION_BACKOFF_SECONDS"] = "0"
os.environ["DEBUG"] = "false"
os.environ.pop("SMTP_HOST", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import party_admin.models  # noqa: F401
from party_admin.db.base import Base
from party_admin.db.seeds.seed_roles import seed_roles
from party_admin.db.session import create_db_engine, get_db
from party_admin.identity.local import LocalIdentityProvider
from party_admin.identity.provider import get_identity_provider
from party_admin.models.role import Role
from party_admin.services.account_service import account_service
from party_admin.services.directory_service import directory_service

PASSWORD = "secret123"


@pytest.fixture
def engine():
    engine = create_db_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def identity():
    provider = LocalIdentityProvider("sqlite://")
    provider.create_schema()
    yield provider
    provider.drop_schema()
    provider.engine.dispose()


@pytest.fixture
def roles(db):
    seed_roles(db)
    return {role.name: role for role in db.query(Role).all()}


@pytest.fixture
def make_account(db, identity, roles):
    """Create an account through the service role (bootstrap path)."""
    counter = {"n": 0}

    def _make(role_name="user", email=None, full_name=None, password=PASSWORD):
        counter["n"] += 1
        email = email or f"{role_name}{counter['n']}@example.com"
        return account_service.create_account(
            db,
            identity,
            email=email,
            full_name=full_name or f"{role_name.title()} {counter['n']}",
            password=password,
            role_id=roles[role_name].id,
            actor=None,
        )

    return _make


@pytest.fixture
def actor_of(db):
    def _actor(account):
        db.expire_all()
        return directory_service.resolve_actor(db, account.id)

    return _actor


@pytest.fixture
def token_for(identity):
    def _token(account, password=PASSWORD):
        return identity.sign_in_with_password(account.email, password).access_token

    return _token


@pytest.fixture
def client(session_factory, identity):
    from party_admin.main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_identity_provider] = lambda: identity
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
