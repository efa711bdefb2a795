"""
Shared fixtures for tenant_auth tests.

Stores run against an in-memory SQLite database; the notification sender is
a mock; time is a controllable clock shared by every component.
"""

import secrets
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from tenant_auth.config import AuthConfig, DEFAULT_EXPIRY, JwtConfig, TokenKindConfig
from tenant_auth.models import User, create_auth_engine, create_session_factory, init_database
from tenant_auth.startup import build_auth_services
from tenant_auth.stores import SqlSessionStore, SqlUserDirectory
from tenant_auth.token_types import TokenKind
from utils.timezone_utils import utc_now


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self):
        self.now = utc_now().replace(microsecond=0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def auth_config():
    """Config with a distinct secret per token kind and a cheap bcrypt cost."""
    kinds = {
        kind: TokenKindConfig(secret_key=secrets.token_hex(32), expires_in=DEFAULT_EXPIRY[kind])
        for kind in TokenKind
    }
    return AuthConfig(
        jwt=JwtConfig(
            encrypt_key=secrets.token_hex(16),
            encrypt_iv=secrets.token_hex(8),
            kinds=kinds,
        ),
        password_cost_factor=4,
    )


@pytest.fixture
def session_factory():
    engine = create_auth_engine("sqlite://")
    init_database(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def users(session_factory):
    return SqlUserDirectory(session_factory)


@pytest.fixture
def session_store(session_factory):
    return SqlSessionStore(session_factory)


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def services(auth_config, users, session_store, notifier, clock):
    return build_auth_services(auth_config, users, session_store, notifier=notifier, clock=clock)


@pytest.fixture
def create_user(session_factory, services):
    """Insert a verified user with a known password."""

    def _create(email="ann@example.com", password="correct", **fields):
        fields.setdefault("email_verified", True)
        fields.setdefault("roles", [])
        fields.setdefault("permissions", [])
        db = session_factory()
        try:
            user = User(
                email=email,
                first_name="Ann",
                last_name="Lee",
                password=services.vault.hash_password(password),
                **fields
            )
            db.add(user)
            db.commit()
            db.refresh(user)
            return user
        finally:
            db.close()

    return _create


@pytest.fixture
def count_rows(session_factory):
    """Count rows of a model, optionally filtered."""

    def _count(model, *criteria):
        db = session_factory()
        try:
            return db.query(model).filter(*criteria).count()
        finally:
            db.close()

    return _count
