"""
Database models for authentication.
"""

import uuid
from datetime import timedelta
from typing import Callable

from sqlalchemy import Boolean, Column, ForeignKey, Integer, JSON, String, Text, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from utils.db_datetime_utils import UTCDatetimeMixin, utc_datetime_column
from utils.timezone_utils import ensure_utc, utc_now

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class User(UTCDatetimeMixin, Base):
    """User account with lockout counters and MFA configuration."""
    __tablename__ = "users"
    _private_fields = ("password", "mfa_totp_secret_encrypted", "mfa_otp_code_token")

    id = Column(String(36), primary_key=True, default=_new_id)
    email = Column(String(320), unique=True, nullable=False, index=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    password = Column(String(128), nullable=True)
    roles = Column(JSON, nullable=False, default=list)
    permissions = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, default=True, nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)

    login_attempt_count = Column(Integer, default=0, nullable=False)
    login_attempt_date = utc_datetime_column(nullable=True)
    login_attempt_ip = Column(String(45), nullable=True)
    last_login_date = utc_datetime_column(nullable=True)
    last_login_ip = Column(String(45), nullable=True)

    # MFA configuration
    mfa_is_enable = Column(Boolean, default=False, nullable=False)
    mfa_totp_secret_encrypted = Column(Text, nullable=True)
    mfa_otp_code_token = Column(Text, nullable=True)

    def is_locked_out(self, max_failed_attempts: int, window: timedelta, now=None) -> bool:
        """True while the failure count is at the limit and the last failure is inside the window."""
        if (self.login_attempt_count or 0) < max_failed_attempts:
            return False
        if self.login_attempt_date is None:
            return False
        now = now or utc_now()
        return now - ensure_utc(self.login_attempt_date) < window


class UserSession(UTCDatetimeMixin, Base):
    """One row per login event. Disabled, never deleted, on sign-out."""
    __tablename__ = "user_sessions"
    _private_fields = ("refresh_token_jti",)

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    refresh_token_jti = Column(String(64), nullable=False, index=True)
    fingerprint = Column(String(256), nullable=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(512), nullable=True)
    expires_at = utc_datetime_column(nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)


def create_auth_engine(database_url: str, pool_pre_ping: bool = True) -> Engine:
    """
    Create the engine for the auth database.

    In-memory SQLite URLs get a StaticPool so every session shares the
    same connection.
    """
    if database_url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, **kwargs)

    return create_engine(
        database_url,
        pool_size=5,
        max_overflow=10,
        pool_timeout=30,
        pool_recycle=3600,
        pool_pre_ping=pool_pre_ping
    )


def create_session_factory(engine: Engine) -> Callable:
    """sessionmaker bound to the auth engine."""
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=engine)


def init_database(engine: Engine) -> None:
    """Create all auth tables."""
    Base.metadata.create_all(bind=engine)
