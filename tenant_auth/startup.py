"""
Wiring of the auth components and their startup/shutdown.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from tenant_auth.config import AuthConfig
from tenant_auth.email_service import EmailService, NotificationSender
from tenant_auth.login import LoginOrchestrator
from tenant_auth.mfa import MfaChallengeEngine
from tenant_auth.models import create_auth_engine, create_session_factory, init_database
from tenant_auth.rate_limiter import RateLimiter
from tenant_auth.redis_client import RedisClient
from tenant_auth.security_logger import SecurityLogger
from tenant_auth.session_registry import SessionRegistry
from tenant_auth.stores import SessionStore, SqlSessionStore, SqlUserDirectory, UserDirectory
from tenant_auth.token_types import TokenKind
from tenant_auth.tokens import TokenAuthority
from tenant_auth.vault import CredentialVault
from utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class AuthServices:
    config: AuthConfig
    vault: CredentialVault
    tokens: TokenAuthority
    sessions: SessionRegistry
    login: LoginOrchestrator
    mfa: MfaChallengeEngine
    redis_client: Optional[RedisClient] = None


def build_auth_services(
    config: AuthConfig,
    users: UserDirectory,
    session_store: SessionStore,
    notifier: Optional[NotificationSender] = None,
    redis_client: Optional[RedisClient] = None,
    clock: Callable[[], datetime] = utc_now
) -> AuthServices:
    """Assemble every component around the given stores."""
    security_logger = SecurityLogger()
    notifier = notifier or EmailService(config.email)

    vault = CredentialVault(config.jwt.encrypt_key, config.jwt.encrypt_iv, config.password_cost_factor)
    tokens = TokenAuthority(config.jwt, vault, clock=clock)
    sessions = SessionRegistry(
        session_store,
        config.jwt.for_kind(TokenKind.REFRESH).expires_in,
        security_logger,
        clock=clock
    )

    rate_limiter = None
    if config.rate_limit.enabled:
        redis_client = redis_client or RedisClient(config.rate_limit.redis_url)
        rate_limiter = RateLimiter(
            redis_client,
            max_requests=config.rate_limit.max_requests,
            window_seconds=config.rate_limit.window_seconds
        )

    login = LoginOrchestrator(
        config, users, sessions, tokens, vault, notifier, security_logger,
        rate_limiter=rate_limiter, clock=clock
    )
    mfa = MfaChallengeEngine(
        config, users, tokens, vault, notifier, login, security_logger,
        rate_limiter=rate_limiter, clock=clock
    )

    return AuthServices(
        config=config,
        vault=vault,
        tokens=tokens,
        sessions=sessions,
        login=login,
        mfa=mfa,
        redis_client=redis_client,
    )


async def startup_auth_system(config: AuthConfig, notifier: Optional[NotificationSender] = None) -> AuthServices:
    """Create tables, connect Redis when rate limiting is on and return the wired services."""
    try:
        engine = create_auth_engine(config.database.url, config.database.pool_pre_ping)
        init_database(engine)
        session_factory = create_session_factory(engine)
        logger.info("Auth database initialized")

        services = build_auth_services(
            config,
            SqlUserDirectory(session_factory),
            SqlSessionStore(session_factory),
            notifier=notifier,
        )

        if services.redis_client is not None:
            await services.redis_client.connect()

        logger.info("Auth system initialized successfully")
        return services

    except Exception as e:
        logger.error(f"Failed to initialize auth system: {e}")
        raise


async def shutdown_auth_system(services: AuthServices):
    """Cleanup auth system components."""
    if services.redis_client is not None:
        await services.redis_client.disconnect()
    logger.info("Auth system shutdown complete")
