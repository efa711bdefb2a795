"""
Tests for component wiring and the security event log.
"""

import json
import logging

import pytest

from tenant_auth.rate_limiter import RateLimiter
from tenant_auth.redis_client import RedisClient
from tenant_auth.security_logger import SECURITY_LOGGER_NAME, SecurityLogger
from tenant_auth.startup import build_auth_services, shutdown_auth_system
from tenant_auth.token_types import TokenKind


class TestBuildAuthServices:

    def test_components_share_collaborators(self, services):
        assert services.login.tokens is services.tokens
        assert services.mfa.login is services.login
        assert services.tokens.vault is services.vault
        assert services.login.rate_limiter is None
        assert services.redis_client is None

    def test_rate_limiting_enabled(self, auth_config, users, session_store, notifier):
        auth_config.rate_limit.enabled = True

        services = build_auth_services(auth_config, users, session_store, notifier=notifier)

        assert isinstance(services.redis_client, RedisClient)
        assert isinstance(services.login.rate_limiter, RateLimiter)
        assert services.mfa.rate_limiter is services.login.rate_limiter
        assert services.login.rate_limiter.max_requests == auth_config.rate_limit.max_requests

    def test_session_ttl_follows_refresh_token(self, services, auth_config):
        assert services.sessions.session_ttl.total_seconds() == auth_config.jwt.for_kind(TokenKind.REFRESH).expires_in

    @pytest.mark.asyncio
    async def test_shutdown_without_redis(self, services):
        await shutdown_auth_system(services)


class TestSecurityLogger:

    def test_failed_login_logged_as_warning_without_password(self, caplog):
        security_logger = SecurityLogger()

        with caplog.at_level(logging.INFO, logger=SECURITY_LOGGER_NAME):
            security_logger.login_attempt(
                "ann@example.com", "203.0.113.7", False, user_id="user-1",
                details={"reason": "wrong_password"}
            )

        record = caplog.records[-1]
        assert record.levelno == logging.WARNING
        event = json.loads(record.getMessage())
        assert event["event_type"] == "login_attempt"
        assert event["success"] is False
        assert event["ip_address"] == "203.0.113.7"
        assert event["details"] == {"reason": "wrong_password", "method": "password"}
        assert "user_agent" not in event

    def test_session_created_truncates_user_agent(self, caplog):
        security_logger = SecurityLogger()

        with caplog.at_level(logging.INFO, logger=SECURITY_LOGGER_NAME):
            security_logger.session_created("user-1", "session-1", None, "x" * 500)

        event = json.loads(caplog.records[-1].getMessage())
        assert event["event_type"] == "session_created"
        assert len(event["user_agent"]) == 100
