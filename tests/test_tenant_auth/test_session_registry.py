"""
Tests for session lifecycle and the SQL stores underneath it.
"""

from datetime import timedelta

import pytest

from tenant_auth.models import UserSession
from tenant_auth.session_registry import RequestMetadata


@pytest.fixture
def registry(services):
    return services.sessions


class TestSessionRegistry:

    @pytest.mark.asyncio
    async def test_create_persists_active_session(self, registry, create_user, clock, auth_config):
        user = create_user()
        session = await registry.create(user.id, "jti-1", "fp1", RequestMetadata("10.0.0.1", "pytest"))

        assert session.is_active is True
        assert session.refresh_token_jti == "jti-1"
        assert session.fingerprint == "fp1"
        assert session.ip_address == "10.0.0.1"
        assert session.expires_at == clock() + timedelta(days=15)

    @pytest.mark.asyncio
    async def test_find_active_with_user_joins_both(self, registry, create_user):
        user = create_user()
        session = await registry.create(user.id, "jti-1", "fp1")

        found = await registry.find_active_with_user(user.id, session.id)

        assert found.user.id == user.id
        assert found.user.email == "ann@example.com"
        assert found.session.id == session.id

    @pytest.mark.asyncio
    async def test_disabled_session_is_not_found(self, registry, create_user, count_rows):
        user = create_user()
        session = await registry.create(user.id, "jti-1", "fp1")

        await registry.disable(session.id)
        found = await registry.find_active_with_user(user.id, session.id)

        assert found.user.id == user.id
        assert found.session is None
        # Disabled, not deleted
        assert count_rows(UserSession, UserSession.id == session.id, UserSession.expires_at.is_(None)) == 1

    @pytest.mark.asyncio
    async def test_disable_is_idempotent(self, registry, create_user):
        user = create_user()
        session = await registry.create(user.id, "jti-1", "fp1")
        await registry.disable(session.id)
        await registry.disable(session.id)
        assert (await registry.find_active_with_user(user.id, session.id)).session is None

    @pytest.mark.asyncio
    async def test_session_of_other_user_is_not_found(self, registry, create_user):
        ann = create_user()
        bob = create_user(email="bob@example.com")
        bobs_session = await registry.create(bob.id, "jti-b", "fp")

        found = await registry.find_active_with_user(ann.id, bobs_session.id)
        assert found.user.id == ann.id
        assert found.session is None

    @pytest.mark.asyncio
    async def test_inactive_or_missing_user_is_none(self, registry, create_user):
        user = create_user(is_active=False)
        session = await registry.create(user.id, "jti-1", "fp1")

        assert await registry.find_active_with_user(user.id, session.id) is None
        assert await registry.find_active_with_user("missing-user", session.id) is None

    @pytest.mark.asyncio
    async def test_disable_all_and_list_active(self, registry, create_user):
        user = create_user()
        first = await registry.create(user.id, "jti-1", "fp1")
        await registry.create(user.id, "jti-2", "fp2")

        assert len(await registry.list_active(user.id)) == 2
        await registry.disable(first.id)
        assert len(await registry.list_active(user.id)) == 1

        assert await registry.disable_all(user.id) == 1
        assert await registry.list_active(user.id) == []


class TestUserDirectoryAtomicity:
    """Lockout counting and OTP swaps happen in single statements."""

    @pytest.mark.asyncio
    async def test_failed_attempts_accumulate_inside_window(self, users, create_user, clock):
        user = create_user()
        window = timedelta(minutes=10)

        assert await users.record_failed_attempt(user.id, "1.1.1.1", clock(), window) == 1
        clock.advance(minutes=5)
        assert await users.record_failed_attempt(user.id, "1.1.1.1", clock(), window) == 2

        stored = await users.get_by_id(user.id)
        assert stored.login_attempt_count == 2
        assert stored.login_attempt_ip == "1.1.1.1"
        assert stored.login_attempt_date == clock()

    @pytest.mark.asyncio
    async def test_failed_attempts_restart_after_window(self, users, create_user, clock):
        user = create_user()
        window = timedelta(minutes=10)

        for _ in range(3):
            await users.record_failed_attempt(user.id, None, clock(), window)
        clock.advance(minutes=11)

        assert await users.record_failed_attempt(user.id, None, clock(), window) == 1

    @pytest.mark.asyncio
    async def test_successful_login_resets_counters(self, users, create_user, clock):
        user = create_user()
        await users.record_failed_attempt(user.id, "1.1.1.1", clock(), timedelta(minutes=10))

        await users.record_successful_login(user.id, "2.2.2.2", clock())

        stored = await users.get_by_id(user.id)
        assert stored.login_attempt_count == 0
        assert stored.login_attempt_date is None
        assert stored.last_login_ip == "2.2.2.2"
        assert stored.last_login_date == clock()

    @pytest.mark.asyncio
    async def test_otp_swap_only_succeeds_from_expected_value(self, users, create_user):
        user = create_user()

        assert await users.swap_otp_token(user.id, None, "first") is True
        # A second writer that also saw "no token" loses
        assert await users.swap_otp_token(user.id, None, "second") is False
        assert (await users.get_by_id(user.id)).mfa_otp_code_token == "first"

        assert await users.swap_otp_token(user.id, "first", "third") is True
        assert (await users.get_by_id(user.id)).mfa_otp_code_token == "third"

    @pytest.mark.asyncio
    async def test_duplicate_email_rejected(self, users, create_user):
        from tenant_auth.exceptions import AuthError, AuthErrorCode

        create_user()
        with pytest.raises(AuthError) as exc_info:
            await users.create("ann@example.com")
        assert exc_info.value.code == AuthErrorCode.EMAIL_ALREADY_EXISTS
