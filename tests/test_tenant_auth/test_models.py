"""
Tests for the User and UserSession models.
"""

from datetime import timedelta

from tenant_auth.models import User, UserSession


class TestUserModel:

    def test_to_dict_omits_secrets(self, create_user, clock):
        user = create_user(
            mfa_totp_secret_encrypted="encrypted-secret",
            mfa_otp_code_token="otp-token",
            last_login_date=clock(),
        )

        data = user.to_dict()

        assert data["email"] == "ann@example.com"
        assert data["last_login_date"] == clock().isoformat()
        assert "password" not in data
        assert "mfa_totp_secret_encrypted" not in data
        assert "mfa_otp_code_token" not in data

    def test_lockout_window(self, clock):
        user = User(login_attempt_count=10, login_attempt_date=clock())
        window = timedelta(minutes=10)

        assert user.is_locked_out(10, window, now=clock() + timedelta(minutes=9)) is True
        assert user.is_locked_out(10, window, now=clock() + timedelta(minutes=10)) is False
        assert user.is_locked_out(11, window, now=clock()) is False


class TestUserSessionModel:

    def test_to_dict_omits_refresh_token_id(self, clock):
        session = UserSession(
            id="s1", user_id="u1", refresh_token_jti="jti", is_active=True, expires_at=clock()
        )

        data = session.to_dict()

        assert data["id"] == "s1"
        assert data["expires_at"] == clock().isoformat()
        assert "refresh_token_jti" not in data
