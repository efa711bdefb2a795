"""
Tests for token issuance and verification.

Uses the real PyJWT and AES code paths; only time is controlled.
"""

import base64

import jwt
import pytest

from tenant_auth.exceptions import AuthErrorCode, TokenExpiredError, TokenInvalidError
from tenant_auth.token_types import (
    MfaOtpData,
    MfaOtpType,
    PayloadError,
    SessionTokenData,
    TokenKind,
    TokenKindMismatch,
    decode_payload,
)
from tenant_auth.tokens import ALGORITHM, TokenAuthority


@pytest.fixture
def tokens(services):
    return services.tokens


@pytest.fixture
def session_data():
    return SessionTokenData(user_id="user-1", email="ann@example.com", session_id="session-1")


def _truncate_ciphertext(token: str) -> str:
    raw = base64.b64decode(token)
    return base64.b64encode(raw[:-1]).decode("ascii")


def _flip_signature_byte(token: str) -> str:
    header, payload, signature = token.split(".")
    flipped = "A" if signature[0] != "A" else "B"
    return ".".join([header, payload, flipped + signature[1:]])


class TestGenerateVerify:
    """Generic generate/verify behaviour."""

    def test_round_trip_returns_payload(self, tokens, session_data):
        token = tokens.generate(TokenKind.ACCESS, session_data, tokens.sign_options(TokenKind.ACCESS))
        result = tokens.verify(TokenKind.ACCESS, token, tokens.verify_options(TokenKind.ACCESS))

        assert result.payload == session_data
        assert result.is_expired is False
        assert result.has_error is False

    def test_claims_carry_type_audience_issuer_and_subject(self, tokens, session_data, auth_config):
        token = tokens.generate(TokenKind.ACCESS, session_data, tokens.sign_options(TokenKind.ACCESS))
        claims = jwt.decode(token, options={"verify_signature": False})

        assert claims["type"] == "access-token"
        assert claims["data"] == {"userId": "user-1", "email": "ann@example.com", "sessionId": "session-1"}
        assert claims["aud"] == auth_config.jwt.audience
        assert claims["iss"] == auth_config.jwt.issuer
        assert claims["sub"] == "user-1"
        assert claims["exp"] - claims["iat"] == 15 * 60
        assert "jti" not in claims

    def test_round_trip_with_explicit_subject(self, tokens, session_data):
        options = tokens.sign_options(TokenKind.ACCESS, subject="tenant-42")
        token = tokens.generate(TokenKind.ACCESS, session_data, options)

        result = tokens.verify(TokenKind.ACCESS, token, tokens.verify_options(TokenKind.ACCESS))

        assert result.has_error is False
        assert result.payload == session_data
        assert result.claims["sub"] == "tenant-42"

    def test_kind_helpers_require_subject_to_be_the_user(self, tokens, session_data):
        options = tokens.sign_options(TokenKind.ACCESS, subject="tenant-42")
        token = tokens.generate(TokenKind.ACCESS, session_data, options)

        with pytest.raises(TokenInvalidError) as exc_info:
            tokens.validate_access_token(token)
        assert exc_info.value.code == AuthErrorCode.ACCESS_TOKEN_INVALID

    def test_refresh_token_carries_jti(self, tokens, session_data):
        token = tokens.generate_refresh_token(session_data, "jti-123")
        result = tokens.validate_refresh_token(token)
        assert result.jti == "jti-123"

    def test_expired_token_still_decodes(self, tokens, session_data, clock):
        token = tokens.generate(TokenKind.ACCESS, session_data, tokens.sign_options(TokenKind.ACCESS))
        clock.advance(minutes=16)

        result = tokens.verify(TokenKind.ACCESS, token, tokens.verify_options(TokenKind.ACCESS))

        assert result.is_expired is True
        assert result.has_error is False
        assert result.payload == session_data

    def test_token_valid_until_expiry(self, tokens, session_data, clock):
        token = tokens.generate_access_token(session_data)
        clock.advance(minutes=14, seconds=59)
        assert tokens.validate_access_token(token).is_expired is False

    def test_flipped_signature_is_error_not_expiry(self, tokens, session_data, clock):
        token = tokens.generate_access_token(session_data)
        tampered = _flip_signature_byte(token)

        result = tokens.verify(TokenKind.ACCESS, tampered, tokens.verify_options(TokenKind.ACCESS))
        assert result.has_error is True
        assert result.is_expired is False

        # Still an error, not an expiry, once the real token would have expired
        clock.advance(days=1)
        result = tokens.verify(TokenKind.ACCESS, tampered, tokens.verify_options(TokenKind.ACCESS))
        assert result.has_error is True
        assert result.is_expired is False

    def test_wrong_secret_is_error(self, tokens, session_data):
        token = tokens.generate_access_token(session_data)
        options = tokens.verify_options(TokenKind.ACCESS)
        options.secret_key = "another-secret-another-secret-another-secret"

        assert tokens.verify(TokenKind.ACCESS, token, options).has_error is True

    def test_wrong_audience_or_issuer_is_error(self, tokens, session_data):
        token = tokens.generate_access_token(session_data)

        options = tokens.verify_options(TokenKind.ACCESS)
        options.audience = "https://elsewhere.example"
        assert tokens.verify(TokenKind.ACCESS, token, options).has_error is True

        options = tokens.verify_options(TokenKind.ACCESS)
        options.issuer = "someone-else"
        assert tokens.verify(TokenKind.ACCESS, token, options).has_error is True

    def test_garbage_is_error(self, tokens):
        result = tokens.verify(TokenKind.ACCESS, "not.a.token", tokens.verify_options(TokenKind.ACCESS))
        assert result.has_error is True
        assert result.payload is None

    def test_kind_replay_rejected_even_with_shared_secret(self, tokens, session_data):
        """A token of one kind signed with another kind's secret still fails on its type claim."""
        options = tokens.sign_options(TokenKind.REFRESH)
        token = tokens.generate(TokenKind.ACCESS, session_data, options)

        result = tokens.verify(TokenKind.REFRESH, token, tokens.verify_options(TokenKind.REFRESH))
        assert result.has_error is True
        assert result.error == "wrong_type"

        with pytest.raises(TokenInvalidError) as exc_info:
            tokens.validate_refresh_token(token)
        assert exc_info.value.code == AuthErrorCode.REFRESH_TOKEN_INVALID_TYPE

    def test_not_yet_valid_token_is_error(self, tokens, session_data, auth_config):
        options = tokens.sign_options(TokenKind.ACCESS)
        options.not_before = 60
        token = tokens.generate(TokenKind.ACCESS, session_data, options)

        result = tokens.verify(TokenKind.ACCESS, token, tokens.verify_options(TokenKind.ACCESS))
        assert result.has_error is True
        assert result.is_expired is False

    def test_unsupported_payload_type_rejected(self, tokens):
        with pytest.raises(TypeError):
            tokens.generate(TokenKind.ACCESS, {"userId": "x"}, tokens.sign_options(TokenKind.ACCESS))


class TestPayloadDecoding:
    """Tagged payload decoding rejects anything unexpected."""

    def test_unknown_type_rejected(self):
        with pytest.raises(TokenKindMismatch):
            decode_payload(TokenKind.ACCESS, {"type": "magic-token", "data": {"userId": "u"}})

    def test_missing_type_rejected(self):
        with pytest.raises(TokenKindMismatch):
            decode_payload(TokenKind.ACCESS, {"data": {"userId": "u"}})

    def test_missing_user_rejected(self):
        with pytest.raises(PayloadError):
            decode_payload(TokenKind.ACCESS, {"type": "access-token", "data": {"email": "a@b.c"}})

    def test_non_object_data_rejected(self):
        with pytest.raises(PayloadError):
            decode_payload(TokenKind.ACCESS, {"type": "access-token", "data": "user-1"})

    def test_unknown_otp_channel_rejected(self):
        claims = {"type": "mfa-otp-token", "data": {"userId": "u", "type": "PIGEON", "code": "123456"}}
        with pytest.raises(PayloadError):
            decode_payload(TokenKind.MFA_OTP, claims)

    def test_subject_is_not_part_of_the_payload(self):
        claims = {"type": "access-token", "sub": "tenant-42", "data": {"userId": "u"}}
        assert decode_payload(TokenKind.ACCESS, claims) == SessionTokenData(user_id="u")

    def test_bad_shape_signed_token_is_error(self, tokens, auth_config):
        secret = auth_config.jwt.for_kind(TokenKind.ACCESS).secret_key
        token = jwt.encode(
            {
                "type": "access-token",
                "data": {"email": "ann@example.com"},
                "iat": 0, "nbf": 0, "exp": 4102444800,
                "aud": auth_config.jwt.audience,
                "iss": auth_config.jwt.issuer,
            },
            secret,
            algorithm=ALGORITHM,
        )
        result = tokens.verify(TokenKind.ACCESS, token, tokens.verify_options(TokenKind.ACCESS))
        assert result.has_error is True
        assert result.error == "malformed"

    def test_mfa_otp_payload_round_trip(self, tokens):
        data = MfaOtpData(user_id="user-1", type=MfaOtpType.EMAIL, code="042042")
        result = tokens.validate_mfa_otp_token(tokens.generate_mfa_otp_token(data))
        assert result.payload == data


class TestKindHelpers:
    """Per-kind helpers: opaque wrapping and fatal errors."""

    @pytest.mark.parametrize("kind", [TokenKind.VERIFICATION, TokenKind.FORGOT_PASSWORD, TokenKind.MFA_AUTH_GATE])
    def test_opaque_kinds_are_not_readable_jwts(self, tokens, session_data, kind):
        token = tokens.issue(kind, session_data)
        assert token.count(".") != 2
        with pytest.raises(jwt.DecodeError):
            jwt.decode(token, options={"verify_signature": False})
        assert tokens.check(kind, token).payload == session_data

    @pytest.mark.parametrize("kind, code", [
        (TokenKind.VERIFICATION, AuthErrorCode.VERIFICATION_TOKEN_INVALID),
        (TokenKind.FORGOT_PASSWORD, AuthErrorCode.FORGOT_PASSWORD_TOKEN_INVALID),
        (TokenKind.MFA_AUTH_GATE, AuthErrorCode.MFA_AUTH_TOKEN_INVALID),
    ])
    def test_tampered_ciphertext_is_invalid_not_expired(self, tokens, session_data, kind, code):
        token = tokens.issue(kind, session_data)
        with pytest.raises(TokenInvalidError) as exc_info:
            tokens.check(kind, _truncate_ciphertext(token))
        assert exc_info.value.code == code

    def test_access_token_signature_failure_is_internal_error(self, tokens, session_data):
        tampered = _flip_signature_byte(tokens.generate_access_token(session_data))
        with pytest.raises(TokenInvalidError) as exc_info:
            tokens.validate_access_token(tampered)
        assert exc_info.value.code == AuthErrorCode.ACCESS_TOKEN_INTERNAL_ERROR

    def test_missing_token_is_not_provided(self, tokens):
        with pytest.raises(TokenInvalidError) as exc_info:
            tokens.validate_refresh_token(None)
        assert exc_info.value.code == AuthErrorCode.REFRESH_TOKEN_NOT_PROVIDED

    def test_check_unexpired_raises_kind_expiry(self, tokens, session_data, clock):
        token = tokens.generate_mfa_auth_token(session_data)
        clock.advance(minutes=16)
        with pytest.raises(TokenExpiredError) as exc_info:
            tokens.check_unexpired(TokenKind.MFA_AUTH_GATE, token)
        assert exc_info.value.code == AuthErrorCode.MFA_AUTH_TOKEN_EXPIRED

    def test_each_kind_uses_its_own_secret(self, tokens, session_data):
        access = tokens.generate_access_token(session_data)
        result = tokens.verify(TokenKind.ACCESS, access, tokens.verify_options(TokenKind.REFRESH))
        assert result.has_error is True


class TestCookies:

    def test_access_cookie_format(self, tokens, auth_config):
        cookie = tokens.access_token_cookie("abc")
        assert cookie == f"access-token=abc; HttpOnly; Secure; Path=/; Max-Age={auth_config.jwt.cookie_max_age}"

    def test_mfa_cookie_uses_short_max_age(self, tokens):
        assert tokens.mfa_auth_token_cookie("gate").endswith("Max-Age=900")

    def test_fingerprint_cookie(self, tokens):
        assert tokens.fingerprint_cookie("fp1").startswith("fingerprint=fp1; HttpOnly; Secure; Path=/")

    def test_logout_cookies_expire_access_and_refresh(self):
        assert TokenAuthority.logout_cookies() == [
            "access-token=; HttpOnly; Secure; Path=/; Max-Age=0",
            "refresh-token=; HttpOnly; Secure; Path=/; Max-Age=0",
        ]
