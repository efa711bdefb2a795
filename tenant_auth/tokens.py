"""
Signed token issuance and verification for all six token kinds.

Tokens are HS256 JWTs carrying `{type, data}` plus the standard time,
audience, issuer and subject claims. Every kind is signed with its own
secret. Verification never raises for a well-signed token that has merely
expired: it decodes it and reports `is_expired` so callers can run the
refresh flow. Anything else that goes wrong is reported as `has_error`.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import jwt

from tenant_auth.config import JwtConfig
from tenant_auth.exceptions import AuthErrorCode, EncryptionError, TokenExpiredError, TokenInvalidError
from tenant_auth.token_types import (
    MfaOtpData,
    PayloadError,
    SessionTokenData,
    TokenKind,
    TokenKindMismatch,
    TokenPayload,
    decode_payload,
)
from tenant_auth.vault import CredentialVault
from utils.timezone_utils import to_timestamp, utc_now

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"

ACCESS_TOKEN_COOKIE = TokenKind.ACCESS.value
REFRESH_TOKEN_COOKIE = TokenKind.REFRESH.value
MFA_AUTH_TOKEN_COOKIE = TokenKind.MFA_AUTH_GATE.value
FINGERPRINT_COOKIE = "fingerprint"


@dataclass
class SignOptions:
    secret_key: str
    expires_in: int
    audience: str
    issuer: str
    not_before: int = 0
    subject: Optional[str] = None


@dataclass
class VerifyOptions:
    secret_key: str
    audience: str
    issuer: str


@dataclass
class TokenVerification:
    """Outcome of verify(). `payload` is set whenever the signature checked out."""

    payload: Optional[TokenPayload] = None
    is_expired: bool = False
    has_error: bool = False
    error: Optional[str] = None
    claims: Dict[str, Any] = field(default_factory=dict)

    @property
    def expires_at(self) -> Optional[int]:
        return self.claims.get("exp")

    @property
    def jti(self) -> Optional[str]:
        return self.claims.get("jti")


@dataclass(frozen=True)
class KindErrors:
    """Error codes a kind's helpers raise."""

    not_provided: AuthErrorCode
    invalid: AuthErrorCode
    expired: AuthErrorCode
    internal: AuthErrorCode
    wrong_type: Optional[AuthErrorCode] = None


KIND_ERRORS = {
    TokenKind.ACCESS: KindErrors(
        AuthErrorCode.ACCESS_TOKEN_NOT_PROVIDED,
        AuthErrorCode.ACCESS_TOKEN_INVALID,
        AuthErrorCode.ACCESS_TOKEN_EXPIRED,
        AuthErrorCode.ACCESS_TOKEN_INTERNAL_ERROR,
    ),
    TokenKind.REFRESH: KindErrors(
        AuthErrorCode.REFRESH_TOKEN_NOT_PROVIDED,
        AuthErrorCode.REFRESH_TOKEN_INVALID,
        AuthErrorCode.REFRESH_TOKEN_EXPIRED,
        AuthErrorCode.REFRESH_TOKEN_INTERNAL_ERROR,
        AuthErrorCode.REFRESH_TOKEN_INVALID_TYPE,
    ),
    TokenKind.VERIFICATION: KindErrors(
        AuthErrorCode.VERIFICATION_TOKEN_INVALID,
        AuthErrorCode.VERIFICATION_TOKEN_INVALID,
        AuthErrorCode.VERIFICATION_TOKEN_EXPIRED,
        AuthErrorCode.VERIFICATION_TOKEN_INTERNAL_ERROR,
    ),
    TokenKind.FORGOT_PASSWORD: KindErrors(
        AuthErrorCode.FORGOT_PASSWORD_TOKEN_INVALID,
        AuthErrorCode.FORGOT_PASSWORD_TOKEN_INVALID,
        AuthErrorCode.FORGOT_PASSWORD_TOKEN_EXPIRED,
        AuthErrorCode.FORGOT_PASSWORD_TOKEN_INTERNAL_ERROR,
    ),
    TokenKind.MFA_AUTH_GATE: KindErrors(
        AuthErrorCode.MFA_AUTH_TOKEN_NOT_PROVIDED,
        AuthErrorCode.MFA_AUTH_TOKEN_INVALID,
        AuthErrorCode.MFA_AUTH_TOKEN_EXPIRED,
        AuthErrorCode.MFA_AUTH_TOKEN_INTERNAL_ERROR,
    ),
    TokenKind.MFA_OTP: KindErrors(
        AuthErrorCode.MFA_OTP_TOKEN_NOT_PROVIDED,
        AuthErrorCode.MFA_OTP_TOKEN_INVALID,
        AuthErrorCode.MFA_OTP_TOKEN_EXPIRED,
        AuthErrorCode.MFA_OTP_TOKEN_INTERNAL_ERROR,
        AuthErrorCode.MFA_OTP_TOKEN_INCORRECT_TYPE,
    ),
}


def build_cookie(name: str, value: str, max_age: int) -> str:
    """Set-Cookie directive in the format every auth cookie uses."""
    return f"{name}={value}; HttpOnly; Secure; Path=/; Max-Age={max_age}"


class TokenAuthority:
    """Issue and verify tokens; build the cookies that carry them."""

    def __init__(
        self,
        config: JwtConfig,
        vault: CredentialVault,
        clock: Callable[[], datetime] = utc_now
    ):
        self.config = config
        self.vault = vault
        self.clock = clock

    # ------------------------------------------------------------------
    # Generic operations
    # ------------------------------------------------------------------

    def generate(
        self,
        kind: TokenKind,
        payload: TokenPayload,
        options: SignOptions,
        jti: Optional[str] = None
    ) -> str:
        """
        Sign a token of the given kind.

        Args:
            kind: Token kind, written into the `type` claim
            payload: Payload matching the kind's shape
            options: Secret, lifetime, audience, issuer and optional subject
            jti: Optional unique id claim

        Returns:
            Compact JWS string
        """
        if not isinstance(payload, (SessionTokenData, MfaOtpData)):
            raise TypeError(f"Unsupported payload type {type(payload).__name__}")

        issued_at = to_timestamp(self.clock())
        claims = {
            "type": kind.value,
            "data": payload.to_claims(),
            "iat": issued_at,
            "nbf": issued_at + options.not_before,
            "exp": issued_at + options.expires_in,
            "aud": options.audience,
            "iss": options.issuer,
            "sub": options.subject or payload.user_id,
        }
        if jti:
            claims["jti"] = jti

        return jwt.encode(claims, options.secret_key, algorithm=ALGORITHM)

    def verify(self, kind: TokenKind, token: str, options: VerifyOptions) -> TokenVerification:
        """
        Verify a token of the given kind without raising.

        Expiry and not-before are checked against this authority's clock so
        an expired token can still be decoded and handed back.
        """
        try:
            claims = jwt.decode(
                token,
                options.secret_key,
                algorithms=[ALGORITHM],
                audience=options.audience,
                issuer=options.issuer,
                options={
                    "verify_exp": False,
                    "verify_nbf": False,
                    "verify_iat": False,
                    "require": ["exp", "iat", "nbf", "aud", "iss"],
                },
            )
        except jwt.InvalidTokenError as e:
            logger.debug(f"{kind.value} rejected: {e}")
            return TokenVerification(has_error=True, error="invalid")

        try:
            payload = decode_payload(kind, claims)
        except TokenKindMismatch as e:
            logger.debug(f"{kind.value} rejected: {e}")
            return TokenVerification(has_error=True, error="wrong_type", claims=claims)
        except PayloadError as e:
            logger.debug(f"{kind.value} rejected: {e}")
            return TokenVerification(has_error=True, error="malformed", claims=claims)

        now = to_timestamp(self.clock())
        try:
            expires_at = int(claims["exp"])
            not_before = int(claims["nbf"])
        except (TypeError, ValueError):
            return TokenVerification(has_error=True, error="malformed", claims=claims)

        if not_before > now:
            return TokenVerification(has_error=True, error="not_yet_valid", claims=claims)

        return TokenVerification(
            payload=payload,
            is_expired=expires_at <= now,
            claims=claims,
        )

    # ------------------------------------------------------------------
    # Per-kind helpers
    # ------------------------------------------------------------------

    def sign_options(self, kind: TokenKind, subject: Optional[str] = None) -> SignOptions:
        kind_config = self.config.for_kind(kind)
        return SignOptions(
            secret_key=kind_config.secret_key,
            expires_in=kind_config.expires_in,
            audience=self.config.audience,
            issuer=self.config.issuer,
            not_before=self.config.not_before,
            subject=subject,
        )

    def verify_options(self, kind: TokenKind) -> VerifyOptions:
        return VerifyOptions(
            secret_key=self.config.for_kind(kind).secret_key,
            audience=self.config.audience,
            issuer=self.config.issuer,
        )

    def issue(self, kind: TokenKind, payload: TokenPayload, jti: Optional[str] = None) -> str:
        """Sign with the kind's configured settings, wrapping opaque kinds."""
        token = self.generate(kind, payload, self.sign_options(kind), jti=jti)
        if kind.is_opaque:
            token = self.vault.encrypt_token(token)
        return token

    def check(self, kind: TokenKind, token: Optional[str]) -> TokenVerification:
        """
        Verify with the kind's configured settings.

        Returns the verification for valid and expired tokens alike.

        Raises:
            TokenInvalidError: If the token is missing, cannot be unwrapped,
                is of another kind or fails signature/claim checks
        """
        errors = KIND_ERRORS[kind]
        if not token:
            raise TokenInvalidError(errors.not_provided)

        if kind.is_opaque:
            try:
                token = self.vault.decrypt_token(token)
            except EncryptionError:
                raise TokenInvalidError(errors.invalid)

        result = self.verify(kind, token, self.verify_options(kind))
        if result.has_error:
            if result.error == "wrong_type" and errors.wrong_type is not None:
                raise TokenInvalidError(errors.wrong_type)
            raise TokenInvalidError(errors.internal)

        # issue() always signs the payload's user as subject
        if result.claims.get("sub") != result.payload.user_id:
            logger.debug(f"{kind.value} rejected: subject does not match payload user")
            raise TokenInvalidError(errors.invalid)
        return result

    def check_unexpired(self, kind: TokenKind, token: Optional[str]) -> TokenVerification:
        """check(), additionally raising TokenExpiredError for expired tokens."""
        result = self.check(kind, token)
        if result.is_expired:
            raise TokenExpiredError(KIND_ERRORS[kind].expired)
        return result

    def generate_access_token(self, data: SessionTokenData) -> str:
        return self.issue(TokenKind.ACCESS, data)

    def validate_access_token(self, token: Optional[str]) -> TokenVerification:
        return self.check(TokenKind.ACCESS, token)

    def generate_refresh_token(self, data: SessionTokenData, jti: str) -> str:
        return self.issue(TokenKind.REFRESH, data, jti=jti)

    def validate_refresh_token(self, token: Optional[str]) -> TokenVerification:
        return self.check(TokenKind.REFRESH, token)

    def generate_verification_token(self, data: SessionTokenData) -> str:
        return self.issue(TokenKind.VERIFICATION, data)

    def validate_verification_token(self, token: Optional[str]) -> TokenVerification:
        return self.check(TokenKind.VERIFICATION, token)

    def generate_forgot_password_token(self, data: SessionTokenData) -> str:
        return self.issue(TokenKind.FORGOT_PASSWORD, data)

    def validate_forgot_password_token(self, token: Optional[str]) -> TokenVerification:
        return self.check(TokenKind.FORGOT_PASSWORD, token)

    def generate_mfa_auth_token(self, data: SessionTokenData) -> str:
        return self.issue(TokenKind.MFA_AUTH_GATE, data)

    def validate_mfa_auth_token(self, token: Optional[str]) -> TokenVerification:
        return self.check(TokenKind.MFA_AUTH_GATE, token)

    def generate_mfa_otp_token(self, data: MfaOtpData) -> str:
        return self.issue(TokenKind.MFA_OTP, data)

    def validate_mfa_otp_token(self, token: Optional[str]) -> TokenVerification:
        return self.check(TokenKind.MFA_OTP, token)

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    def access_token_cookie(self, token: str) -> str:
        return build_cookie(ACCESS_TOKEN_COOKIE, token, self.config.cookie_max_age)

    def refresh_token_cookie(self, token: str) -> str:
        return build_cookie(REFRESH_TOKEN_COOKIE, token, self.config.cookie_max_age)

    def fingerprint_cookie(self, fingerprint: str) -> str:
        return build_cookie(FINGERPRINT_COOKIE, fingerprint, self.config.cookie_max_age)

    def mfa_auth_token_cookie(self, token: str) -> str:
        return build_cookie(MFA_AUTH_TOKEN_COOKIE, token, self.config.mfa_cookie_max_age)

    @staticmethod
    def logout_cookies() -> List[str]:
        """Directives that clear the access and refresh cookies."""
        return [
            build_cookie(ACCESS_TOKEN_COOKIE, "", 0),
            build_cookie(REFRESH_TOKEN_COOKIE, "", 0),
        ]
