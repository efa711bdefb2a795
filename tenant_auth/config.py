"""
Configuration models for the auth core.

Every component receives an AuthConfig (or the relevant sub-model) through
its constructor. AuthConfig.from_env() builds one from environment variables
for production use; tests construct the models directly.
"""

import os
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from tenant_auth.token_types import TokenKind


class TokenKindConfig(BaseModel):
    """Signing settings for one token kind."""

    secret_key: str = Field(
        description="HMAC secret used to sign and verify tokens of this kind"
    )
    expires_in: int = Field(
        description="Token lifetime in seconds"
    )


class JwtConfig(BaseModel):
    """Settings shared by every token kind plus the per-kind secrets."""

    audience: str = Field(
        default="https://lets0.com",
        description="Audience claim embedded in and required of every token"
    )
    issuer: str = Field(
        default="lets0",
        description="Issuer claim embedded in and required of every token"
    )
    not_before: int = Field(
        default=0,
        description="Seconds after issuance before a token becomes valid"
    )
    encrypt_key: str = Field(
        description="Key for the AES-CBC wrap applied to link and gate tokens"
    )
    encrypt_iv: str = Field(
        description="IV for the AES-CBC wrap applied to link and gate tokens"
    )
    cookie_max_age: int = Field(
        default=365 * 24 * 60 * 60,
        description="Max-Age in seconds for the access, refresh and fingerprint cookies"
    )
    mfa_cookie_max_age: int = Field(
        default=15 * 60,
        description="Max-Age in seconds for the MFA gate cookie"
    )
    kinds: Dict[TokenKind, TokenKindConfig] = Field(
        description="Per-kind signing settings; every TokenKind must be present"
    )

    def for_kind(self, kind: TokenKind) -> TokenKindConfig:
        """Settings for one token kind."""
        try:
            return self.kinds[kind]
        except KeyError:
            raise ValueError(f"No signing settings configured for {kind.value}")


class LockoutConfig(BaseModel):
    """Brute-force lockout on password sign-in."""

    max_failed_attempts: int = Field(
        default=10,
        description="Failed attempts inside the window after which sign-in is refused"
    )
    window_seconds: int = Field(
        default=10 * 60,
        description="Lockout window measured from the last failed attempt"
    )


class MfaSettings(BaseModel):
    """Two-factor settings."""

    issuer_name: str = Field(
        default="Lets0",
        description="Issuer label shown by authenticator apps"
    )
    totp_valid_window: int = Field(
        default=1,
        description="Accepted clock drift in 30 second steps"
    )
    otp_length: int = Field(
        default=6,
        description="Digits in an emailed one-time code"
    )


class EmailConfig(BaseModel):
    """SMTP delivery settings for account e-mails."""

    smtp_host: str = Field(default="localhost", description="SMTP server host")
    smtp_port: int = Field(default=587, description="SMTP server port")
    smtp_username: Optional[str] = Field(default=None, description="SMTP login user")
    smtp_password: Optional[str] = Field(default=None, description="SMTP login password")
    smtp_use_tls: bool = Field(default=True, description="Issue STARTTLS before login")
    from_email: str = Field(default="no-reply@localhost", description="Sender address")
    app_name: str = Field(default="Lets0", description="Product name used in subjects")
    client_url: str = Field(
        default="http://localhost:3000",
        description="Front-end base URL used to build verification and reset links"
    )


class RateLimitConfig(BaseModel):
    """Per-key request throttling backed by Redis."""

    enabled: bool = Field(default=False, description="Throttle sign-in and OTP requests")
    redis_url: str = Field(default="redis://localhost:6379/0", description="Redis connection URL")
    max_requests: int = Field(default=20, description="Requests allowed per window")
    window_seconds: int = Field(default=300, description="Window length in seconds")


class DatabaseConfig(BaseModel):
    """Database connection settings."""

    url: str = Field(default="sqlite:///./auth.db", description="SQLAlchemy database URL")
    pool_pre_ping: bool = Field(default=True, description="Verify connections before use")


# Environment variable prefixes per token kind.
_KIND_ENV_PREFIX = {
    TokenKind.ACCESS: "JWT_ACCESS_TOKEN",
    TokenKind.REFRESH: "JWT_REFRESH_TOKEN",
    TokenKind.VERIFICATION: "JWT_VERIFICATION_TOKEN",
    TokenKind.FORGOT_PASSWORD: "JWT_FORGOT_PASSWORD_TOKEN",
    TokenKind.MFA_AUTH_GATE: "JWT_MFA_AUTH_TOKEN",
    TokenKind.MFA_OTP: "JWT_MFA_OTP_TOKEN",
}

DEFAULT_EXPIRY = {
    TokenKind.ACCESS: 15 * 60,
    TokenKind.REFRESH: 15 * 24 * 60 * 60,
    TokenKind.VERIFICATION: 24 * 60 * 60,
    TokenKind.FORGOT_PASSWORD: 24 * 60 * 60,
    TokenKind.MFA_AUTH_GATE: 15 * 60,
    TokenKind.MFA_OTP: 3 * 60,
}


class AuthConfig(BaseModel):
    """Top-level configuration handed to every auth component."""

    jwt: JwtConfig
    lockout: LockoutConfig = Field(default_factory=LockoutConfig)
    mfa: MfaSettings = Field(default_factory=MfaSettings)
    email: EmailConfig = Field(default_factory=EmailConfig)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    password_cost_factor: int = Field(default=10, description="bcrypt cost factor")

    @staticmethod
    def required_variables() -> List[str]:
        """Environment variables that must be set for from_env()."""
        required = [f"{prefix}_SECRET_KEY" for prefix in _KIND_ENV_PREFIX.values()]
        required += ["JWT_ENCRYPT_KEY", "JWT_ENCRYPT_IV"]
        return required

    @classmethod
    def validate_env(cls, environ: Optional[Mapping[str, str]] = None):
        """Validate required environment variables."""
        environ = os.environ if environ is None else environ
        missing = [var for var in cls.required_variables() if not environ.get(var)]
        if missing:
            raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AuthConfig":
        """
        Build configuration from environment variables.

        Args:
            environ: Mapping to read instead of os.environ

        Returns:
            Populated AuthConfig

        Raises:
            ValueError: If a required secret is missing
        """
        environ = os.environ if environ is None else environ
        cls.validate_env(environ)

        kinds = {}
        for kind, prefix in _KIND_ENV_PREFIX.items():
            kinds[kind] = TokenKindConfig(
                secret_key=environ[f"{prefix}_SECRET_KEY"],
                expires_in=int(environ.get(f"{prefix}_EXPIRED", DEFAULT_EXPIRY[kind])),
            )

        jwt_settings = JwtConfig(
            audience=environ.get("JWT_AUDIENCE", "https://lets0.com"),
            issuer=environ.get("JWT_ISSUER", "lets0"),
            not_before=int(environ.get("JWT_NOT_BEFORE", 0)),
            encrypt_key=environ["JWT_ENCRYPT_KEY"],
            encrypt_iv=environ["JWT_ENCRYPT_IV"],
            kinds=kinds,
        )

        email = EmailConfig(
            smtp_host=environ.get("SMTP_HOST", "localhost"),
            smtp_port=int(environ.get("SMTP_PORT", 587)),
            smtp_username=environ.get("SMTP_USERNAME"),
            smtp_password=environ.get("SMTP_PASSWORD"),
            smtp_use_tls=environ.get("SMTP_USE_TLS", "true").lower() == "true",
            from_email=environ.get("FROM_EMAIL", "no-reply@localhost"),
            app_name=environ.get("APP_NAME", "Lets0"),
            client_url=environ.get("CLIENT_URL", "http://localhost:3000"),
        )

        rate_limit = RateLimitConfig(
            enabled=environ.get("RATE_LIMIT_ENABLED", "false").lower() == "true",
            redis_url=environ.get("REDIS_URL", "redis://localhost:6379/0"),
        )

        return cls(
            jwt=jwt_settings,
            mfa=MfaSettings(issuer_name=environ.get("TWO_FACTOR_NAME", email.app_name)),
            email=email,
            rate_limit=rate_limit,
            database=DatabaseConfig(url=environ.get("DATABASE_URL", "sqlite:///./auth.db")),
        )
