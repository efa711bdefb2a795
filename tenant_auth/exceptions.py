"""
Authentication exceptions.

Every failure the auth core reports carries an AuthErrorCode: a stable
machine-readable response code, a default message and the HTTP status the
error-translation layer answers with. Status 503 is the "treat the session
as logged out" class; responses in that class also clear the auth cookies.
"""

from enum import Enum
from typing import Optional, Dict, Any


class AuthErrorCode(Enum):
    """Error codes for authentication failures: (response_code, message, status)."""

    SESSION_NOT_FOUND = ("SE0000", "Session not found", 404)

    USER_NOT_FOUND = ("US0001", "User not found", 404)
    USER_INACTIVE = ("US0002", "User is inactive", 400)
    USER_ALREADY_VERIFIED = ("US0003", "User is already verified", 400)
    USER_NOT_VERIFIED = ("US0004", "User is not verified", 400)

    TOO_MANY_ATTEMPTS = ("AU00", "Too many login attempts, try again later", 429)
    WRONG_CREDENTIALS = ("AU0002", "Wrong credentials", 400)
    QR_CODE_GENERATION_FAILED = ("AU0003", "QR code generation failed", 500)
    AUTH_SESSION_NOT_FOUND = ("AU0010", "Session not found", 404)
    AUTH_USER_NOT_FOUND = ("AU0011", "User not found", 404)
    ACCESS_TOKEN_NOT_PROVIDED = ("AU00012", "Access token not provided", 503)
    ACCESS_TOKEN_INVALID = ("AU0013", "Access token invalid", 503)
    ACCESS_TOKEN_EXPIRED = ("AU0014", "Access token expired", 503)
    ACCESS_TOKEN_INTERNAL_ERROR = ("AU0015", "Access token internal error", 503)
    TWO_FACTOR_CODE_INVALID = ("AU0016", "Two factor code invalid", 401)
    VERIFICATION_TOKEN_INVALID = ("AU0020", "Verification token invalid", 401)
    VERIFICATION_TOKEN_EXPIRED = ("AU0021", "Verification token expired", 401)
    VERIFICATION_TOKEN_INTERNAL_ERROR = ("AU0022", "Verification token internal error", 401)
    FORGOT_PASSWORD_TOKEN_INVALID = ("AU0030", "Forgot password token invalid", 401)
    FORGOT_PASSWORD_TOKEN_EXPIRED = ("AU0031", "Forgot password token expired", 401)
    FORGOT_PASSWORD_TOKEN_INTERNAL_ERROR = ("A0032", "Forgot password token internal error", 401)
    REFRESH_TOKEN_NOT_PROVIDED = ("AU0040", "Refresh token not provided", 503)
    REFRESH_TOKEN_INVALID = ("AU0041", "Refresh token invalid", 503)
    REFRESH_TOKEN_EXPIRED = ("AU0042", "Refresh token expired", 503)
    REFRESH_TOKEN_INTERNAL_ERROR = ("AU0043", "Refresh token internal error", 503)
    REFRESH_TOKEN_INVALID_TYPE = ("AU0044", "Refresh token invalid type", 503)
    FORBIDDEN = ("AU0050", "Insufficient role or permission", 403)
    RATE_LIMIT_EXCEEDED = ("AU0060", "Too many requests", 429)

    MFA_OTP_TOKEN_NOT_PROVIDED = ("MF0000", "MFA OTP token not provided", 401)
    MFA_OTP_TOKEN_INVALID = ("MF0001", "MFA OTP token invalid", 401)
    MFA_OTP_TOKEN_EXPIRED = ("MF0002", "MFA OTP token expired", 401)
    MFA_OTP_TOKEN_INTERNAL_ERROR = ("MF0003", "MFA OTP token internal error", 401)
    MFA_OTP_TOKEN_INCORRECT_TYPE = ("MF0004", "MFA OTP token incorrect type", 401)
    MFA_AUTH_TOKEN_NOT_PROVIDED = ("MF0010", "MFA auth token not provided", 401)
    MFA_AUTH_TOKEN_INVALID = ("MF0011", "MFA auth token invalid", 401)
    MFA_AUTH_TOKEN_EXPIRED = ("MF0012", "MFA auth token expired", 401)
    MFA_AUTH_TOKEN_INTERNAL_ERROR = ("MF0013", "MFA auth token internal error", 401)

    EMAIL_SEND_ERROR = ("EM0000", "Email could not be sent", 500)
    EMAIL_ALREADY_EXISTS = ("EM0001", "Email already exists", 409)
    INVALID_EMAIL = ("EM0002", "Email address is not valid", 400)

    ENCRYPTION_ERROR = ("CR0000", "Encryption failure", 500)
    DATABASE_ERROR = ("MO0002", "Database error", 500)

    @property
    def response_code(self) -> str:
        return self.value[0]

    @property
    def default_message(self) -> str:
        return self.value[1]

    @property
    def status_code(self) -> int:
        return self.value[2]

    @property
    def logs_out(self) -> bool:
        """True for the class of errors that must clear the auth cookies."""
        return self.status_code == 503


class AuthError(Exception):
    """Base authentication exception."""

    def __init__(
        self,
        code: AuthErrorCode,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message or code.default_message
        self.details = details or {}
        super().__init__(self.message)

    @property
    def status_code(self) -> int:
        return self.code.status_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for API responses."""
        return {
            "responseCode": self.code.response_code,
            "message": self.message,
            "errors": self.details,
            "data": None
        }


class TokenExpiredError(AuthError):
    """Well-signed token past its expiry. Recoverable for access tokens."""


class TokenInvalidError(AuthError):
    """Malformed, tampered, mis-typed or unverifiable token."""


class SessionNotFoundError(AuthError):
    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(AuthErrorCode.AUTH_SESSION_NOT_FOUND, message, details)


class UserNotFoundError(AuthError):
    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(AuthErrorCode.USER_NOT_FOUND, message, details)


class TooManyAttemptsError(AuthError):
    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(AuthErrorCode.TOO_MANY_ATTEMPTS, message, details)


class WrongCredentialsError(AuthError):
    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(AuthErrorCode.WRONG_CREDENTIALS, message, details)


class MfaCodeInvalidError(AuthError):
    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(AuthErrorCode.TWO_FACTOR_CODE_INVALID, message, details)


class MfaTokenTypeMismatchError(AuthError):
    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(AuthErrorCode.MFA_OTP_TOKEN_INCORRECT_TYPE, message, details)


class EncryptionError(AuthError):
    """Opaque wrap could not be removed; never an expiry condition."""

    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(AuthErrorCode.ENCRYPTION_ERROR, message, details)


class ForbiddenError(AuthError):
    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(AuthErrorCode.FORBIDDEN, message, details)


class RateLimitExceededError(AuthError):
    def __init__(self, retry_after: int):
        super().__init__(
            AuthErrorCode.RATE_LIMIT_EXCEEDED,
            f"Too many requests. Try again in {retry_after} seconds.",
            {"retry_after": retry_after}
        )


class EmailSendError(AuthError):
    def __init__(self, message: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(AuthErrorCode.EMAIL_SEND_ERROR, message, details)
