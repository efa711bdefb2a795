"""
Two-factor challenges: authenticator-app TOTP and e-mailed one-time codes.

After a correct password an MFA-enabled user only receives a gate token.
The gate token identifies the user to the challenge endpoints; a correct
second factor turns it into a full login.
"""

import base64
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime
from io import BytesIO
from typing import Callable, Optional

import pyotp
import qrcode

from tenant_auth.config import AuthConfig
from tenant_auth.email_service import NotificationSender
from tenant_auth.exceptions import (
    AuthError,
    AuthErrorCode,
    EmailSendError,
    MfaCodeInvalidError,
    MfaTokenTypeMismatchError,
    RateLimitExceededError,
    TokenExpiredError,
    TokenInvalidError,
    UserNotFoundError,
)
from tenant_auth.login import LoginOrchestrator, LoginResult, MfaGate
from tenant_auth.models import User
from tenant_auth.rate_limiter import RateLimiter
from tenant_auth.security_logger import SecurityLogger
from tenant_auth.session_registry import RequestMetadata
from tenant_auth.stores import UserDirectory
from tenant_auth.token_types import MfaOtpData, MfaOtpType, TokenKind
from tenant_auth.tokens import TokenAuthority, TokenVerification
from tenant_auth.vault import CredentialVault
from utils.timezone_utils import to_timestamp, utc_now

logger = logging.getLogger(__name__)

# Concurrent requests can each see a stale token; retry the swap this often.
MAX_OTP_SWAP_ATTEMPTS = 3


@dataclass
class TotpEnrollment:
    secret: str
    otp_auth_url: str


@dataclass
class EmailOtpIssue:
    token: str
    type: MfaOtpType
    is_code_present: bool


@dataclass
class EmailOtpCheck:
    ok: bool
    time_remaining: int
    user_id: str


class MfaChallengeEngine:
    """TOTP enrollment/verification, e-mail OTP issuance/verification and MFA completion."""

    def __init__(
        self,
        config: AuthConfig,
        users: UserDirectory,
        tokens: TokenAuthority,
        vault: CredentialVault,
        notifier: NotificationSender,
        login: LoginOrchestrator,
        security_logger: SecurityLogger,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.config = config
        self.users = users
        self.tokens = tokens
        self.vault = vault
        self.notifier = notifier
        self.login = login
        self.security_logger = security_logger
        self.rate_limiter = rate_limiter
        self.clock = clock

    async def _get_user(self, user_id: str) -> User:
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError()
        return user

    # ------------------------------------------------------------------
    # TOTP
    # ------------------------------------------------------------------

    async def enroll_totp(self, user: User) -> TotpEnrollment:
        """
        Return the user's TOTP secret and provisioning URI, creating the
        secret on first use.

        The secret is stored encrypted; repeated calls return the same one.
        """
        if user.mfa_totp_secret_encrypted:
            secret = self.vault.decrypt_token(user.mfa_totp_secret_encrypted)
        else:
            secret = pyotp.random_base32()
            await self.users.update(user.id, mfa_totp_secret_encrypted=self.vault.encrypt_token(secret))
            self.security_logger.mfa_event(user.id, "totp_enrolled", True)

        otp_auth_url = pyotp.TOTP(secret).provisioning_uri(
            name=user.email,
            issuer_name=self.config.mfa.issuer_name
        )
        return TotpEnrollment(secret=secret, otp_auth_url=otp_auth_url)

    @staticmethod
    def provisioning_qr_code(otp_auth_url: str) -> str:
        """Render a provisioning URI as a PNG data URL."""
        try:
            qr = qrcode.QRCode(version=1, box_size=10, border=5)
            qr.add_data(otp_auth_url)
            qr.make(fit=True)
            img = qr.make_image(fill_color="black", back_color="white")

            buffer = BytesIO()
            img.save(buffer, format="PNG")
        except Exception as e:
            logger.error(f"QR code generation failed: {e}")
            raise AuthError(AuthErrorCode.QR_CODE_GENERATION_FAILED)

        return f"data:image/png;base64,{base64.b64encode(buffer.getvalue()).decode()}"

    def verify_totp(self, code: str, stored_encrypted_secret: Optional[str]) -> bool:
        """Check a 6 digit authenticator code, tolerating the configured clock drift."""
        if not stored_encrypted_secret or not code:
            return False
        secret = self.vault.decrypt_token(stored_encrypted_secret)
        return pyotp.TOTP(secret).verify(
            code.strip(),
            for_time=self.clock(),
            valid_window=self.config.mfa.totp_valid_window
        )

    async def turn_on(self, user: User, code: str) -> None:
        """Enable MFA once the user proves the authenticator is set up."""
        await self._set_enabled(user, code, True)

    async def turn_off(self, user: User, code: str) -> None:
        await self._set_enabled(user, code, False)

    async def _set_enabled(self, user: User, code: str, enabled: bool) -> None:
        action = "turn_on" if enabled else "turn_off"
        if not self.verify_totp(code, user.mfa_totp_secret_encrypted):
            self.security_logger.mfa_event(user.id, action, False)
            raise MfaCodeInvalidError()

        await self.users.update(user.id, mfa_is_enable=enabled)
        self.security_logger.mfa_event(user.id, action, True)

    # ------------------------------------------------------------------
    # E-mail OTP
    # ------------------------------------------------------------------

    def _outstanding(self, token: Optional[str]) -> Optional[TokenVerification]:
        """The stored OTP token if it is still usable; unreadable tokens count as absent."""
        if not token:
            return None
        try:
            result = self.tokens.validate_mfa_otp_token(token)
        except TokenInvalidError:
            logger.warning("Stored OTP token is unreadable, issuing a new one")
            return None
        return None if result.is_expired else result

    def _new_code(self) -> str:
        length = self.config.mfa.otp_length
        return f"{secrets.randbelow(10 ** length):0{length}d}"

    async def request_email_otp(self, user_id: str) -> EmailOtpIssue:
        """
        Issue an e-mailed one-time code, at most one per validity window.

        While a previously issued code is unexpired its token is returned
        unchanged with `is_code_present` set and nothing is sent. A new
        token is stored with a compare-and-swap against the token this call
        saw, so concurrent requests agree on a single code.
        """
        if self.rate_limiter is not None:
            allowed, retry_after = await self.rate_limiter.is_allowed(f"otp:{user_id}")
            if not allowed:
                self.security_logger.rate_limit_exceeded("otp", details={"retry_after": retry_after})
                raise RateLimitExceededError(retry_after)

        user = await self._get_user(user_id)
        current = user.mfa_otp_code_token

        for _ in range(MAX_OTP_SWAP_ATTEMPTS):
            outstanding = self._outstanding(current)
            if outstanding is not None:
                return EmailOtpIssue(token=current, type=outstanding.payload.type, is_code_present=True)

            code = self._new_code()
            token = self.tokens.generate_mfa_otp_token(
                MfaOtpData(user_id=user.id, type=MfaOtpType.EMAIL, code=code)
            )
            if await self.users.swap_otp_token(user.id, current, token):
                try:
                    self.notifier.send_code(user, code)
                except EmailSendError:
                    # Undelivered code must not block the next request
                    await self.users.swap_otp_token(user.id, token, current)
                    self.security_logger.mfa_event(user.id, "email_otp_sent", False)
                    raise
                self.security_logger.mfa_event(user.id, "email_otp_sent", True)
                return EmailOtpIssue(token=token, type=MfaOtpType.EMAIL, is_code_present=False)

            # Another request stored a token first; re-read and reuse it
            current = (await self._get_user(user_id)).mfa_otp_code_token

        raise AuthError(AuthErrorCode.MFA_OTP_TOKEN_INTERNAL_ERROR, "Could not store one-time code")

    def verify_email_otp(self, stored_token: Optional[str], code: str) -> EmailOtpCheck:
        """
        Compare a submitted code with the one signed into the stored token.

        Raises:
            TokenInvalidError: Token missing or unverifiable
            TokenExpiredError: Token expired
            MfaTokenTypeMismatchError: Token was not issued for e-mail
        """
        result = self.tokens.check_unexpired(TokenKind.MFA_OTP, stored_token)
        data = result.payload
        if data.type is not MfaOtpType.EMAIL:
            raise MfaTokenTypeMismatchError()

        ok = bool(code) and self.vault.hash_equals(data.code, code.strip())
        time_remaining = result.expires_at - to_timestamp(self.clock())
        return EmailOtpCheck(ok=ok, time_remaining=time_remaining, user_id=data.user_id)

    # ------------------------------------------------------------------
    # Gate token and completion
    # ------------------------------------------------------------------

    def create_gate(self, user: User) -> MfaGate:
        """Gate token and cookie for a user who passed the password step."""
        return self.login.create_mfa_gate(user)

    def validate_gate(self, gate_token: Optional[str]) -> str:
        """User id carried by an unexpired MFA gate token."""
        return self.tokens.check_unexpired(TokenKind.MFA_AUTH_GATE, gate_token).payload.user_id

    async def request_email_otp_for_gate(self, gate_token: Optional[str]) -> EmailOtpIssue:
        return await self.request_email_otp(self.validate_gate(gate_token))

    async def email_otp_status(self, gate_token: Optional[str]) -> EmailOtpCheck:
        """Seconds left on the outstanding e-mail code of the gated user."""
        user = await self._get_user(self.validate_gate(gate_token))
        result = self.tokens.check_unexpired(TokenKind.MFA_OTP, user.mfa_otp_code_token)
        if result.payload.type is not MfaOtpType.EMAIL:
            raise MfaTokenTypeMismatchError()
        time_remaining = result.expires_at - to_timestamp(self.clock())
        return EmailOtpCheck(ok=True, time_remaining=time_remaining, user_id=user.id)

    async def complete_with_email_code(
        self,
        gate_token: Optional[str],
        code: str,
        fingerprint: Optional[str],
        request_metadata: Optional[RequestMetadata] = None
    ) -> LoginResult:
        """Finish an MFA sign-in with the e-mailed code; the code is single use."""
        user = await self._get_user(self.validate_gate(gate_token))
        stored = user.mfa_otp_code_token

        check = self.verify_email_otp(stored, code)
        if not check.ok or check.user_id != user.id:
            self.security_logger.mfa_event(user.id, "email_otp_login", False)
            raise MfaCodeInvalidError()

        if not await self.users.swap_otp_token(user.id, stored, None):
            # Already consumed by a concurrent completion
            raise TokenExpiredError(AuthErrorCode.MFA_OTP_TOKEN_EXPIRED)

        self.security_logger.mfa_event(user.id, "email_otp_login", True)
        return await self.login.login(user, fingerprint, request_metadata, mfa_verified=True)

    async def complete_with_totp(
        self,
        gate_token: Optional[str],
        code: str,
        fingerprint: Optional[str],
        request_metadata: Optional[RequestMetadata] = None
    ) -> LoginResult:
        """Finish an MFA sign-in with an authenticator code."""
        user = await self._get_user(self.validate_gate(gate_token))

        if not self.verify_totp(code, user.mfa_totp_secret_encrypted):
            self.security_logger.mfa_event(user.id, "totp_login", False)
            raise MfaCodeInvalidError()

        self.security_logger.mfa_event(user.id, "totp_login", True)
        return await self.login.login(user, fingerprint, request_metadata, mfa_verified=True)
