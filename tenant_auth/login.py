"""
Password sign-in, session establishment and per-request session checks.

Sign-in runs UNAUTHENTICATED -> CREDENTIALS_CHECKED -> MFA_REQUIRED or
SESSION_ESTABLISHED. Any failure along the way raises an AuthError and
leaves nothing behind except the failed-attempt counter.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from email_validator import EmailNotValidError, validate_email

from tenant_auth.config import AuthConfig
from tenant_auth.email_service import NotificationSender
from tenant_auth.exceptions import (
    AuthError,
    AuthErrorCode,
    EmailSendError,
    RateLimitExceededError,
    SessionNotFoundError,
    TokenExpiredError,
    TokenInvalidError,
    TooManyAttemptsError,
    UserNotFoundError,
    WrongCredentialsError,
)
from tenant_auth.models import User, UserSession
from tenant_auth.rate_limiter import RateLimiter
from tenant_auth.security_logger import SecurityLogger
from tenant_auth.session_registry import RequestMetadata, SessionRegistry
from tenant_auth.stores import UserDirectory
from tenant_auth.token_types import SessionTokenData, TokenKind
from tenant_auth.tokens import TokenAuthority, TokenVerification
from tenant_auth.vault import CredentialVault
from utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    """Validate an address and return its normalized form."""
    try:
        return validate_email(email.strip(), check_deliverability=False).normalized.lower()
    except EmailNotValidError as e:
        raise AuthError(AuthErrorCode.INVALID_EMAIL, details={"reason": str(e)})


@dataclass
class LoginResult:
    """What a successful password step hands back to the caller."""

    is_mfa_enabled: bool
    user_id: str
    access_token: str = ""
    refresh_token: str = ""
    verification_token: str = ""
    session_id: Optional[str] = None
    access_token_cookie: Optional[str] = None
    refresh_token_cookie: Optional[str] = None
    fingerprint_cookie: Optional[str] = None
    mfa_auth_token: str = ""
    mfa_auth_token_cookie: Optional[str] = None

    @property
    def cookies(self) -> List[str]:
        """Set-Cookie directives to send, in a stable order."""
        directives = [
            self.access_token_cookie,
            self.refresh_token_cookie,
            self.fingerprint_cookie,
            self.mfa_auth_token_cookie,
        ]
        return [directive for directive in directives if directive]


@dataclass
class MfaGate:
    """Short-lived token that admits a user to the second-factor step."""

    token: str
    cookie: str


@dataclass
class SessionCheck:
    """A token resolved against the registry."""

    verification: TokenVerification
    user: User
    session: UserSession

    @property
    def payload(self) -> SessionTokenData:
        return self.verification.payload

    @property
    def is_expired(self) -> bool:
        return self.verification.is_expired


@dataclass
class AuthenticatedRequest:
    """Outcome of authenticating one request from its cookies."""

    user: User
    session: UserSession
    renewed_access_token: Optional[str] = None
    cookies: List[str] = field(default_factory=list)

    @property
    def was_renewed(self) -> bool:
        return self.renewed_access_token is not None


class LoginOrchestrator:
    """Register, sign in, sign out and authenticate requests."""

    def __init__(
        self,
        config: AuthConfig,
        users: UserDirectory,
        registry: SessionRegistry,
        tokens: TokenAuthority,
        vault: CredentialVault,
        notifier: NotificationSender,
        security_logger: SecurityLogger,
        rate_limiter: Optional[RateLimiter] = None,
        clock: Callable[[], datetime] = utc_now
    ):
        self.config = config
        self.users = users
        self.registry = registry
        self.tokens = tokens
        self.vault = vault
        self.notifier = notifier
        self.security_logger = security_logger
        self.rate_limiter = rate_limiter
        self.clock = clock

        self.lockout_window = timedelta(seconds=config.lockout.window_seconds)
        self.max_failed_attempts = config.lockout.max_failed_attempts

    # ------------------------------------------------------------------
    # Registration and account links
    # ------------------------------------------------------------------

    async def register(self, first_name: str, last_name: str, email: str) -> str:
        """
        Create an unverified account and e-mail its verification link.

        Registering an address whose account is still unverified re-sends
        the link instead of failing, so a lost or undelivered e-mail can be
        recovered by registering again.

        Args:
            first_name: Given name
            last_name: Family name
            email: Account address, must not belong to a verified account

        Returns:
            The opaque verification token sent in the link

        Raises:
            AuthError: EMAIL_ALREADY_EXISTS or INVALID_EMAIL
            EmailSendError: The link could not be sent; retrying is safe
        """
        email = normalize_email(email)

        existing = await self.users.get_by_email(email)
        if existing is not None:
            if existing.email_verified:
                self.security_logger.signup_attempt(email, False, {"reason": "email_exists"})
                raise AuthError(AuthErrorCode.EMAIL_ALREADY_EXISTS, details={"email": email})

            token = self.tokens.generate_verification_token(SessionTokenData(user_id=existing.id, email=existing.email))
            self.notifier.send_verification_link(existing, token)
            self.security_logger.signup_attempt(email, True, {"resent": True})
            return token

        user = await self.users.create(
            email,
            first_name=first_name,
            last_name=last_name,
            email_verified=False,
            is_active=True,
            roles=[],
            permissions=[],
        )

        token = self.tokens.generate_verification_token(SessionTokenData(user_id=user.id, email=user.email))
        self.notifier.send_verification_link(user, token)
        self.security_logger.signup_attempt(email, True)

        return token

    async def _user_from_link_token(self, kind: TokenKind, token: Optional[str], must_be_verified: bool) -> User:
        """
        Resolve a verification or forgot-password link token to its user.

        An expired link is re-sent before the expiry error is raised.
        """
        result = self.tokens.check(kind, token)

        user = await self.users.get_by_id(result.payload.user_id)
        if user is None:
            raise UserNotFoundError()
        if not user.is_active:
            raise AuthError(AuthErrorCode.USER_INACTIVE)
        if must_be_verified and not user.email_verified:
            raise AuthError(AuthErrorCode.USER_NOT_VERIFIED)
        if not must_be_verified and user.email_verified:
            raise AuthError(AuthErrorCode.USER_ALREADY_VERIFIED)

        if result.is_expired:
            if kind is TokenKind.VERIFICATION:
                self.notifier.send_verification_link(user, self.tokens.generate_verification_token(
                    SessionTokenData(user_id=user.id, email=user.email)
                ))
                raise TokenExpiredError(AuthErrorCode.VERIFICATION_TOKEN_EXPIRED)
            self.notifier.send_forgot_password_link(user, self.tokens.generate_forgot_password_token(
                SessionTokenData(user_id=user.id, email=user.email)
            ))
            raise TokenExpiredError(AuthErrorCode.FORGOT_PASSWORD_TOKEN_EXPIRED)

        return user

    async def verify_account(self, token: Optional[str]) -> User:
        """Check a verification link for a not-yet-verified account."""
        return await self._user_from_link_token(TokenKind.VERIFICATION, token, must_be_verified=False)

    async def create_initial_password(self, token: Optional[str], password: str) -> None:
        """Set the first password from a verification link and mark the account verified."""
        user = await self.verify_account(token)
        await self.users.update(
            user.id,
            password=self.vault.hash_password(password, self.config.password_cost_factor),
            email_verified=True,
        )
        logger.info(f"Initial password created for user {user.id}")

        # The password is already set; the notice is informational only
        try:
            self.notifier.send_sign_in_notice(user, None)
        except EmailSendError as e:
            logger.warning(f"Sign-in notice for user {user.id} not sent: {e.message}")

    async def forgot_password(self, email: str) -> None:
        """E-mail a password reset link."""
        user = await self.users.get_by_email(normalize_email(email))
        if user is None:
            raise UserNotFoundError()

        token = self.tokens.generate_forgot_password_token(SessionTokenData(user_id=user.id, email=user.email))
        self.notifier.send_forgot_password_link(user, token)

    async def reset_forgot_password(self, token: Optional[str], password: str) -> None:
        """Replace the password of a verified account from a reset link."""
        user = await self._user_from_link_token(TokenKind.FORGOT_PASSWORD, token, must_be_verified=True)
        await self.users.update(
            user.id,
            password=self.vault.hash_password(password, self.config.password_cost_factor),
        )
        logger.info(f"Password reset for user {user.id}")

    # ------------------------------------------------------------------
    # Sign-in
    # ------------------------------------------------------------------

    async def authenticate(self, email: str, password: str, ip_address: Optional[str]) -> User:
        """
        Check a password, enforcing the failed-attempt lockout.

        The lockout is checked before the password: once the failure count
        reaches the limit inside the window every attempt is refused, even
        with the right password.

        Raises:
            RateLimitExceededError: Too many sign-in requests from this IP
            UserNotFoundError: No account for the address
            TooManyAttemptsError: Account locked out
            WrongCredentialsError: Password mismatch (counted)
        """
        if self.rate_limiter is not None:
            allowed, retry_after = await self.rate_limiter.is_allowed(f"sign-in:{ip_address}")
            if not allowed:
                self.security_logger.rate_limit_exceeded("sign-in", ip_address, {"retry_after": retry_after})
                raise RateLimitExceededError(retry_after)

        email = normalize_email(email)
        user = await self.users.get_by_email(email)
        if user is None:
            self.security_logger.login_attempt(email, ip_address, False, details={"reason": "user_not_found"})
            raise UserNotFoundError()

        if not user.is_active:
            self.security_logger.login_attempt(email, ip_address, False, user_id=user.id, details={"reason": "inactive"})
            raise AuthError(AuthErrorCode.USER_INACTIVE)

        now = self.clock()
        if user.is_locked_out(self.max_failed_attempts, self.lockout_window, now):
            self.security_logger.lockout(email, user.id, ip_address, user.login_attempt_count)
            raise TooManyAttemptsError()

        if not self.vault.compare_password(password, user.password):
            failed_attempts = await self.users.record_failed_attempt(user.id, ip_address, now, self.lockout_window)
            self.security_logger.login_attempt(
                email, ip_address, False, user_id=user.id,
                details={"reason": "wrong_password", "failed_attempts": failed_attempts}
            )
            raise WrongCredentialsError()

        return user

    def create_mfa_gate(self, user: User) -> MfaGate:
        token = self.tokens.generate_mfa_auth_token(SessionTokenData(user_id=user.id, email=user.email))
        return MfaGate(token=token, cookie=self.tokens.mfa_auth_token_cookie(token))

    async def login(
        self,
        user: User,
        fingerprint: Optional[str],
        request_metadata: Optional[RequestMetadata] = None,
        mfa_verified: bool = False
    ) -> LoginResult:
        """
        Establish a session for an authenticated user.

        With MFA enabled (and not yet passed) only an MFA gate token is
        issued and no session is created.

        Args:
            user: User returned by authenticate()
            fingerprint: Client fingerprint to bind and echo back
            request_metadata: IP address and user agent
            mfa_verified: True once the second factor has been checked

        Returns:
            LoginResult with tokens and cookie directives
        """
        metadata = request_metadata or RequestMetadata()

        if user.mfa_is_enable and not mfa_verified:
            gate = self.create_mfa_gate(user)
            self.security_logger.login_attempt(
                user.email, metadata.ip_address, True, user_id=user.id, details={"stage": "mfa_required"}
            )
            return LoginResult(
                is_mfa_enabled=True,
                user_id=user.id,
                mfa_auth_token=gate.token,
                mfa_auth_token_cookie=gate.cookie,
            )

        refresh_token_jti = str(uuid.uuid4())
        session = await self.registry.create(user.id, refresh_token_jti, fingerprint, metadata)

        data = SessionTokenData(user_id=user.id, email=user.email, session_id=session.id)
        access_token = self.tokens.generate_access_token(data)
        refresh_token = self.tokens.generate_refresh_token(data, refresh_token_jti)
        verification_token = self.tokens.generate_verification_token(data)

        await self.users.record_successful_login(user.id, metadata.ip_address, self.clock())
        self.security_logger.login_attempt(
            user.email, metadata.ip_address, True, user_id=user.id, details={"session_id": session.id}
        )

        return LoginResult(
            is_mfa_enabled=False,
            user_id=user.id,
            access_token=access_token,
            refresh_token=refresh_token,
            verification_token=verification_token,
            session_id=session.id,
            access_token_cookie=self.tokens.access_token_cookie(access_token),
            refresh_token_cookie=self.tokens.refresh_token_cookie(refresh_token),
            fingerprint_cookie=self.tokens.fingerprint_cookie(fingerprint) if fingerprint else None,
        )

    async def sign_in(
        self,
        email: str,
        password: str,
        fingerprint: Optional[str],
        request_metadata: Optional[RequestMetadata] = None
    ) -> LoginResult:
        """authenticate() followed by login()."""
        metadata = request_metadata or RequestMetadata()
        user = await self.authenticate(email, password, metadata.ip_address)
        return await self.login(user, fingerprint, metadata)

    async def sign_out(self, session_id: str, user_id: Optional[str] = None) -> List[str]:
        """
        Disable a session.

        Returns:
            Set-Cookie directives that clear the access and refresh cookies
        """
        await self.registry.disable(session_id)
        self.security_logger.logout_event(user_id, details={"session_id": session_id})
        return self.tokens.logout_cookies()

    # ------------------------------------------------------------------
    # Request authentication
    # ------------------------------------------------------------------

    async def _resolve_session(self, verification: TokenVerification) -> SessionCheck:
        payload = verification.payload
        found = await self.registry.find_active_with_user(payload.user_id, payload.session_id)
        if found is None:
            raise AuthError(AuthErrorCode.AUTH_USER_NOT_FOUND)
        if found.session is None:
            raise SessionNotFoundError()
        return SessionCheck(verification=verification, user=found.user, session=found.session)

    async def check_session_with_access_token(self, access_token: Optional[str]) -> SessionCheck:
        """
        Verify an access token and load its live session.

        An expired access token still resolves; the caller decides whether
        to renew it.
        """
        verification = self.tokens.validate_access_token(access_token)
        return await self._resolve_session(verification)

    async def check_session_with_refresh_token(self, refresh_token: Optional[str]) -> SessionCheck:
        """
        Verify a refresh token against its session.

        Raises:
            TokenInvalidError: Not a refresh token, or its jti is not the
                one bound to the session
            TokenExpiredError: Refresh token expired
            SessionNotFoundError: Session disabled or unknown
        """
        verification = self.tokens.validate_refresh_token(refresh_token)
        if verification.is_expired:
            raise TokenExpiredError(AuthErrorCode.REFRESH_TOKEN_EXPIRED)

        check = await self._resolve_session(verification)

        jti = verification.jti
        if not jti or not self.vault.hash_equals(check.session.refresh_token_jti, jti):
            self.security_logger.security_violation(
                "refresh_token_jti_mismatch",
                user_id=check.user.id,
                details={"session_id": check.session.id}
            )
            raise TokenInvalidError(AuthErrorCode.REFRESH_TOKEN_INVALID)

        return check

    async def authenticate_request(
        self,
        access_token: Optional[str],
        refresh_token: Optional[str]
    ) -> AuthenticatedRequest:
        """
        Authenticate a request from its access and refresh cookies.

        A merely expired access token is renewed in place when the refresh
        token is still valid for the same live session; the new access
        cookie is returned for the response.
        """
        if not refresh_token:
            raise TokenInvalidError(AuthErrorCode.REFRESH_TOKEN_NOT_PROVIDED)
        if not access_token:
            raise TokenInvalidError(AuthErrorCode.ACCESS_TOKEN_NOT_PROVIDED)

        access = await self.check_session_with_access_token(access_token)
        if not access.is_expired:
            return AuthenticatedRequest(user=access.user, session=access.session)

        try:
            refresh = await self.check_session_with_refresh_token(refresh_token)
        except AuthError:
            self.security_logger.token_refresh(access.user.id, False, {"session_id": access.session.id})
            raise

        if refresh.session.id != access.session.id:
            self.security_logger.security_violation(
                "refresh_token_session_mismatch",
                user_id=access.user.id,
                details={"session_id": access.session.id}
            )
            raise TokenInvalidError(AuthErrorCode.REFRESH_TOKEN_INVALID)

        data = SessionTokenData(user_id=access.user.id, email=access.user.email, session_id=access.session.id)
        renewed = self.tokens.generate_access_token(data)
        self.security_logger.token_refresh(access.user.id, True, {"session_id": access.session.id})

        return AuthenticatedRequest(
            user=refresh.user,
            session=refresh.session,
            renewed_access_token=renewed,
            cookies=[self.tokens.access_token_cookie(renewed)],
        )

    # ------------------------------------------------------------------
    # Session management
    # ------------------------------------------------------------------

    async def disable_all_sessions(self, user_id: str) -> List[str]:
        """Sign a user out everywhere."""
        await self.registry.disable_all(user_id)
        return self.tokens.logout_cookies()

    async def get_active_sessions(self, user_id: str) -> List[UserSession]:
        return await self.registry.list_active(user_id)
