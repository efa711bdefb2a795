"""
Structured logging for authentication security events.
"""

import json
import logging
from typing import Any, Dict, Optional

from utils.timezone_utils import utc_now

SECURITY_LOGGER_NAME = "tenant_auth.security"


class SecurityLogger:
    """Structured security event logger. Never pass secrets, codes or tokens in details."""

    def __init__(self, logger_name: str = SECURITY_LOGGER_NAME):
        self.logger = logging.getLogger(logger_name)

    def _log_security_event(
        self,
        event_type: str,
        email: Optional[str] = None,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        success: bool = True,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log a structured security event."""
        event = {
            "timestamp": utc_now().isoformat(),
            "event_type": event_type,
            "success": success,
            "email": email,
            "user_id": user_id,
            "ip_address": ip_address,
            "user_agent": user_agent[:100] if user_agent else None,  # Truncate
            "details": details or {}
        }

        # Remove None values
        event = {k: v for k, v in event.items() if v is not None}

        if success:
            self.logger.info(json.dumps(event))
        else:
            self.logger.warning(json.dumps(event))

    def login_attempt(
        self,
        email: str,
        ip_address: Optional[str],
        success: bool,
        method: str = "password",
        user_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log login attempt."""
        self._log_security_event(
            event_type="login_attempt",
            email=email,
            user_id=user_id,
            ip_address=ip_address,
            success=success,
            details={**(details or {}), "method": method}
        )

    def lockout(self, email: str, user_id: str, ip_address: Optional[str], failed_attempts: int):
        """Log a sign-in refused because the account is locked out."""
        self._log_security_event(
            event_type="lockout",
            email=email,
            user_id=user_id,
            ip_address=ip_address,
            success=False,
            details={"failed_attempts": failed_attempts}
        )

    def signup_attempt(self, email: str, success: bool, details: Optional[Dict[str, Any]] = None):
        """Log signup attempt."""
        self._log_security_event(
            event_type="signup_attempt",
            email=email,
            success=success,
            details=details
        )

    def session_created(
        self,
        user_id: str,
        session_id: str,
        ip_address: Optional[str],
        user_agent: Optional[str]
    ):
        self._log_security_event(
            event_type="session_created",
            user_id=user_id,
            ip_address=ip_address,
            user_agent=user_agent,
            details={"session_id": session_id}
        )

    def token_refresh(
        self,
        user_id: str,
        success: bool,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log token refresh attempt."""
        self._log_security_event(
            event_type="token_refresh",
            user_id=user_id,
            success=success,
            details=details
        )

    def logout_event(
        self,
        user_id: Optional[str],
        logout_type: str = "single",
        details: Optional[Dict[str, Any]] = None
    ):
        """Log logout event."""
        self._log_security_event(
            event_type="logout",
            user_id=user_id,
            success=True,
            details={**(details or {}), "logout_type": logout_type}
        )

    def mfa_event(
        self,
        user_id: str,
        action: str,
        success: bool,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log MFA enrollment, challenge or toggle."""
        self._log_security_event(
            event_type="mfa_event",
            user_id=user_id,
            success=success,
            details={**(details or {}), "action": action}
        )

    def rate_limit_exceeded(
        self,
        key: str,
        ip_address: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log rate limit violation."""
        self._log_security_event(
            event_type="rate_limit_exceeded",
            ip_address=ip_address,
            success=False,
            details={**(details or {}), "key": key}
        )

    def security_violation(
        self,
        violation_type: str,
        email: Optional[str] = None,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        """Log security violation."""
        self._log_security_event(
            event_type="security_violation",
            email=email,
            user_id=user_id,
            ip_address=ip_address,
            success=False,
            details={**(details or {}), "violation_type": violation_type}
        )
