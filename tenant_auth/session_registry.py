"""
Session lifecycle: one session row per full login.

Every protected request resolves its token against find_active_with_user(),
so disabling a session revokes every access and refresh token that points
at it on the very next request, whatever their own expiry says.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from tenant_auth.models import UserSession
from tenant_auth.security_logger import SecurityLogger
from tenant_auth.stores import SessionStore, UserWithSession
from utils.timezone_utils import utc_now

logger = logging.getLogger(__name__)


@dataclass
class RequestMetadata:
    """Client details recorded on sessions and security events."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class SessionRegistry:
    """Create, disable and look up sessions."""

    def __init__(
        self,
        store: SessionStore,
        session_ttl_seconds: int,
        security_logger: SecurityLogger,
        clock: Callable[[], datetime] = utc_now
    ):
        self.store = store
        self.session_ttl = timedelta(seconds=session_ttl_seconds)
        self.security_logger = security_logger
        self.clock = clock

    async def create(
        self,
        user_id: str,
        refresh_token_jti: str,
        fingerprint: Optional[str],
        request_metadata: Optional[RequestMetadata] = None
    ) -> UserSession:
        """
        Persist a session bound to a refresh token id.

        Args:
            user_id: Owner of the session
            refresh_token_jti: `jti` of the refresh token issued with it
            fingerprint: Client fingerprint echoed back in a cookie
            request_metadata: IP address and user agent of the login request

        Returns:
            The new active session
        """
        metadata = request_metadata or RequestMetadata()
        session = await self.store.create(
            user_id=user_id,
            refresh_token_jti=refresh_token_jti,
            fingerprint=fingerprint,
            ip_address=metadata.ip_address,
            user_agent=metadata.user_agent,
            expires_at=self.clock() + self.session_ttl,
            is_active=True,
        )
        self.security_logger.session_created(user_id, session.id, metadata.ip_address, metadata.user_agent)
        return session

    async def disable(self, session_id: str) -> None:
        """Mark a session inactive. Idempotent."""
        await self.store.disable(session_id)
        logger.info(f"Session {session_id} disabled")

    async def disable_all(self, user_id: str) -> int:
        """Disable every active session of a user; returns how many were disabled."""
        count = await self.store.disable_all(user_id)
        self.security_logger.logout_event(user_id, logout_type="all", details={"sessions": count})
        return count

    async def find_active_with_user(self, user_id: str, session_id: str) -> Optional[UserWithSession]:
        return await self.store.find_active_with_user(user_id, session_id)

    async def list_active(self, user_id: str) -> List[UserSession]:
        return await self.store.list_active(user_id)
