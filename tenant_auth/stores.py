"""
Storage collaborators used by the auth core.

UserDirectory and SessionStore are the interfaces the services depend on;
SqlUserDirectory and SqlSessionStore implement them on SQLAlchemy. Service
methods are async; the SQL calls underneath are synchronous, one short
session per call.

Lockout counting and OTP issuance are single UPDATE statements so that
concurrent requests cannot lose increments or overwrite each other's codes.
"""

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Iterator, List, Optional, Protocol

from sqlalchemy import and_, case, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session as DBSession

from tenant_auth.exceptions import AuthError, AuthErrorCode
from tenant_auth.models import User, UserSession

logger = logging.getLogger(__name__)


@dataclass
class UserWithSession:
    """A user joined with one of its sessions; session is None when no active one matched."""

    user: User
    session: Optional[UserSession]


class UserDirectory(Protocol):
    async def get_by_id(self, user_id: str) -> Optional[User]: ...

    async def get_by_email(self, email: str) -> Optional[User]: ...

    async def create(self, email: str, **fields: Any) -> User: ...

    async def update(self, user_id: str, **fields: Any) -> None: ...

    async def record_failed_attempt(
        self, user_id: str, ip_address: Optional[str], now: datetime, window: timedelta
    ) -> int: ...

    async def record_successful_login(
        self, user_id: str, ip_address: Optional[str], now: datetime
    ) -> None: ...

    async def swap_otp_token(
        self, user_id: str, expected: Optional[str], new_token: Optional[str]
    ) -> bool: ...


class SessionStore(Protocol):
    async def create(self, **fields: Any) -> UserSession: ...

    async def disable(self, session_id: str) -> None: ...

    async def disable_all(self, user_id: str) -> int: ...

    async def find_active_with_user(self, user_id: str, session_id: str) -> Optional[UserWithSession]: ...

    async def list_active(self, user_id: str) -> List[UserSession]: ...


class _SqlStore:
    """Shared session handling for the SQL stores."""

    def __init__(self, session_factory: Callable[[], DBSession]):
        self.session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[DBSession]:
        db = self.session_factory()
        try:
            yield db
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"Auth database error: {e}")
            raise AuthError(
                AuthErrorCode.DATABASE_ERROR,
                "Service temporarily unavailable",
                {"reason": "database_unavailable"}
            )
        finally:
            db.close()


class SqlUserDirectory(_SqlStore):
    """UserDirectory on SQLAlchemy."""

    async def get_by_id(self, user_id: str) -> Optional[User]:
        with self._session() as db:
            return db.get(User, user_id)

    async def get_by_email(self, email: str) -> Optional[User]:
        with self._session() as db:
            return db.query(User).filter(User.email == email).first()

    async def create(self, email: str, **fields: Any) -> User:
        with self._session() as db:
            user = User(email=email, **fields)
            db.add(user)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                raise AuthError(AuthErrorCode.EMAIL_ALREADY_EXISTS, details={"email": email})
            db.refresh(user)
            return user

    async def update(self, user_id: str, **fields: Any) -> None:
        if not fields:
            return
        with self._session() as db:
            db.execute(update(User).where(User.id == user_id).values(**fields))
            db.commit()

    async def record_failed_attempt(
        self,
        user_id: str,
        ip_address: Optional[str],
        now: datetime,
        window: timedelta
    ) -> int:
        """
        Count a failed password attempt in one statement.

        The counter restarts at 1 when the previous failure is older than
        the lockout window.

        Returns:
            The failure count after this attempt
        """
        window_start = now - window
        with self._session() as db:
            db.execute(
                update(User)
                .where(User.id == user_id)
                .values(
                    login_attempt_count=case(
                        (
                            and_(
                                User.login_attempt_date.is_not(None),
                                User.login_attempt_date > window_start,
                            ),
                            User.login_attempt_count + 1,
                        ),
                        else_=1,
                    ),
                    login_attempt_date=now,
                    login_attempt_ip=ip_address,
                )
            )
            count = db.execute(
                select(User.login_attempt_count).where(User.id == user_id)
            ).scalar_one()
            db.commit()
            return count

    async def record_successful_login(self, user_id: str, ip_address: Optional[str], now: datetime) -> None:
        await self.update(
            user_id,
            login_attempt_count=0,
            login_attempt_date=None,
            login_attempt_ip=None,
            last_login_date=now,
            last_login_ip=ip_address,
        )

    async def swap_otp_token(self, user_id: str, expected: Optional[str], new_token: Optional[str]) -> bool:
        """
        Replace the stored OTP token only if it still equals `expected`.

        Returns:
            True if this call won the swap
        """
        if expected is None:
            current_matches = User.mfa_otp_code_token.is_(None)
        else:
            current_matches = User.mfa_otp_code_token == expected

        with self._session() as db:
            result = db.execute(
                update(User)
                .where(User.id == user_id, current_matches)
                .values(mfa_otp_code_token=new_token)
            )
            db.commit()
            return result.rowcount == 1


class SqlSessionStore(_SqlStore):
    """SessionStore on SQLAlchemy."""

    async def create(self, **fields: Any) -> UserSession:
        with self._session() as db:
            session = UserSession(**fields)
            db.add(session)
            db.commit()
            db.refresh(session)
            return session

    async def disable(self, session_id: str) -> None:
        with self._session() as db:
            db.execute(
                update(UserSession)
                .where(UserSession.id == session_id)
                .values(is_active=False, expires_at=None)
            )
            db.commit()

    async def disable_all(self, user_id: str) -> int:
        with self._session() as db:
            result = db.execute(
                update(UserSession)
                .where(UserSession.user_id == user_id, UserSession.is_active.is_(True))
                .values(is_active=False, expires_at=None)
            )
            db.commit()
            return result.rowcount

    async def find_active_with_user(self, user_id: str, session_id: str) -> Optional[UserWithSession]:
        """
        Load an active user together with one of its active sessions in a
        single query.

        Returns:
            None if the user is missing or inactive; otherwise the user
            with `session` set only when an active session with this id
            belongs to it
        """
        with self._session() as db:
            row = (
                db.query(User, UserSession)
                .outerjoin(
                    UserSession,
                    and_(
                        UserSession.user_id == User.id,
                        UserSession.id == session_id,
                        UserSession.is_active.is_(True),
                    ),
                )
                .filter(User.id == user_id, User.is_active.is_(True))
                .first()
            )
            if row is None:
                return None
            user, session = row
            return UserWithSession(user=user, session=session)

    async def list_active(self, user_id: str) -> List[UserSession]:
        with self._session() as db:
            return (
                db.query(UserSession)
                .filter(UserSession.user_id == user_id, UserSession.is_active.is_(True))
                .order_by(UserSession.created_at.desc())
                .all()
            )
