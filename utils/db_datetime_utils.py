"""
Database-specific datetime utilities for consistent UTC handling.

Core principles:
- All datetime fields are stored as UTC in the database
- Values read back are always timezone-aware UTC, whatever the backend
  (SQLite drops tzinfo on the way in)
"""

import logging
from datetime import datetime, date
from typing import Any, Callable, Dict, Optional, Tuple, Union

from sqlalchemy import Column, DateTime
from sqlalchemy.types import TypeDecorator

from utils.timezone_utils import ensure_utc, utc_now

logger = logging.getLogger(__name__)


class UTCDateTime(TypeDecorator):
    """DateTime column that stores naive UTC and returns aware UTC."""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, datetime):
            raise TypeError(f"Expected datetime, got {type(value).__name__}")
        return ensure_utc(value).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        return ensure_utc(value)


def utc_datetime_column(
    nullable: bool = True,
    default: Optional[Union[datetime, Callable[[], datetime]]] = None,
    onupdate: Optional[Union[datetime, Callable[[], datetime]]] = None
) -> Column:
    """
    Create a DateTime column that stores values in UTC.

    Args:
        nullable: Whether the column can be NULL
        default: Default value or function for INSERT
        onupdate: Default value or function for UPDATE

    Returns:
        SQLAlchemy Column configured for UTC datetime storage
    """
    # For default and onupdate, use utc_now if they're True
    if default is True:
        default = utc_now
    if onupdate is True:
        onupdate = utc_now

    return Column(UTCDateTime(), nullable=nullable, default=default, onupdate=onupdate)


def utc_created_at_column() -> Column:
    """Standardized created_at timestamp column in UTC."""
    return utc_datetime_column(nullable=False, default=utc_now)


def utc_updated_at_column() -> Column:
    """Standardized updated_at timestamp column in UTC."""
    return utc_datetime_column(nullable=False, default=utc_now, onupdate=utc_now)


def format_db_datetime_as_iso(dt: Optional[datetime]) -> Optional[str]:
    """ISO string for a database datetime, or None."""
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()


class UTCDatetimeMixin:
    """
    Mixin adding UTC created/updated columns and a to_dict() that renders
    datetimes as ISO strings.

    Column names listed in `_private_fields` are left out of to_dict().
    """

    created_at = utc_created_at_column()
    updated_at = utc_updated_at_column()

    _private_fields: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the model to a dictionary with ISO-formatted datetime strings.

        Returns:
            Dict with datetime fields formatted as ISO strings
        """
        mapper = getattr(self.__class__, '__mapper__', None)
        if mapper is None:
            return {}

        result = {}
        for column in mapper.columns:
            key = column.key
            if key in self._private_fields:
                continue
            value = getattr(self, key)

            if isinstance(value, datetime):
                value = format_db_datetime_as_iso(value)
            elif isinstance(value, date):
                value = value.isoformat()

            result[key] = value

        return result
