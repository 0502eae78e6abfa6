from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, List, Optional
from zoneinfo import ZoneInfo

from studio_admin.core.config import settings

TWO_PLACES = Decimal("0.01")


def get_enum_values(enum_cls: Any) -> List[str]:
    """Helper to get values from an Enum class for SQLAlchemy."""
    return [e.value for e in enum_cls]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def business_tz() -> ZoneInfo:
    return ZoneInfo(settings.BUSINESS_TIMEZONE)


def now_in_business_tz() -> datetime:
    return datetime.now(business_tz())


def to_decimal(value: Any) -> Decimal:
    """Converts floats through str so 1.01 stays 1.01."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value: Decimal) -> Decimal:
    return to_decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_business_time(dt: datetime) -> str:
    """
    Converts a UTC datetime to studio local time and formats it.
    Format: DD/MM/YYYY HH:mm
    """
    return as_utc(dt).astimezone(business_tz()).strftime("%d/%m/%Y %H:%M")
