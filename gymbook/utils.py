import os
import logging
from datetime import datetime, timezone, tzinfo
from typing import Optional

from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)


def env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


def env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return default


def env_flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return str(raw).strip().lower() in ("1", "true", "yes", "y", "on")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Database timestamps are stored as naive UTC."""
    if dt is None:
        return None
    if getattr(dt, "tzinfo", None) is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def as_aware_utc(dt: Optional[datetime]) -> Optional[datetime]:
    if dt is None:
        return None
    if getattr(dt, "tzinfo", None) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def get_app_timezone(tz_name: Optional[str] = None) -> tzinfo:
    """Gym timezone, falling back to APP_TIMEZONE and then UTC."""
    name = (tz_name or "").strip() or (os.getenv("APP_TIMEZONE") or "").strip()
    if name:
        try:
            return ZoneInfo(name)
        except Exception:
            logger.warning(f"Unknown timezone '{name}', falling back to UTC")
    return timezone.utc
