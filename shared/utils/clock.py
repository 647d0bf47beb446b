"""Utilidades de tiempo en UTC"""
from datetime import datetime, timezone
from typing import Optional
import time


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_ms() -> int:
    """Epoch actual en milisegundos"""
    return int(time.time() * 1000)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalizar un datetime a UTC.

    SQLite devuelve datetimes naive aunque la columna sea timezone=True,
    se asume que fueron guardados en UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    return int(ensure_utc(value).timestamp() * 1000)
