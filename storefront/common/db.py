from datetime import datetime, timezone

from sqlalchemy import DateTime, inspect
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    # SQLite keeps naive datetimes; everything is stored as UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)


def isoformat(value):
    return value.isoformat() if value is not None else None


def is_loaded(obj, attr: str) -> bool:
    """True when ``attr`` can be read without a lazy load (async sessions cannot lazy load)."""
    return attr not in inspect(obj).unloaded
