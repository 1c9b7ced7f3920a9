"""Local collection table: one row per conceptual storage key."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, String

from app.db.session import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LocalCollection(Base):
    """A JSON document (list of records, or one settings record) stored under ``key``."""

    __tablename__ = "local_collections"

    key = Column(String(200), primary_key=True)
    payload = Column(JSON, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)
