import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean
from shortlinks_app.database.connection import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ShortUrl(Base):
    """
    Durable URL record. The store is the single source of truth for clicks,
    is_active and expires_at; cache entries are snapshots of this row.

    - short_code is unique across ALL rows (active or not); the unique index
      is what makes concurrent creates collision-free.
    - clicks is only ever changed by a server-side ``clicks = clicks + 1``.
    """
    __tablename__ = "urls"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    original_url = Column(Text, nullable=False)
    # Note: unique=True automatically creates an index
    short_code = Column(String(10), unique=True, nullable=False, index=True)
    owner_id = Column(String(64), nullable=False, index=True)
    clicks = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    # Python-side defaults keep sub-second ordering on SQLite too
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<ShortUrl(id={self.id}, short_code='{self.short_code}', clicks={self.clicks})>"
