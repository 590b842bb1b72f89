"""
Database models for the fixtures cache
SQLAlchemy ORM model for the key/value cache table
"""
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the cache table stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class CacheRow(Base):
    """
    Cache entry - one record per logical key ("current" or a date)
    Overwritten on every refetch, never deleted by the service
    """
    __tablename__ = "fixture_cache"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String, unique=True, nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    last_fetched = Column(DateTime, nullable=False, default=utcnow)

    def __repr__(self):
        return f"<CacheRow(key='{self.key}', last_fetched={self.last_fetched})>"
