"""
SQLite-backed key/value store.

Uses SQLAlchemy so cache snapshots and resolution entries survive across
process runs.
"""

import json
import time
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from sqlalchemy import create_engine, Column, Float, String, Text, DateTime
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from .errors import CorruptCacheEntry, StoreError

Base = declarative_base()


class CacheEntry(Base):
    """One stored key."""

    __tablename__ = "cache_entries"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)  # JSON-encoded
    expires_at = Column(Float, nullable=True)  # epoch seconds, NULL = no expiry
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)


def init_database(db_path: Path) -> Engine:
    """
    Initialize database and create tables.

    Args:
        db_path: Path to SQLite database file

    Returns:
        Engine bound to the database
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    return engine


class SqlStore:
    """Key/value store on the ``cache_entries`` table."""

    def __init__(self, db_path: Path, clock: Callable[[], float] = time.time):
        self.db_path = Path(db_path)
        self._clock = clock
        self.engine = init_database(self.db_path)
        self._Session = sessionmaker(bind=self.engine)

    def get(self, key: str) -> Optional[Any]:
        session = self._Session()
        try:
            entry = session.get(CacheEntry, key)
            if entry is None:
                return None
            if entry.expires_at is not None and entry.expires_at <= self._clock():
                return None
            try:
                return json.loads(entry.value)
            except ValueError as e:
                raise CorruptCacheEntry(f"Stored value for {key} is not valid JSON") from e
        finally:
            session.close()

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        self.set_many({key: value}, ttl_seconds=ttl_seconds)

    def set_many(self, items: Dict[str, Any], ttl_seconds: Optional[float] = None) -> None:
        """Write all keys in one transaction."""
        expires_at = self._clock() + ttl_seconds if ttl_seconds is not None else None
        session = self._Session()
        try:
            for key, value in items.items():
                session.merge(CacheEntry(key=key, value=json.dumps(value), expires_at=expires_at))
            session.commit()
        except (SQLAlchemyError, TypeError, ValueError) as e:
            session.rollback()
            raise StoreError(f"Failed to write keys {sorted(items)}: {e}") from e
        finally:
            session.close()

    def delete(self, key: str) -> None:
        session = self._Session()
        try:
            entry = session.get(CacheEntry, key)
            if entry is not None:
                session.delete(entry)
                session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreError(f"Failed to delete key {key}: {e}") from e
        finally:
            session.close()

    def purge_expired(self) -> int:
        """Delete expired rows. Returns the number removed."""
        session = self._Session()
        try:
            removed = (
                session.query(CacheEntry)
                .filter(CacheEntry.expires_at.isnot(None), CacheEntry.expires_at <= self._clock())
                .delete(synchronize_session=False)
            )
            session.commit()
            return removed
        finally:
            session.close()
