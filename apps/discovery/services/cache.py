#!/usr/bin/env python3
"""Async key/value cache stores: in-memory and SQLAlchemy-backed"""

import time
import asyncio
import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, List, Optional, Protocol

from pydantic import BaseModel, ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from apps.core.db import SessionLocal
from apps.discovery.models import CacheEntry
from apps.discovery.schemas.checkin import CheckinEvent

logger = logging.getLogger(__name__)


class CacheStoreError(Exception):
    """Raised when the cache substrate cannot be read or written"""
    pass


class CacheStats(BaseModel):
    hits: int = 0
    misses: int = 0
    sets: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return round(self.hits / total, 3) if total else 0.0


class CacheStore(Protocol):
    stats: CacheStats

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl_s: Optional[float] = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_prefix(self, prefix: str) -> List[str]: ...


class MemoryCacheStore:
    """Process-local LRU cache with per-entry TTL"""

    def __init__(self, max_entries: int = 1024, clock: Callable[[], float] = time.monotonic):
        self.max_entries = max_entries
        self.clock = clock
        self.stats = CacheStats()
        self._entries: "OrderedDict[str, tuple]" = OrderedDict()

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            self.stats.misses += 1
            return None
        expires_at, value = entry
        if expires_at is not None and self.clock() >= expires_at:
            del self._entries[key]
            self.stats.misses += 1
            self.stats.evictions += 1
            return None
        self._entries.move_to_end(key)
        self.stats.hits += 1
        return value

    async def set(self, key: str, value: Any, ttl_s: Optional[float] = None) -> None:
        expires_at = self.clock() + ttl_s if ttl_s is not None else None
        self._entries[key] = (expires_at, value)
        self._entries.move_to_end(key)
        self.stats.sets += 1
        while len(self._entries) > self.max_entries:
            self._entries.popitem(last=False)
            self.stats.evictions += 1

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def delete_prefix(self, prefix: str) -> List[str]:
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return keys

    def keys(self) -> List[str]:
        return list(self._entries.keys())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlCacheStore:
    """Cache rows in the ``discovery_cache`` table; blocking I/O runs in a worker thread."""

    def __init__(self, session_factory=SessionLocal, clock: Callable[[], datetime] = _utcnow):
        self.session_factory = session_factory
        self.clock = clock
        self.stats = CacheStats()

    def _get_sync(self, key: str) -> Optional[Any]:
        db = self.session_factory()
        try:
            entry = db.get(CacheEntry, key)
            if entry is None:
                self.stats.misses += 1
                return None
            expires_at = _as_aware(entry.expires_at)
            if expires_at is not None and expires_at <= self.clock():
                db.delete(entry)
                db.commit()
                self.stats.misses += 1
                self.stats.evictions += 1
                return None
            entry.hits = (entry.hits or 0) + 1
            payload = entry.payload
            db.commit()
            self.stats.hits += 1
            return payload
        except SQLAlchemyError as e:
            db.rollback()
            raise CacheStoreError(f"Cache read failed for {key}: {e}")
        finally:
            db.close()

    def _set_sync(self, key: str, value: Any, ttl_s: Optional[float]) -> None:
        db = self.session_factory()
        try:
            expires_at = self.clock() + timedelta(seconds=ttl_s) if ttl_s is not None else None
            entry = db.get(CacheEntry, key)
            if entry is None:
                db.add(CacheEntry(key=key, payload=value, expires_at=expires_at, hits=0))
            else:
                entry.payload = value
                entry.expires_at = expires_at
            db.commit()
            self.stats.sets += 1
        except SQLAlchemyError as e:
            db.rollback()
            raise CacheStoreError(f"Cache write failed for {key}: {e}")
        finally:
            db.close()

    def _delete_sync(self, key: str) -> None:
        db = self.session_factory()
        try:
            db.execute(delete(CacheEntry).where(CacheEntry.key == key))
            db.commit()
        except SQLAlchemyError as e:
            db.rollback()
            raise CacheStoreError(f"Cache delete failed for {key}: {e}")
        finally:
            db.close()

    def _delete_prefix_sync(self, prefix: str) -> List[str]:
        db = self.session_factory()
        try:
            condition = CacheEntry.key.startswith(prefix, autoescape=True)
            keys = list(db.scalars(select(CacheEntry.key).where(condition)))
            if keys:
                db.execute(delete(CacheEntry).where(condition))
                db.commit()
            return keys
        except SQLAlchemyError as e:
            db.rollback()
            raise CacheStoreError(f"Cache prefix delete failed for {prefix}: {e}")
        finally:
            db.close()

    async def get(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, value: Any, ttl_s: Optional[float] = None) -> None:
        await asyncio.to_thread(self._set_sync, key, value, ttl_s)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._delete_sync, key)

    async def delete_prefix(self, prefix: str) -> List[str]:
        return await asyncio.to_thread(self._delete_prefix_sync, prefix)


LOCAL_CHECKINS_KEY = "local_checkins_recent"


class LocalCheckinCache:
    """Last successful remote check-in read, kept for offline fallback"""

    def __init__(self, cache: CacheStore, ttl_s: Optional[float] = None, key: str = LOCAL_CHECKINS_KEY):
        self.cache = cache
        self.ttl_s = ttl_s
        self.key = key

    async def save(self, events: List[CheckinEvent]) -> None:
        payload = [event.model_dump(mode='json') for event in events]
        try:
            await self.cache.set(self.key, payload, self.ttl_s)
        except CacheStoreError as e:
            logger.warning(f"Failed to save local check-ins: {e}")

    async def load(self) -> List[CheckinEvent]:
        try:
            payload = await self.cache.get(self.key)
        except CacheStoreError as e:
            logger.warning(f"Failed to load local check-ins: {e}")
            return []
        if not isinstance(payload, list):
            return []
        events = []
        for item in payload:
            try:
                events.append(CheckinEvent.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Dropping unreadable saved check-in: {e}")
        return events

    async def clear(self) -> bool:
        """Forget the saved snapshot; False when the store could not be reached."""
        try:
            await self.cache.delete(self.key)
        except CacheStoreError as e:
            logger.warning(f"Failed to clear local check-ins: {e}")
            return False
        return True
