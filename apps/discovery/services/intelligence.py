#!/usr/bin/env python3
"""Place intelligence: work suitability, crowding and timing from check-ins plus external ratings"""

import re
import math
import time
import asyncio
import logging
from datetime import datetime, tzinfo
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError

from apps.core.config import settings
from apps.discovery.schemas.intelligence import (
    CrowdForecastPoint,
    ExternalPlaceSignal,
    IntelligenceInput,
    PlaceIntelligence,
)
from apps.discovery.services.cache import CacheStore, CacheStoreError
from apps.discovery.services.external_signals import PlaceSignalClient

logger = logging.getLogger(__name__)

FORECAST_HOURS = 6
MAX_HIGHLIGHTS = 4
MAX_USE_CASES = 3

STUDY_TYPES = re.compile(r"library|cowork|university|study|workspace|bookstore")
NIGHTLIFE_TYPES = re.compile(r"bar|night_club|casino")

TIME_BUCKETS = ('morning', 'afternoon', 'evening', 'late')


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _avg(values: List[float]) -> Optional[float]:
    if not values:
        return None
    return sum(values) / len(values)


def _local_hour(moment: datetime, tz: Optional[tzinfo]) -> int:
    if tz is not None and moment.tzinfo is not None:
        return moment.astimezone(tz).hour
    return moment.hour


def _bucket_hour(hour: int) -> str:
    if 6 <= hour < 12:
        return 'morning'
    if 12 <= hour < 17:
        return 'afternoon'
    if 17 <= hour < 22:
        return 'evening'
    return 'late'


def _hour_label(hour: int) -> str:
    meridiem = "PM" if hour >= 12 else "AM"
    return f"{hour % 12 or 12}{meridiem}"


def crowd_level(avg_busyness: Optional[float]) -> str:
    if avg_busyness is None:
        return 'unknown'
    if avg_busyness <= 2.1:
        return 'low'
    if avg_busyness >= 3.8:
        return 'high'
    return 'moderate'


def forecast_level(score: float) -> str:
    if score <= 0.34:
        return 'low'
    if score >= 0.67:
        return 'high'
    return 'moderate'


def build_crowd_forecast(data: IntelligenceInput, confidence: float, now: datetime) -> List[CrowdForecastPoint]:
    """Six hourly points starting at the current local hour."""
    counts = [0] * 24
    busy_sums = [0.0] * 24
    busy_counts = [0] * 24
    for event in data.checkins:
        if event.created_at is None:
            continue
        hour = _local_hour(event.created_at, now.tzinfo)
        counts[hour] += 1
        if event.busyness is not None:
            busy_sums[hour] += event.busyness
            busy_counts[hour] += 1

    max_count = max(1, max(counts))
    hourly_busyness = [busy_sums[h] / busy_counts[h] for h in range(24) if busy_counts[h]]
    global_busyness = _avg(hourly_busyness) or 3

    points = []
    for offset in range(FORECAST_HOURS):
        hour = (now.hour + offset) % 24
        count_norm = _clamp(counts[hour] / max_count, 0, 1)
        busy_avg = busy_sums[hour] / busy_counts[hour] if busy_counts[hour] else global_busyness
        busy_norm = _clamp(busy_avg / 5, 0, 1)
        score = _clamp(0.65 * count_norm + 0.35 * busy_norm, 0, 1)
        points.append(CrowdForecastPoint(
            offset_hours=offset,
            label="Now" if offset == 0 else f"+{offset}h",
            local_hour_label=_hour_label(hour),
            level=forecast_level(score),
            score=round(score, 2),
            confidence=round(_clamp(confidence * 0.6 + count_norm * 0.4, 0.1, 0.95), 2),
        ))
    return points


def _use_cases(
    work_score: int,
    crowd: str,
    best_time: str,
    open_now: Optional[bool],
    external_rating: Optional[float],
    wifi: Optional[float],
    laptop_pct: Optional[float],
) -> List[str]:
    cases = []
    if work_score >= 78:
        cases.append("Deep work")
    if (wifi or 0) >= 3.8 and (laptop_pct or 0) >= 60:
        cases.append("Laptop sessions")
    if crowd == 'moderate':
        cases.append("Group study")
    if crowd == 'high':
        cases.append("Social energy")
    if (external_rating or 0) >= 4.2:
        cases.append("Coffee meetups")
    if best_time == 'late' or open_now is True:
        cases.append("Late sessions")
    if not cases:
        cases.append("Quick focus stop")
    return cases[:MAX_USE_CASES]


def compute_intelligence(
    data: IntelligenceInput,
    external_signals: List[ExternalPlaceSignal],
    now: datetime,
) -> PlaceIntelligence:
    """Score one place. Pure given its inputs; ``now`` fixes the local hour."""
    checkins = data.checkins
    wifi = _avg([e.wifi_speed for e in checkins if e.wifi_speed is not None])
    busyness = _avg([e.busyness for e in checkins if e.busyness is not None])
    noise = _avg([e.noise_level for e in checkins if e.noise_level is not None])
    laptop_votes = [e.laptop_friendly for e in checkins if e.laptop_friendly is not None]
    laptop_pct = sum(laptop_votes) / len(laptop_votes) * 100 if laptop_votes else None

    buckets = {name: 0 for name in TIME_BUCKETS}
    for event in checkins:
        if event.created_at is not None:
            buckets[_bucket_hour(_local_hour(event.created_at, now.tzinfo))] += 1
    top_bucket = max(TIME_BUCKETS, key=lambda name: buckets[name])
    best_time = top_bucket if buckets[top_bucket] else 'anytime'

    external_rating = _avg([s.rating for s in external_signals if s.rating is not None])

    tags = data.tag_scores
    tag_boost = (
        tags.get('Wi-Fi', 0) * 1.4
        + tags.get('Outlets', 0) * 1.2
        + tags.get('Seating', 0) * 1.0
        + tags.get('Quiet', 0) * 1.1
    )
    type_text = f"{data.place_name} {' '.join(data.types)}".lower()
    study_boost = 8 if STUDY_TYPES.search(type_text) else 0
    nightlife_penalty = 6 if NIGHTLIFE_TYPES.search(type_text) else 0
    open_boost = 4 if data.open_now is True else -4 if data.open_now is False else 0

    score = (
        (wifi or 0) * 10
        + (laptop_pct or 0) * 0.22
        + ((6 - noise) * 7 if noise is not None else 0)
        + ((6 - busyness) * 6 if busyness is not None else 0)
        + math.log10(1 + max(0.0, tag_boost)) * 18
        + (external_rating or 0) * 6
        + study_boost
        + open_boost
        - nightlife_penalty
    )
    work_score = int(_clamp(round(score), 0, 100))

    base_confidence = min(1.0, math.log10(1 + len(checkins)) / 2)
    external_confidence = 0.18 if external_signals else 0.0
    confidence = _clamp(round(base_confidence + external_confidence, 2), 0.1, 0.95)

    crowd = crowd_level(busyness)
    forecast = build_crowd_forecast(data, confidence, now)

    highlights = []
    if (wifi or 0) >= 4:
        highlights.append("Fast WiFi")
    if (laptop_pct or 0) >= 70:
        highlights.append("Laptop friendly")
    if busyness is not None and busyness <= 2.2:
        highlights.append("Usually not crowded")
    if noise is not None and noise <= 2.4:
        highlights.append("Typically quiet")
    if forecast[0].level == 'low':
        highlights.append("Low crowd now")
    if any((s.review_count or 0) >= 100 for s in external_signals):
        highlights.append("Strong external reviews")
    if data.open_now is True:
        highlights.append("Open now")

    return PlaceIntelligence(
        work_score=work_score,
        crowd_level=crowd,
        best_time=best_time,
        confidence=confidence,
        highlights=highlights[:MAX_HIGHLIGHTS],
        use_cases=_use_cases(work_score, crowd, best_time, data.open_now, external_rating, wifi, laptop_pct),
        external_signals=external_signals,
        crowd_forecast=forecast,
    )


def _local_now() -> datetime:
    return datetime.now().astimezone()


class PlaceIntelligenceEngine:
    """
    Builds and caches PlaceIntelligence per place.

    One instance per process. Concurrent builds for the same cache key share
    a single computation; a caller that gets cancelled stops waiting but the
    computation still finishes and fills the cache. Only fully built objects
    are cached, and never once the key was invalidated after the build started.
    """

    def __init__(
        self,
        signal_client: Optional[PlaceSignalClient] = None,
        store: Optional[CacheStore] = None,
        ttl_s: Optional[float] = None,
        clock: Callable[[], datetime] = _local_now,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.signal_client = signal_client or PlaceSignalClient()
        self.store = store
        self.ttl_s = ttl_s if ttl_s is not None else settings.intelligence_ttl_s
        self.clock = clock
        self.monotonic = monotonic
        self._cache: Dict[str, Tuple[float, PlaceIntelligence]] = {}
        self._signals: Dict[str, Tuple[float, List[ExternalPlaceSignal]]] = {}
        self._inflight: Dict[str, "asyncio.Task[PlaceIntelligence]"] = {}
        self._generation: Dict[str, int] = {}

    @staticmethod
    def _store_key(key: str) -> str:
        return f"place_intel:{key}"

    def _fresh(self, table: Dict[str, Tuple[float, object]], key: str):
        entry = table.get(key)
        if entry is None:
            return None
        stored_at, payload = entry
        if self.monotonic() - stored_at >= self.ttl_s:
            table.pop(key, None)
            return None
        return payload

    def peek(self, data: IntelligenceInput) -> Optional[PlaceIntelligence]:
        """Fresh cached intelligence without computing anything."""
        return self._fresh(self._cache, data.cache_key)

    def in_flight(self) -> int:
        return len(self._inflight)

    async def build_intelligence(self, data: IntelligenceInput) -> PlaceIntelligence:
        key = data.cache_key
        cached = self._fresh(self._cache, key)
        if cached is not None:
            logger.debug("Intelligence cache hit for %s", key)
            return cached

        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(self._compute(key, data))
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._finish(key, done))
        return await asyncio.shield(task)

    def _finish(self, key: str, task: "asyncio.Task[PlaceIntelligence]") -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Intelligence build failed for {key}: {task.exception()}")

    def _current(self, key: str, generation: int) -> bool:
        return self._generation.get(key, 0) == generation

    async def _compute(self, key: str, data: IntelligenceInput) -> PlaceIntelligence:
        generation = self._generation.get(key, 0)
        stored = await self._load(key)
        if stored is not None:
            if self._current(key, generation):
                self._cache[key] = (self.monotonic(), stored)
            return stored

        signals = await self._external_signals(key, data, generation)
        intelligence = compute_intelligence(data, signals, self.clock())
        if not self._current(key, generation):
            logger.info("Discarding intelligence for %s: invalidated during the build", key)
            return intelligence

        self._cache[key] = (self.monotonic(), intelligence)
        await self._save(key, intelligence)
        if not self._current(key, generation):
            # invalidated while the write was in progress
            self._cache.pop(key, None)
            await self._delete_stored(key)
            return intelligence

        logger.info(
            "Built intelligence for %s: work=%d crowd=%s confidence=%.2f",
            key, intelligence.work_score, intelligence.crowd_level, intelligence.confidence,
        )
        return intelligence

    async def _external_signals(self, key: str, data: IntelligenceInput, generation: int) -> List[ExternalPlaceSignal]:
        cached = self._fresh(self._signals, key)
        if cached is not None:
            return cached
        signals = await self.signal_client.fetch_signals(data)
        if self._current(key, generation):
            self._signals[key] = (self.monotonic(), signals)
        return signals

    async def _load(self, key: str) -> Optional[PlaceIntelligence]:
        if self.store is None:
            return None
        try:
            payload = await self.store.get(self._store_key(key))
        except CacheStoreError as e:
            logger.warning(f"Intelligence store read failed: {e}")
            return None
        if payload is None:
            return None
        try:
            return PlaceIntelligence.model_validate(payload)
        except ValidationError as e:
            logger.warning(f"Discarding stored intelligence for {key}: {e}")
            return None

    async def _save(self, key: str, intelligence: PlaceIntelligence) -> None:
        if self.store is None:
            return
        try:
            await self.store.set(self._store_key(key), intelligence.model_dump(mode='json'), self.ttl_s)
        except CacheStoreError as e:
            logger.warning(f"Intelligence store write failed: {e}")

    async def _delete_stored(self, key: str) -> None:
        if self.store is None:
            return
        try:
            await self.store.delete(self._store_key(key))
        except CacheStoreError as e:
            logger.warning(f"Intelligence store delete failed: {e}")

    async def invalidate(self, identity: str) -> List[str]:
        """Drop cached intelligence for a place id or name across all coordinates.

        Clears this process's memory and every persisted entry for the place,
        including ones written by other processes. Builds still in flight are
        detached: their results are returned to their callers but not cached,
        and the next request starts a fresh build.

        Returns:
            Store keys of the dropped entries
        """
        prefix = f"{identity}:"
        local = {key for key in list(self._cache) + list(self._signals) if key.startswith(prefix)}
        running = [key for key in self._inflight if key.startswith(prefix)]
        for key in local.union(running):
            self._generation[key] = self._generation.get(key, 0) + 1
        for key in running:
            del self._inflight[key]
        for key in local:
            self._cache.pop(key, None)
            self._signals.pop(key, None)

        removed = {self._store_key(key) for key in local}
        if self.store is not None:
            try:
                removed.update(await self.store.delete_prefix(self._store_key(prefix)))
            except CacheStoreError as e:
                logger.warning(f"Intelligence store delete failed for {identity}: {e}")
        if removed or running:
            logger.info(
                "Invalidated intelligence for %s: %d entries, %d builds detached",
                identity, len(removed), len(running),
            )
        return sorted(removed)

    def clear(self) -> None:
        self._cache.clear()
        self._signals.clear()
