#!/usr/bin/env python3
"""
Display labels blended from review inference and live check-ins.

New spots show inferred noise, growing spots a blend, and popular spots
(10+ check-ins) live data. ``w_live = min(count / 10, 0.9)``.
Busyness is always live.
"""

import math
import logging
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from pydantic import BaseModel

from apps.discovery.schemas.checkin import CheckinEvent
from apps.discovery.schemas.spot import DisplayData

logger = logging.getLogger(__name__)

NOISE_HALF_LIFE = timedelta(days=3.5)
RECENT_WINDOW = timedelta(days=7)
RECENT_LIMIT = 20
MAX_LIVE_WEIGHT = 0.9

BUSYNESS_WORDS = {'empty': "Empty", 'some': "Some people", 'packed': "Packed"}


class LiveData(BaseModel):
    """Live check-in rollup for one spot"""
    noise: Optional[str] = None
    busyness: Optional[str] = None
    checkin_count: int = 0
    last_checkin_at: Optional[datetime] = None


def aggregate_live_noise(events: Iterable[CheckinEvent], now: datetime) -> Optional[str]:
    """Recency-weighted modal noise label; ties resolve quiet, moderate, loud."""
    weights = {'quiet': 0.0, 'moderate': 0.0, 'loud': 0.0}
    half_life = NOISE_HALF_LIFE.total_seconds()
    for event in events:
        if event.noise_label not in weights or event.created_at is None:
            continue
        age = max(0.0, (now - event.created_at).total_seconds())
        weights[event.noise_label] += math.exp(-age / half_life)

    best = max(weights.values())
    if best == 0:
        return None
    for label in ('quiet', 'moderate', 'loud'):
        if weights[label] == best:
            return label
    return None


def live_data_from_checkins(events: List[CheckinEvent], now: datetime) -> LiveData:
    """Noise from the recent window, busyness from the newest check-in, count over all."""
    dated = sorted(
        (event for event in events if event.created_at is not None),
        key=lambda event: event.created_at,
        reverse=True,
    )
    recent = [event for event in dated if now - event.created_at <= RECENT_WINDOW][:RECENT_LIMIT]
    latest = recent[0] if recent else None
    return LiveData(
        noise=aggregate_live_noise(recent, now),
        busyness=latest.busyness_label if latest else None,
        checkin_count=len(events),
        last_checkin_at=latest.created_at if latest else None,
    )


def _checkin_phrase(count: int) -> str:
    return f"{count} check-in{'' if count == 1 else 's'}"


def calculate_display_data(
    inferred_noise: Optional[str],
    live: LiveData,
) -> DisplayData:
    """Blend inferred and live noise with provenance labels."""
    inferred = inferred_noise.lower() if inferred_noise else None
    if inferred not in ('quiet', 'moderate', 'loud'):
        inferred = None
    live_noise = live.noise
    count = live.checkin_count

    if not inferred and not live_noise:
        noise, source, noise_label = None, 'inferred', "No data yet"
    elif not live_noise or count == 0:
        noise, source = inferred, 'inferred'
        noise_label = f"{(inferred or 'unknown').capitalize()} (inferred from reviews)"
    else:
        w_live = min(count / 10, MAX_LIVE_WEIGHT)
        noise = live_noise
        if w_live > 0.5:
            source = 'live'
            noise_label = f"{live_noise.capitalize()} ({_checkin_phrase(count)})"
        elif live_noise == inferred:
            source = 'blended'
            noise_label = f"{live_noise.capitalize()} ({_checkin_phrase(count)})"
        else:
            source = 'blended'
            noise_label = (
                f"{live_noise.capitalize()} ({_checkin_phrase(count)}, usually {inferred or 'varies'})"
            )

    if live.busyness in BUSYNESS_WORDS and count > 0:
        busyness = live.busyness
        busyness_label = f"{BUSYNESS_WORDS[live.busyness]} (live)"
    else:
        busyness = None
        busyness_label = "No recent data"

    return DisplayData(
        noise=noise,
        noise_source=source,
        noise_label=noise_label,
        busyness=busyness,
        busyness_label=busyness_label,
    )
