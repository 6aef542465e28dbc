#!/usr/bin/env python3
"""Fold check-in events into per-spot aggregates"""

import logging
from collections import OrderedDict
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional

from apps.discovery.schemas.checkin import CheckinEvent, LatLng
from apps.discovery.schemas.spot import SpotAggregate, SpotIntel
from apps.discovery.services.display import calculate_display_data, live_data_from_checkins
from apps.discovery.services.geo import haversine_km
from apps.discovery.services.ingestion import ensure_utc, is_checkin_expired, spot_key
from apps.discovery.services.intents import infer_intents_from_checkin

logger = logging.getLogger(__name__)

PRESENCE_HORIZON = timedelta(hours=2)


class _RunningMean:
    __slots__ = ('total', 'count')

    def __init__(self):
        self.total = 0.0
        self.count = 0

    def add(self, value: Optional[float]) -> None:
        if value is None:
            return
        self.total += value
        self.count += 1

    def value(self) -> Optional[float]:
        if not self.count:
            return None
        return round(self.total / self.count, 1)


def aggregate(
    events: Iterable[CheckinEvent],
    now: datetime,
    reference: Optional[LatLng] = None,
    key: Optional[str] = None,
    presence_horizon: timedelta = PRESENCE_HORIZON,
) -> SpotAggregate:
    """
    Single pass over the check-ins of one spot.

    Args:
        events: check-ins sharing a spot key
        now: clock used for the "here now" window; naive values are UTC
        reference: point distances are measured from
        key: spot key override, defaults to the first event's key

    Returns:
        SpotAggregate with averages rounded to one decimal. Events whose
        timestamp could not be parsed still count toward every statistic
        except "here now".
    """
    now = ensure_utc(now)
    events = list(events)
    noise = _RunningMean()
    busyness = _RunningMean()
    wifi = _RunningMean()
    drink = _RunningMean()
    laptop_yes = 0
    laptop_known = 0
    outlets: Dict[str, int] = OrderedDict()
    intent_scores: Dict[str, int] = {}
    here_now = set()
    location = None
    open_now = None

    for event in events:
        noise.add(event.noise_level)
        busyness.add(event.busyness)
        wifi.add(event.wifi_speed)
        drink.add(event.drink_quality)
        if event.laptop_friendly is not None:
            laptop_known += 1
            laptop_yes += 1 if event.laptop_friendly else 0
        if event.outlet_availability:
            outlets[event.outlet_availability] = outlets.get(event.outlet_availability, 0) + 1
        for intent in infer_intents_from_checkin(event, now):
            intent_scores[intent] = intent_scores.get(intent, 0) + 1
        if location is None and event.location is not None:
            location = event.location
        if event.open_now is not None:
            open_now = event.open_now

        if event.created_at is None or not event.user_id or is_checkin_expired(event, now):
            continue
        age = now - event.created_at
        if timedelta(0) <= age <= presence_horizon:
            here_now.add(event.user_id)

    top_outlet = None
    best = 0
    for outlet, count in outlets.items():
        if count > best:
            top_outlet, best = outlet, count

    first = events[0] if events else None
    return SpotAggregate(
        key=key or (first.spot_key if first else "name:unknown"),
        name=first.spot_name if first else "Unknown",
        place_id=first.place_id if first else None,
        location=location,
        count=len(events),
        avg_noise_level=noise.value(),
        avg_busyness=busyness.value(),
        avg_wifi_speed=wifi.value(),
        avg_drink_quality=drink.value(),
        laptop_friendly_pct=round(laptop_yes / laptop_known * 100, 1) if laptop_known else None,
        top_outlet_availability=top_outlet,
        intent_scores=intent_scores,
        here_now_count=len(here_now),
        distance=haversine_km(reference, location),
        open_now=open_now,
        checkins=events,
    )


def group_by_spot(events: Iterable[CheckinEvent]) -> Dict[str, List[CheckinEvent]]:
    grouped: Dict[str, List[CheckinEvent]] = OrderedDict()
    for event in events:
        grouped.setdefault(event.spot_key, []).append(event)
    return grouped


def spot_intel_index(spots: Iterable[SpotAggregate]) -> Dict[str, SpotIntel]:
    """Spot document intel keyed the way check-ins key their spot (place id, else name)."""
    index: Dict[str, SpotIntel] = {}
    for spot in spots:
        if spot.intel is None:
            continue
        keys = [spot_key(None, spot.name)]
        if spot.place_id:
            keys.insert(0, spot_key(spot.place_id, spot.name))
        for key in keys:
            index.setdefault(key, spot.intel)
    return index


def build_spots_from_checkins(
    events: Iterable[CheckinEvent],
    focus: Optional[LatLng],
    now: datetime,
    spot_intel: Optional[Dict[str, SpotIntel]] = None,
) -> List[SpotAggregate]:
    """Group check-ins by spot key, aggregate each group, attach live display labels.

    ``spot_intel`` (see ``spot_intel_index``) supplies the matching spot
    document's intel, whose inferred noise is blended with the live reports.
    Sorted by ascending distance, then descending check-in count.
    """
    now = ensure_utc(now)
    spot_intel = spot_intel or {}
    spots = []
    for key, group in group_by_spot(events).items():
        spot = aggregate(group, now, reference=focus, key=key)
        intel = spot_intel.get(key)
        if intel is None and spot.place_id:
            intel = spot_intel.get(spot_key(None, spot.name))
        spot.intel = intel
        live = live_data_from_checkins(group, now)
        spot.display = calculate_display_data(intel.inferred_noise if intel else None, live)
        spots.append(spot)

    spots.sort(key=lambda spot: (spot.distance, -spot.count))
    matched = sum(1 for spot in spots if spot.intel is not None)
    logger.info("Built %d spots from check-ins (%d with spot intel)", len(spots), matched)
    return spots
