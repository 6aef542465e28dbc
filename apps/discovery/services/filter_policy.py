#!/usr/bin/env python3
"""Remote/client filter split and remote filter budget planning"""

import logging
import math
from typing import Dict, List, Optional

from apps.discovery.schemas.filters import FilterNormalization, FilterState, RemoteFilterName
from apps.discovery.schemas.spot import SpotAggregate

logger = logging.getLogger(__name__)

# Highest priority first; downgrades start from the end.
REMOTE_FILTERS: List[RemoteFilterName] = ['open_now', 'price_level', 'good_for_studying', 'good_for_meetings']
CLIENT_FILTERS: List[str] = ['distance', 'noise_level', 'not_crowded', 'high_rated']

MAX_REMOTE_FILTERS = 3

DEFAULT_FILTERS = FilterState()

assert not set(REMOTE_FILTERS) & set(CLIENT_FILTERS), "remote and client filters overlap"
assert set(REMOTE_FILTERS) | set(CLIENT_FILTERS) == set(FilterState.model_fields), \
    "every filter must be either remote or client-side"

_CLEARED: Dict[str, object] = {
    'open_now': False,
    'price_level': [],
    'good_for_studying': False,
    'good_for_meetings': False,
}


def _remote_active(filters: FilterState, name: str) -> bool:
    value = getattr(filters, name)
    return len(value) > 0 if name == 'price_level' else value is True


def active_remote_filters(filters: FilterState) -> List[RemoteFilterName]:
    return [name for name in REMOTE_FILTERS if _remote_active(filters, name)]


def active_remote_filter_count(filters: FilterState) -> int:
    return len(active_remote_filters(filters))


def active_filter_count(filters: FilterState) -> int:
    """Number of filters that differ from their defaults"""
    count = 0
    if filters.distance != DEFAULT_FILTERS.distance:
        count += 1
    if filters.noise_level != 'any':
        count += 1
    if filters.not_crowded:
        count += 1
    if filters.high_rated:
        count += 1
    return count + active_remote_filter_count(filters)


def has_active_filters(filters: FilterState) -> bool:
    return active_filter_count(filters) > 0


def normalize_query_filters(
    filters: FilterState,
    max_remote_filters: int = MAX_REMOTE_FILTERS,
) -> FilterNormalization:
    """Downgrade the lowest-priority remote filters until the budget is met.

    Downgraded filters are cleared on ``normalized`` and must be applied
    client-side by the caller. The input is never mutated.
    """
    budget = max(0, max_remote_filters)
    active = active_remote_filters(filters)
    overflow = max(0, len(active) - budget)
    downgraded: List[RemoteFilterName] = list(reversed(active))[:overflow]

    normalized = filters
    if downgraded:
        normalized = filters.model_copy(update={name: _CLEARED[name] for name in downgraded})
        logger.info("Downgraded remote filters to client-side: %s", downgraded)

    return FilterNormalization(
        normalized=normalized,
        downgraded=downgraded,
        active_remote_filters=active_remote_filters(normalized),
    )


def remote_filter_clauses(filters: FilterState) -> List[tuple]:
    """Field/op/value clauses for the remote spot query."""
    clauses = []
    if filters.open_now:
        clauses.append(('intel.isOpenNow', '==', True))
    if filters.price_level:
        clauses.append(('intel.priceLevel', 'in', list(filters.price_level)))
    if filters.good_for_studying:
        clauses.append(('intel.goodForStudying', '==', True))
    if filters.good_for_meetings:
        clauses.append(('intel.goodForMeetings', '==', True))
    return clauses


def matches_remote_filter(spot: SpotAggregate, name: RemoteFilterName, filters: FilterState) -> bool:
    """Client-side evaluation of a remote-eligible filter"""
    intel = spot.intel
    if name == 'open_now':
        return spot.is_open
    if name == 'price_level':
        price = spot.effective_price_level
        return bool(price) and price in filters.price_level
    if name == 'good_for_studying':
        return bool(intel and intel.good_for_studying is True)
    if name == 'good_for_meetings':
        return bool(intel and intel.good_for_meetings is True)
    return True


def matches_client_filters(
    spot: SpotAggregate,
    filters: FilterState,
    max_distance_km: Optional[float] = None,
) -> bool:
    """Noise, crowding and rating criteria plus an optional distance cap."""
    if max_distance_km is not None and math.isfinite(spot.distance) and spot.distance > max_distance_km:
        return False
    if filters.noise_level != 'any' and spot.noise_label != filters.noise_level:
        return False
    if filters.not_crowded:
        busyness = spot.avg_busyness if spot.avg_busyness is not None else 3
        if spot.busyness_label == 'packed' or busyness > 3.5:
            return False
    if filters.high_rated and (spot.effective_rating or 0) < 4:
        return False
    return True
