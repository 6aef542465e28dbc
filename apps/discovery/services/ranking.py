#!/usr/bin/env python3
"""Deterministic discovery ranking over annotated spots"""

import logging
from functools import cmp_to_key
from typing import Dict, Iterable, List, Optional

from apps.discovery.schemas.filters import FilterState
from apps.discovery.schemas.intelligence import PlaceIntelligence
from apps.discovery.schemas.spot import RankedSpot, SpotAggregate
from apps.discovery.services.filter_policy import active_remote_filters, matches_client_filters, matches_remote_filter
from apps.discovery.services.geo import clamp_radius_miles, miles_to_km
from apps.discovery.services.intents import ANY_INTENT, normalize_discovery_intent, score_for_intent
from apps.discovery.services.query_parser import ParsedQuery, apply_query_boost, parse_query
from apps.discovery.services.vibes import intent_to_vibe, vibe_scores

logger = logging.getLogger(__name__)

VIBE_TOLERANCE = 0.5
INTENT_TOLERANCE = 0.01
BOOST_TOLERANCE = 0.5


def resolve_ranking_intent(
    selected: Optional[str],
    preferred: Optional[str] = None,
    parsed: Optional[ParsedQuery] = None,
) -> str:
    """Explicit selection, then the user's preferred intent, then the query's, then ``any``."""
    explicit = normalize_discovery_intent(selected)
    if explicit:
        return explicit
    preferred = normalize_discovery_intent(preferred)
    if preferred:
        return preferred
    if parsed and parsed.matched and parsed.suggested_intent:
        return parsed.suggested_intent
    return ANY_INTENT


def merge_query_filters(filters: FilterState, parsed: ParsedQuery) -> FilterState:
    """Explicit filters win; the query only fills criteria left at their defaults."""
    query = parsed.filters
    return filters.model_copy(update={
        'noise_level': filters.noise_level if filters.noise_level != 'any' else query.noise_level,
        'open_now': filters.open_now or query.open_now,
        'not_crowded': filters.not_crowded or query.not_crowded,
        'high_rated': filters.high_rated or query.high_rated,
        'price_level': list(filters.price_level) or list(query.price_level),
    })


def _matches_text(spot: SpotAggregate, text: str) -> bool:
    if text in (spot.name or '').lower():
        return True
    return any(text in tag.lower() for tag in spot.tags)


def _passes(ranked: RankedSpot, filters: FilterState, text: str, parsed: ParsedQuery, enforce_distance: bool) -> bool:
    spot = ranked.spot
    # a parsed query already ranks by meaning; plain text must match the spot
    if text and not parsed.matched and not _matches_text(spot, text):
        return False
    max_km = miles_to_km(clamp_radius_miles(filters.distance)) if enforce_distance else None
    if not matches_client_filters(spot, filters, max_distance_km=max_km):
        return False
    return all(matches_remote_filter(spot, name, filters) for name in active_remote_filters(filters))


def _compare(a: RankedSpot, b: RankedSpot, vibe_active: bool, intent_active: bool) -> float:
    if vibe_active:
        delta = (b.vibe_match or 0) - (a.vibe_match or 0)
        if abs(delta) > VIBE_TOLERANCE:
            return delta
    if intent_active:
        delta = b.intent_score - a.intent_score
        if abs(delta) > INTENT_TOLERANCE:
            return delta
    delta = b.query_boost - a.query_boost
    if abs(delta) > BOOST_TOLERANCE:
        return delta
    if a.spot.here_now_count != b.spot.here_now_count:
        return b.spot.here_now_count - a.spot.here_now_count
    if a.spot.distance != b.spot.distance:
        return -1 if a.spot.distance < b.spot.distance else 1
    return b.spot.count - a.spot.count


def annotate(
    spot: SpotAggregate,
    intent: str,
    parsed: ParsedQuery,
    intelligence: Optional[PlaceIntelligence] = None,
) -> RankedSpot:
    signal = score_for_intent(spot, intent)
    boost = apply_query_boost(spot, parsed)
    scores = vibe_scores(spot)
    vibe = intent_to_vibe(intent)
    return RankedSpot(
        spot=spot,
        intelligence=intelligence,
        intent_score=signal.score,
        intent_reasons=list(dict.fromkeys(signal.reasons + boost.reasons)),
        query_boost=boost.boost,
        vibe_scores=scores,
        vibe_match=float(scores.get(vibe)) if vibe else None,
    )


def rank(
    spots: Iterable[SpotAggregate],
    filters: FilterState,
    intent: Optional[str] = ANY_INTENT,
    query: str = "",
    preferred_intent: Optional[str] = None,
    intelligence: Optional[Dict[str, PlaceIntelligence]] = None,
    enforce_distance: bool = True,
) -> List[RankedSpot]:
    """
    Annotate, filter and order spots for one ranking pass.

    Pure: identical inputs (including input order) always give identical
    output. Order is vibe match, intent score, query boost, people here now,
    distance ascending, check-in count descending. ``enforce_distance=False``
    keeps spots beyond the radius (used when only far spots exist).
    """
    parsed = parse_query(query)
    ranking_intent = resolve_ranking_intent(intent, preferred_intent, parsed)
    merged = merge_query_filters(filters, parsed)
    text = parsed.normalized_query
    intelligence = intelligence or {}

    annotated = [annotate(spot, ranking_intent, parsed, intelligence.get(spot.key)) for spot in spots]
    kept = [ranked for ranked in annotated if _passes(ranked, merged, text, parsed, enforce_distance)]

    vibe_active = intent_to_vibe(ranking_intent) is not None
    intent_active = ranking_intent != ANY_INTENT
    kept.sort(key=cmp_to_key(lambda a, b: _compare(a, b, vibe_active, intent_active)))

    logger.info(
        "Ranked %d/%d spots for intent=%s query=%r",
        len(kept), len(annotated), ranking_intent, text,
    )
    return kept
