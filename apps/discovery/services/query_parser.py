#!/usr/bin/env python3
"""Heuristic parser for free-text discovery queries ("quiet cozy study spot")"""

import logging
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from apps.discovery.schemas.filters import QueryFilters
from apps.discovery.schemas.spot import SpotAggregate
from apps.discovery.services.intents import score_for_intent

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.2
MAX_BOOST_REASONS = 2

# (keywords, intent, explanation, weight); first match wins
INTENT_RULES: List[Tuple[List[str], str, str, float]] = [
    (['date', 'romantic', 'anniversary', 'cute'], 'date_night', 'date night', 0.35),
    (['study', 'work', 'laptop', 'focus'], 'deep_work', 'study/work', 0.35),
    (['read', 'book', 'quiet'], 'quiet_reading', 'quiet reading', 0.3),
    (['friends', 'hangout', 'social', 'group'], 'hangout_friends', 'social hangout', 0.35),
    (['quick', 'pickup', 'grab and go', 'to-go'], 'quick_pickup', 'quick pickup', 0.35),
    (['aesthetic', 'instagram', 'photo', 'photogenic'], 'aesthetic_photos', 'aesthetic photos', 0.35),
    (['pastry', 'croissant', 'snack', 'bakery'], 'pastry_snack', 'pastry/snack', 0.3),
    (['coffee', 'espresso', 'latte', 'pour over'], 'coffee_quality', 'coffee quality', 0.25),
]

AMBIANCE_RULES: List[Tuple[List[str], str]] = [
    (['cozy', 'warm', 'intimate'], 'cozy'),
    (['modern', 'minimal'], 'modern'),
    (['rustic', 'wood', 'vintage'], 'rustic'),
    (['bright', 'sunny', 'daylight'], 'bright'),
    (['energetic', 'lively'], 'energetic'),
]
AMBIANCE_WEIGHT = 0.2


class ParsedQuery(BaseModel):
    raw_query: str = ""
    normalized_query: str = ""
    matched: bool = False
    confidence: float = 0.0
    suggested_intent: Optional[str] = None
    ambiance: Optional[str] = None
    filters: QueryFilters = Field(default_factory=QueryFilters)
    explanation: List[str] = Field(default_factory=list)


class QueryBoost(BaseModel):
    boost: float = 0.0
    reasons: List[str] = Field(default_factory=list)


def _has_any(haystack: str, words: List[str]) -> bool:
    return any(word in haystack for word in words)


def parse_query(query: Optional[str]) -> ParsedQuery:
    """Extract intent, ambiance and sub-filters; ``matched`` when confidence >= 0.2."""
    raw = query or ""
    normalized = raw.strip().lower()
    if not normalized:
        return ParsedQuery(raw_query=raw)

    explanation: List[str] = []
    score = 0.0
    intent = None
    ambiance = None
    filters = {}

    for words, candidate, label, weight in INTENT_RULES:
        if _has_any(normalized, words):
            intent = candidate
            explanation.append(label)
            score += weight
            break

    for words, candidate in AMBIANCE_RULES:
        if _has_any(normalized, words):
            if candidate == 'cozy' and 'intimate' in normalized:
                candidate = 'intimate'
            ambiance = candidate
            explanation.append(f"{candidate} ambiance")
            score += AMBIANCE_WEIGHT
            break

    if _has_any(normalized, ['not crowded', 'uncrowded', 'empty']):
        filters['not_crowded'] = True
        explanation.append('not crowded')
        score += 0.18
    if _has_any(normalized, ['quiet', 'silent', 'calm']):
        filters['noise_level'] = 'quiet'
        explanation.append('quiet')
        score += 0.18
    elif _has_any(normalized, ['loud', 'buzzing', 'noisy']):
        filters['noise_level'] = 'loud'
        explanation.append('lively noise')
        score += 0.16
    if _has_any(normalized, ['cheap', 'affordable', 'budget']):
        filters['price_level'] = ['$']
        explanation.append('budget friendly')
        score += 0.16
    if _has_any(normalized, ['open now', 'right now']):
        filters['open_now'] = True
        explanation.append('open now')
        score += 0.12
    if _has_any(normalized, ['high rated', 'top rated', 'best rated']):
        filters['high_rated'] = True
        explanation.append('high rated')
        score += 0.1

    confidence = max(0.0, min(1.0, score))
    return ParsedQuery(
        raw_query=raw,
        normalized_query=normalized,
        matched=confidence >= MATCH_THRESHOLD,
        confidence=confidence,
        suggested_intent=intent,
        ambiance=ambiance,
        filters=QueryFilters(**filters),
        explanation=list(dict.fromkeys(explanation)),
    )


def apply_query_boost(spot: SpotAggregate, parsed: ParsedQuery) -> QueryBoost:
    """Additive ranking boost for how well a spot answers a matched query."""
    if not parsed.matched:
        return QueryBoost()

    boost = 0.0
    reasons: List[str] = []

    if parsed.suggested_intent:
        signal = score_for_intent(spot, parsed.suggested_intent)
        boost += signal.score * 20
        if signal.reasons:
            reasons.append(signal.reasons[0])

    wanted_noise = parsed.filters.noise_level
    if wanted_noise != 'any':
        if spot.noise_label == wanted_noise:
            boost += 8
            reasons.append(f"matches {wanted_noise} vibe")
        else:
            boost -= 4

    if parsed.filters.not_crowded:
        busyness = spot.avg_busyness if spot.avg_busyness is not None else 3
        if busyness <= 2.8:
            boost += 8
            reasons.append("typically not crowded")
        elif busyness > 3.8:
            boost -= 5

    if parsed.filters.price_level:
        price = (spot.effective_price_level or '').strip()
        if price and price in parsed.filters.price_level:
            boost += 6
            reasons.append("matches budget")

    if parsed.ambiance:
        haystack = ' '.join([spot.name or '', spot.description or ''] + spot.tags + spot.photo_tags).lower()
        if parsed.ambiance in haystack:
            boost += 6
            reasons.append(f"{parsed.ambiance} feel")

    return QueryBoost(boost=boost, reasons=list(dict.fromkeys(reasons))[:MAX_BOOST_REASONS])
