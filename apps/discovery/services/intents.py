#!/usr/bin/env python3
"""Discovery intent catalog, check-in intent inference and per-intent scoring"""

import os
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from apps.core.config_cache import load_yaml_cached
from apps.discovery.schemas.checkin import CheckinEvent
from apps.discovery.schemas.spot import IntentSignal, SpotAggregate
from apps.discovery.services.ingestion import to_busyness_value, to_noise_value

logger = logging.getLogger(__name__)

INTENTS_PATH = os.path.join(os.path.dirname(os.path.dirname(__file__)), "data", "intents.yml")

DISCOVERY_INTENTS: Tuple[str, ...] = (
    'hangout_friends',
    'date_night',
    'coffee_quality',
    'pastry_snack',
    'aesthetic_photos',
    'quick_pickup',
    'deep_work',
    'quiet_reading',
    'group_study',
    'late_night_open',
)
ANY_INTENT = 'any'

MAX_INTENTS_PER_CHECKIN = 2
MAX_REASONS = 3


class IntentMeta(BaseModel):
    key: str
    label: str
    short_label: str
    hint: str
    keywords: List[str] = Field(default_factory=list)


def _fallback_meta(key: str) -> IntentMeta:
    label = key.replace('_', ' ').capitalize()
    return IntentMeta(key=key, label=label, short_label=label.split(' ')[0], hint=label)


def load_intent_catalog(path: str = INTENTS_PATH) -> Dict[str, IntentMeta]:
    """Intent metadata keyed by intent, including ``any``; unknown keys are ignored."""
    raw = load_yaml_cached(path, default={})
    entries = raw.get('intents') or {}
    catalog: Dict[str, IntentMeta] = {}
    for key in DISCOVERY_INTENTS:
        entry = entries.get(key)
        if not isinstance(entry, dict):
            logger.warning("Intent %s missing from catalog %s", key, path)
            catalog[key] = _fallback_meta(key)
            continue
        catalog[key] = IntentMeta(key=key, **entry)
    any_entry = raw.get('any') if isinstance(raw.get('any'), dict) else {}
    catalog[ANY_INTENT] = IntentMeta(
        key=ANY_INTENT,
        label=any_entry.get('label', "Any vibe"),
        short_label=any_entry.get('short_label', "Any"),
        hint=any_entry.get('hint', "Balanced ranking across use cases."),
    )
    return catalog


def get_intent_meta(intent: str) -> IntentMeta:
    catalog = load_intent_catalog()
    return catalog.get(intent) or catalog[ANY_INTENT]


def normalize_discovery_intent(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    normalized = value.strip().lower()
    return normalized if normalized in DISCOVERY_INTENTS else None


def sanitize_discovery_intents(value: Any, max_items: int = MAX_INTENTS_PER_CHECKIN) -> List[str]:
    """Known intents in input order, de-duplicated and capped."""
    if not isinstance(value, (list, tuple)):
        return []
    result: List[str] = []
    for entry in value:
        intent = normalize_discovery_intent(entry)
        if not intent or intent in result:
            continue
        if len(result) >= max_items:
            break
        result.append(intent)
    return result


def _has_any(haystack: str, words: Iterable[str]) -> bool:
    return any(word in haystack for word in words)


def _joined_tags(tags: Iterable[str]) -> str:
    return ' '.join(tag.strip().lower() for tag in tags if isinstance(tag, str))


def infer_intents_from_checkin(event: CheckinEvent, now: Optional[datetime] = None) -> List[str]:
    """Explicit visit intents, else keyword and metric inference; at most two."""
    explicit = sanitize_discovery_intents(event.visit_intents)
    if explicit:
        return explicit

    catalog = load_intent_catalog()
    haystack = f"{event.caption.lower()} {event.spot_name.lower()} {_joined_tags(event.tags)}"
    inferred: List[str] = []

    def add(intent: str) -> None:
        if intent not in inferred:
            inferred.append(intent)

    for intent in DISCOVERY_INTENTS:
        if _has_any(haystack, catalog[intent].keywords):
            add(intent)

    noise = event.noise_level
    busyness = event.busyness
    if busyness is not None and busyness >= 3 and noise is not None and noise >= 3:
        add('hangout_friends')
    if noise is not None and noise <= 2.4:
        add('quiet_reading')
    if event.wifi_speed is not None and event.wifi_speed >= 4:
        add('deep_work')
    if event.drink_quality is not None and event.drink_quality >= 4:
        add('coffee_quality')
    hour = (now or datetime.now()).hour
    if event.open_now is True and hour >= 20:
        add('late_night_open')

    if not inferred:
        inferred.append('coffee_quality')
    return inferred[:MAX_INTENTS_PER_CHECKIN]


def intent_votes(spot: SpotAggregate, intent: str) -> Tuple[int, int]:
    """(votes for intent, total votes) from stored intent scores or the spot's check-ins."""
    if spot.intent_scores:
        total = sum(spot.intent_scores.values())
        if total > 0:
            return spot.intent_scores.get(intent, 0), total

    votes = 0
    total = 0
    for event in spot.checkins:
        intents = infer_intents_from_checkin(event)
        if not intents:
            continue
        total += 1
        if intent in intents:
            votes += 1
    return votes, total


def _spot_noise(spot: SpotAggregate) -> Optional[float]:
    if spot.avg_noise_level is not None:
        return spot.avg_noise_level
    return to_noise_value(spot.noise_label or None)


def _spot_busyness(spot: SpotAggregate) -> Optional[float]:
    if spot.avg_busyness is not None:
        return spot.avg_busyness
    return to_busyness_value(spot.busyness_label or None)


def score_for_intent(spot: SpotAggregate, intent: str) -> IntentSignal:
    """Fitness of a spot for one intent in [0, 1] with up to three reasons."""
    if intent == ANY_INTENT or intent not in DISCOVERY_INTENTS:
        return IntentSignal(score=0.5, reasons=["Balanced ranking across coffee vibes"])

    meta = get_intent_meta(intent)
    reasons: List[str] = []
    votes, total = intent_votes(spot, intent)
    score = (votes / total if total > 0 else 0.0) * 0.55

    if votes >= 3:
        reasons.append(f"{votes} recent check-ins for {meta.short_label.lower()}")
    elif votes > 0:
        reasons.append("Recent community activity for this vibe")

    noise = _spot_noise(spot)
    busyness = _spot_busyness(spot)
    rating = spot.effective_rating
    wifi = spot.avg_wifi_speed
    drink = spot.avg_drink_quality
    tags = _joined_tags(spot.tags)

    if intent == 'hangout_friends':
        if busyness is not None and 2.5 <= busyness <= 4.4:
            score += 0.14
            reasons.append("Good social energy")
        if noise is not None and 2.8 <= noise <= 4.4:
            score += 0.1
        if spot.here_now_count > 0:
            reasons.append("People are here now")
    elif intent == 'date_night':
        if spot.is_open:
            score += 0.12
        if noise is not None and 2 <= noise <= 3.6:
            score += 0.12
        if rating is not None and rating >= 4.2:
            score += 0.1
            reasons.append("Strong ratings for ambiance")
    elif intent == 'coffee_quality':
        if drink is not None and drink >= 3.8:
            score += 0.14
            reasons.append("Great drink quality from check-ins")
        if rating is not None and rating >= 4.1:
            score += 0.12
    elif intent == 'pastry_snack':
        if rating is not None and rating >= 4:
            score += 0.1
        if _has_any(tags, ['pastries', 'bakery', 'snack', 'dessert']):
            score += 0.14
            reasons.append("Known for pastries and snacks")
    elif intent == 'aesthetic_photos':
        if _has_any(tags, ['bright', 'spacious', 'cozy', 'aesthetic']):
            score += 0.16
            reasons.append("Photogenic interior tags")
        if rating is not None and rating >= 4.1:
            score += 0.08
    elif intent == 'quick_pickup':
        if spot.distance <= 1.2:
            score += 0.16
            reasons.append("Very close by")
        if busyness is not None and busyness <= 3:
            score += 0.08
    elif intent == 'deep_work':
        if wifi is not None and wifi >= 4:
            score += 0.14
        if noise is not None and noise <= 2.8:
            score += 0.12
    elif intent == 'quiet_reading':
        if noise is not None and noise <= 2.2:
            score += 0.16
            reasons.append("Usually quiet")
        if busyness is not None and busyness <= 2.8:
            score += 0.08
    elif intent == 'group_study':
        if busyness is not None and 2.3 <= busyness <= 3.8:
            score += 0.14
        if wifi is not None and wifi >= 3.2:
            score += 0.08
    elif intent == 'late_night_open':
        if spot.is_open:
            score += 0.16
            reasons.append("Open now")
        if _has_any(tags, ['late-night', 'late night']):
            score += 0.12

    if not reasons:
        reasons.append(meta.hint)
    unique = list(dict.fromkeys(reasons))[:MAX_REASONS]
    return IntentSignal(score=round(max(0.0, min(1.0, score)), 3), reasons=unique)
