#!/usr/bin/env python3
"""Per-vibe 0-100 scores derived from spot statistics and review NLP"""

import math
from typing import Dict, Iterable, Optional

from apps.discovery.schemas.spot import SpotAggregate, VibeScores, VibeType

INTENT_TO_VIBE: Dict[str, VibeType] = {
    'deep_work': 'study',
    'quiet_reading': 'study',
    'group_study': 'study',
    'date_night': 'date',
    'hangout_friends': 'social',
    'late_night_open': 'social',
    'quick_pickup': 'quick',
    'coffee_quality': 'quick',
    'pastry_snack': 'quick',
    'aesthetic_photos': 'aesthetic',
}

VIBE_ORDER = ('study', 'date', 'social', 'quick', 'aesthetic')


def intent_to_vibe(intent: Optional[str]) -> Optional[VibeType]:
    """Vibe an intent ranks by; ``None`` for ``any`` or unknown intents."""
    if not intent:
        return None
    return INTENT_TO_VIBE.get(intent)


def _clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _ratio(value: Optional[float], low: float, high: float) -> float:
    if value is None or not math.isfinite(value) or high <= low:
        return 0.5
    return _clamp((value - low) / (high - low) * 100) / 100


def _sweet_spot(value: Optional[float], low: float, high: float, spread: float = 1.2) -> float:
    """1 inside [low, high], gaussian falloff from the midpoint outside."""
    if value is None or not math.isfinite(value):
        return 0.45
    if low <= value <= high:
        return 1.0
    delta = abs(value - (low + high) / 2)
    return _clamp(math.exp(-((delta / spread) ** 2)) * 100) / 100


def _outlet_score(value: Optional[str]) -> float:
    normalized = (value or '').strip().lower()
    return {'plenty': 1.0, 'some': 0.75, 'few': 0.4, 'none': 0.1}.get(normalized, 0.45)


def _tag_score(tag_scores: Dict[str, float], keys: Iterable[str]) -> float:
    if not tag_scores:
        return 0.0
    total = sum(tag_scores.get(key, 0) or 0 for key in keys)
    return _clamp(total * 10) / 100


def _intent_ratio(intent_counts: Dict[str, int], keys: Iterable[str]) -> float:
    if not intent_counts:
        return 0.0
    total = sum(intent_counts.values())
    if total <= 0:
        return 0.0
    votes = sum(intent_counts.get(key, 0) for key in keys)
    return _clamp(votes / total * 100) / 100


def _has_word(words_in: Iterable[str], words: Iterable[str]) -> bool:
    joined = ' '.join(words_in).lower()
    return bool(joined) and any(word in joined for word in words)


def _unit(value: Optional[float], default: float) -> float:
    if value is None:
        return default
    return _clamp(value * 100) / 100


def vibe_scores(spot: SpotAggregate) -> VibeScores:
    """Weighted sums of normalized signals, each clamped to [0, 100] and rounded."""
    intel = spot.intel
    noise = spot.avg_noise_level
    busyness = spot.avg_busyness
    ambiance = (spot.ambiance or (intel.aesthetic_vibe if intel else None) or '').lower()
    music = ((intel.music_atmosphere if intel else None) or '').lower()
    open_bonus = 0.08 if spot.is_open else 0.0

    quietness = 1 - _ratio(noise, 1, 5)
    energy = _ratio(noise, 1, 5)
    crowd_calm = 1 - _ratio(busyness, 1, 5)
    crowd_social = _sweet_spot(busyness, 2.2, 3.8, 1.1)
    wifi = _ratio(spot.avg_wifi_speed, 1, 5)
    drink = _ratio(spot.avg_drink_quality, 1, 5)
    laptop = _ratio(spot.laptop_friendly_pct, 0, 100)
    # no price signal on check-ins yet; neutral
    budget = 1 - _ratio(None, 1, 3)
    outlet = _outlet_score(spot.top_outlet_availability)
    rating = _ratio(spot.effective_rating, 2.5, 5)

    ambiance_cozy = 1.0 if ambiance in ('cozy', 'intimate', 'rustic') else 0.45
    ambiance_social = 1.0 if ambiance in ('energetic', 'bright', 'modern') else 0.45
    ambiance_aesthetic = 1.0 if ambiance in ('modern', 'rustic', 'intimate', 'cozy', 'bright') else 0.45
    music_date = 1.0 if music == 'chill' else 0.5 if music == 'upbeat' else 0.35
    music_social = 1.0 if music in ('upbeat', 'live', 'chill') else 0.45

    intents = spot.intent_scores
    intent_study = _intent_ratio(intents, ['deep_work', 'quiet_reading', 'group_study'])
    intent_social = _intent_ratio(intents, ['hangout_friends', 'late_night_open'])
    intent_quick = _intent_ratio(intents, ['quick_pickup', 'coffee_quality', 'pastry_snack'])
    intent_aesthetic = _intent_ratio(intents, ['aesthetic_photos'])

    tags = spot.tag_scores
    tag_study = _tag_score(tags, ['Study', 'Quiet', 'Wi-Fi', 'Outlets'])
    tag_date = _tag_score(tags, ['Cozy', 'Bright'])
    tag_social = _tag_score(tags, ['Social', 'Spacious', 'Late-night'])
    tag_quick = _tag_score(tags, ['Good Coffee'])
    tag_aesthetic = _tag_score(tags, ['Bright', 'Cozy', 'Outdoor Seating'])

    nlp_study = 1.0 if intel and intel.good_for_studying else 0.35
    nlp_dates = _unit(intel.good_for_dates if intel else None, 0.4)
    nlp_groups = _unit(intel.good_for_groups if intel else None, 0.4)
    nlp_food = _unit(intel.food_quality_signal if intel else None, 0.45)
    nlp_instagram = _unit(intel.instagram_worthy if intel else None, 0.45)
    aesthetic_vibe = ((intel.aesthetic_vibe if intel else None) or '').lower()
    nlp_aesthetic_vibe = 1.0 if aesthetic_vibe in ('cozy', 'modern', 'rustic', 'industrial', 'classic') else 0.45

    photo_aesthetic = 1.0 if _has_word(spot.photo_tags, ['aesthetic', 'decor', 'patio', 'latte', 'interior']) else 0.4
    photo_social = 1.0 if _has_word(spot.photo_tags, ['group', 'friends', 'seating']) else 0.35

    study = (
        12 + wifi * 22 + outlet * 14 + quietness * 16 + crowd_calm * 10 + laptop * 12
        + intent_study * 7 + tag_study * 7 + nlp_study * 8
    )
    date = (
        10 + drink * 16 + ambiance_cozy * 14 + _sweet_spot(noise, 2, 3.4, 0.9) * 10
        + crowd_calm * 6 + music_date * 8 + nlp_dates * 12 + nlp_instagram * 8
        + tag_date * 6 + open_bonus * 100
    )
    social = (
        10 + _sweet_spot(energy * 5, 2.6, 4.2, 1.3) * 10 + crowd_social * 12
        + ambiance_social * 12 + music_social * 10 + drink * 6 + intent_social * 8
        + nlp_groups * 10 + tag_social * 8 + photo_social * 4 + open_bonus * 100
    )
    quick = (
        12 + drink * 22 + crowd_calm * 14 + budget * 10 + intent_quick * 8
        + nlp_food * 10 + tag_quick * 8 + rating * 8
    )
    aesthetic = (
        8 + nlp_instagram * 20 + nlp_aesthetic_vibe * 10 + ambiance_aesthetic * 16
        + drink * 8 + intent_aesthetic * 8 + tag_aesthetic * 8 + photo_aesthetic * 12
        + rating * 8
    )

    return VibeScores(
        study=round(_clamp(study)),
        date=round(_clamp(date)),
        social=round(_clamp(social)),
        quick=round(_clamp(quick)),
        aesthetic=round(_clamp(aesthetic)),
    )


def primary_vibe(scores: VibeScores, hour: int, open_now: bool = False) -> VibeType:
    """Highest-scoring vibe; a closed "social" spot before 10am reads as "quick"."""
    top = max(VIBE_ORDER, key=lambda vibe: scores.get(vibe))
    if not open_now and top == 'social' and hour < 10:
        return 'quick'
    return top
