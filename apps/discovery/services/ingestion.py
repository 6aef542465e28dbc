#!/usr/bin/env python3
"""Normalize raw check-in and spot documents into canonical schemas.

Every "which historical schema is this" decision lives here: timestamp
shapes, noise/busyness encodings and the various field names used over
time for the spot identity and coordinates.
"""

import logging
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional, Set

from apps.discovery.schemas.checkin import CheckinEvent, LatLng
from apps.discovery.schemas.spot import DisplayData, SpotAggregate, SpotIntel

logger = logging.getLogger(__name__)

CHECKIN_TTL = timedelta(hours=12)

NOISE_VALUES = {'quiet': 2.0, 'moderate': 3.0, 'lively': 4.0, 'loud': 4.0}
BUSYNESS_VALUES = {'empty': 1.0, 'some': 3.0, 'packed': 5.0}
OUTLET_VALUES = {'plenty', 'some', 'few', 'none'}
VISIBILITY_VALUES = {'public', 'friends', 'close'}

SEEDED_ID_PREFIXES = ('demo-c', 'demo-self-', 'demo-checkin-', 'demo-cloud-', 'beta-public-')
DEMO_USER_PREFIX = 'demo-u'


def normalize_spot_name(name: str) -> str:
    """Lowercase, collapse non-alphanumerics to single spaces."""
    normalized = re.sub(r'[^a-z0-9]+', ' ', (name or '').lower())
    return re.sub(r'\s+', ' ', normalized).strip()


def spot_key(place_id: Optional[str], name: Optional[str]) -> str:
    if place_id:
        return f"place:{place_id}"
    normalized = normalize_spot_name(name or 'unknown')
    return f"name:{normalized or 'unknown'}"


def ensure_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse epoch millis, ISO strings, ``{seconds, nanoseconds}`` maps and datetimes.

    Returns an aware UTC datetime, or None for anything unparseable.
    """
    if value is None or value == '' or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        if not math.isfinite(value) or value <= 0:
            return None
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace('Z', '+00:00'))
        except ValueError:
            return None
        return ensure_utc(parsed)
    if isinstance(value, dict):
        seconds = value.get('seconds', value.get('_seconds'))
        if isinstance(seconds, (int, float)) and not isinstance(seconds, bool):
            nanos = value.get('nanoseconds', value.get('_nanoseconds')) or 0
            if not isinstance(nanos, (int, float)):
                nanos = 0
            try:
                return datetime.fromtimestamp(seconds + nanos / 1e9, tz=timezone.utc)
            except (OverflowError, OSError, ValueError):
                return None
    return None


def to_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value) if math.isfinite(value) else None


def to_noise_value(value: Any) -> Optional[float]:
    number = to_number(value)
    if number is not None:
        return number
    if isinstance(value, str):
        return NOISE_VALUES.get(value.strip().lower())
    return None


def to_busyness_value(value: Any) -> Optional[float]:
    number = to_number(value)
    if number is not None:
        return number
    if isinstance(value, str):
        return BUSYNESS_VALUES.get(value.strip().lower())
    return None


def _noise_label(value: Any) -> Optional[str]:
    if isinstance(value, str):
        label = value.strip().lower()
        if label == 'lively':
            return 'loud'
        return label if label in ('quiet', 'moderate', 'loud') else None
    number = to_number(value)
    if number is None:
        return None
    if number <= 2.4:
        return 'quiet'
    if number >= 3.6:
        return 'loud'
    return 'moderate'


def _busyness_label(value: Any) -> Optional[str]:
    if isinstance(value, str):
        label = value.strip().lower()
        return label if label in BUSYNESS_VALUES else None
    number = to_number(value)
    if number is None:
        return None
    if number <= 2:
        return 'empty'
    if number >= 4:
        return 'packed'
    return 'some'


def to_lat_lng(value: Any) -> Optional[LatLng]:
    if not isinstance(value, dict):
        return None
    lat = to_number(value.get('lat', value.get('latitude')))
    lng = to_number(value.get('lng', value.get('longitude')))
    if lat is None or lng is None:
        return None
    if not (-90 <= lat <= 90 and -180 <= lng <= 180):
        return None
    return LatLng(lat=lat, lng=lng)


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _optional_str(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def is_demo_user_id(user_id: Optional[str]) -> bool:
    return bool(user_id) and user_id.startswith(DEMO_USER_PREFIX)


def _is_seeded_document(doc_id: Optional[str], raw: Dict[str, Any]) -> bool:
    if raw.get('__betaSeed') is True or raw.get('__demo') is True or raw.get('__demoCloudSeed') is True:
        return True
    if doc_id and doc_id.startswith(SEEDED_ID_PREFIXES):
        return True
    user_id = raw.get('userId')
    return isinstance(user_id, str) and is_demo_user_id(user_id)


def checkin_from_document(doc_id: Optional[str], raw: Dict[str, Any]) -> CheckinEvent:
    """Build a CheckinEvent from any historical check-in document shape.

    Malformed metric fields are dropped individually; the event is always
    produced.
    """
    place_id = _optional_str(raw.get('spotPlaceId')) or _optional_str(raw.get('placeId'))
    name = _optional_str(raw.get('spotName')) or _optional_str(raw.get('spot')) or 'Unknown'
    location = to_lat_lng(raw.get('spotLatLng')) or to_lat_lng(raw.get('location'))

    created_raw = raw.get('createdAt')
    if created_raw is None:
        created_raw = raw.get('timestamp')
    created_at = parse_timestamp(created_raw)

    outlet = raw.get('outletAvailability')
    outlet = outlet.strip().lower() if isinstance(outlet, str) else None
    visibility = raw.get('visibility')
    visibility = visibility if visibility in VISIBILITY_VALUES else 'public'
    laptop = raw.get('laptopFriendly')
    open_now = raw.get('openNow')

    return CheckinEvent(
        id=doc_id or _optional_str(raw.get('id')),
        user_id=_optional_str(raw.get('userId')),
        spot_key=spot_key(place_id, name),
        spot_name=name,
        place_id=place_id,
        location=location,
        created_at=created_at,
        expires_at=parse_timestamp(raw.get('expiresAt')),
        wifi_speed=to_number(raw.get('wifiSpeed')),
        noise_level=to_noise_value(raw.get('noiseLevel')),
        noise_label=_noise_label(raw.get('noiseLevel')),
        busyness=to_busyness_value(raw.get('busyness')),
        busyness_label=_busyness_label(raw.get('busyness')),
        outlet_availability=outlet if outlet in OUTLET_VALUES else None,
        laptop_friendly=laptop if isinstance(laptop, bool) else None,
        drink_quality=to_number(raw.get('drinkQuality')),
        open_now=open_now if isinstance(open_now, bool) else None,
        visibility=visibility,
        campus=_optional_str(raw.get('campus')) or _optional_str(raw.get('campusOrCity')),
        caption=raw.get('caption') if isinstance(raw.get('caption'), str) else '',
        tags=_string_list(raw.get('tags')),
        visit_intents=_string_list(raw.get('visitIntent')),
        is_seeded=_is_seeded_document(doc_id or raw.get('id'), raw),
    )


def checkins_from_documents(documents: Iterable[Dict[str, Any]]) -> List[CheckinEvent]:
    events = []
    for raw in documents:
        if not isinstance(raw, dict):
            logger.warning("Skipping non-mapping check-in document: %r", type(raw))
            continue
        events.append(checkin_from_document(raw.get('id'), raw))
    return events


def checkin_expiry(event: CheckinEvent) -> Optional[datetime]:
    if event.expires_at:
        return event.expires_at
    if not event.created_at:
        return None
    return event.created_at + CHECKIN_TTL


def is_checkin_expired(event: CheckinEvent, now: datetime) -> bool:
    expires = checkin_expiry(event)
    if not expires:
        return False
    return expires <= now


def apply_seeded_fallback(events: List[CheckinEvent], min_real_count: int = 3) -> List[CheckinEvent]:
    """Drop seeded check-ins once enough real ones exist."""
    real = [event for event in events if not event.is_seeded]
    if len(real) >= min_real_count:
        return real
    return real + [event for event in events if event.is_seeded]


class CheckinVisibilityPolicy:
    """Single predicate deciding which check-ins a viewer may see.

    Shared by the remote, local and offline sourcing paths.
    """

    def __init__(
        self,
        viewer_id: Optional[str] = None,
        friend_ids: Iterable[str] = (),
        blocked_ids: Iterable[str] = (),
        scope: str = 'everyone',
        campus: Optional[str] = None,
        demo_mode: bool = False,
    ):
        self.viewer_id = viewer_id
        self.friend_ids: Set[str] = set(friend_ids)
        self.blocked_ids: Set[str] = set(blocked_ids)
        self.scope = scope
        self.campus = campus
        self.demo_mode = demo_mode

    def _passes_scope(self, event: CheckinEvent) -> bool:
        if self.scope == 'friends':
            return bool(self.viewer_id) and event.user_id in self.friend_ids
        if self.scope == 'campus':
            return bool(self.campus) and event.campus == self.campus
        return True

    def allows(self, event: CheckinEvent) -> bool:
        if not self.demo_mode and is_demo_user_id(event.user_id):
            return False
        if self.viewer_id and event.user_id in self.blocked_ids:
            return False
        if not self._passes_scope(event):
            return False
        if event.visibility in ('friends', 'close'):
            if not self.viewer_id or event.user_id not in self.friend_ids:
                return False
        return True

    def filter(self, events: Iterable[CheckinEvent]) -> List[CheckinEvent]:
        return [event for event in events if self.allows(event)]


def _spot_intel_from_document(raw: Any) -> Optional[SpotIntel]:
    if not isinstance(raw, dict):
        return None
    return SpotIntel(
        is_open_now=raw.get('isOpenNow') if isinstance(raw.get('isOpenNow'), bool) else None,
        price_level=_optional_str(raw.get('priceLevel')),
        avg_rating=to_number(raw.get('avgRating')),
        category=_optional_str(raw.get('category')),
        inferred_noise=_optional_str(raw.get('inferredNoise')),
        inferred_noise_confidence=to_number(raw.get('inferredNoiseConfidence')) or 0.0,
        has_wifi=raw.get('hasWifi') if isinstance(raw.get('hasWifi'), bool) else None,
        good_for_studying=raw.get('goodForStudying') if isinstance(raw.get('goodForStudying'), bool) else None,
        good_for_meetings=raw.get('goodForMeetings') if isinstance(raw.get('goodForMeetings'), bool) else None,
        good_for_dates=to_number(raw.get('goodForDates')),
        good_for_groups=to_number(raw.get('goodForGroups')),
        instagram_worthy=to_number(raw.get('instagramWorthy')),
        food_quality_signal=to_number(raw.get('foodQualitySignal')),
        aesthetic_vibe=_optional_str(raw.get('aestheticVibe')),
        music_atmosphere=_optional_str(raw.get('musicAtmosphere')),
    )


def _display_from_document(raw: Dict[str, Any]) -> Optional[DisplayData]:
    display = raw.get('display') if isinstance(raw.get('display'), dict) else {}
    live = raw.get('live') if isinstance(raw.get('live'), dict) else {}
    noise = _noise_label(display.get('noise') or live.get('noise'))
    busyness = _busyness_label(display.get('busyness') or live.get('busyness'))
    if noise is None and busyness is None:
        return None
    return DisplayData(
        noise=noise,
        noise_source=display.get('noiseSource') if display.get('noiseSource') in ('live', 'inferred', 'blended') else 'inferred',
        noise_label=display.get('noiseLabel') or (noise.capitalize() if noise else "No data yet"),
        busyness=busyness,
        busyness_label=display.get('busynessLabel') or (busyness.capitalize() if busyness else "No recent data"),
    )


def _tag_scores(value: Any) -> Dict[str, float]:
    if not isinstance(value, dict):
        return {}
    scores = {}
    for key, raw in value.items():
        number = to_number(raw)
        if isinstance(key, str) and number is not None:
            scores[key] = number
    return scores


def spot_location_from_document(raw: Dict[str, Any]) -> Optional[LatLng]:
    lat = to_number(raw.get('lat'))
    lng = to_number(raw.get('lng'))
    if lat is not None and lng is not None:
        return to_lat_lng({'lat': lat, 'lng': lng})
    return to_lat_lng(raw.get('location'))


def spot_from_document(doc_id: str, raw: Dict[str, Any]) -> SpotAggregate:
    """Build a SpotAggregate skeleton from a ``spots`` collection document."""
    name = _optional_str(raw.get('name')) or 'Unknown'
    place_id = _optional_str(raw.get('placeId')) or _optional_str(raw.get('googlePlaceId'))
    intel = _spot_intel_from_document(raw.get('intel'))
    open_now = raw.get('openNow') if isinstance(raw.get('openNow'), bool) else None
    if open_now is None and intel is not None:
        open_now = intel.is_open_now

    intent_scores = {}
    if isinstance(raw.get('intentScores'), dict):
        for key, value in raw['intentScores'].items():
            number = to_number(value)
            if number is not None:
                intent_scores[str(key)] = int(number)

    return SpotAggregate(
        key=spot_key(place_id, name) if place_id else f"spot:{doc_id}",
        id=doc_id,
        name=name,
        place_id=place_id,
        location=spot_location_from_document(raw),
        count=int(to_number(raw.get('checkinCount')) or 0),
        avg_noise_level=to_number(raw.get('avgNoiseLevel')),
        avg_busyness=to_number(raw.get('avgBusyness')),
        avg_wifi_speed=to_number(raw.get('avgWifiSpeed')),
        avg_drink_quality=to_number(raw.get('avgDrinkQuality')),
        laptop_friendly_pct=to_number(raw.get('laptopFriendlyPct')),
        top_outlet_availability=_optional_str(raw.get('topOutletAvailability')),
        intent_scores=intent_scores,
        here_now_count=int(to_number(raw.get('hereNowCount')) or 0),
        open_now=open_now,
        rating=to_number(raw.get('rating')),
        price_level=_optional_str(raw.get('priceLevel')),
        ambiance=_optional_str(raw.get('ambiance')),
        description=_optional_str(raw.get('description')),
        types=_string_list(raw.get('types')),
        tags=_string_list(raw.get('tags')),
        photo_tags=_string_list(raw.get('photoTags')),
        tag_scores=_tag_scores(raw.get('tagScores')),
        intel=intel,
        display=_display_from_document(raw),
    )
