"""Pydantic schemas for discovery endpoints"""

import math
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from apps.discovery.schemas.filters import FilterState
from apps.discovery.schemas.intelligence import PlaceIntelligence
from apps.discovery.schemas.spot import DisplayData, RankedSpot, StatusAdvisory, VibeScores, VibeType
from apps.discovery.services.vibes import primary_vibe


class DiscoverRequest(BaseModel):
    """Request schema for the discover endpoint"""
    lat: Optional[float] = Field(None, ge=-90, le=90, description="Map center latitude")
    lng: Optional[float] = Field(None, ge=-180, le=180, description="Map center longitude")
    filters: FilterState = Field(default_factory=FilterState)
    intent: Optional[str] = Field('any', description="Selected discovery intent")
    preferred_intent: Optional[str] = Field(None, description="Intent saved in the user's profile")
    query: str = Field("", max_length=200, description="Free-text search")
    limit: int = Field(50, ge=1, le=200, description="Maximum number of results")

    viewer_id: Optional[str] = None
    friend_ids: List[str] = Field(default_factory=list)
    blocked_ids: List[str] = Field(default_factory=list)
    scope: Literal['everyone', 'friends', 'campus'] = 'everyone'
    campus: Optional[str] = None


class SpotResult(BaseModel):
    """One ranked spot"""
    key: str
    id: Optional[str]
    name: str
    place_id: Optional[str]
    lat: Optional[float]
    lng: Optional[float]
    distance_km: Optional[float]
    count: int
    here_now_count: int
    avg_noise_level: Optional[float]
    avg_busyness: Optional[float]
    avg_wifi_speed: Optional[float]
    laptop_friendly_pct: Optional[float]
    top_outlet_availability: Optional[str]
    open_now: bool
    rating: Optional[float]
    price_level: Optional[str]
    display: Optional[DisplayData]
    intent_score: float
    intent_reasons: List[str]
    query_boost: float
    vibe_scores: VibeScores
    vibe_match: Optional[float]
    primary_vibe: VibeType
    intelligence: Optional[PlaceIntelligence]

    @classmethod
    def from_ranked(cls, item: RankedSpot, hour: int) -> "SpotResult":
        """``hour`` is the viewer's local hour, used to pick the primary vibe."""
        spot = item.spot
        return cls(
            key=spot.key,
            id=spot.id,
            name=spot.name,
            place_id=spot.place_id,
            lat=spot.location.lat if spot.location else None,
            lng=spot.location.lng if spot.location else None,
            distance_km=round(spot.distance, 3) if math.isfinite(spot.distance) else None,
            count=spot.count,
            here_now_count=spot.here_now_count,
            avg_noise_level=spot.avg_noise_level,
            avg_busyness=spot.avg_busyness,
            avg_wifi_speed=spot.avg_wifi_speed,
            laptop_friendly_pct=spot.laptop_friendly_pct,
            top_outlet_availability=spot.top_outlet_availability,
            open_now=spot.is_open,
            rating=spot.effective_rating,
            price_level=spot.effective_price_level,
            display=spot.display,
            intent_score=item.intent_score,
            intent_reasons=item.intent_reasons,
            query_boost=item.query_boost,
            vibe_scores=item.vibe_scores,
            vibe_match=item.vibe_match,
            primary_vibe=primary_vibe(item.vibe_scores, hour, open_now=spot.is_open),
            intelligence=item.intelligence,
        )


class DiscoverResponse(BaseModel):
    """Response schema for the discover endpoint"""
    spots: List[SpotResult]
    total_count: int
    source: str
    intent: str
    advisory: Optional[StatusAdvisory] = None
    downgraded_filters: List[str] = Field(default_factory=list)
    active_filter_count: int = 0
    has_active_filters: bool = False


class IntelligenceRequest(BaseModel):
    """Ad-hoc intelligence build for a single place"""
    place_name: str = Field(..., min_length=1, max_length=200)
    place_id: Optional[str] = None
    lat: Optional[float] = Field(None, ge=-90, le=90)
    lng: Optional[float] = Field(None, ge=-180, le=180)
    open_now: Optional[bool] = None
    types: List[str] = Field(default_factory=list)
    tag_scores: Dict[str, float] = Field(default_factory=dict)
    checkins: List[Dict[str, Any]] = Field(default_factory=list, description="Raw check-in documents")


class IntentInfo(BaseModel):
    key: str
    label: str
    short_label: str
    hint: str


class IntentsResponse(BaseModel):
    intents: List[IntentInfo]


class InvalidateResponse(BaseModel):
    spot_id: str
    deleted_keys: List[str]
