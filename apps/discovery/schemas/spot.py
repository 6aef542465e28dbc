#!/usr/bin/env python3
"""Pydantic schemas for spot aggregates and ranking output"""

import math
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field

from apps.discovery.schemas.checkin import CheckinEvent, LatLng
from apps.discovery.schemas.intelligence import PlaceIntelligence

VibeType = Literal['study', 'date', 'social', 'quick', 'aesthetic']


class SpotIntel(BaseModel):
    """Precomputed metadata stored on a spot document (API + review NLP)"""
    model_config = ConfigDict(extra='ignore')

    is_open_now: Optional[bool] = None
    price_level: Optional[str] = None
    avg_rating: Optional[float] = None
    category: Optional[str] = None
    inferred_noise: Optional[str] = None
    inferred_noise_confidence: float = 0.0
    has_wifi: Optional[bool] = None
    good_for_studying: Optional[bool] = None
    good_for_meetings: Optional[bool] = None
    good_for_dates: Optional[float] = None
    good_for_groups: Optional[float] = None
    instagram_worthy: Optional[float] = None
    food_quality_signal: Optional[float] = None
    aesthetic_vibe: Optional[str] = None
    music_atmosphere: Optional[str] = None


class DisplayData(BaseModel):
    """Labels shown for a spot, blended from inferred and live data"""
    noise: Optional[Literal['quiet', 'moderate', 'loud']] = None
    noise_source: Literal['live', 'inferred', 'blended'] = 'inferred'
    noise_label: str = "No data yet"
    busyness: Optional[Literal['empty', 'some', 'packed']] = None
    busyness_source: Literal['live'] = 'live'
    busyness_label: str = "No recent data"


class SpotAggregate(BaseModel):
    """Derived per-spot statistics plus spot-document metadata.

    ``distance`` is in kilometres and ``inf`` when coordinates are unknown.
    """
    key: str
    id: Optional[str] = None
    name: str = "Unknown"
    place_id: Optional[str] = None
    location: Optional[LatLng] = None
    count: int = 0

    avg_noise_level: Optional[float] = None
    avg_busyness: Optional[float] = None
    avg_wifi_speed: Optional[float] = None
    avg_drink_quality: Optional[float] = None
    laptop_friendly_pct: Optional[float] = None
    top_outlet_availability: Optional[str] = None
    intent_scores: Dict[str, int] = Field(default_factory=dict)
    here_now_count: int = 0
    distance: float = math.inf
    open_now: Optional[bool] = None

    rating: Optional[float] = None
    price_level: Optional[str] = None
    ambiance: Optional[str] = None
    description: Optional[str] = None
    types: List[str] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    photo_tags: List[str] = Field(default_factory=list)
    tag_scores: Dict[str, float] = Field(default_factory=dict)
    intel: Optional[SpotIntel] = None
    display: Optional[DisplayData] = None

    checkins: List[CheckinEvent] = Field(default_factory=list, exclude=True)

    @property
    def noise_label(self) -> str:
        """Displayed noise word, falling back to the inferred one."""
        if self.display and self.display.noise:
            return self.display.noise
        if self.intel and self.intel.inferred_noise:
            return self.intel.inferred_noise.lower()
        return ""

    @property
    def busyness_label(self) -> str:
        if self.display and self.display.busyness:
            return self.display.busyness
        return ""

    @property
    def effective_rating(self) -> Optional[float]:
        if self.intel and self.intel.avg_rating is not None:
            return self.intel.avg_rating
        return self.rating

    @property
    def effective_price_level(self) -> Optional[str]:
        if self.intel and self.intel.price_level:
            return self.intel.price_level
        return self.price_level

    @property
    def is_open(self) -> bool:
        return self.open_now is True or bool(self.intel and self.intel.is_open_now is True)


class IntentSignal(BaseModel):
    score: float = Field(..., ge=0.0, le=1.0)
    reasons: List[str] = Field(default_factory=list)


class VibeScores(BaseModel):
    study: int = Field(..., ge=0, le=100)
    date: int = Field(..., ge=0, le=100)
    social: int = Field(..., ge=0, le=100)
    quick: int = Field(..., ge=0, le=100)
    aesthetic: int = Field(..., ge=0, le=100)

    def get(self, vibe: VibeType) -> int:
        return getattr(self, vibe)


class RankedSpot(BaseModel):
    """Spot annotated for a single ranking pass"""
    spot: SpotAggregate
    intelligence: Optional[PlaceIntelligence] = None
    intent_score: float = 0.0
    intent_reasons: List[str] = Field(default_factory=list)
    query_boost: float = 0.0
    vibe_scores: VibeScores
    vibe_match: Optional[float] = None


class StatusAdvisory(BaseModel):
    """Non-fatal notice for the presentation layer when the pipeline degrades"""
    tone: Literal['info', 'warning', 'error', 'success']
    message: str

    @classmethod
    def info(cls, message: str) -> 'StatusAdvisory':
        return cls(tone='info', message=message)

    @classmethod
    def warning(cls, message: str) -> 'StatusAdvisory':
        return cls(tone='warning', message=message)
