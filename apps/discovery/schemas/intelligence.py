#!/usr/bin/env python3
"""Pydantic schemas for place intelligence"""

from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, Field

from apps.discovery.schemas.checkin import CheckinEvent, LatLng

ExternalSource = Literal['foursquare', 'yelp']
CrowdLevel = Literal['low', 'moderate', 'high', 'unknown']
BestTime = Literal['morning', 'afternoon', 'evening', 'late', 'anytime']


class ExternalPlaceSignal(BaseModel):
    """Rating/review snapshot from one third-party source"""
    source: ExternalSource
    rating: Optional[float] = None
    review_count: Optional[int] = None
    price_level: Optional[str] = None
    categories: Optional[List[str]] = None


class CrowdForecastPoint(BaseModel):
    """Expected crowding for one hour offset from now"""
    offset_hours: int = Field(..., ge=0, le=5)
    label: str
    local_hour_label: str
    level: CrowdLevel
    score: float = Field(..., ge=0.0, le=1.0)
    confidence: float = Field(..., ge=0.0, le=1.0)


class PlaceIntelligence(BaseModel):
    """Scored multi-signal summary of a place's work suitability and crowding"""
    work_score: int = Field(..., ge=0, le=100)
    crowd_level: CrowdLevel
    best_time: BestTime
    confidence: float = Field(..., ge=0.1, le=0.95)
    highlights: List[str] = Field(default_factory=list, max_length=4)
    use_cases: List[str] = Field(default_factory=list, min_length=1, max_length=3)
    external_signals: List[ExternalPlaceSignal] = Field(default_factory=list)
    crowd_forecast: List[CrowdForecastPoint] = Field(..., min_length=6, max_length=6)


class IntelligenceInput(BaseModel):
    """Everything the engine needs to score one place"""
    place_name: str = ""
    place_id: Optional[str] = None
    location: Optional[LatLng] = None
    open_now: Optional[bool] = None
    types: List[str] = Field(default_factory=list)
    checkins: List[CheckinEvent] = Field(default_factory=list)
    tag_scores: Dict[str, float] = Field(default_factory=dict)

    @property
    def cache_key(self) -> str:
        """Place identity plus coordinates rounded to ~100m."""
        identity = self.place_id or self.place_name or ""
        lat = f"{self.location.lat:.3f}" if self.location else ""
        lng = f"{self.location.lng:.3f}" if self.location else ""
        return f"{identity}:{lat}:{lng}"
