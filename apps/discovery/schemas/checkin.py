#!/usr/bin/env python3
"""Canonical check-in event schema"""

from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class LatLng(BaseModel):
    """Geographic point"""
    model_config = ConfigDict(frozen=True)

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class CheckinEvent(BaseModel):
    """One observation at a spot, normalized from any historical document shape.

    Numeric metrics are on the 1-5 scale; enum encodings (``quiet``,
    ``packed``...) are converted during ingestion. ``created_at`` is None when
    the stored timestamp could not be parsed.
    """
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    user_id: Optional[str] = None
    spot_key: str
    spot_name: str = "Unknown"
    place_id: Optional[str] = None
    location: Optional[LatLng] = None
    created_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None

    wifi_speed: Optional[float] = None
    noise_level: Optional[float] = None
    noise_label: Optional[str] = None
    busyness: Optional[float] = None
    busyness_label: Optional[str] = None
    outlet_availability: Optional[str] = None
    laptop_friendly: Optional[bool] = None
    drink_quality: Optional[float] = None
    open_now: Optional[bool] = None

    visibility: str = "public"
    campus: Optional[str] = None
    caption: str = ""
    tags: List[str] = Field(default_factory=list)
    visit_intents: List[str] = Field(default_factory=list)
    is_seeded: bool = False
