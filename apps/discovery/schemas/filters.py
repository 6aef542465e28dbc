#!/usr/bin/env python3
"""Discovery filter state"""

from typing import List, Literal
from pydantic import BaseModel, ConfigDict, Field

NoiseFilter = Literal['any', 'quiet', 'moderate', 'loud']
PriceLevel = Literal['$', '$$', '$$$']

RemoteFilterName = Literal['open_now', 'price_level', 'good_for_studying', 'good_for_meetings']


class FilterState(BaseModel):
    """User-selected discovery criteria. ``distance`` is a radius in miles."""
    model_config = ConfigDict(frozen=True)

    distance: float = Field(2.0, gt=0, le=50)
    open_now: bool = False
    noise_level: NoiseFilter = 'any'
    not_crowded: bool = False
    price_level: List[PriceLevel] = Field(default_factory=list)
    high_rated: bool = False
    good_for_studying: bool = False
    good_for_meetings: bool = False


class FilterNormalization(BaseModel):
    """Result of splitting filters against the remote filter budget"""
    normalized: FilterState
    downgraded: List[RemoteFilterName] = Field(default_factory=list)
    active_remote_filters: List[RemoteFilterName] = Field(default_factory=list)


class QueryFilters(BaseModel):
    """Partial filters extracted from a free-text query"""
    open_now: bool = False
    noise_level: NoiseFilter = 'any'
    not_crowded: bool = False
    price_level: List[PriceLevel] = Field(default_factory=list)
    high_rated: bool = False
