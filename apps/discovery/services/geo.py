#!/usr/bin/env python3
"""Geohash range planning and distance helpers"""

import math
from typing import List, Optional, Tuple

import pygeohash as pgh

from apps.discovery.schemas.checkin import LatLng

EARTH_RADIUS_KM = 6371.0
METERS_PER_MILE = 1609.34
KM_PER_MILE = 1.60934

MIN_RADIUS_MILES = 0.5
MAX_RADIUS_MILES = 5.0

# geohash range constants
BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"
BITS_PER_CHAR = 5
MAXIMUM_BITS_PRECISION = 22 * BITS_PER_CHAR
METERS_PER_DEGREE_LATITUDE = 110574
EARTH_MERIDIONAL_CIRCUMFERENCE = 40007860
EARTH_EQ_RADIUS = 6378137.0
E2 = 0.00669447819799
EPSILON = 1e-12

GeohashRange = Tuple[str, str]


def haversine_km(a: Optional[LatLng], b: Optional[LatLng]) -> float:
    """Great-circle distance in km; ``inf`` when either point is missing."""
    if a is None or b is None:
        return math.inf
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def clamp_radius_miles(radius_miles: float) -> float:
    return max(MIN_RADIUS_MILES, min(MAX_RADIUS_MILES, radius_miles))


def miles_to_meters(miles: float) -> float:
    return miles * METERS_PER_MILE


def miles_to_km(miles: float) -> float:
    return miles * KM_PER_MILE


def _meters_to_longitude_degrees(distance: float, latitude: float) -> float:
    radians = math.radians(latitude)
    num = math.cos(radians) * EARTH_EQ_RADIUS * math.pi / 180
    denom = 1 / math.sqrt(1 - E2 * math.sin(radians) * math.sin(radians))
    delta_deg = num * denom
    if delta_deg < EPSILON:
        return 360.0 if distance > 0 else 0.0
    return min(360.0, distance / delta_deg)


def _latitude_bits_for_resolution(resolution: float) -> float:
    return min(math.log2(EARTH_MERIDIONAL_CIRCUMFERENCE / 2 / resolution), MAXIMUM_BITS_PRECISION)


def _longitude_bits_for_resolution(resolution: float, latitude: float) -> float:
    degrees = _meters_to_longitude_degrees(resolution, latitude)
    return max(1.0, math.log2(360 / degrees)) if abs(degrees) > 0.000001 else 1.0


def _wrap_longitude(longitude: float) -> float:
    if -180 <= longitude <= 180:
        return longitude
    adjusted = longitude + 180
    if adjusted > 0:
        return (adjusted % 360) - 180
    return 180 - (-adjusted % 360)


def _bounding_box_bits(center: LatLng, size: float) -> int:
    lat_delta = size / METERS_PER_DEGREE_LATITUDE
    lat_north = min(90.0, center.lat + lat_delta)
    lat_south = max(-90.0, center.lat - lat_delta)
    bits_lat = math.floor(_latitude_bits_for_resolution(size)) * 2
    bits_lng_north = math.floor(_longitude_bits_for_resolution(size, lat_north)) * 2 - 1
    bits_lng_south = math.floor(_longitude_bits_for_resolution(size, lat_south)) * 2 - 1
    return min(bits_lat, bits_lng_north, bits_lng_south, MAXIMUM_BITS_PRECISION)


def _bounding_box_coordinates(center: LatLng, radius: float) -> List[Tuple[float, float]]:
    lat_degrees = radius / METERS_PER_DEGREE_LATITUDE
    lat_north = min(90.0, center.lat + lat_degrees)
    lat_south = max(-90.0, center.lat - lat_degrees)
    lng_degrees = max(
        _meters_to_longitude_degrees(radius, lat_north),
        _meters_to_longitude_degrees(radius, lat_south),
    )
    west = _wrap_longitude(center.lng - lng_degrees)
    east = _wrap_longitude(center.lng + lng_degrees)
    return [
        (center.lat, center.lng),
        (center.lat, west),
        (center.lat, east),
        (lat_north, center.lng),
        (lat_north, west),
        (lat_north, east),
        (lat_south, center.lng),
        (lat_south, west),
        (lat_south, east),
    ]


def _geohash_range(geohash: str, bits: int) -> GeohashRange:
    precision = math.ceil(bits / BITS_PER_CHAR)
    if len(geohash) < precision:
        return geohash, geohash + "~"
    geohash = geohash[:precision]
    base = geohash[:-1]
    last_value = BASE32.index(geohash[-1])
    significant_bits = bits - len(base) * BITS_PER_CHAR
    unused_bits = BITS_PER_CHAR - significant_bits
    start_value = (last_value >> unused_bits) << unused_bits
    end_value = start_value + (1 << unused_bits)
    if end_value > 31:
        return base + BASE32[start_value], base + "~"
    return base + BASE32[start_value], base + BASE32[end_value]


def geohash_query_bounds(center: LatLng, radius_m: float) -> List[GeohashRange]:
    """Covering ``[start, end)`` geohash ranges for a circle, de-duplicated, at most 9."""
    query_bits = max(1, _bounding_box_bits(center, radius_m))
    precision = math.ceil(query_bits / BITS_PER_CHAR)
    ranges: List[GeohashRange] = []
    for lat, lng in _bounding_box_coordinates(center, radius_m):
        bounds = _geohash_range(pgh.encode(lat, lng, precision=precision), query_bits)
        if bounds not in ranges:
            ranges.append(bounds)
    return ranges
