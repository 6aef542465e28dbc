#!/usr/bin/env python3
"""Client for the third-party place signal proxy (Yelp / Foursquare ratings)"""

import time
import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from apps.core.config import settings
from apps.core.feature_flags import is_external_signals_enabled
from apps.discovery.schemas.intelligence import ExternalPlaceSignal, IntelligenceInput

logger = logging.getLogger(__name__)

KNOWN_SOURCES = ('yelp', 'foursquare')


class ExternalSignalError(Exception):
    """Proxy call failed: timeout, non-2xx status or unreadable body"""
    pass


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return value


def normalize_external_signals(value: Any) -> List[ExternalPlaceSignal]:
    """Keep well-formed items from known sources; drop everything else."""
    if not isinstance(value, list):
        return []
    signals = []
    for item in value:
        if not isinstance(item, dict) or item.get('source') not in KNOWN_SOURCES:
            continue
        review_count = _number(item.get('reviewCount'))
        price_level = item.get('priceLevel')
        categories = item.get('categories')
        signals.append(ExternalPlaceSignal(
            source=item['source'],
            rating=_number(item.get('rating')),
            review_count=int(review_count) if review_count is not None else None,
            price_level=(price_level.strip() or None) if isinstance(price_level, str) else None,
            categories=[c for c in categories if isinstance(c, str) and c.strip()] if isinstance(categories, list) else None,
        ))
    return signals


class PlaceSignalClient:
    """POSTs ``{placeName, placeId?, location}`` to the proxy and normalizes the reply."""

    def __init__(
        self,
        endpoint: Optional[str] = None,
        timeout_s: Optional[float] = None,
        auth_token: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = endpoint if endpoint is not None else settings.resolve_place_intel_endpoint()
        self.timeout_s = timeout_s if timeout_s is not None else settings.external_signal_timeout_s
        self.auth_token = auth_token if auth_token is not None else settings.place_intel_auth_token
        self.transport = transport
        self.calls = 0

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"
        return headers

    @staticmethod
    def _body(data: IntelligenceInput) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "placeName": data.place_name,
            "location": {"lat": data.location.lat, "lng": data.location.lng},
        }
        if data.place_id:
            body["placeId"] = data.place_id
        return body

    async def _post(self, data: IntelligenceInput) -> Any:
        async with httpx.AsyncClient(transport=self.transport, timeout=self.timeout_s) as client:
            response = await client.post(self.endpoint, json=self._body(data), headers=self._headers())
            response.raise_for_status()
            return response.json()

    async def fetch_raw(self, data: IntelligenceInput) -> Any:
        """Raw proxy payload; raises ExternalSignalError on any failure."""
        self.calls += 1
        started = time.monotonic()
        try:
            payload = await asyncio.wait_for(self._post(data), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            raise ExternalSignalError(f"Proxy timed out after {self.timeout_s}s")
        except httpx.HTTPStatusError as e:
            raise ExternalSignalError(f"Proxy returned {e.response.status_code}")
        except httpx.HTTPError as e:
            raise ExternalSignalError(f"Proxy request failed: {e}")
        except ValueError as e:
            raise ExternalSignalError(f"Proxy returned malformed JSON: {e}")
        logger.debug("Proxy answered in %.0fms", (time.monotonic() - started) * 1000)
        return payload

    def should_fetch(self, data: IntelligenceInput) -> bool:
        return bool(
            data.location is not None
            and data.place_name
            and self.endpoint
            and is_external_signals_enabled()
        )

    async def fetch_signals(self, data: IntelligenceInput) -> List[ExternalPlaceSignal]:
        """Normalized signals, or an empty list when skipped or failed."""
        if not self.should_fetch(data):
            return []
        try:
            payload = await self.fetch_raw(data)
        except ExternalSignalError as e:
            logger.warning(f"External signals unavailable for {data.place_name}: {e}")
            return []
        except Exception as e:
            logger.warning(f"Unexpected proxy failure for {data.place_name}: {e}", exc_info=True)
            return []
        if not isinstance(payload, dict):
            logger.warning(f"External signals payload for {data.place_name} is not an object")
            return []
        return normalize_external_signals(payload.get('externalSignals'))
