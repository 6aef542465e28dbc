#!/usr/bin/env python3
"""Geo fan-out over spot documents: geohash ranges queried concurrently, merged and filtered"""

import asyncio
import logging
from typing import Dict, List, Optional

from apps.core.config import settings
from apps.discovery.schemas.checkin import LatLng
from apps.discovery.schemas.filters import FilterState
from apps.discovery.schemas.spot import SpotAggregate
from apps.discovery.services.document_store import Document, DocumentStore, DocumentStoreError, SpotQuery
from apps.discovery.services.filter_policy import (
    matches_client_filters,
    matches_remote_filter,
    normalize_query_filters,
    remote_filter_clauses,
)
from apps.discovery.services.geo import (
    clamp_radius_miles,
    geohash_query_bounds,
    haversine_km,
    miles_to_meters,
)
from apps.discovery.services.ingestion import spot_from_document

logger = logging.getLogger(__name__)


class NearbySpotFetcher:
    """Spots within a radius of a center, honoring the remote filter budget"""

    def __init__(
        self,
        store: DocumentStore,
        page_size: Optional[int] = None,
        fallback_size: Optional[int] = None,
        max_remote_filters: Optional[int] = None,
    ):
        self.store = store
        self.page_size = page_size or settings.spot_query_limit
        self.fallback_size = fallback_size or settings.spot_fallback_limit
        self.max_remote_filters = max_remote_filters if max_remote_filters is not None else settings.max_remote_filters
        self.last_downgraded: List[str] = []

    async def _fan_out(self, center: LatLng, radius_m: float, filters: FilterState) -> List[Document]:
        clauses = remote_filter_clauses(filters)
        queries = [
            SpotQuery(geohash_start=start, geohash_end=end, clauses=clauses, limit=self.page_size)
            for start, end in geohash_query_bounds(center, radius_m)
        ]
        pages = await asyncio.gather(*(self.store.query_spots(query) for query in queries))
        return [doc for page in pages for doc in page]

    async def fetch_nearby(
        self,
        center: LatLng,
        radius_miles: float,
        filters: FilterState,
    ) -> List[SpotAggregate]:
        """
        Spot documents within ``radius_miles`` of ``center``, nearest first.

        Remote filters beyond the budget are downgraded and applied here after
        the merge. If any range query fails, one unfiltered query is issued
        instead; if that fails too the error propagates.
        """
        radius_miles = clamp_radius_miles(radius_miles)
        radius_m = miles_to_meters(radius_miles)
        plan = normalize_query_filters(filters, self.max_remote_filters)
        self.last_downgraded = list(plan.downgraded)

        try:
            documents = await self._fan_out(center, radius_m, plan.normalized)
            client_remote = list(plan.downgraded)
        except DocumentStoreError as e:
            logger.warning(f"Geo fan-out failed, falling back to unfiltered query: {e}")
            documents = await self.store.list_spots(self.fallback_size)
            client_remote = list(plan.active_remote_filters) + list(plan.downgraded)

        merged: Dict[str, SpotAggregate] = {}
        for doc_id, raw in documents:
            if doc_id in merged:
                continue
            merged[doc_id] = spot_from_document(doc_id, raw)

        radius_km = radius_m / 1000
        results = []
        for spot in merged.values():
            spot.distance = haversine_km(center, spot.location)
            if spot.distance > radius_km:
                continue
            if not matches_client_filters(spot, filters):
                continue
            if not all(matches_remote_filter(spot, name, filters) for name in client_remote):
                continue
            results.append(spot)

        results.sort(key=lambda spot: spot.distance)
        logger.info(
            "Nearby fetch: %d documents, %d unique, %d within %.1f mi",
            len(documents), len(merged), len(results), radius_miles,
        )
        return results
