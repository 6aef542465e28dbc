#!/usr/bin/env python3
"""
Discovery orchestration: source spots, rank them, attach place intelligence.

Spot sourcing is an ordered list of strategies tried until one yields spots
near the user:

1. spot documents around the map center (when intel v1 is enabled)
2. remote check-ins (saved locally on success, read back when offline)
3. locally saved check-ins
4. nearby spot documents with default filters

Failures never escape ``discover``; they surface as a StatusAdvisory.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional

from pydantic import BaseModel, Field

from apps.core.config import settings
from apps.core.feature_flags import get_feature_flags, is_intel_v1_enabled
from apps.discovery.schemas.checkin import CheckinEvent, LatLng
from apps.discovery.schemas.filters import FilterState
from apps.discovery.schemas.intelligence import IntelligenceInput, PlaceIntelligence
from apps.discovery.schemas.spot import RankedSpot, SpotAggregate, SpotIntel, StatusAdvisory
from apps.discovery.services.aggregation import build_spots_from_checkins, spot_intel_index
from apps.discovery.services.cache import LocalCheckinCache
from apps.discovery.services.document_store import DocumentStore, DocumentStoreError
from apps.discovery.services.filter_policy import DEFAULT_FILTERS
from apps.discovery.services.ingestion import (
    CheckinVisibilityPolicy,
    apply_seeded_fallback,
    checkins_from_documents,
    spot_from_document,
)
from apps.discovery.services.intelligence import PlaceIntelligenceEngine
from apps.discovery.services.nearby import NearbySpotFetcher
from apps.discovery.services.query_parser import parse_query
from apps.discovery.services.ranking import rank, resolve_ranking_intent

logger = logging.getLogger(__name__)

OPTIMIZED_QUERY = "Optimized query mode: some filters are applied after loading."
OFFLINE = "Offline. Showing saved data."
NO_RECENT_CHECKINS = "No recent check-ins yet. Showing nearby spots."
OUTSIDE_AREA = "Most recent check-ins are outside your area. Showing them anyway."
NOTHING_NEARBY = "No recent check-ins yet."

NEARBY_FALLBACK_MILES = 2.0


class DiscoveryResult(BaseModel):
    spots: List[RankedSpot] = Field(default_factory=list)
    advisory: Optional[StatusAdvisory] = None
    source: str = "none"
    intent: str = "any"
    downgraded: List[str] = Field(default_factory=list)


class _SourcingState:
    """Scratch state shared by the sourcing strategies of one request"""

    def __init__(self, center: Optional[LatLng], filters: FilterState, policy: CheckinVisibilityPolicy, now: datetime):
        self.center = center
        self.focus = center or LatLng(lat=settings.default_map_center[0], lng=settings.default_map_center[1])
        self.filters = filters
        self.policy = policy
        self.now = now
        self.offline = False
        self.far_spots: List[SpotAggregate] = []
        self.downgraded: List[str] = []
        self.spot_intel: Optional[Dict[str, SpotIntel]] = None


class _Sourced:
    def __init__(
        self,
        spots: List[SpotAggregate],
        source: str,
        advisory: Optional[StatusAdvisory] = None,
        outside_area: bool = False,
    ):
        self.spots = spots
        self.source = source
        self.advisory = advisory
        self.outside_area = outside_area


Strategy = Callable[[_SourcingState], Awaitable[Optional[_Sourced]]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DiscoveryService:
    """Entry point used by the API layer"""

    def __init__(
        self,
        store: DocumentStore,
        engine: PlaceIntelligenceEngine,
        local_checkins: LocalCheckinCache,
        fetcher: Optional[NearbySpotFetcher] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.store = store
        self.engine = engine
        self.local_checkins = local_checkins
        self.fetcher = fetcher or NearbySpotFetcher(store)
        self.clock = clock
        self.strategies: List[Strategy] = [
            self._spot_documents,
            self._remote_checkins,
            self._local_checkins,
            self._nearby_defaults,
        ]

    # Sourcing strategies

    async def _spot_documents(self, state: _SourcingState) -> Optional[_Sourced]:
        if not is_intel_v1_enabled() or state.center is None:
            return None
        try:
            spots = await self.fetcher.fetch_nearby(state.center, state.filters.distance, state.filters)
        except DocumentStoreError as e:
            logger.warning(f"Spot document query failed, using check-ins: {e}")
            return None
        state.downgraded = list(self.fetcher.last_downgraded)
        advisory = StatusAdvisory.info(OPTIMIZED_QUERY) if state.downgraded else None
        return _Sourced(spots, 'spots', advisory)

    def _visible(self, events: List[CheckinEvent], state: _SourcingState) -> List[CheckinEvent]:
        visible = state.policy.filter(events)
        if state.policy.demo_mode:
            return visible
        return apply_seeded_fallback(visible)

    async def _spot_intel(self, state: _SourcingState) -> Dict[str, SpotIntel]:
        """Intel of known spot documents, loaded once per request for check-in spots."""
        if state.spot_intel is not None:
            return state.spot_intel
        state.spot_intel = {}
        if state.offline or not is_intel_v1_enabled():
            return state.spot_intel
        try:
            documents = await self.store.list_spots(settings.spot_fallback_limit)
        except DocumentStoreError as e:
            logger.warning(f"Spot intel unavailable for check-in spots: {e}")
            return state.spot_intel
        state.spot_intel = spot_intel_index(spot_from_document(doc_id, doc) for doc_id, doc in documents)
        return state.spot_intel

    async def _nearby(self, events: List[CheckinEvent], state: _SourcingState) -> List[SpotAggregate]:
        spot_intel = await self._spot_intel(state)
        spots = build_spots_from_checkins(self._visible(events, state), state.focus, state.now, spot_intel)
        near = [spot for spot in spots if spot.distance <= settings.nearby_threshold_km]
        if not near and spots and not state.far_spots:
            state.far_spots = spots
        return near

    async def _remote_checkins(self, state: _SourcingState) -> Optional[_Sourced]:
        try:
            documents = await self.store.recent_checkins(settings.remote_checkin_limit)
        except DocumentStoreError as e:
            logger.warning(f"Remote check-ins unavailable, using saved data: {e}")
            state.offline = True
            events = await self.local_checkins.load()
            return _Sourced(await self._nearby(events, state), 'local', StatusAdvisory.warning(OFFLINE))

        events = checkins_from_documents(dict(doc, id=doc.get('id', doc_id)) for doc_id, doc in documents)
        await self.local_checkins.save(events)
        return _Sourced(await self._nearby(events, state), 'remote')

    async def _local_checkins(self, state: _SourcingState) -> Optional[_Sourced]:
        if state.offline:
            return None
        events = await self.local_checkins.load()
        return _Sourced(await self._nearby(events, state), 'local')

    async def _nearby_defaults(self, state: _SourcingState) -> Optional[_Sourced]:
        if state.center is None:
            return None
        try:
            spots = await self.fetcher.fetch_nearby(state.center, NEARBY_FALLBACK_MILES, DEFAULT_FILTERS)
        except DocumentStoreError as e:
            logger.warning(f"Nearby spot fallback failed: {e}")
            return None
        return _Sourced(spots, 'spots', StatusAdvisory.info(NO_RECENT_CHECKINS))

    async def _source(self, state: _SourcingState) -> _Sourced:
        # warnings outlive the strategy that raised them
        advisory = None
        for strategy in self.strategies:
            result = await strategy(state)
            if result is None:
                continue
            if result.spots:
                return _Sourced(result.spots, result.source, advisory or result.advisory)
            if result.advisory and result.advisory.tone == 'warning':
                advisory = result.advisory
        if state.far_spots:
            return _Sourced(
                state.far_spots, 'remote', advisory or StatusAdvisory.info(OUTSIDE_AREA), outside_area=True,
            )
        return _Sourced([], 'none', advisory or StatusAdvisory.info(NOTHING_NEARBY))

    # Intelligence

    async def _attach_intelligence(self, ranked: List[RankedSpot]) -> None:
        flags = get_feature_flags()
        limit = int(flags.get_value('INTEL_PREFETCH_LIMIT', 12) or 0)
        targets = ranked[:limit]
        if not targets:
            return
        results = await asyncio.gather(
            *(self.engine.build_intelligence(intelligence_input(item.spot)) for item in targets),
            return_exceptions=True,
        )
        for item, result in zip(targets, results):
            if isinstance(result, BaseException):
                logger.warning(f"Intelligence unavailable for {item.spot.name}: {result}")
                continue
            item.intelligence = result
            if flags.is_enabled('INTEL_WRITEBACK_ENABLED') and item.spot.id:
                await self._write_back(item.spot, result)

    async def _write_back(self, spot: SpotAggregate, intelligence: PlaceIntelligence) -> None:
        fields = {
            'intel': {
                'workScore': intelligence.work_score,
                'crowdLevel': intelligence.crowd_level,
                'bestTime': intelligence.best_time,
                'confidence': intelligence.confidence,
                'useCases': intelligence.use_cases,
                'updatedAt': self.clock().isoformat(),
            }
        }
        try:
            await self.store.merge_spot_fields(spot.id, fields)
        except DocumentStoreError as e:
            logger.warning(f"Intel write-back failed for {spot.id}: {e}")

    async def discover(
        self,
        center: Optional[LatLng],
        filters: FilterState = DEFAULT_FILTERS,
        intent: Optional[str] = 'any',
        query: str = "",
        preferred_intent: Optional[str] = None,
        policy: Optional[CheckinVisibilityPolicy] = None,
    ) -> DiscoveryResult:
        """Ranked spots around ``center`` with an optional advisory."""
        flags = get_feature_flags()
        policy = policy or CheckinVisibilityPolicy(demo_mode=flags.is_enabled('DEMO_MODE'))
        state = _SourcingState(center, filters, policy, self.clock())

        sourced = await self._source(state)
        ranking_intent = resolve_ranking_intent(intent, preferred_intent, parse_query(query))
        ranked = rank(
            sourced.spots, filters, intent, query, preferred_intent,
            enforce_distance=not sourced.outside_area,
        )
        await self._attach_intelligence(ranked)

        logger.info(
            "Discovery: source=%s sourced=%d ranked=%d advisory=%s",
            sourced.source, len(sourced.spots), len(ranked),
            sourced.advisory.message if sourced.advisory else None,
        )
        return DiscoveryResult(
            spots=ranked,
            advisory=sourced.advisory,
            source=sourced.source,
            intent=ranking_intent,
            downgraded=state.downgraded,
        )


def intelligence_input(spot: SpotAggregate) -> IntelligenceInput:
    return IntelligenceInput(
        place_name=spot.name,
        place_id=spot.place_id,
        location=spot.location,
        open_now=spot.open_now,
        types=spot.types,
        checkins=spot.checkins,
        tag_scores=spot.tag_scores,
    )
