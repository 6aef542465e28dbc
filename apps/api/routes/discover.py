"""Discovery endpoints: ranked nearby spots, intent catalog, place intelligence"""

import logging
import time

from fastapi import APIRouter, Depends, HTTPException

from apps.api.dependencies import (
    get_cache_invalidator,
    get_discovery_service,
    get_intelligence_engine,
)
from apps.api.schemas.discover import (
    DiscoverRequest,
    DiscoverResponse,
    IntelligenceRequest,
    IntentInfo,
    IntentsResponse,
    InvalidateResponse,
    SpotResult,
)
from apps.discovery.schemas.checkin import LatLng
from apps.discovery.schemas.intelligence import IntelligenceInput, PlaceIntelligence
from apps.discovery.services.discovery import DiscoveryService
from apps.discovery.services.filter_policy import active_filter_count, has_active_filters
from apps.discovery.services.ingestion import CheckinVisibilityPolicy, checkins_from_documents
from apps.discovery.services.intelligence import PlaceIntelligenceEngine
from apps.discovery.services.intents import ANY_INTENT, DISCOVERY_INTENTS, load_intent_catalog
from apps.discovery.services.invalidation import CacheInvalidator
from apps.core.feature_flags import is_demo_mode

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/intents", response_model=IntentsResponse)
async def list_intents():
    """Intent catalog in display order, ``any`` first"""
    catalog = load_intent_catalog()
    intents = [
        IntentInfo(key=meta.key, label=meta.label, short_label=meta.short_label, hint=meta.hint)
        for meta in (catalog[key] for key in (ANY_INTENT,) + DISCOVERY_INTENTS)
    ]
    return IntentsResponse(intents=intents)


@router.post("/discover", response_model=DiscoverResponse)
async def discover(
    request: DiscoverRequest,
    service: DiscoveryService = Depends(get_discovery_service),
):
    """Rank spots around the map center; degradation is reported as an advisory"""
    start_time = time.time()
    center = None
    if request.lat is not None and request.lng is not None:
        center = LatLng(lat=request.lat, lng=request.lng)

    policy = CheckinVisibilityPolicy(
        viewer_id=request.viewer_id,
        friend_ids=request.friend_ids,
        blocked_ids=request.blocked_ids,
        scope=request.scope,
        campus=request.campus,
        demo_mode=is_demo_mode(),
    )
    try:
        result = await service.discover(
            center,
            filters=request.filters,
            intent=request.intent,
            query=request.query,
            preferred_intent=request.preferred_intent,
            policy=policy,
        )
    except Exception as e:
        logger.exception("Discovery failed")
        raise HTTPException(status_code=500, detail=f"Discovery error: {str(e)}")

    hour = service.clock().astimezone().hour
    spots = [SpotResult.from_ranked(item, hour) for item in result.spots[:request.limit]]
    processing_time = round((time.time() - start_time) * 1000, 2)
    logger.info(f"Discover: {len(spots)}/{len(result.spots)} spots in {processing_time}ms (source={result.source})")
    return DiscoverResponse(
        spots=spots,
        total_count=len(result.spots),
        source=result.source,
        intent=result.intent,
        advisory=result.advisory,
        downgraded_filters=result.downgraded,
        active_filter_count=active_filter_count(request.filters),
        has_active_filters=has_active_filters(request.filters),
    )


@router.post("/intelligence", response_model=PlaceIntelligence)
async def build_intelligence(
    request: IntelligenceRequest,
    engine: PlaceIntelligenceEngine = Depends(get_intelligence_engine),
):
    """Build (or reuse cached) intelligence for one place"""
    location = None
    if request.lat is not None and request.lng is not None:
        location = LatLng(lat=request.lat, lng=request.lng)
    data = IntelligenceInput(
        place_name=request.place_name,
        place_id=request.place_id,
        location=location,
        open_now=request.open_now,
        types=request.types,
        tag_scores=request.tag_scores,
        checkins=checkins_from_documents(request.checkins),
    )
    try:
        return await engine.build_intelligence(data)
    except Exception as e:
        logger.exception(f"Intelligence build failed for {request.place_name}")
        raise HTTPException(status_code=500, detail=f"Intelligence error: {str(e)}")


@router.post("/spots/{spot_id}/invalidate", response_model=InvalidateResponse)
async def invalidate_spot(
    spot_id: str,
    invalidator: CacheInvalidator = Depends(get_cache_invalidator),
):
    """Drop cached intelligence after a spot's metrics changed.

    ``spot_id`` is a spot document id or a place id.
    """
    keys = await invalidator.on_metric_update(spot_id)
    return InvalidateResponse(spot_id=spot_id, deleted_keys=keys)
