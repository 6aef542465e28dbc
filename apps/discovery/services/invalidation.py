#!/usr/bin/env python3
"""Cache invalidation on check-in writes and spot metric updates"""

import logging
from typing import List, Optional

from apps.discovery.services.cache import LocalCheckinCache
from apps.discovery.services.document_store import DocumentStore, DocumentStoreError
from apps.discovery.services.ingestion import spot_from_document
from apps.discovery.services.intelligence import PlaceIntelligenceEngine

logger = logging.getLogger(__name__)


class CacheInvalidator:
    """
    Drops place intelligence and the saved check-in snapshot when source data changes.

    ``spot_id`` may be a spot document id, a place id or a spot name. A spot
    document is resolved to the identity its intelligence is cached under
    (place id, else name) so both spellings are dropped.
    """

    def __init__(
        self,
        engine: PlaceIntelligenceEngine,
        documents: Optional[DocumentStore] = None,
        local_checkins: Optional[LocalCheckinCache] = None,
    ):
        self.engine = engine
        self.documents = documents
        self.local_checkins = local_checkins

    async def _identities(self, spot_id: str) -> List[str]:
        identities = [spot_id]
        if self.documents is None:
            return identities
        try:
            doc = await self.documents.get_spot(spot_id)
        except DocumentStoreError as e:
            logger.warning(f"Spot lookup failed for {spot_id}, invalidating by id only: {e}")
            return identities
        if doc:
            spot = spot_from_document(spot_id, doc)
            identities.append(spot.place_id or spot.name)
        return list(dict.fromkeys(identities))

    async def _invalidate_spot(self, spot_id: str) -> List[str]:
        keys: List[str] = []
        for identity in await self._identities(spot_id):
            keys.extend(await self.engine.invalidate(identity))
        return keys

    async def _clear_saved_checkins(self) -> List[str]:
        if self.local_checkins is None:
            return []
        cleared = await self.local_checkins.clear()
        return [self.local_checkins.key] if cleared else []

    async def on_checkin_create(self, checkin_id: str, spot_id: str) -> List[str]:
        keys = await self._clear_saved_checkins()
        keys += await self._invalidate_spot(spot_id)
        logger.info("Check-in %s created: dropped %d cache entries", checkin_id, len(keys))
        return keys

    async def on_checkin_update(self, checkin_id: str, spot_id: Optional[str] = None) -> List[str]:
        keys = await self._clear_saved_checkins()
        if spot_id:
            keys += await self._invalidate_spot(spot_id)
        logger.info("Check-in %s changed: dropped %d cache entries", checkin_id, len(keys))
        return keys

    async def on_checkin_delete(self, checkin_id: str, spot_id: Optional[str] = None) -> List[str]:
        return await self.on_checkin_update(checkin_id, spot_id)

    async def on_metric_update(self, spot_id: str) -> List[str]:
        return await self._invalidate_spot(spot_id)
