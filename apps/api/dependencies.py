"""Process-wide discovery components handed to routes through ``Depends``.

Tests replace them with ``app.dependency_overrides``.
"""

import logging
from typing import Optional

from fastapi import Depends

from apps.core.config import settings
from apps.core.config_cache import load_yaml_cached
from apps.discovery.services.cache import LocalCheckinCache, SqlCacheStore
from apps.discovery.services.discovery import DiscoveryService
from apps.discovery.services.document_store import InMemoryDocumentStore
from apps.discovery.services.intelligence import PlaceIntelligenceEngine
from apps.discovery.services.invalidation import CacheInvalidator

logger = logging.getLogger(__name__)

_store: Optional[InMemoryDocumentStore] = None
_cache: Optional[SqlCacheStore] = None
_engine: Optional[PlaceIntelligenceEngine] = None
_service: Optional[DiscoveryService] = None


def _load_seed(path: str) -> InMemoryDocumentStore:
    seed = load_yaml_cached(path, default={}) if path else {}
    spots = seed.get('spots') or {}
    checkins = seed.get('checkins') or {}
    if path:
        logger.info(f"Seeded document store from {path}: {len(spots)} spots, {len(checkins)} check-ins")
    return InMemoryDocumentStore(spots=spots, checkins=checkins)


def get_document_store() -> InMemoryDocumentStore:
    global _store
    if _store is None:
        _store = _load_seed(settings.document_store_seed_path)
    return _store


def get_cache_store() -> SqlCacheStore:
    global _cache
    if _cache is None:
        _cache = SqlCacheStore()
    return _cache


def get_intelligence_engine() -> PlaceIntelligenceEngine:
    global _engine
    if _engine is None:
        _engine = PlaceIntelligenceEngine(store=get_cache_store())
    return _engine


def get_discovery_service() -> DiscoveryService:
    global _service
    if _service is None:
        _service = DiscoveryService(
            store=get_document_store(),
            engine=get_intelligence_engine(),
            local_checkins=LocalCheckinCache(get_cache_store(), ttl_s=settings.local_checkins_ttl_s),
        )
    return _service


def get_cache_invalidator(service: DiscoveryService = Depends(get_discovery_service)) -> CacheInvalidator:
    return CacheInvalidator(service.engine, documents=service.store, local_checkins=service.local_checkins)


def reset_dependencies() -> None:
    """Forget every singleton; the next request rebuilds them."""
    global _store, _cache, _engine, _service
    _store = _cache = _engine = _service = None
