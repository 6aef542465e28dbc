import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.orm import sessionmaker

from apps.core.db import Base, build_engine
from apps.discovery import models  # noqa: F401
from apps.discovery.schemas.checkin import CheckinEvent, LatLng
from apps.discovery.schemas.intelligence import IntelligenceInput
from apps.discovery.services.cache import (
    CacheStoreError,
    LocalCheckinCache,
    MemoryCacheStore,
    SqlCacheStore,
)
from apps.discovery.services.document_store import InMemoryDocumentStore, StoreUnavailableError
from apps.discovery.services.external_signals import PlaceSignalClient
from apps.discovery.services.intelligence import PlaceIntelligenceEngine
from apps.discovery.services.invalidation import CacheInvalidator


class Clock:
    def __init__(self, value):
        self.value = value

    def __call__(self):
        return self.value


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


class BrokenStore:
    async def get(self, key):
        raise CacheStoreError("disk full")

    async def set(self, key, value, ttl_s=None):
        raise CacheStoreError("disk full")

    async def delete(self, key):
        raise CacheStoreError("disk full")

    async def delete_prefix(self, prefix):
        raise CacheStoreError("disk full")


def test_memory_store_ttl_and_stats():
    clock = Clock(100.0)
    store = MemoryCacheStore(clock=clock)

    async def _run():
        await store.set('a', {'x': 1}, ttl_s=10)
        first = await store.get('a')
        clock.value += 11
        second = await store.get('a')
        return first, second

    first, second = asyncio.run(_run())
    assert first == {'x': 1}
    assert second is None
    assert store.stats.hits == 1
    assert store.stats.misses == 1
    assert store.stats.evictions == 1
    assert store.stats.hit_rate == 0.5


def test_memory_store_evicts_least_recent():
    store = MemoryCacheStore(max_entries=2)

    async def _run():
        await store.set('a', 1)
        await store.set('b', 2)
        await store.get('a')
        await store.set('c', 3)
        return [await store.get(key) for key in ('a', 'b', 'c')]

    assert asyncio.run(_run()) == [1, None, 3]
    assert store.keys() == ['a', 'c']


def test_sql_store_round_trip(session_factory):
    now = datetime(2025, 3, 4, 15, 0, tzinfo=timezone.utc)
    clock = Clock(now)
    store = SqlCacheStore(session_factory=session_factory, clock=clock)

    async def _run():
        await store.set('k', {'spots': [1, 2]}, ttl_s=60)
        await store.set('forever', [1])
        hit = await store.get('k')
        clock.value = now + timedelta(seconds=61)
        expired = await store.get('k')
        kept = await store.get('forever')
        await store.delete('forever')
        gone = await store.get('forever')
        return hit, expired, kept, gone

    hit, expired, kept, gone = asyncio.run(_run())
    assert hit == {'spots': [1, 2]}
    assert expired is None
    assert kept == [1]
    assert gone is None
    assert store.stats.sets == 2


def test_local_checkins_survive_round_trip(session_factory):
    store = SqlCacheStore(session_factory=session_factory)
    local = LocalCheckinCache(store, ttl_s=3600)
    events = [
        CheckinEvent(id='c1', spot_key='name:a', spot_name='A', noise_level=2.0,
                     created_at=datetime(2025, 3, 4, 14, 0, tzinfo=timezone.utc)),
    ]

    async def _run():
        await local.save(events)
        return await local.load()

    assert asyncio.run(_run()) == events


def test_local_checkins_tolerate_broken_store():
    local = LocalCheckinCache(BrokenStore())

    async def _run():
        await local.save([CheckinEvent(spot_key='name:a')])
        return await local.load()

    assert asyncio.run(_run()) == []


def test_local_checkins_skip_corrupt_entries():
    store = MemoryCacheStore()
    local = LocalCheckinCache(store)

    async def _run():
        await store.set(local.key, [{'spot_key': 'name:a'}, {'nope': True}, "junk"])
        return await local.load()

    assert [event.spot_key for event in asyncio.run(_run())] == ['name:a']


def test_prefix_delete_memory_store():
    store = MemoryCacheStore()

    async def _run():
        for key in ('place_intel:gp-1:1:2', 'place_intel:gp-1:3:4', 'place_intel:gp-10:1:2', 'other'):
            await store.set(key, True)
        return await store.delete_prefix('place_intel:gp-1:')

    assert asyncio.run(_run()) == ['place_intel:gp-1:1:2', 'place_intel:gp-1:3:4']
    assert store.keys() == ['place_intel:gp-10:1:2', 'other']


def test_prefix_delete_sql_store_escapes_wildcards(session_factory):
    store = SqlCacheStore(session_factory=session_factory)

    async def _run():
        for key in ('place_intel:a_b:1:2', 'place_intel:axb:1:2', 'place_intel:a_b:3:4'):
            await store.set(key, 1)
        deleted = await store.delete_prefix('place_intel:a_b:')
        return deleted, await store.get('place_intel:axb:1:2')

    deleted, kept = asyncio.run(_run())
    assert sorted(deleted) == ['place_intel:a_b:1:2', 'place_intel:a_b:3:4']
    assert kept == 1


def _intel(place_name='Alpha', place_id=None):
    return IntelligenceInput(place_name=place_name, place_id=place_id, location=LatLng(lat=40.7178, lng=-74.006))


def test_metric_update_resolves_spot_document_to_cached_identity(session_factory):
    cache = SqlCacheStore(session_factory=session_factory)
    engine = PlaceIntelligenceEngine(signal_client=PlaceSignalClient(endpoint=""), store=cache)
    documents = InMemoryDocumentStore(spots={'s1': {'name': 'Alpha', 'lat': 40.7178, 'lng': -74.006}})
    invalidator = CacheInvalidator(engine, documents=documents)

    async def _run():
        await engine.build_intelligence(_intel())
        return await invalidator.on_metric_update('s1')

    assert asyncio.run(_run()) == ['place_intel:Alpha:40.718:-74.006']
    assert engine.peek(_intel()) is None
    assert asyncio.run(cache.get('place_intel:Alpha:40.718:-74.006')) is None


def test_checkin_create_clears_saved_checkins_and_intelligence():
    store = MemoryCacheStore()
    engine = PlaceIntelligenceEngine(signal_client=PlaceSignalClient(endpoint=""), store=store)
    local = LocalCheckinCache(store)
    invalidator = CacheInvalidator(engine, local_checkins=local)

    async def _run():
        await local.save([CheckinEvent(spot_key='place:gp-1')])
        await engine.build_intelligence(_intel(place_id='gp-1'))
        dropped = await invalidator.on_checkin_create('c1', 'gp-1')
        return dropped, await local.load()

    dropped, saved = asyncio.run(_run())
    assert dropped == ['local_checkins_recent', 'place_intel:gp-1:40.718:-74.006']
    assert saved == []
    assert store.keys() == []


def test_checkin_update_without_spot_only_clears_saved_checkins():
    store = MemoryCacheStore()
    invalidator = CacheInvalidator(PlaceIntelligenceEngine(store=store), local_checkins=LocalCheckinCache(store))
    assert asyncio.run(invalidator.on_checkin_update('c9')) == ['local_checkins_recent']
    assert asyncio.run(invalidator.on_checkin_delete('c9', 'gp-1')) == ['local_checkins_recent']


def test_invalidator_survives_store_errors():
    documents = InMemoryDocumentStore()
    documents.fail_with = StoreUnavailableError("offline")
    invalidator = CacheInvalidator(
        PlaceIntelligenceEngine(store=BrokenStore()),
        documents=documents,
        local_checkins=LocalCheckinCache(BrokenStore()),
    )
    assert asyncio.run(invalidator.on_checkin_create('c1', 's1')) == []
