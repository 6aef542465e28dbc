import asyncio
from datetime import datetime, timedelta, timezone

import pygeohash as pgh
import pytest

from apps.core.feature_flags import get_feature_flags, reset_feature_flags
from apps.discovery.schemas.checkin import LatLng
from apps.discovery.schemas.filters import FilterState
from apps.discovery.services.cache import LocalCheckinCache, MemoryCacheStore
from apps.discovery.services.discovery import (
    NO_RECENT_CHECKINS,
    NOTHING_NEARBY,
    OFFLINE,
    OPTIMIZED_QUERY,
    OUTSIDE_AREA,
    DiscoveryService,
)
from apps.discovery.services.document_store import InMemoryDocumentStore, StoreUnavailableError
from apps.discovery.services.external_signals import PlaceSignalClient
from apps.discovery.services.ingestion import CheckinVisibilityPolicy
from apps.discovery.services.intelligence import PlaceIntelligenceEngine

NOW = datetime(2025, 3, 4, 15, 0, tzinfo=timezone.utc)
CENTER = LatLng(lat=40.7128, lng=-74.006)


@pytest.fixture(autouse=True)
def _flags():
    reset_feature_flags()
    yield
    reset_feature_flags()


def _spot_doc(name, lat, lng, **intel):
    return {
        'name': name,
        'lat': lat,
        'lng': lng,
        'geohash': pgh.encode(lat, lng, precision=10),
        'intel': {'isOpenNow': True, 'priceLevel': '$', 'goodForStudying': True, 'goodForMeetings': True, **intel},
    }


def _checkin_doc(spot, lat, lng, minutes_ago, user='u1', **extra):
    doc = {
        'spotName': spot,
        'spotLatLng': {'lat': lat, 'lng': lng},
        'createdAt': (NOW - timedelta(minutes=minutes_ago)).isoformat(),
        'userId': user,
        'noiseLevel': 2,
        'busyness': 2,
        'wifiSpeed': 4,
    }
    doc.update(extra)
    return doc


NEAR_CHECKINS = {
    'c1': _checkin_doc('Corner Cafe', 40.7138, -74.006, 10, user='u1'),
    'c2': _checkin_doc('Corner Cafe', 40.7138, -74.006, 30, user='u2'),
    'c3': _checkin_doc('Book Nook', 40.7228, -74.006, 60, user='u3'),
}

SPOTS = {
    'a': _spot_doc('Alpha', 40.7178, -74.006),
    'd': _spot_doc('Delta', 40.7028, -74.016, goodForMeetings=False),
}


def _service(spots=None, checkins=None, local_store=None):
    store = InMemoryDocumentStore(spots=spots, checkins=checkins)
    engine = PlaceIntelligenceEngine(signal_client=PlaceSignalClient(endpoint=""), clock=lambda: NOW)
    local = LocalCheckinCache(local_store or MemoryCacheStore())
    return DiscoveryService(store, engine, local, clock=lambda: NOW)


def test_spot_documents_are_ranked_with_intelligence():
    service = _service(spots=SPOTS, checkins=NEAR_CHECKINS)
    result = asyncio.run(service.discover(CENTER))
    assert result.source == 'spots'
    assert [item.spot.name for item in result.spots] == ['Alpha', 'Delta']
    assert result.advisory is None
    assert all(item.intelligence is not None for item in result.spots)


def test_downgraded_filters_raise_an_advisory():
    service = _service(spots=SPOTS)
    filters = FilterState(open_now=True, price_level=['$'], good_for_studying=True, good_for_meetings=True)
    result = asyncio.run(service.discover(CENTER, filters=filters))
    assert result.downgraded == ['good_for_meetings']
    assert result.advisory.tone == 'info'
    assert result.advisory.message == OPTIMIZED_QUERY
    assert [item.spot.name for item in result.spots] == ['Alpha']


def test_checkins_used_without_spot_documents():
    local_store = MemoryCacheStore()
    service = _service(checkins=NEAR_CHECKINS, local_store=local_store)
    result = asyncio.run(service.discover(CENTER))
    assert result.source == 'remote'
    assert [item.spot.name for item in result.spots] == ['Corner Cafe', 'Book Nook']
    corner = result.spots[0].spot
    assert corner.count == 2
    assert corner.here_now_count == 2
    assert corner.display.noise == 'quiet'
    saved = asyncio.run(service.local_checkins.load())
    assert len(saved) == 3


def test_intel_v1_disabled_skips_spot_documents():
    get_feature_flags().set_flag('INTEL_V1_ENABLED', False)
    service = _service(spots=SPOTS, checkins=NEAR_CHECKINS)
    result = asyncio.run(service.discover(CENTER))
    assert result.source == 'remote'


def test_offline_serves_saved_checkins():
    service = _service(checkins=NEAR_CHECKINS)
    asyncio.run(service.discover(CENTER))

    service.store.fail_with = StoreUnavailableError("network down")
    result = asyncio.run(service.discover(CENTER))
    assert result.source == 'local'
    assert result.advisory.tone == 'warning'
    assert result.advisory.message == OFFLINE
    assert {item.spot.name for item in result.spots} == {'Corner Cafe', 'Book Nook'}


def test_offline_without_saved_data_still_reports_offline():
    service = _service(checkins=NEAR_CHECKINS)
    service.store.fail_with = StoreUnavailableError("network down")
    result = asyncio.run(service.discover(CENTER))
    assert result.spots == []
    assert result.advisory.message == OFFLINE


def test_far_checkins_shown_with_advisory():
    far = {'f1': _checkin_doc('Faraway Cafe', 45.0, -80.0, 10)}
    service = _service(checkins=far)
    result = asyncio.run(service.discover(CENTER))
    assert [item.spot.name for item in result.spots] == ['Faraway Cafe']
    assert result.advisory.message == OUTSIDE_AREA


def test_nearby_spots_when_no_checkins_exist():
    get_feature_flags().set_flag('INTEL_V1_ENABLED', False)
    service = _service(spots=SPOTS)
    result = asyncio.run(service.discover(CENTER))
    assert result.source == 'spots'
    assert result.advisory.tone == 'info'
    assert result.advisory.message == NO_RECENT_CHECKINS
    assert [item.spot.name for item in result.spots] == ['Alpha', 'Delta']


def test_nothing_anywhere():
    result = asyncio.run(_service().discover(CENTER))
    assert result.source == 'none'
    assert result.spots == []
    assert result.advisory.message == NOTHING_NEARBY


def test_missing_center_measures_from_default_map_center():
    service = _service(spots=SPOTS, checkins=NEAR_CHECKINS)
    result = asyncio.run(service.discover(None))
    # New York is far from the default center, so the far fallback applies
    assert result.source == 'remote'
    assert result.advisory.message == OUTSIDE_AREA
    assert {item.spot.name for item in result.spots} == {'Corner Cafe', 'Book Nook'}


def test_seeded_checkins_dropped_once_real_ones_exist():
    checkins = dict(NEAR_CHECKINS)
    checkins['demo-c1'] = _checkin_doc('Demo Roasters', 40.7130, -74.006, 5, user='seed')
    result = asyncio.run(_service(checkins=checkins).discover(CENTER))
    assert 'Demo Roasters' not in [item.spot.name for item in result.spots]

    few = {'c1': NEAR_CHECKINS['c1'], 'demo-c1': checkins['demo-c1']}
    result = asyncio.run(_service(checkins=few).discover(CENTER))
    assert 'Demo Roasters' in [item.spot.name for item in result.spots]


def test_visibility_policy_applies_to_checkins():
    checkins = {
        'c1': _checkin_doc('Corner Cafe', 40.7138, -74.006, 10, user='u1', visibility='friends'),
        'c2': _checkin_doc('Book Nook', 40.7228, -74.006, 60, user='u3'),
    }
    service = _service(checkins=checkins)
    stranger = asyncio.run(service.discover(CENTER, policy=CheckinVisibilityPolicy(viewer_id='me')))
    friend = asyncio.run(service.discover(CENTER, policy=CheckinVisibilityPolicy(viewer_id='me', friend_ids=['u1'])))
    assert [item.spot.name for item in stranger.spots] == ['Book Nook']
    assert [item.spot.name for item in friend.spots] == ['Corner Cafe', 'Book Nook']


def test_intent_resolution_is_reported():
    service = _service(checkins=NEAR_CHECKINS)
    result = asyncio.run(service.discover(CENTER, intent=None, query="date spot"))
    assert result.intent == 'date_night'


def test_intel_write_back():
    get_feature_flags().set_flag('INTEL_WRITEBACK_ENABLED', True)
    service = _service(spots=SPOTS)
    asyncio.run(service.discover(CENTER))
    written = service.store.spots['a']['intel']
    assert 'workScore' in written
    assert written['isOpenNow'] is True
    assert written['updatedAt'] == NOW.isoformat()


def test_checkin_spots_blend_inferred_noise_from_spot_documents():
    # no coordinates, so the radius query never returns it
    spots = {'cc': {'name': 'Corner Cafe', 'intel': {'inferredNoise': 'loud'}}}
    service = _service(spots=spots, checkins=NEAR_CHECKINS)
    result = asyncio.run(service.discover(CENTER))
    assert result.source == 'remote'
    corner = result.spots[0].spot
    assert corner.name == 'Corner Cafe'
    assert corner.intel.inferred_noise == 'loud'
    assert corner.display.noise_source == 'blended'
    assert corner.display.noise_label == "Quiet (2 check-ins, usually loud)"
    assert result.spots[1].spot.intel is None

    get_feature_flags().set_flag('INTEL_V1_ENABLED', False)
    corner = asyncio.run(service.discover(CENTER)).spots[0].spot
    assert corner.intel is None
