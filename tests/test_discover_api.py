from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

import pygeohash as pgh
import pytest
from fastapi.testclient import TestClient

from apps.api.dependencies import get_discovery_service, get_intelligence_engine
from apps.api.main import app
from apps.core.feature_flags import reset_feature_flags
from apps.discovery.schemas.checkin import LatLng
from apps.discovery.schemas.intelligence import IntelligenceInput
from apps.discovery.services.cache import LocalCheckinCache, MemoryCacheStore
from apps.discovery.services.discovery import OUTSIDE_AREA, DiscoveryService
from apps.discovery.services.document_store import InMemoryDocumentStore
from apps.discovery.services.external_signals import PlaceSignalClient
from apps.discovery.services.intelligence import PlaceIntelligenceEngine

NOW = datetime(2025, 3, 4, 15, 0, tzinfo=timezone.utc)


def _checkin_doc(spot, lat, lng, minutes_ago, user):
    return {
        'spotName': spot,
        'spotLatLng': {'lat': lat, 'lng': lng},
        'createdAt': (NOW - timedelta(minutes=minutes_ago)).isoformat(),
        'userId': user,
        'noiseLevel': 2,
        'wifiSpeed': 4,
    }


CHECKINS = {
    'c1': _checkin_doc('Corner Cafe', 40.7138, -74.006, 10, 'u1'),
    'c2': _checkin_doc('Corner Cafe', 40.7138, -74.006, 30, 'u2'),
    'c3': _checkin_doc('Book Nook', 40.7228, -74.006, 60, 'u3'),
}


SPOTS = {
    's1': {
        'name': 'Alpha',
        'lat': 40.7178,
        'lng': -74.006,
        'geohash': pgh.encode(40.7178, -74.006, precision=10),
        'intel': {'isOpenNow': True, 'inferredNoise': 'quiet'},
    },
}


@contextmanager
def _serve(spots=None):
    reset_feature_flags()
    cache = MemoryCacheStore()
    engine = PlaceIntelligenceEngine(signal_client=PlaceSignalClient(endpoint=""), store=cache, clock=lambda: NOW)
    service = DiscoveryService(
        InMemoryDocumentStore(spots=spots, checkins=CHECKINS),
        engine,
        LocalCheckinCache(cache),
        clock=lambda: NOW,
    )
    app.dependency_overrides[get_discovery_service] = lambda: service
    app.dependency_overrides[get_intelligence_engine] = lambda: engine
    try:
        with TestClient(app) as test_client:
            yield test_client, engine, cache
    finally:
        app.dependency_overrides.clear()
        reset_feature_flags()


@pytest.fixture
def client():
    with _serve() as (test_client, _, _):
        yield test_client


@pytest.fixture
def spot_client():
    with _serve(SPOTS) as served:
        yield served


def test_health(client):
    r = client.get("/api/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_health_db(client):
    r = client.get("/api/health/db")
    assert r.status_code == 200
    assert r.json()["scope"] == "db"


def test_feature_flags_snapshot(client):
    data = client.get("/api/health/feature-flags").json()
    assert data["ok"] is True
    assert "INTEL_V1_ENABLED" in data["flags"]


def test_intents_catalog(client):
    data = client.get("/api/intents").json()
    keys = [intent["key"] for intent in data["intents"]]
    assert keys[0] == "any"
    assert "deep_work" in keys
    assert len(keys) == len(set(keys))


def test_discover_near_checkins(client):
    r = client.post("/api/discover", json={"lat": 40.7128, "lng": -74.006})
    assert r.status_code == 200
    data = r.json()
    assert data["source"] == "remote"
    assert data["intent"] == "any"
    assert data["total_count"] == 2
    assert [spot["name"] for spot in data["spots"]] == ["Corner Cafe", "Book Nook"]
    first = data["spots"][0]
    assert first["distance_km"] == pytest.approx(0.111, abs=0.002)
    assert first["count"] == 2
    assert first["intelligence"]["crowd_forecast"]


def test_discover_limit(client):
    data = client.post("/api/discover", json={"lat": 40.7128, "lng": -74.006, "limit": 1}).json()
    assert len(data["spots"]) == 1
    assert data["total_count"] == 2


def test_discover_without_center_reports_outside_area(client):
    data = client.post("/api/discover", json={}).json()
    assert data["advisory"]["message"] == OUTSIDE_AREA
    assert all(spot["distance_km"] is not None for spot in data["spots"])


def test_discover_rejects_bad_input(client):
    assert client.post("/api/discover", json={"lat": 120, "lng": 0}).status_code == 422
    assert client.post("/api/discover", json={"limit": 0}).status_code == 422


def test_intelligence_endpoint(client):
    r = client.post("/api/intelligence", json={
        "place_name": "Corner Cafe",
        "place_id": "gp-1",
        "lat": 40.7138,
        "lng": -74.006,
        "checkins": list(CHECKINS.values())[:2],
    })
    assert r.status_code == 200
    data = r.json()
    assert 0 <= data["work_score"] <= 100
    assert len(data["crowd_forecast"]) == 6
    assert 1 <= len(data["use_cases"]) <= 3


def test_intelligence_requires_place_name(client):
    assert client.post("/api/intelligence", json={"place_id": "gp-1"}).status_code == 422


def test_discover_reports_vibe_and_filter_state(client):
    data = client.post("/api/discover", json={"lat": 40.7128, "lng": -74.006}).json()
    assert data["active_filter_count"] == 0
    assert data["has_active_filters"] is False
    for spot in data["spots"]:
        assert spot["primary_vibe"] in ("study", "date", "social", "quick", "aesthetic")

    filtered = client.post("/api/discover", json={
        "lat": 40.7128,
        "lng": -74.006,
        "filters": {"not_crowded": True, "high_rated": True},
    }).json()
    assert filtered["active_filter_count"] == 2
    assert filtered["has_active_filters"] is True


def test_invalidate_unknown_spot(client):
    data = client.post("/api/spots/nope/invalidate").json()
    assert data["spot_id"] == "nope"
    assert data["deleted_keys"] == []


def test_invalidate_spot_document_drops_persisted_intelligence(spot_client):
    test_client, engine, cache = spot_client
    data = test_client.post("/api/discover", json={"lat": 40.7128, "lng": -74.006}).json()
    assert data["source"] == "spots"
    assert data["spots"][0]["name"] == "Alpha"

    alpha = IntelligenceInput(place_name="Alpha", location=LatLng(lat=40.7178, lng=-74.006))
    assert engine.peek(alpha) is not None
    assert "place_intel:Alpha:40.718:-74.006" in cache.keys()

    data = test_client.post("/api/spots/s1/invalidate").json()
    assert data["spot_id"] == "s1"
    assert data["deleted_keys"] == ["place_intel:Alpha:40.718:-74.006"]
    assert engine.peek(alpha) is None
    assert "place_intel:Alpha:40.718:-74.006" not in cache.keys()
