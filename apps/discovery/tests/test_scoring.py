from datetime import datetime

import pytest

from apps.discovery.schemas.checkin import CheckinEvent
from apps.discovery.schemas.spot import SpotAggregate, SpotIntel, VibeScores
from apps.discovery.services.intents import (
    DISCOVERY_INTENTS,
    get_intent_meta,
    infer_intents_from_checkin,
    load_intent_catalog,
    normalize_discovery_intent,
    sanitize_discovery_intents,
    score_for_intent,
)
from apps.discovery.services.query_parser import apply_query_boost, parse_query
from apps.discovery.services.vibes import intent_to_vibe, primary_vibe, vibe_scores

AFTERNOON = datetime(2025, 3, 4, 15, 0)
NIGHT = datetime(2025, 3, 4, 22, 0)


def _spot(**kwargs) -> SpotAggregate:
    kwargs.setdefault('key', 'name:corner cafe')
    kwargs.setdefault('name', 'Corner Cafe')
    return SpotAggregate(**kwargs)


def test_catalog_covers_every_intent():
    catalog = load_intent_catalog()
    assert set(DISCOVERY_INTENTS) | {'any'} == set(catalog)
    assert get_intent_meta('deep_work').short_label == 'Work'
    assert get_intent_meta('nonsense').key == 'any'


def test_sanitize_intents():
    assert normalize_discovery_intent(' Deep_Work ') == 'deep_work'
    assert normalize_discovery_intent('any') is None
    assert sanitize_discovery_intents(['deep_work', 'deep_work', 'bogus', 'date_night', 'group_study']) == [
        'deep_work', 'date_night',
    ]
    assert sanitize_discovery_intents("deep_work") == []


def test_infer_intents():
    explicit = CheckinEvent(spot_key='name:a', visit_intents=['group_study'], caption='coffee')
    assert infer_intents_from_checkin(explicit, AFTERNOON) == ['group_study']

    quiet = CheckinEvent(spot_key='name:a', noise_level=2, wifi_speed=5)
    assert infer_intents_from_checkin(quiet, AFTERNOON) == ['quiet_reading', 'deep_work']

    late = CheckinEvent(spot_key='name:a', open_now=True)
    assert infer_intents_from_checkin(late, NIGHT) == ['late_night_open']

    nothing = CheckinEvent(spot_key='name:a')
    assert infer_intents_from_checkin(nothing, AFTERNOON) == ['coffee_quality']


def test_any_intent_is_balanced():
    signal = score_for_intent(_spot(), 'any')
    assert signal.score == 0.5
    assert signal.reasons == ["Balanced ranking across coffee vibes"]


def test_deep_work_score():
    spot = _spot(intent_scores={'deep_work': 3, 'coffee_quality': 1}, avg_wifi_speed=4.5, avg_noise_level=2.5)
    signal = score_for_intent(spot, 'deep_work')
    assert signal.score == pytest.approx(0.4125 + 0.14 + 0.12, abs=1e-3)
    assert signal.reasons[0] == "3 recent check-ins for work"


def test_intent_score_bounds_and_reasons():
    spot = _spot(
        intent_scores={'late_night_open': 9},
        open_now=True,
        tags=['late-night'],
        here_now_count=2,
    )
    for intent in DISCOVERY_INTENTS:
        signal = score_for_intent(spot, intent)
        assert 0.0 <= signal.score <= 1.0
        assert 1 <= len(signal.reasons) <= 3
    assert score_for_intent(spot, 'late_night_open').score == pytest.approx(0.55 + 0.16 + 0.12)


def test_intent_without_data_falls_back_to_hint():
    signal = score_for_intent(_spot(), 'group_study')
    assert signal.score == 0.0
    assert signal.reasons == [get_intent_meta('group_study').hint]


def test_vibe_scores_in_range():
    empty = vibe_scores(_spot())
    loaded = vibe_scores(_spot(
        avg_noise_level=1.5, avg_busyness=1.5, avg_wifi_speed=5, avg_drink_quality=5,
        laptop_friendly_pct=100, top_outlet_availability='plenty', open_now=True,
        intent_scores={'deep_work': 5}, tag_scores={'Study': 5, 'Quiet': 5},
        intel=SpotIntel(good_for_studying=True, good_for_dates=1, instagram_worthy=1),
    ))
    for scores in (empty, loaded):
        for vibe in ('study', 'date', 'social', 'quick', 'aesthetic'):
            assert 0 <= scores.get(vibe) <= 100
    assert loaded.study > empty.study
    assert loaded.study >= 90


def test_study_spot_beats_loud_spot_for_study():
    quiet = vibe_scores(_spot(avg_noise_level=1.5, avg_wifi_speed=4.8, top_outlet_availability='plenty'))
    loud = vibe_scores(_spot(avg_noise_level=4.8, avg_wifi_speed=1.5, top_outlet_availability='none'))
    assert quiet.study > loud.study


def test_intent_to_vibe():
    assert intent_to_vibe('deep_work') == 'study'
    assert intent_to_vibe('date_night') == 'date'
    assert intent_to_vibe('any') is None
    assert intent_to_vibe(None) is None


def test_primary_vibe():
    social = VibeScores(study=10, date=20, social=90, quick=30, aesthetic=40)
    assert primary_vibe(social, hour=20) == 'social'
    assert primary_vibe(social, hour=8) == 'quick'
    assert primary_vibe(social, hour=8, open_now=True) == 'social'


def test_parse_query():
    parsed = parse_query("  Quiet cozy STUDY spot ")
    assert parsed.matched
    assert parsed.suggested_intent == 'deep_work'
    assert parsed.ambiance == 'cozy'
    assert parsed.filters.noise_level == 'quiet'
    assert parsed.normalized_query == "quiet cozy study spot"
    assert parsed.confidence == pytest.approx(0.35 + 0.2 + 0.18)


def test_parse_query_unmatched():
    assert not parse_query("blue bottle").matched
    assert not parse_query("").matched
    assert not parse_query(None).matched
    cheap = parse_query("cheap open now")
    assert cheap.filters.price_level == ['$']
    assert cheap.filters.open_now is True
    assert cheap.matched


def test_query_boost():
    parsed = parse_query("cozy not crowded and silent")
    match = _spot(avg_busyness=2.0, description="A cozy nook", intel=SpotIntel(inferred_noise='quiet'))
    miss = _spot(avg_busyness=4.5, intel=SpotIntel(inferred_noise='loud'))
    assert apply_query_boost(match, parsed).boost == pytest.approx(8 + 8 + 6)
    assert len(apply_query_boost(match, parsed).reasons) == 2
    assert apply_query_boost(miss, parsed).boost == pytest.approx(-4 - 5)
    assert apply_query_boost(match, parse_query("blue bottle")).boost == 0
