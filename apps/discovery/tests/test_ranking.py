import random

from apps.discovery.schemas.filters import FilterState
from apps.discovery.schemas.spot import DisplayData, SpotAggregate, SpotIntel
from apps.discovery.services.query_parser import parse_query
from apps.discovery.services.ranking import merge_query_filters, rank, resolve_ranking_intent

WIDE = FilterState(distance=5)


def _spot(key: str, **kwargs) -> SpotAggregate:
    kwargs.setdefault('name', key.title())
    kwargs.setdefault('distance', 1.0)
    return SpotAggregate(key=f"name:{key}", **kwargs)


def _keys(ranked):
    return [item.spot.key for item in ranked]


def test_distance_breaks_ties():
    near = _spot('near', distance=1.2)
    far = _spot('far', distance=3.4)
    assert _keys(rank([far, near], WIDE)) == ['name:near', 'name:far']


def test_here_now_before_distance():
    near = _spot('near', distance=0.5)
    busy = _spot('busy', distance=2.0, here_now_count=3)
    assert _keys(rank([near, busy], WIDE)) == ['name:busy', 'name:near']


def test_count_breaks_equal_distance():
    few = _spot('few', count=2)
    many = _spot('many', count=9)
    assert _keys(rank([few, many], WIDE)) == ['name:many', 'name:few']


def test_ranking_is_deterministic():
    spots = [
        _spot(f"s{i}", distance=0.3 * i, count=i % 4, avg_noise_level=1 + i % 5, avg_wifi_speed=5 - i % 5,
              intent_scores={'deep_work': i % 3, 'hangout_friends': 2})
        for i in range(12)
    ]
    first = rank(spots, WIDE, 'deep_work', query="laptop")
    again = rank(spots, WIDE, 'deep_work', query="laptop")
    assert [item.model_dump() for item in first] == [item.model_dump() for item in again]


def test_vibe_match_orders_study_spots():
    library = _spot('library', distance=3.0, avg_noise_level=1.2, avg_wifi_speed=4.8,
                    top_outlet_availability='plenty', laptop_friendly_pct=90)
    bar = _spot('bar', distance=0.2, avg_noise_level=4.8, avg_wifi_speed=1.5, top_outlet_availability='none')
    ranked = rank([bar, library], WIDE, 'deep_work')
    assert _keys(ranked) == ['name:library', 'name:bar']
    assert ranked[0].vibe_match == ranked[0].vibe_scores.study


def test_distance_filter_uses_clamped_radius():
    inside = _spot('inside', distance=3.0)
    outside = _spot('outside', distance=9.0)
    assert _keys(rank([inside, outside], FilterState(distance=50))) == ['name:inside']
    assert _keys(rank([inside, outside], FilterState(distance=1))) == []


def test_remote_filters_applied_client_side():
    open_spot = _spot('open', intel=SpotIntel(is_open_now=True, price_level='$'))
    closed = _spot('closed', open_now=False)
    filters = FilterState(distance=5, open_now=True, price_level=['$'])
    assert _keys(rank([closed, open_spot], filters)) == ['name:open']


def test_plain_text_query_must_match_name_or_tags():
    blue = _spot('blue bottle')
    tagged = _spot('corner', tags=['Blue Bottle beans'])
    other = _spot('other')
    assert _keys(rank([other, blue, tagged], WIDE, query="Blue Bottle")) == ['name:blue bottle', 'name:corner']


def test_parsed_query_filters_and_boosts():
    quiet = _spot('quiet', distance=2.0, display=DisplayData(noise='quiet'))
    loud = _spot('loud', distance=0.5, display=DisplayData(noise='loud'))
    ranked = rank([loud, quiet], WIDE, query="silent and not crowded")
    assert _keys(ranked) == ['name:quiet']
    assert ranked[0].query_boost == 8
    assert "matches quiet vibe" in ranked[0].intent_reasons


def test_input_order_does_not_matter():
    spots = [_spot(f"s{i}", distance=float(i % 3), count=i) for i in range(8)]
    expected = _keys(rank(spots, WIDE))
    shuffled = list(spots)
    random.Random(7).shuffle(shuffled)
    assert _keys(rank(shuffled, WIDE)) == expected


def test_resolve_ranking_intent_precedence():
    parsed = parse_query("date spot")
    assert resolve_ranking_intent('deep_work', 'group_study', parsed) == 'deep_work'
    assert resolve_ranking_intent('any', 'group_study', parsed) == 'group_study'
    assert resolve_ranking_intent(None, None, parsed) == 'date_night'
    assert resolve_ranking_intent(None, None, parse_query("blue")) == 'any'


def test_merge_query_filters_keeps_explicit_choices():
    parsed = parse_query("loud cheap not crowded")
    merged = merge_query_filters(FilterState(noise_level='quiet'), parsed)
    assert merged.noise_level == 'quiet'
    assert merged.price_level == ['$']
    assert merged.not_crowded is True
