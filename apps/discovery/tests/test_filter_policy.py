import pytest

from apps.discovery.schemas.filters import FilterState
from apps.discovery.schemas.spot import DisplayData, SpotAggregate, SpotIntel
from apps.discovery.services.filter_policy import (
    REMOTE_FILTERS,
    active_filter_count,
    active_remote_filter_count,
    has_active_filters,
    matches_client_filters,
    matches_remote_filter,
    normalize_query_filters,
    remote_filter_clauses,
)


ALL_REMOTE = FilterState(
    open_now=True,
    price_level=['$', '$$'],
    good_for_studying=True,
    good_for_meetings=True,
)


def test_within_budget_is_untouched():
    filters = FilterState(open_now=True, good_for_studying=True)
    plan = normalize_query_filters(filters, 3)
    assert plan.downgraded == []
    assert plan.normalized == filters
    assert plan.active_remote_filters == ['open_now', 'good_for_studying']


def test_downgrades_lowest_priority_first():
    plan = normalize_query_filters(ALL_REMOTE, 2)
    assert plan.downgraded == ['good_for_meetings', 'good_for_studying']
    assert plan.normalized.open_now is True
    assert plan.normalized.price_level == ['$', '$$']
    assert plan.normalized.good_for_studying is False
    assert plan.normalized.good_for_meetings is False


@pytest.mark.parametrize("budget", [0, 1, 2, 3, 4])
def test_remote_count_never_exceeds_budget(budget):
    plan = normalize_query_filters(ALL_REMOTE, budget)
    assert active_remote_filter_count(plan.normalized) <= budget
    assert len(plan.downgraded) == max(0, 4 - budget)
    # downgraded filters plus the remaining ones cover the original set
    assert set(plan.downgraded) | set(plan.active_remote_filters) == set(REMOTE_FILTERS)


def test_input_is_not_mutated():
    normalize_query_filters(ALL_REMOTE, 1)
    assert ALL_REMOTE.good_for_meetings is True
    assert ALL_REMOTE.price_level == ['$', '$$']


def test_client_filters_never_downgraded():
    filters = FilterState(noise_level='quiet', high_rated=True, not_crowded=True, distance=4)
    plan = normalize_query_filters(filters, 0)
    assert plan.downgraded == []
    assert plan.normalized == filters


def test_remote_clauses():
    clauses = remote_filter_clauses(ALL_REMOTE)
    assert ('intel.isOpenNow', '==', True) in clauses
    assert ('intel.priceLevel', 'in', ['$', '$$']) in clauses
    assert len(clauses) == 4
    assert remote_filter_clauses(FilterState()) == []


def test_active_filter_count():
    assert active_filter_count(FilterState()) == 0
    assert not has_active_filters(FilterState())
    filters = FilterState(distance=3, noise_level='quiet', open_now=True, price_level=['$'])
    assert active_filter_count(filters) == 4
    assert has_active_filters(filters)


def test_matches_remote_filter_uses_intel():
    spot = SpotAggregate(key='spot:a', intel=SpotIntel(is_open_now=True, price_level='$$', good_for_studying=True))
    filters = FilterState(price_level=['$'])
    assert matches_remote_filter(spot, 'open_now', filters)
    assert matches_remote_filter(spot, 'good_for_studying', filters)
    assert not matches_remote_filter(spot, 'good_for_meetings', filters)
    assert not matches_remote_filter(spot, 'price_level', filters)


def test_matches_client_filters():
    quiet = SpotAggregate(
        key='spot:q', distance=1.0, avg_busyness=2.0, rating=4.5,
        display=DisplayData(noise='quiet', noise_label='Quiet (3 check-ins)'),
    )
    packed = SpotAggregate(
        key='spot:p', distance=1.0, avg_busyness=4.2, rating=3.1,
        display=DisplayData(noise='loud', busyness='packed'),
    )
    assert matches_client_filters(quiet, FilterState(noise_level='quiet', not_crowded=True, high_rated=True))
    assert not matches_client_filters(packed, FilterState(noise_level='quiet'))
    assert not matches_client_filters(packed, FilterState(not_crowded=True))
    assert not matches_client_filters(packed, FilterState(high_rated=True))
    assert not matches_client_filters(quiet, FilterState(), max_distance_km=0.5)


def test_unknown_distance_is_not_filtered():
    spot = SpotAggregate(key='spot:nowhere')
    assert matches_client_filters(spot, FilterState(), max_distance_km=1.0)
