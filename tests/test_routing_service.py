import pytest

from dispatch_app.models.domain import Assignment, DispatchPriority
from dispatch_app.services.dispatch.view import DispatchFilters
from dispatch_app.services.routing import RouteSuggestionEngine, apply_route_order, suggest_route

from conftest import TENANT, make_stop

DATE = "2026-03-02"


class OfflineDirections:
    configured = False

    def route(self, coordinates):
        raise AssertionError("directions should not be called without a token")


@pytest.fixture
def day_store(store):
    store.add_stops(
        [
            make_stop("A", lat=39.70, lon=-105.00, created_offset_minutes=0),
            make_stop("B", lat=39.95, lon=-105.00, created_offset_minutes=1),
            make_stop("C", lat=39.80, lon=-105.00, created_offset_minutes=2, priority=DispatchPriority.HIGH),
            make_stop("D", created_offset_minutes=3),
            make_stop("X", service_date="2026-03-03", lat=39.7, lon=-105.0),
        ]
    )
    store.add_assignments(TENANT, [Assignment("A", cleaner_id="K1"), Assignment("B", cleaner_id="K1")])
    return store


def test_suggest_route_uses_visible_stops(day_store, config):
    engine = RouteSuggestionEngine(OfflineDirections(), config)

    suggestion = suggest_route(day_store, engine, TENANT, DATE)

    assert suggestion.ordered_stop_ids == ["C", "A", "B"]
    assert suggestion.unmapped_stop_ids == ["D"]
    assert suggestion.provider == "fallback"
    assert suggestion.metadata["visible_stops"] == 4


def test_suggest_route_honours_filters(day_store, config):
    engine = RouteSuggestionEngine(OfflineDirections(), config)

    suggestion = suggest_route(day_store, engine, TENANT, DATE, DispatchFilters(cleaner_id="K1"))

    assert sorted(suggestion.ordered_stop_ids) == ["A", "B"]
    assert suggestion.unmapped_stop_ids == []


def test_suggest_route_does_not_write(day_store, config):
    engine = RouteSuggestionEngine(OfflineDirections(), config)

    suggest_route(day_store, engine, TENANT, DATE)

    assert all(day_store.get_stop(TENANT, sid).manual_sequence is None for sid in "ABCD")


def test_apply_route_order_appends_remaining_stops(day_store):
    sequence = apply_route_order(day_store, TENANT, DATE, ["C", "A"])

    assert sequence == ["C", "A", "B", "D"]
    assert [day_store.get_stop(TENANT, sid).manual_sequence for sid in sequence] == [0, 1, 2, 3]
    assert day_store.get_stop(TENANT, "X").manual_sequence is None


def test_apply_route_order_rejects_duplicates(day_store):
    with pytest.raises(ValueError, match="duplicate"):
        apply_route_order(day_store, TENANT, DATE, ["A", "A"])


def test_apply_route_order_rejects_unknown_and_other_day(day_store):
    with pytest.raises(ValueError, match="not found"):
        apply_route_order(day_store, TENANT, DATE, ["nope"])
    with pytest.raises(ValueError, match="not scheduled"):
        apply_route_order(day_store, TENANT, DATE, ["X"])
    assert day_store.get_stop(TENANT, "A").manual_sequence is None
