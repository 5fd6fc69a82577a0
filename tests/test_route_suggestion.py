import pytest

from dispatch_app.models.domain import DispatchPriority
from dispatch_app.services.geospatial import path_length_km
from dispatch_app.services.routing.directions_client import DirectionsProviderError
from dispatch_app.services.routing.models import DirectionsRoute
from dispatch_app.services.routing.suggestion import (
    RouteSuggestionEngine,
    chunk_coordinates,
    order_stops,
    parse_window_minutes,
)

from conftest import make_stop


class StubDirections:
    def __init__(self, configured: bool = True, fail_on_call: int | None = None):
        self._configured = configured
        self.fail_on_call = fail_on_call
        self.calls: list[list[tuple[float, float]]] = []

    @property
    def configured(self) -> bool:
        return self._configured

    def route(self, coordinates):
        self.calls.append(list(coordinates))
        if self.fail_on_call == len(self.calls):
            raise DirectionsProviderError("upstream 503")
        return DirectionsRoute(geometry=list(coordinates), distance_meters=1000.0, duration_seconds=60.0)


@pytest.fixture
def engine_factory(config):
    def _build(directions):
        return RouteSuggestionEngine(directions, config)

    return _build


def _line_of_stops(count: int):
    return [
        make_stop(f"S{i:02d}", lat=39.0 + i * 0.01, lon=-105.0, created_offset_minutes=i)
        for i in range(count)
    ]


def test_priority_beats_distance(engine_factory):
    stops = [
        make_stop("A", priority=DispatchPriority.URGENT, window_start="09:00", lat=39.70, lon=-105.00),
        make_stop("B", priority=DispatchPriority.NORMAL, window_start="08:00", lat=39.71, lon=-105.00),
        make_stop("C", priority=DispatchPriority.URGENT, window_start="10:00", lat=40.50, lon=-104.00),
        make_stop("D", priority=DispatchPriority.NORMAL, window_start="07:00", lat=39.70, lon=-105.01),
    ]

    suggestion = engine_factory(StubDirections()).suggest(stops, date="2026-03-02")

    assert set(suggestion.ordered_stop_ids[:2]) == {"A", "C"}
    assert suggestion.ordered_stop_ids == ["A", "C", "D", "B"]


def test_greedy_walk_is_no_longer_than_reverse_order():
    stops = [
        make_stop("P0", lat=39.70, lon=-105.00, created_offset_minutes=0),
        make_stop("P1", lat=39.70, lon=-104.70, created_offset_minutes=1),
        make_stop("P2", lat=39.70, lon=-104.90, created_offset_minutes=2),
        make_stop("P3", lat=39.70, lon=-104.80, created_offset_minutes=3),
    ]

    ordered = order_stops(stops)
    greedy = path_length_km([stop.coordinates for stop in ordered])
    reverse = path_length_km([stop.coordinates for stop in reversed(stops)])

    assert [stop.stop_id for stop in ordered] == ["P0", "P2", "P3", "P1"]
    assert greedy <= reverse


def test_next_bucket_starts_nearest_to_anchor():
    stops = [
        make_stop("U", priority="urgent", lat=39.70, lon=-105.00),
        make_stop("far", lat=40.70, lon=-104.00, created_offset_minutes=-10),
        make_stop("near", lat=39.71, lon=-105.00, created_offset_minutes=10),
    ]

    assert [stop.stop_id for stop in order_stops(stops)] == ["U", "near", "far"]


def test_windowless_bucket_comes_after_windowed_buckets():
    stops = [
        make_stop("none", lat=39.70, lon=-105.00, created_offset_minutes=-10),
        make_stop("late", window_start="16:00", lat=39.80, lon=-105.00),
        make_stop("early", window_start="08:30", lat=39.90, lon=-105.00),
    ]

    assert [stop.stop_id for stop in order_stops(stops)] == ["early", "late", "none"]


def test_thirty_stops_use_two_chunked_requests(engine_factory):
    directions = StubDirections()
    stops = _line_of_stops(30)

    suggestion = engine_factory(directions).suggest(stops)

    assert len(directions.calls) == 2
    assert directions.calls[1][0] == directions.calls[0][-1]
    assert len(directions.calls[0]) == 25
    assert suggestion.provider == "mapbox"
    assert suggestion.distance_meters == 2000.0
    assert suggestion.duration_seconds == 120.0
    assert suggestion.directions_requests == 2
    assert suggestion.coordinates == [stop.coordinates for stop in stops]


def test_failed_chunk_degrades_to_fallback(engine_factory):
    directions = StubDirections(fail_on_call=2)
    stops = _line_of_stops(30)

    suggestion = engine_factory(directions).suggest(stops)

    assert suggestion.provider == "fallback"
    assert suggestion.distance_meters is None
    assert suggestion.duration_seconds is None
    assert suggestion.coordinates == [stop.coordinates for stop in stops]
    assert len(suggestion.ordered_stop_ids) == 30


def test_missing_token_returns_straight_line(engine_factory):
    directions = StubDirections(configured=False)
    stops = _line_of_stops(3)

    suggestion = engine_factory(directions).suggest(stops)

    assert suggestion.provider == "fallback"
    assert suggestion.token_configured is False
    assert suggestion.distance_meters is None
    assert suggestion.duration_seconds is None
    assert suggestion.coordinates == [stop.coordinates for stop in stops]
    assert directions.calls == []


def test_max_stops_caps_candidates(engine_factory):
    stops = _line_of_stops(3) + [make_stop("unmapped")]

    suggestion = engine_factory(StubDirections()).suggest(stops, max_stops=2)

    assert len(suggestion.skipped_stop_ids) == 1
    assert not set(suggestion.skipped_stop_ids) & set(suggestion.ordered_stop_ids)
    assert suggestion.unmapped_stop_ids == ["unmapped"]
    assert len(suggestion.ordered_stop_ids) == 2


def test_single_stop_has_trivial_geometry(engine_factory):
    directions = StubDirections()

    suggestion = engine_factory(directions).suggest(_line_of_stops(1))

    assert suggestion.distance_meters == 0.0
    assert suggestion.duration_seconds == 0.0
    assert len(suggestion.coordinates) == 1
    assert directions.calls == []


def test_effective_max_stops(engine_factory):
    engine = engine_factory(StubDirections())

    assert engine.effective_max_stops(None) == 80
    assert engine.effective_max_stops(500) == 150
    assert engine.effective_max_stops(0) == 1


@pytest.mark.parametrize(("count", "chunks"), [(2, 1), (25, 1), (26, 2), (49, 2), (50, 3)])
def test_chunk_counts(count, chunks):
    points = [(float(i), 0.0) for i in range(count)]
    result = chunk_coordinates(points, 25)

    assert len(result) == chunks
    assert all(len(chunk) <= 25 for chunk in result)
    for previous, current in zip(result, result[1:]):
        assert current[0] == previous[-1]


@pytest.mark.parametrize(
    ("value", "expected"),
    [("08:30", 510), ("00:00", 0), ("23:59", 1439), ("24:00", None), ("noon", None), (None, None)],
)
def test_parse_window_minutes(value, expected):
    assert parse_window_minutes(value) == expected
