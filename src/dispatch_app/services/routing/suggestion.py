"""Heuristic visiting order and road geometry for a day's stops.

Stops are grouped into (priority, time-window) buckets. Buckets are visited
in business order and, within and across buckets, the walk greedily moves to
the nearest unvisited stop. This is a heuristic, not a TSP solver: priority
always beats distance.

Geometry comes from the directions provider in chunks that fit its waypoint
limit. Each chunk after the first starts at the previous chunk's last point
so the stitched path stays continuous. Any failing chunk is replaced by a
straight line and the whole result is reported as ``fallback``.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional, Protocol, Sequence

from ...config import Settings, settings as default_settings
from ...models.domain import DispatchPriority, ServiceStop, parse_window_minutes
from ..geospatial import haversine_between
from .directions_client import PROVIDER_NAME
from .models import FALLBACK_PROVIDER, DirectionsRoute, RouteGeometry, RouteSuggestion

logger = logging.getLogger(__name__)

PRIORITY_BUCKETS = {
    DispatchPriority.URGENT: 0,
    DispatchPriority.HIGH: 1,
    DispatchPriority.NORMAL: 2,
    DispatchPriority.LOW: 3,
}


class DirectionsProvider(Protocol):
    @property
    def configured(self) -> bool: ...

    def route(self, coordinates: Sequence[tuple[float, float]]) -> Optional[DirectionsRoute]: ...


def priority_bucket(stop: ServiceStop) -> int:
    return PRIORITY_BUCKETS[DispatchPriority.parse(stop.priority)]


def window_bucket(stop: ServiceStop, bucket_minutes: int = 120) -> Optional[int]:
    minutes = parse_window_minutes(stop.window_start)
    return None if minutes is None else minutes // bucket_minutes


def stop_sort_key(stop: ServiceStop) -> tuple:
    """(priority, window start, manual sequence, creation time) with unset values last."""
    window = parse_window_minutes(stop.window_start)
    created: datetime = stop.created_at
    return (
        priority_bucket(stop),
        window if window is not None else math.inf,
        stop.manual_sequence if stop.manual_sequence is not None else math.inf,
        created.timestamp(),
        stop.stop_id,
    )


def _bucket_order_key(key: tuple[int, Optional[int]]) -> tuple[int, int, int]:
    priority, window = key
    return (priority, 1, 0) if window is None else (priority, 0, window)


def order_stops(stops: Sequence[ServiceStop], bucket_minutes: int = 120) -> list[ServiceStop]:
    """Chain mapped stops across ordered buckets with a nearest-neighbour walk."""
    buckets: dict[tuple[int, Optional[int]], list[ServiceStop]] = defaultdict(list)
    for stop in stops:
        buckets[(priority_bucket(stop), window_bucket(stop, bucket_minutes))].append(stop)

    ordered: list[ServiceStop] = []
    anchor: Optional[tuple[float, float]] = None

    for key in sorted(buckets, key=_bucket_order_key):
        remaining = sorted(buckets[key], key=stop_sort_key)
        if anchor is None:
            current = remaining[0]
        else:
            current = _nearest(anchor, remaining)
        remaining.remove(current)
        ordered.append(current)

        while remaining:
            current = _nearest(current.coordinates, remaining)
            remaining.remove(current)
            ordered.append(current)

        anchor = current.coordinates

    return ordered


def _nearest(origin: tuple[float, float], candidates: Iterable[ServiceStop]) -> ServiceStop:
    return min(candidates, key=lambda stop: (haversine_between(origin, stop.coordinates), stop_sort_key(stop)))


def chunk_coordinates(
    coordinates: Sequence[tuple[float, float]],
    max_points: int,
) -> list[list[tuple[float, float]]]:
    """Split a path into request-sized chunks that share their boundary point."""
    if max_points < 2:
        raise ValueError("Chunks need room for at least two points.")
    if len(coordinates) <= max_points:
        return [list(coordinates)]

    chunks: list[list[tuple[float, float]]] = []
    start = 0
    while start < len(coordinates) - 1:
        end = min(start + max_points, len(coordinates))
        chunks.append(list(coordinates[start:end]))
        start = end - 1
    return chunks


def _extend_path(path: list[tuple[float, float]], segment: Sequence[tuple[float, float]]) -> None:
    if path and segment and path[-1] == tuple(segment[0]):
        segment = segment[1:]
    path.extend(tuple(point) for point in segment)


class RouteSuggestionEngine:
    """Stateless; every call recomputes the order and the geometry."""

    def __init__(self, directions: DirectionsProvider, config: Settings | None = None) -> None:
        config = config or default_settings
        self.directions = directions
        self.default_max_stops = config.route_default_max_stops
        self.hard_max_stops = config.route_hard_max_stops
        self.window_bucket_minutes = config.route_window_bucket_minutes
        self.max_points_per_request = config.directions_max_coordinates

    def effective_max_stops(self, max_stops: Optional[int]) -> int:
        requested = self.default_max_stops if max_stops is None else max_stops
        return min(max(requested, 1), self.hard_max_stops)

    def suggest(
        self,
        stops: Sequence[ServiceStop],
        *,
        date: str = "",
        max_stops: Optional[int] = None,
    ) -> RouteSuggestion:
        cap = self.effective_max_stops(max_stops)
        candidates: list[ServiceStop] = []
        skipped: list[str] = []
        unmapped: list[str] = []

        for stop in stops:
            if not stop.has_coordinates:
                unmapped.append(stop.stop_id)
            elif len(candidates) >= cap:
                skipped.append(stop.stop_id)
            else:
                candidates.append(stop)

        ordered = order_stops(candidates, self.window_bucket_minutes)
        geometry = self.build_geometry([stop.coordinates for stop in ordered])

        logger.info(
            f"Route suggestion for {date or 'unspecified date'}: {len(ordered)} ordered, "
            f"{len(skipped)} skipped, {len(unmapped)} unmapped, provider={geometry.provider}"
        )
        return RouteSuggestion(
            date=date,
            ordered_stop_ids=[stop.stop_id for stop in ordered],
            skipped_stop_ids=skipped,
            unmapped_stop_ids=unmapped,
            coordinates=geometry.coordinates,
            distance_meters=geometry.distance_meters,
            duration_seconds=geometry.duration_seconds,
            provider=geometry.provider,
            token_configured=self.directions.configured,
            directions_requests=geometry.requests,
            metadata={"max_stops": cap},
        )

    def build_geometry(self, coordinates: Sequence[tuple[float, float]]) -> RouteGeometry:
        points = [tuple(point) for point in coordinates]
        if len(points) <= 1:
            provider = PROVIDER_NAME if self.directions.configured else FALLBACK_PROVIDER
            return RouteGeometry(coordinates=points, distance_meters=0.0, duration_seconds=0.0, provider=provider)

        if not self.directions.configured:
            return RouteGeometry(coordinates=points, distance_meters=None, duration_seconds=None, provider=FALLBACK_PROVIDER)

        path: list[tuple[float, float]] = []
        distance = 0.0
        duration = 0.0
        all_succeeded = True
        chunks = chunk_coordinates(points, self.max_points_per_request)

        # Chunks run in order; each one begins where the previous one ended.
        for index, chunk in enumerate(chunks):
            route: Optional[DirectionsRoute]
            try:
                route = self.directions.route(chunk)
            except Exception as e:
                logger.warning(f"Directions chunk {index + 1}/{len(chunks)} failed: {e}. Using straight line.")
                route = None
            else:
                if route is None:
                    logger.warning(f"Directions chunk {index + 1}/{len(chunks)} returned no route. Using straight line.")

            if route is None or not route.geometry:
                all_succeeded = False
                _extend_path(path, chunk)
                continue

            _extend_path(path, route.geometry)
            distance += route.distance_meters
            duration += route.duration_seconds

        if not all_succeeded:
            return RouteGeometry(
                coordinates=path,
                distance_meters=None,
                duration_seconds=None,
                provider=FALLBACK_PROVIDER,
                requests=len(chunks),
            )
        return RouteGeometry(
            coordinates=path,
            distance_meters=distance,
            duration_seconds=duration,
            provider=PROVIDER_NAME,
            requests=len(chunks),
        )
