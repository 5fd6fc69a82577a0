"""Route suggestion orchestration for one dispatch day."""

from __future__ import annotations

import logging
from typing import Optional, Sequence

from ...config import Settings, settings as default_settings
from ...persistence.base import DispatchStore
from ..dispatch.view import DispatchFilters, DispatchViewAssembler
from .directions_client import MapboxDirectionsClient
from .models import RouteSuggestion
from .suggestion import RouteSuggestionEngine

logger = logging.getLogger(__name__)


def build_route_engine(config: Settings | None = None, directions=None) -> RouteSuggestionEngine:
    config = config or default_settings
    return RouteSuggestionEngine(directions or MapboxDirectionsClient.from_settings(config), config)


def suggest_route(
    store: DispatchStore,
    engine: RouteSuggestionEngine,
    tenant_id: str,
    service_date: str,
    filters: DispatchFilters | None = None,
    max_stops: Optional[int] = None,
) -> RouteSuggestion:
    """Suggest a visiting order for the stops visible in the dispatch view.

    Nothing is written; the caller decides whether to apply the order.
    """
    day = DispatchViewAssembler(store).assemble(tenant_id, service_date, filters)
    suggestion = engine.suggest([row.stop for row in day.rows], date=service_date, max_stops=max_stops)
    suggestion.metadata["visible_stops"] = len(day.rows)
    return suggestion


def apply_route_order(
    store: DispatchStore,
    tenant_id: str,
    service_date: str,
    ordered_stop_ids: Sequence[str],
) -> list[str]:
    """Persist ``ordered_stop_ids`` as the day's manual sequence.

    Stops of the day that are not listed keep their relative order and are
    appended after the listed ones. Returns the full sequence written.
    """
    if len(set(ordered_stop_ids)) != len(ordered_stop_ids):
        raise ValueError("Route order contains duplicate stop ids.")

    day_stops = store.list_stops_for_date(tenant_id, service_date)
    day_ids = {stop.stop_id for stop in day_stops}

    for stop_id in ordered_stop_ids:
        if stop_id in day_ids:
            continue
        if store.get_stop(tenant_id, stop_id) is None:
            raise ValueError(f"Stop '{stop_id}' not found.")
        raise ValueError(f"Stop '{stop_id}' is not scheduled on {service_date}.")

    listed = set(ordered_stop_ids)
    remaining = sorted(
        (stop for stop in day_stops if stop.stop_id not in listed),
        key=lambda stop: (
            stop.manual_sequence if stop.manual_sequence is not None else float("inf"),
            stop.created_at.timestamp(),
        ),
    )
    sequence = list(ordered_stop_ids) + [stop.stop_id for stop in remaining]

    for index, stop_id in enumerate(sequence):
        store.set_manual_sequence(tenant_id, stop_id, index)

    logger.info(
        f"Applied route order for tenant {tenant_id} on {service_date}: "
        f"{len(ordered_stop_ids)} ordered, {len(remaining)} appended"
    )
    return sequence
