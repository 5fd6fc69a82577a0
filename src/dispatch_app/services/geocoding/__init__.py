"""Geocoding pipeline: address resolution, job queue, worker and backfill."""

from __future__ import annotations

from ...config import Settings, settings as default_settings
from ...persistence.base import DispatchStore
from .backfill import BackfillScanner, GeocodeCommands
from .mapbox_client import MapboxGeocoder
from .queue import GeocodeJobQueue
from .worker import GeocodeWorker


def build_geocode_commands(
    store: DispatchStore,
    config: Settings | None = None,
    geocoder=None,
) -> GeocodeCommands:
    """Wire queue, worker and scanner around one store and one geocoder."""
    config = config or default_settings
    queue = GeocodeJobQueue(store, config)
    worker = GeocodeWorker(store, queue, geocoder or MapboxGeocoder.from_settings(config))
    return GeocodeCommands(BackfillScanner(store, queue, config), worker, config)


__all__ = [
    "BackfillScanner",
    "GeocodeCommands",
    "GeocodeJobQueue",
    "GeocodeWorker",
    "MapboxGeocoder",
    "build_geocode_commands",
]
