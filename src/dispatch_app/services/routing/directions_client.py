"""HTTP client for the Mapbox directions API."""

from __future__ import annotations

import logging
import time
from typing import Optional, Sequence

import httpx

from ...config import Settings, settings as default_settings
from .models import DirectionsRoute

PROVIDER_NAME = "mapbox"
# Mapbox accepts at most 25 waypoints per directions request on driving profiles.
MAX_WAYPOINTS_PER_REQUEST = 25

logger = logging.getLogger(__name__)


class DirectionsProviderError(Exception):
    """Transport, HTTP or payload failure while calling the directions provider."""


class MapboxDirectionsClient:
    provider_name = PROVIDER_NAME

    def __init__(
        self,
        token: str | None,
        *,
        base_url: str | None = None,
        profile: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        config: Settings | None = None,
    ) -> None:
        config = config or default_settings
        self.token = token
        self.base_url = (base_url or config.mapbox_base_url).rstrip("/")
        self.profile = profile or config.mapbox_profile
        self.timeout = timeout if timeout is not None else config.provider_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else config.provider_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else config.provider_backoff_seconds

    @classmethod
    def from_settings(cls, config: Settings) -> "MapboxDirectionsClient":
        return cls(config.mapbox_directions_token, config=config)

    @property
    def configured(self) -> bool:
        return bool(self.token)

    def _get_client(self) -> httpx.Client:
        return httpx.Client(timeout=httpx.Timeout(self.timeout, connect=5.0))

    def route(self, coordinates: Sequence[tuple[float, float]]) -> Optional[DirectionsRoute]:
        """Get road geometry, distance and duration through the given waypoints.

        Args:
            coordinates: Sequence of (lat, lon) tuples, at most 25.

        Returns:
            DirectionsRoute, or None when the provider finds no route.
        """
        if not self.token:
            raise DirectionsProviderError("Mapbox directions token is not configured.")
        if len(coordinates) < 2:
            raise ValueError("At least two coordinates are required for a directions request.")
        if len(coordinates) > MAX_WAYPOINTS_PER_REQUEST:
            raise ValueError(
                f"Directions requests accept at most {MAX_WAYPOINTS_PER_REQUEST} waypoints, got {len(coordinates)}."
            )

        # Mapbox expects coordinates as "lon,lat;lon,lat;..."
        coordinate_str = ";".join(f"{lon},{lat}" for lat, lon in coordinates)
        params = {
            "access_token": self.token,
            "overview": "full",
            "geometries": "polyline",
            "steps": "false",
        }
        url = f"{self.base_url}/directions/v5/mapbox/{self.profile}/{coordinate_str}"

        client = self._get_client()
        try:
            attempt = 0
            while True:
                try:
                    response = client.get(url, params=params)
                    response.raise_for_status()
                    data = response.json()
                    break
                except httpx.HTTPStatusError as e:
                    attempt += 1
                    code = e.response.status_code
                    if (code < 500 and code != 429) or attempt > self.max_retries:
                        raise DirectionsProviderError(f"Mapbox directions returned HTTP {code}") from e
                    time.sleep(self.backoff_seconds * attempt)
                except (httpx.TimeoutException, httpx.NetworkError) as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.warning(f"Mapbox directions timed out after {self.max_retries} retries: {e}")
                        raise DirectionsProviderError(f"Mapbox directions unreachable: {e}") from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"Mapbox directions timeout, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                    time.sleep(wait_time)
                except (httpx.HTTPError, ValueError) as e:
                    raise DirectionsProviderError(f"Mapbox directions request failed: {e}") from e
        finally:
            client.close()

        return parse_directions_payload(data)


def parse_directions_payload(data: dict) -> Optional[DirectionsRoute]:
    """Turn a Mapbox directions response into a DirectionsRoute."""
    if not isinstance(data, dict):
        raise DirectionsProviderError("Mapbox directions returned a non-object payload.")
    code = data.get("code")
    if code in ("NoRoute", "NoSegment"):
        return None
    if code != "Ok":
        raise DirectionsProviderError(f"Mapbox directions request failed: {data.get('message', code)}")

    routes = data.get("routes") or []
    if not routes:
        return None
    route = routes[0]
    geometry = route.get("geometry")
    if not isinstance(geometry, str) or not geometry:
        raise DirectionsProviderError("Mapbox directions route is missing its geometry.")
    try:
        return DirectionsRoute(
            geometry=decode_polyline(geometry),
            distance_meters=float(route["distance"]),
            duration_seconds=float(route["duration"]),
        )
    except (KeyError, TypeError, ValueError, IndexError) as e:
        raise DirectionsProviderError(f"Mapbox directions route is malformed: {e}") from e


def decode_polyline(polyline: str) -> list[tuple[float, float]]:
    """Decode Google polyline string to list of (lat, lon) coordinates.

    Mapbox returns precision-5 polylines when ``geometries=polyline``.
    """
    coordinates = []
    index = 0
    lat = 0
    lon = 0

    while index < len(polyline):
        shift = 0
        result = 0
        while True:
            b = ord(polyline[index]) - 63
            index += 1
            result |= (b & 0x1f) << shift
            shift += 5
            if b < 0x20:
                break
        dlat = ~(result >> 1) if (result & 1) else (result >> 1)
        lat += dlat

        shift = 0
        result = 0
        while True:
            b = ord(polyline[index]) - 63
            index += 1
            result |= (b & 0x1f) << shift
            shift += 5
            if b < 0x20:
                break
        dlon = ~(result >> 1) if (result & 1) else (result >> 1)
        lon += dlon

        coordinates.append((lat / 1e5, lon / 1e5))

    return coordinates


def check_health(token: str | None = None, config: Settings | None = None) -> bool:
    """Probe the directions API with a short two-point route."""
    config = config or default_settings
    client = MapboxDirectionsClient(
        token if token is not None else config.mapbox_directions_token, max_retries=0, config=config
    )
    if not client.configured:
        return False
    try:
        return client.route([(38.8977, -77.0365), (38.8899, -77.0091)]) is not None
    except DirectionsProviderError:
        return False
