"""HTTP client for the Mapbox geocoding API."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Optional
from urllib.parse import quote

import httpx

from ...config import Settings, settings as default_settings

PROVIDER_NAME = "mapbox"

# Status codes worth retrying inside a single attempt; everything else fails fast
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

logger = logging.getLogger(__name__)


class GeocodingProviderError(Exception):
    """Transport, HTTP or payload failure while calling the geocoding provider."""


@dataclass(slots=True, frozen=True)
class GeocodeMatch:
    latitude: float
    longitude: float
    provider: str = PROVIDER_NAME
    place_name: Optional[str] = None


class MapboxGeocoder:
    """Resolves a single address line into coordinates.

    Returns None when the provider answers but has no match. Raises
    GeocodingProviderError for everything else, so raw payloads never leave
    this module.
    """

    provider_name = PROVIDER_NAME

    def __init__(
        self,
        token: str | None,
        *,
        base_url: str | None = None,
        country: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        config: Settings | None = None,
    ) -> None:
        config = config or default_settings
        self.token = token
        self.base_url = (base_url or config.mapbox_base_url).rstrip("/")
        self.country = country if country is not None else config.mapbox_country
        self.timeout = timeout if timeout is not None else config.provider_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else config.provider_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else config.provider_backoff_seconds

    @classmethod
    def from_settings(cls, config: Settings) -> "MapboxGeocoder":
        return cls(config.mapbox_geocoding_token, config=config)

    @property
    def configured(self) -> bool:
        return bool(self.token)

    def _get_client(self) -> httpx.Client:
        return httpx.Client(timeout=httpx.Timeout(self.timeout, connect=5.0))

    def _request(self, address_line: str) -> dict:
        url = f"{self.base_url}/geocoding/v5/mapbox.places/{quote(address_line, safe='')}.json"
        params = {"access_token": self.token, "limit": 1}
        if self.country:
            params["country"] = self.country

        client = self._get_client()
        try:
            attempt = 0
            while True:
                try:
                    response = client.get(url, params=params)
                    response.raise_for_status()
                    return response.json()
                except httpx.HTTPStatusError as e:
                    attempt += 1
                    code = e.response.status_code
                    if code not in RETRYABLE_STATUS_CODES or attempt > self.max_retries:
                        raise GeocodingProviderError(f"Mapbox geocoding returned HTTP {code}") from e
                    time.sleep(self.backoff_seconds * attempt)
                except (httpx.TimeoutException, httpx.NetworkError) as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.warning(f"Mapbox geocoding unreachable after {self.max_retries} retries: {e}")
                        raise GeocodingProviderError(f"Mapbox geocoding unreachable: {e}") from e
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"Mapbox geocoding timeout, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                    time.sleep(wait_time)
                except (httpx.HTTPError, ValueError) as e:
                    raise GeocodingProviderError(f"Mapbox geocoding request failed: {e}") from e
        finally:
            client.close()

    def geocode(self, address_line: str) -> Optional[GeocodeMatch]:
        if not self.token:
            raise GeocodingProviderError("Mapbox geocoding token is not configured.")
        if not address_line.strip():
            return None

        payload = self._request(address_line)
        features = payload.get("features") if isinstance(payload, dict) else None
        if not features:
            return None
        feature = features[0]
        center = feature.get("center") if isinstance(feature, dict) else None
        if center is None:
            return None
        if not isinstance(center, (list, tuple)) or len(center) < 2:
            raise GeocodingProviderError(f"Mapbox geocoding returned an invalid center: {center!r}")
        try:
            longitude, latitude = float(center[0]), float(center[1])
        except (TypeError, ValueError) as e:
            raise GeocodingProviderError(f"Mapbox geocoding returned an invalid center: {center!r}") from e
        return GeocodeMatch(latitude=latitude, longitude=longitude, place_name=feature.get("place_name"))


def check_health(token: str | None = None, config: Settings | None = None) -> bool:
    """Probe the geocoding API with a known address."""
    config = config or default_settings
    geocoder = MapboxGeocoder(token if token is not None else config.mapbox_geocoding_token, max_retries=0, config=config)
    if not geocoder.configured:
        return False
    try:
        return geocoder.geocode("1600 Pennsylvania Ave NW, Washington, DC 20500") is not None
    except GeocodingProviderError:
        return False
