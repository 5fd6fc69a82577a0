from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from dispatch_app.config import Settings
from dispatch_app.models.domain import AddressFields, ServiceStop
from dispatch_app.persistence.memory import InMemoryDispatchStore
from dispatch_app.services.geocoding.mapbox_client import GeocodeMatch

TENANT = "tenant-a"
NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)
DENVER_LINE = "123 Main St, Denver, CO, 80202"


def make_stop(
    stop_id: str,
    *,
    tenant_id: str = TENANT,
    service_date: str = "2026-03-02",
    lat: Optional[float] = None,
    lon: Optional[float] = None,
    address: Optional[AddressFields] = None,
    created_offset_minutes: int = 0,
    **overrides,
) -> ServiceStop:
    return ServiceStop(
        stop_id=stop_id,
        tenant_id=tenant_id,
        service_date=service_date,
        created_at=NOW - timedelta(days=1) + timedelta(minutes=created_offset_minutes),
        address=address or AddressFields(),
        latitude=lat,
        longitude=lon,
        **overrides,
    )


def denver_address() -> AddressFields:
    return AddressFields(street="123 Main St", city="Denver", state="CO", postal_code="80202")


class StubGeocoder:
    """Answers from a fixed table; raises when told to."""

    provider_name = "mapbox"

    def __init__(self, results=None, configured: bool = True, error: Optional[Exception] = None):
        self.results = results or {}
        self._configured = configured
        self.error = error
        self.calls: list[str] = []

    @property
    def configured(self) -> bool:
        return self._configured

    def geocode(self, address_line: str) -> Optional[GeocodeMatch]:
        self.calls.append(address_line)
        if self.error is not None:
            raise self.error
        point = self.results.get(address_line)
        if point is None:
            return None
        return GeocodeMatch(latitude=point[0], longitude=point[1])


@pytest.fixture
def config() -> Settings:
    return Settings(
        mapbox_geocoding_token="test-geocoding-token",
        mapbox_directions_token="test-directions-token",
        supabase_url=None,
        supabase_key=None,
    )


@pytest.fixture
def store() -> InMemoryDispatchStore:
    return InMemoryDispatchStore()
