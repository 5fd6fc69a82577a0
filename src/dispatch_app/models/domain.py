"""Domain models for service stops, geocoding jobs and their address sources."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class DispatchPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"

    @classmethod
    def parse(cls, value: Optional[str]) -> "DispatchPriority":
        """Unknown or missing priorities are treated as normal."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.NORMAL


class GeocodeStatus(str, Enum):
    PENDING = "pending"
    MISSING_ADDRESS = "missing_address"
    GEOCODED = "geocoded"
    FAILED = "failed"


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    RETRY = "retry"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_JOB_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.RETRY, JobStatus.PROCESSING})
CLAIMABLE_JOB_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.RETRY})


class GeocodeErrorCode(str, Enum):
    """Outcome tags recorded on a job's last error."""

    MISSING_ADDRESS = "missing_address"
    PROVIDER_UNAVAILABLE = "provider_unavailable"
    NO_RESULT = "no_result"
    PROVIDER_EXCEPTION = "provider_exception"
    STOP_NOT_FOUND = "stop_not_found"


@dataclass(slots=True)
class AddressFields:
    street: Optional[str] = None
    line2: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None


@dataclass(slots=True)
class CustomerProfile:
    """Customer record consulted only as an address fallback."""

    customer_id: str
    address: AddressFields = field(default_factory=AddressFields)


@dataclass(slots=True)
class QuoteRecord:
    """Quote request consulted only as the last address fallback."""

    quote_id: str
    address: AddressFields = field(default_factory=AddressFields)


@dataclass(slots=True)
class ServiceStop:
    """A single service visit that needs a pin on the map and a place in the route."""

    stop_id: str
    tenant_id: str
    service_date: str
    created_at: datetime
    status: str = "scheduled"
    priority: DispatchPriority = DispatchPriority.NORMAL
    window_start: Optional[str] = None
    window_end: Optional[str] = None
    manual_sequence: Optional[int] = None
    customer_id: Optional[str] = None
    quote_id: Optional[str] = None
    customer_name: Optional[str] = None
    service_type: Optional[str] = None
    estimated_duration_minutes: Optional[int] = None
    address: AddressFields = field(default_factory=AddressFields)
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    geocode_status: Optional[GeocodeStatus] = None
    geocoded_at: Optional[datetime] = None
    provider: Optional[str] = None

    @property
    def has_coordinates(self) -> bool:
        return has_coordinates(self.latitude, self.longitude)

    @property
    def coordinates(self) -> Optional[tuple[float, float]]:
        if not self.has_coordinates:
            return None
        return (float(self.latitude), float(self.longitude))


@dataclass(slots=True)
class GeocodeJob:
    """Durable geocoding work item; one row per attempt cycle, never deleted."""

    job_id: str
    stop_id: str
    tenant_id: str
    status: JobStatus
    next_attempt_at: datetime
    created_at: datetime
    attempts: int = 0
    reason: Optional[str] = None
    address_line: Optional[str] = None
    address_hash: Optional[str] = None
    last_error: Optional[str] = None
    error_code: Optional[GeocodeErrorCode] = None
    locked_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_JOB_STATUSES


@dataclass(slots=True)
class Assignment:
    stop_id: str
    role: str = "primary"
    status: str = "assigned"
    cleaner_id: Optional[str] = None
    crew_id: Optional[str] = None


@dataclass(slots=True)
class ChecklistItem:
    stop_id: str
    is_completed: bool = False


@dataclass(slots=True)
class Cleaner:
    cleaner_id: str
    first_name: str
    last_name: str
    active: bool = True

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


def has_coordinates(latitude: Optional[float], longitude: Optional[float]) -> bool:
    """Return True when both values are finite numbers."""

    if latitude is None or longitude is None:
        return False
    try:
        lat, lon = float(latitude), float(longitude)
    except (TypeError, ValueError):
        return False
    return lat == lat and lon == lon and abs(lat) != float("inf") and abs(lon) != float("inf")


def parse_window_minutes(value: Optional[str]) -> Optional[int]:
    """Minutes after midnight for an ``HH:MM`` string, None when unset or invalid."""
    if not value:
        return None
    try:
        hours_text, minutes_text = value.strip().split(":")[:2]
        hours, minutes = int(hours_text), int(minutes_text)
    except ValueError:
        return None
    if not (0 <= hours <= 23 and 0 <= minutes <= 59):
        return None
    return hours * 60 + minutes
