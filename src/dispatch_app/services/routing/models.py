"""Routing domain models."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import List, Optional

FALLBACK_PROVIDER = "fallback"


@dataclass(slots=True)
class DirectionsRoute:
    geometry: List[tuple[float, float]]
    distance_meters: float
    duration_seconds: float


@dataclass(slots=True)
class RouteGeometry:
    coordinates: List[tuple[float, float]]
    distance_meters: Optional[float]
    duration_seconds: Optional[float]
    provider: str
    requests: int = 0


@dataclass(slots=True)
class RouteSuggestion:
    """Ephemeral visiting order for one day; never persisted."""

    date: str
    ordered_stop_ids: List[str]
    skipped_stop_ids: List[str]
    unmapped_stop_ids: List[str]
    coordinates: List[tuple[float, float]]
    distance_meters: Optional[float]
    duration_seconds: Optional[float]
    provider: str
    token_configured: bool
    directions_requests: int = 0
    metadata: dict = field(default_factory=dict)

    def as_dict(self) -> dict:
        return asdict(self)
