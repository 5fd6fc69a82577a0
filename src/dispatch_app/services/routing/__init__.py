"""Route suggestion: ordering heuristic, directions client and orchestration."""

from .models import FALLBACK_PROVIDER, RouteSuggestion
from .service import apply_route_order, build_route_engine, suggest_route
from .suggestion import RouteSuggestionEngine

__all__ = [
    "FALLBACK_PROVIDER",
    "RouteSuggestion",
    "RouteSuggestionEngine",
    "apply_route_order",
    "build_route_engine",
    "suggest_route",
]
