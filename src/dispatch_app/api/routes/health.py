"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, status

from ...config import settings

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root() -> dict:
    """Simple health check endpoint that doesn't require any dependencies."""
    return {"status": "ok"}


def _get_provider_health_checks():
    """Lazy import to avoid startup failures."""
    from ...services.geocoding.mapbox_client import check_health as geocoding_health_check
    from ...services.routing.directions_client import check_health as directions_health_check
    return geocoding_health_check, directions_health_check


@router.get("/health/providers", status_code=status.HTTP_200_OK)
def health_providers() -> dict:
    """Report which providers are configured and whether they answer."""
    geocoding_health_check, directions_health_check = _get_provider_health_checks()
    result = {}
    for name, configured, check in (
        ("geocoding", settings.geocoding_configured, geocoding_health_check),
        ("directions", settings.directions_configured, directions_health_check),
    ):
        if not configured:
            result[name] = {"configured": False, "healthy": False}
            continue
        try:
            result[name] = {"configured": True, "healthy": check()}
        except Exception as e:
            result[name] = {"configured": True, "healthy": False, "error": str(e)}

    from ...db.supabase import get_supabase_client
    result["database"] = {"configured": get_supabase_client() is not None}
    return result
