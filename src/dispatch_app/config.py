"""Application configuration and settings management."""

from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="DISPATCH_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Dispatch Geocoding & Routing API"
    api_prefix: str = "/api"

    # Mapbox credentials; either may be absent, in which case the service degrades.
    mapbox_geocoding_token: Optional[str] = Field(
        default=None,
        description="Access token for the Mapbox geocoding API.",
    )
    mapbox_directions_token: Optional[str] = Field(
        default=None,
        description="Access token for the Mapbox directions API.",
    )
    mapbox_base_url: str = Field(default="https://api.mapbox.com")
    mapbox_profile: Literal["driving", "driving-traffic", "walking", "cycling"] = Field(
        default="driving",
        description="Mapbox routing profile used for route geometry.",
    )
    mapbox_country: Optional[str] = Field(
        default="US",
        description="ISO country filter applied to geocoding queries.",
    )
    provider_timeout_seconds: float = Field(default=10.0, gt=0.0)
    provider_max_retries: int = Field(default=2, ge=0)
    provider_backoff_seconds: float = Field(default=0.5, ge=0.0)

    # Geocoding job queue
    geocode_backoff_minutes: tuple[int, ...] = Field(
        default=(5, 15, 60, 180, 720, 1440),
        description="Delay before the next attempt, indexed by attempt number.",
    )
    geocode_max_attempts: int = Field(default=6, ge=1)
    geocode_stale_lock_minutes: int = Field(
        default=15,
        ge=1,
        description="Processing jobs locked longer than this are reclaimable.",
    )
    geocode_staleness_days: int = Field(default=90, ge=1)
    backfill_sample_multiplier: int = Field(default=5, ge=1)
    backfill_min_sample: int = Field(default=200, ge=1)
    backfill_max_limit: int = Field(default=500, ge=1)
    sweep_seed_limit: int = Field(default=250, ge=1)
    sweep_process_limit: int = Field(default=250, ge=1)

    # Route suggestion
    route_default_max_stops: int = Field(default=80, ge=1)
    route_hard_max_stops: int = Field(default=150, ge=1)
    route_window_bucket_minutes: int = Field(default=120, ge=1)
    directions_max_coordinates: int = Field(default=25, ge=2)

    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
    )

    @field_validator("mapbox_geocoding_token", "mapbox_directions_token", mode="before")
    @classmethod
    def _blank_token_is_none(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @field_validator("frontend_allowed_origins", mode="before")
    @classmethod
    def _parse_str_tuple_from_env(cls, value: Any) -> tuple[str, ...]:
        """Parse string tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(str(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(str(item) for item in parsed)
            except (json.JSONDecodeError, TypeError):
                pass
            if "," in value:
                return tuple(item.strip() for item in value.split(",") if item.strip())
            if value.strip():
                return (value.strip(),)
        return tuple()

    @field_validator("geocode_backoff_minutes", mode="before")
    @classmethod
    def _parse_int_tuple_from_env(cls, value: Any) -> tuple[int, ...]:
        """Parse integer tuple from environment variable (comma-separated or JSON array)."""
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(int(item) for item in value)
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return tuple(int(item) for item in parsed)
            except (json.JSONDecodeError, TypeError, ValueError):
                pass
            if "," in value:
                return tuple(int(item.strip()) for item in value.split(",") if item.strip())
            if value.strip():
                return (int(value.strip()),)
        raise ValueError("geocode_backoff_minutes must contain at least one delay.")

    @property
    def geocoding_configured(self) -> bool:
        return bool(self.mapbox_geocoding_token)

    @property
    def directions_configured(self) -> bool:
        return bool(self.mapbox_directions_token)


settings = Settings()
