"""Application configuration and settings management."""

from typing import Any, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="ROUTEMAX_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "RouteMax API"
    api_prefix: str = "/api"
    log_level: str = Field(default="INFO", description="Root logging level.")
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

    # Google Routes API
    google_maps_api_key: Optional[str] = Field(
        default=None,
        description="Server-side Google Maps Platform key used for the Routes API.",
    )
    routes_api_url: str = "https://routes.googleapis.com/directions/v2:computeRoutes"
    optimizer_timeout_seconds: float = Field(default=10.0, gt=0.0)
    optimizer_max_retries: int = Field(default=3, ge=1, description="Total attempts per optimizer call.")
    optimizer_backoff_seconds: float = Field(default=1.0, ge=0.0)
    optimizer_max_backoff_seconds: float = Field(default=8.0, ge=0.0)
    optimizer_backoff_multiplier: float = Field(default=2.0, ge=1.0)
    max_waypoints: int = Field(default=25, ge=1, description="Hard cap on intermediate waypoints per call.")

    # Route construction
    max_prune_attempts: int = Field(default=10, ge=1)
    default_visit_duration_minutes: int = Field(default=20, ge=0)
    default_opening_time: str = "09:00:00"
    default_closing_time: str = "17:00:00"
    default_corridor_radius_km: float = Field(default=5.0, gt=0.0)
    default_max_suggestions: int = Field(default=20, ge=1)
    max_prospect_candidates: int = Field(default=100, ge=1)
    loop_tolerance_degrees: float = Field(default=0.0001, ge=0.0)
    lunch_break_max_offset_minutes: Optional[int] = Field(
        default=None,
        ge=0,
        description="Skip the lunch break when no stop arrives within this many minutes of the target.",
    )

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

    @field_validator("default_opening_time", "default_closing_time")
    @classmethod
    def _validate_clock_time(cls, value: str) -> str:
        parts = value.split(":")
        if len(parts) not in (2, 3) or not all(part.isdigit() for part in parts):
            raise ValueError(f"Expected HH:MM or HH:MM:SS, got '{value}'")
        hours, minutes = int(parts[0]), int(parts[1])
        if not (0 <= hours < 24 and 0 <= minutes < 60):
            raise ValueError(f"Clock time out of range: '{value}'")
        return value


settings = Settings()
