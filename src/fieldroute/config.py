"""Application configuration and settings management."""

from typing import Any, Literal, Optional

import json
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration loaded from environment variables or defaults."""

    model_config = SettingsConfigDict(
        env_prefix="FIELDROUTE_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
    )

    app_name: str = "Field Route Planner API"
    api_prefix: str = "/api"
    frontend_allowed_origins: tuple[str, ...] = Field(
        default=(
            "http://localhost:5173",
            "http://127.0.0.1:5173",
        ),
        description="Permitted web origins for browser clients (CORS).",
    )

    # Routing provider
    routing_provider: Literal["osrm", "google", "none"] = Field(
        default="none",
        description="External provider used for road-network ordering and legs.",
    )
    osrm_base_url: Optional[str] = Field(
        default=None,
        description="Base URL for the OSRM routing service (e.g., http://localhost:5000).",
    )
    osrm_profile: Literal["driving", "driving-hgv"] = Field(
        default="driving",
        description="OSRM profile to use when computing travel times.",
    )
    google_api_key: Optional[str] = Field(default=None, description="Google Routes API key.")
    google_routes_url: str = Field(
        default="https://routes.googleapis.com/directions/v2:computeRoutes",
    )
    google_language_code: str = Field(default="en")
    provider_max_retries: int = Field(default=3, ge=0)
    provider_backoff_seconds: float = Field(default=1.0, ge=0.0)
    provider_timeout_seconds: float = Field(default=30.0, gt=0.0)
    provider_chunk_size: int = Field(
        default=96,
        ge=2,
        description="Maximum waypoints per ordering request before the request is chunked.",
    )

    # AI assistant
    openai_api_key: Optional[str] = Field(default=None, description="Key for the chat completions API.")
    openai_base_url: str = Field(default="https://api.openai.com/v1")
    openai_model: str = Field(default="gpt-4o-mini")
    openai_temperature: float = Field(default=0.2, ge=0.0, le=2.0)
    openai_timeout_seconds: float = Field(default=60.0, gt=0.0)
    openai_max_retries: int = Field(default=2, ge=0)
    assistant_max_rounds: int = Field(default=5, ge=1)

    # Planning limits
    max_waypoints: int = Field(default=100, ge=1)
    min_per_route: int = Field(default=1, ge=1)
    max_per_route: int = Field(default=50, ge=1)

    # Work day
    default_start_time: str = Field(default="08:00")
    work_day_end: str = Field(default="17:30", description="Departures after this time are overtime.")
    lunch_start: str = Field(default="12:00")
    lunch_duration_minutes: int = Field(default=60, ge=0)
    min_work_before_lunch_minutes: int = Field(
        default=10,
        ge=0,
        description="Minimum work that must fit before lunch for a job to be split around it.",
    )
    late_tolerance_minutes: int = Field(default=15, ge=0)

    # Travel estimates
    road_distance_factor: float = Field(default=1.3, gt=0.0)
    average_speed_kmh: float = Field(default=30.0, gt=0.0)

    # Clustering and balancing
    cluster_max_iterations: int = Field(default=20, ge=1)
    cluster_tolerance_degrees: float = Field(default=0.001, ge=0.0)
    cluster_seeding: Literal["kmeans++", "farthest"] = Field(default="kmeans++")
    cluster_seed: Optional[int] = Field(
        default=None,
        description="Pin the clustering random source. Unset means a fresh seed per run.",
    )
    target_cv_percent: float = Field(default=20.0, ge=0.0)
    balance_max_iterations: int = Field(default=100, ge=0)

    # Jobs
    job_workers: int = Field(default=2, ge=1)

    # Supabase configuration
    supabase_url: Optional[str] = Field(
        default=None,
        description="Supabase project URL (e.g., https://xxx.supabase.co).",
    )
    supabase_key: Optional[str] = Field(
        default=None,
        description="Supabase service role key for backend operations.",
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

    @field_validator("default_start_time", "work_day_end", "lunch_start")
    @classmethod
    def _validate_clock(cls, value: str) -> str:
        parts = value.split(":")
        if len(parts) != 2 or not all(part.isdigit() for part in parts):
            raise ValueError(f"Expected HH:MM, got '{value}'")
        hours, minutes = int(parts[0]), int(parts[1])
        if hours > 23 or minutes > 59:
            raise ValueError(f"Expected HH:MM, got '{value}'")
        return f"{hours:02d}:{minutes:02d}"


settings = Settings()
