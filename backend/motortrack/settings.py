from __future__ import annotations

import os
from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _running_in_docker() -> bool:
    """Best-effort check for container execution.

    Used only to pick sensible defaults. Environment variables always win.
    """
    return Path("/.dockerenv").exists() or os.environ.get("RUNNING_IN_DOCKER") == "1"


def _default_osrm_base_url() -> str:
    # In docker-compose, OSRM is reachable by service name "osrm".
    return "http://osrm:5000" if _running_in_docker() else "http://localhost:5000"


def _default_out_dir() -> str:
    return str(Path(__file__).resolve().parents[1] / "out")


class Settings(BaseSettings):
    """Validated settings (env-driven), keeping tunables out of the scoring code."""

    model_config = SettingsConfigDict(
        env_file=(".env", "../.env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    out_dir: str = Field(default_factory=_default_out_dir, alias="OUT_DIR")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_to_file: bool = Field(default=True, alias="LOG_TO_FILE")

    # Road snapping (OSRM /match)
    osrm_base_url: str = Field(default_factory=_default_osrm_base_url, alias="OSRM_BASE_URL")
    osrm_profile: str = Field(default="driving", alias="OSRM_PROFILE")
    road_snap_enabled: bool = Field(default=True, alias="ROAD_SNAP_ENABLED")
    road_snap_timeout_s: float = Field(default=5.0, gt=0.0, le=60.0, alias="ROAD_SNAP_TIMEOUT_S")

    # Directions provider (Google Directions compatible payloads)
    directions_base_url: str = Field(
        default="https://maps.googleapis.com/maps/api/directions/json",
        alias="DIRECTIONS_BASE_URL",
    )
    directions_api_key: str = Field(default="", alias="DIRECTIONS_API_KEY")
    # Per attempt; the request-level bound is derived from this, the retries and the backoff.
    directions_timeout_s: float = Field(default=8.0, gt=0.0, le=60.0, alias="DIRECTIONS_TIMEOUT_S")
    directions_max_retries: int = Field(default=2, ge=1, le=8, alias="DIRECTIONS_MAX_RETRIES")

    max_locations_per_batch: int = Field(default=10_000, ge=2, alias="MAX_LOCATIONS_PER_BATCH")

    # Fuel pricing and signals
    fuel_price_per_liter: float = Field(default=1.5, ge=0.0, alias="FUEL_PRICE_PER_LITER")
    fuel_price_currency: str = Field(default="USD", alias="FUEL_PRICE_CURRENCY")
    low_fuel_threshold_pct: float = Field(default=20.0, ge=0.0, le=100.0, alias="LOW_FUEL_THRESHOLD_PCT")
    very_low_fuel_threshold_pct: float = Field(
        default=10.0,
        ge=0.0,
        le=100.0,
        alias="VERY_LOW_FUEL_THRESHOLD_PCT",
    )
    high_consumption_pct: float = Field(default=50.0, ge=0.0, le=100.0, alias="HIGH_CONSUMPTION_PCT")
    most_efficient_max_fuel_l: float = Field(default=2.0, ge=0.0, alias="MOST_EFFICIENT_MAX_FUEL_L")

    # Route safety heuristic
    safety_heavy_traffic_tier: int = Field(default=3, ge=1, le=5, alias="SAFETY_HEAVY_TRAFFIC_TIER")
    safety_long_distance_m: float = Field(default=50_000.0, gt=0.0, alias="SAFETY_LONG_DISTANCE_M")
    safety_long_duration_s: float = Field(default=3_600.0, gt=0.0, alias="SAFETY_LONG_DURATION_S")
    safety_heavy_traffic_penalty: float = Field(
        default=20.0,
        ge=0.0,
        le=100.0,
        alias="SAFETY_HEAVY_TRAFFIC_PENALTY",
    )
    safety_long_distance_penalty: float = Field(
        default=10.0,
        ge=0.0,
        le=100.0,
        alias="SAFETY_LONG_DISTANCE_PENALTY",
    )
    safety_long_duration_penalty: float = Field(
        default=15.0,
        ge=0.0,
        le=100.0,
        alias="SAFETY_LONG_DURATION_PENALTY",
    )

    @model_validator(mode="after")
    def _check_fuel_thresholds(self) -> "Settings":
        if self.very_low_fuel_threshold_pct > self.low_fuel_threshold_pct:
            raise ValueError("VERY_LOW_FUEL_THRESHOLD_PCT must not exceed LOW_FUEL_THRESHOLD_PCT")
        self.fuel_price_currency = str(self.fuel_price_currency or "USD").strip().upper() or "USD"
        return self


settings = Settings()
