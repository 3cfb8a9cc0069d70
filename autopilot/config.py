from __future__ import annotations

from copy import deepcopy
import os
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class RateLimitConfig(BaseModel):
    model_config = ConfigDict(validate_default=True)

    # Replicate's credit-only tier allows 6 requests/minute; stay below it.
    max_requests_per_minute: int = Field(
        default_factory=lambda: int(os.getenv("AUTOPILOT_RATE_LIMIT_PER_MINUTE", "5")), ge=1
    )
    burst_capacity: int = Field(
        default_factory=lambda: int(os.getenv("AUTOPILOT_RATE_LIMIT_BURST", "3")), ge=1
    )
    min_interval_seconds: float = Field(
        default_factory=lambda: float(os.getenv("AUTOPILOT_RATE_LIMIT_MIN_INTERVAL_S", "1.2")),
        ge=0.0,
    )
    acquire_timeout_seconds: float = Field(default=30.0, ge=0.0)


class Settings(BaseModel):
    model_config = ConfigDict(validate_default=True)

    replicate_api_token: str | None = Field(
        default_factory=lambda: os.getenv("REPLICATE_API_TOKEN") or None
    )
    replicate_base_url: str = Field(
        default_factory=lambda: os.getenv("REPLICATE_API_BASE_URL", "https://api.replicate.com/v1")
    )
    provider_transport: Literal["http", "sdk"] = Field(
        default_factory=lambda: os.getenv("AUTOPILOT_PROVIDER_TRANSPORT", "http")
    )

    request_timeout_s: float = Field(
        default_factory=lambda: float(os.getenv("AUTOPILOT_REQUEST_TIMEOUT_S", "30")),
        gt=0.0,
        le=300.0,
    )
    prediction_max_wait_s: float = Field(
        default_factory=lambda: float(os.getenv("AUTOPILOT_PREDICTION_MAX_WAIT_S", "120")),
        gt=0.0,
        le=900.0,
    )
    poll_interval_s: float = Field(
        default_factory=lambda: float(os.getenv("AUTOPILOT_POLL_INTERVAL_S", "2")),
        gt=0.0,
        le=30.0,
    )
    max_retries: int = Field(
        default_factory=lambda: int(os.getenv("AUTOPILOT_MAX_RETRIES", "2")), ge=0, le=5
    )
    retry_delay_s: float = Field(default=2.0, ge=0.0)
    retry_backoff: float = Field(default=2.0, ge=1.0)

    max_image_bytes: int = Field(
        default_factory=lambda: int(os.getenv("AUTOPILOT_MAX_IMAGE_BYTES", str(20 * 1024 * 1024))),
        ge=1,
    )
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))

    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)

    @property
    def has_credentials(self) -> bool:
        return bool(self.replicate_api_token)

    def masked_token(self) -> str:
        if not self.replicate_api_token:
            return "<not set>"
        return f"{self.replicate_api_token[:6]}..."


def deep_merge(base: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    merged = deepcopy(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def merge_settings(current: Settings, patch: dict[str, Any]) -> Settings:
    merged_dict = deep_merge(current.model_dump(), patch)
    return Settings.model_validate(merged_dict)


def load_settings() -> Settings:
    """Build settings from the current process environment."""
    return Settings()
