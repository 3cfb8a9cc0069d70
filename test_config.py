"""Tests for environment-driven settings."""

import pytest
from pydantic import ValidationError

from autopilot.config import RateLimitConfig, Settings, deep_merge, merge_settings

ENV_VARS = (
    "REPLICATE_API_TOKEN",
    "REPLICATE_API_BASE_URL",
    "AUTOPILOT_PROVIDER_TRANSPORT",
    "AUTOPILOT_REQUEST_TIMEOUT_S",
    "AUTOPILOT_PREDICTION_MAX_WAIT_S",
    "AUTOPILOT_POLL_INTERVAL_S",
    "AUTOPILOT_MAX_RETRIES",
    "AUTOPILOT_MAX_IMAGE_BYTES",
    "AUTOPILOT_RATE_LIMIT_PER_MINUTE",
    "AUTOPILOT_RATE_LIMIT_BURST",
    "AUTOPILOT_RATE_LIMIT_MIN_INTERVAL_S",
    "LOG_LEVEL",
)


@pytest.fixture
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


def test_defaults_match_credit_only_tier(clean_env):
    settings = Settings()
    assert settings.replicate_api_token is None
    assert settings.has_credentials is False
    assert settings.provider_transport == "http"
    assert settings.replicate_base_url == "https://api.replicate.com/v1"
    assert settings.rate_limit.max_requests_per_minute == 5
    assert settings.rate_limit.burst_capacity == 3
    assert settings.rate_limit.min_interval_seconds == 1.2
    assert settings.max_image_bytes == 20 * 1024 * 1024


def test_values_are_read_from_environment(clean_env):
    clean_env.setenv("REPLICATE_API_TOKEN", "r8_abcdef123456")
    clean_env.setenv("AUTOPILOT_PROVIDER_TRANSPORT", "sdk")
    clean_env.setenv("AUTOPILOT_RATE_LIMIT_PER_MINUTE", "50")
    clean_env.setenv("AUTOPILOT_POLL_INTERVAL_S", "0.5")

    settings = Settings()
    assert settings.has_credentials is True
    assert settings.provider_transport == "sdk"
    assert settings.rate_limit.max_requests_per_minute == 50
    assert settings.poll_interval_s == 0.5


def test_empty_token_counts_as_missing(clean_env):
    clean_env.setenv("REPLICATE_API_TOKEN", "")
    assert Settings().has_credentials is False


def test_unknown_transport_is_rejected(clean_env):
    clean_env.setenv("AUTOPILOT_PROVIDER_TRANSPORT", "grpc")
    with pytest.raises(ValidationError):
        Settings()


def test_out_of_range_values_are_rejected(clean_env):
    with pytest.raises(ValidationError):
        Settings(max_retries=9)
    with pytest.raises(ValidationError):
        RateLimitConfig(burst_capacity=0)


def test_masked_token_never_shows_full_secret(clean_env):
    assert Settings().masked_token() == "<not set>"
    masked = Settings(replicate_api_token="r8_supersecretvalue").masked_token()
    assert masked == "r8_sup..."
    assert "secret" not in masked


def test_deep_merge_keeps_untouched_nested_keys():
    base = {"a": 1, "nested": {"x": 1, "y": 2}}
    merged = deep_merge(base, {"nested": {"y": 3}})
    assert merged == {"a": 1, "nested": {"x": 1, "y": 3}}
    assert base["nested"]["y"] == 2


def test_merge_settings_applies_nested_patch(clean_env):
    settings = merge_settings(Settings(), {"rate_limit": {"burst_capacity": 6}, "max_retries": 0})
    assert settings.rate_limit.burst_capacity == 6
    assert settings.rate_limit.max_requests_per_minute == 5
    assert settings.max_retries == 0


def test_merge_settings_validates_result(clean_env):
    with pytest.raises(ValidationError):
        merge_settings(Settings(), {"provider_transport": "carrier-pigeon"})
