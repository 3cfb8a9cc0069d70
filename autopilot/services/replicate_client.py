"""
Replicate transport built on the official `replicate` package.

Alternative to `ReplicateHTTPClient`, selected with
AUTOPILOT_PROVIDER_TRANSPORT=sdk. Predictions are created and polled
explicitly so every call is bounded by the configured maximum wait.
"""

import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx
import replicate
from replicate.exceptions import ModelError, ReplicateError

from autopilot.config import Settings
from autopilot.errors import (
    MissingCredentialsError,
    ProviderError,
    ProviderTimeout,
    RateLimited,
    classify_provider_message,
    provider_error_for_status,
)
from autopilot.services.rate_limiter import ProviderRateLimiter
from autopilot.services.replicate_http_client import split_model_ref

logger = logging.getLogger(__name__)


class ReplicateSDKClient:
    """
    Client for running Replicate models through the SDK.

    Exposes the same `run(model, model_input)` contract as the HTTP client.
    """

    def __init__(
        self,
        api_token: Optional[str],
        *,
        rate_limiter: Optional[ProviderRateLimiter] = None,
        request_timeout: float = 30.0,
        max_wait: float = 120.0,
        poll_interval: float = 2.0,
        acquire_timeout: float = 30.0,
        client: Optional[Any] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize the SDK transport.

        Args:
            api_token: Replicate API token. Required.
            rate_limiter: Shared limiter consulted before each prediction.
            client: Pre-built `replicate.Client`, mainly for tests.
        """
        if not api_token:
            raise MissingCredentialsError("REPLICATE_API_TOKEN is not configured.")

        self.api_token = api_token
        self.rate_limiter = rate_limiter
        self.max_wait = max_wait
        self.poll_interval = poll_interval
        self.acquire_timeout = acquire_timeout
        self._sleep = sleep
        self._clock = clock
        self.client = client or replicate.Client(api_token=api_token, timeout=request_timeout)
        logger.info("Replicate SDK client initialized")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        rate_limiter: Optional[ProviderRateLimiter] = None,
    ) -> "ReplicateSDKClient":
        return cls(
            settings.replicate_api_token,
            rate_limiter=rate_limiter,
            request_timeout=settings.request_timeout_s,
            max_wait=settings.prediction_max_wait_s,
            poll_interval=settings.poll_interval_s,
            acquire_timeout=settings.rate_limit.acquire_timeout_seconds,
        )

    def run(self, model: str, model_input: Dict[str, Any]) -> Any:
        """Run a model to completion and return its raw output."""
        if self.rate_limiter is not None and not self.rate_limiter.acquire(timeout=self.acquire_timeout):
            raise RateLimited("Timed out waiting for the provider rate limiter.")

        name, version = split_model_ref(model)
        logger.info("Calling Replicate model via SDK: %s", name)

        try:
            if version:
                prediction = self.client.predictions.create(version=version, input=model_input)
            else:
                prediction = self.client.models.predictions.create(model=name, input=model_input)
            output = self._wait(prediction)
        except ModelError as exc:
            raise classify_provider_message(str(exc)) from exc
        except ReplicateError as exc:
            status = getattr(exc, "status", None)
            if status == 429 and self.rate_limiter is not None:
                self.rate_limiter.report_429()
            if status:
                raise provider_error_for_status(status, str(exc)) from exc
            raise classify_provider_message(str(exc)) from exc
        except httpx.TimeoutException as exc:
            raise ProviderTimeout(f"Timed out talking to Replicate for {name}.") from exc
        except httpx.HTTPError as exc:
            raise ProviderError(f"Request to provider failed: {exc}") from exc

        if self.rate_limiter is not None:
            self.rate_limiter.report_success()
        return output

    def _wait(self, prediction: Any) -> Any:
        start_time = self._clock()
        while prediction.status not in ("succeeded", "failed", "canceled"):
            if self._clock() - start_time >= self.max_wait:
                try:
                    prediction.cancel()
                except (ReplicateError, httpx.HTTPError) as exc:
                    logger.warning("Failed to cancel prediction %s: %s", prediction.id, exc)
                raise ProviderTimeout(f"Prediction timed out after {self.max_wait:.0f}s.")
            self._sleep(self.poll_interval)
            prediction.reload()

        if prediction.status == "failed":
            logger.error("Prediction %s failed: %s", prediction.id, prediction.error)
            raise classify_provider_message(str(prediction.error or "Unknown error"))
        if prediction.status == "canceled":
            raise ProviderError(f"Prediction {prediction.id} was canceled.")
        return prediction.output
