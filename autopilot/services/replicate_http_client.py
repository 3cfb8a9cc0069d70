"""
Direct HTTP client for the Replicate predictions API.

Creates a prediction, polls it until it settles, and maps every failure onto
the provider error taxonomy in `autopilot.errors`. All calls go through the
shared rate limiter; 429 responses are reported to it and never retried here,
while transient server errors (5xx, connection drops) on prediction creation
are retried with exponential backoff.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

import requests

from autopilot.config import Settings
from autopilot.errors import (
    InvalidModelOutput,
    MissingCredentialsError,
    ProviderError,
    ProviderTimeout,
    RateLimited,
    classify_provider_message,
    provider_error_for_status,
)
from autopilot.services.rate_limiter import ProviderRateLimiter

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = ("succeeded", "failed", "canceled")
PENDING_STATUSES = ("starting", "processing")


class _TransientServerError(Exception):
    """Internal marker for errors worth retrying."""


def split_model_ref(model: str) -> tuple[str, Optional[str]]:
    """
    Split `owner/name:version` into (`owner/name`, `version`).

    Official models may be referenced without a version hash, in which case
    the version is None.
    """
    if ":" in model:
        name, version = model.split(":", 1)
        return name, version or None
    return model, None


def extract_output_url(output: Any) -> str:
    """
    Normalize a model output into a single image URL.

    Image models return either a URL string or a list of URLs.
    """
    if isinstance(output, list):
        output = output[0] if output else None
    if isinstance(output, str) and output.strip():
        return output.strip()
    if output is None or isinstance(output, str):
        raise InvalidModelOutput("Model returned an empty result.")
    raise InvalidModelOutput(f"Model returned an unsupported output type: {type(output).__name__}")


class ReplicateHTTPClient:
    """
    Thin, synchronous transport over the Replicate HTTP API.

    The API token is required at construction time so a missing credential
    fails before any adapter is invoked.
    """

    def __init__(
        self,
        api_token: Optional[str],
        *,
        base_url: str = "https://api.replicate.com/v1",
        rate_limiter: Optional[ProviderRateLimiter] = None,
        request_timeout: float = 30.0,
        max_wait: float = 120.0,
        poll_interval: float = 2.0,
        max_retries: int = 2,
        retry_delay: float = 2.0,
        retry_backoff: float = 2.0,
        acquire_timeout: float = 30.0,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not api_token:
            raise MissingCredentialsError("REPLICATE_API_TOKEN is not configured.")

        self.api_token = api_token
        self.base_url = base_url.rstrip("/")
        self.rate_limiter = rate_limiter
        self.request_timeout = request_timeout
        self.max_wait = max_wait
        self.poll_interval = poll_interval
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.retry_backoff = retry_backoff
        self.acquire_timeout = acquire_timeout
        self.session = session or requests.Session()
        self._sleep = sleep
        self._clock = clock

        if not api_token.startswith("r8_"):
            logger.warning("Replicate token does not start with 'r8_'; it may be invalid")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        rate_limiter: Optional[ProviderRateLimiter] = None,
    ) -> "ReplicateHTTPClient":
        return cls(
            settings.replicate_api_token,
            base_url=settings.replicate_base_url,
            rate_limiter=rate_limiter,
            request_timeout=settings.request_timeout_s,
            max_wait=settings.prediction_max_wait_s,
            poll_interval=settings.poll_interval_s,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay_s,
            retry_backoff=settings.retry_backoff,
            acquire_timeout=settings.rate_limit.acquire_timeout_seconds,
        )

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Token {self.api_token}",
            "Content-Type": "application/json",
        }

    def run(self, model: str, model_input: Dict[str, Any]) -> Any:
        """
        Run a model to completion and return its raw output.

        Raises:
            ProviderError: or one of its subclasses for every failure mode.
        """
        for attempt in range(self.max_retries + 1):
            # Every POST, including retries, spends a limiter token.
            if self.rate_limiter is not None and not self.rate_limiter.acquire(timeout=self.acquire_timeout):
                raise RateLimited("Timed out waiting for the provider rate limiter.")
            try:
                prediction = self._create_prediction(model, model_input, attempt)
                break
            except _TransientServerError as exc:
                if attempt >= self.max_retries:
                    logger.error("Replicate failed after %d attempts: %s", attempt + 1, exc)
                    raise ProviderError(
                        f"Provider unavailable after {attempt + 1} attempts: {exc}"
                    ) from exc
                delay = self.retry_delay * (self.retry_backoff ** attempt)
                logger.warning(
                    "Server error (%s) - retrying in %.1fs (attempt %d/%d)",
                    exc,
                    delay,
                    attempt + 1,
                    self.max_retries,
                )
                self._sleep(delay)

        output = self._wait_for_prediction(prediction)
        if self.rate_limiter is not None:
            self.rate_limiter.report_success()
        return output

    def _create_prediction(self, model: str, model_input: Dict[str, Any], attempt: int) -> Dict[str, Any]:
        name, version = split_model_ref(model)
        if version:
            url = f"{self.base_url}/predictions"
            payload: Dict[str, Any] = {"version": version, "input": model_input}
        else:
            url = f"{self.base_url}/models/{name}/predictions"
            payload = {"input": model_input}

        suffix = f" (attempt {attempt + 1})" if attempt > 0 else ""
        logger.info("Creating Replicate prediction for %s%s", name, suffix)

        try:
            response = self.session.post(url, headers=self._headers, json=payload, timeout=self.request_timeout)
        except requests.exceptions.Timeout as exc:
            raise ProviderTimeout(f"Timed out creating prediction for {name}.") from exc
        except requests.exceptions.ConnectionError as exc:
            raise _TransientServerError(f"connection error: {exc}") from exc
        except requests.exceptions.RequestException as exc:
            raise ProviderError(f"Request to provider failed: {exc}") from exc

        self._raise_for_status(response)
        return self._json(response)

    def _wait_for_prediction(self, prediction: Dict[str, Any]) -> Any:
        """Poll a prediction until it settles or `max_wait` elapses."""
        start_time = self._clock()

        while True:
            status = prediction.get("status")

            if status == "succeeded":
                return prediction.get("output")

            if status == "failed":
                error = prediction.get("error") or "Unknown error"
                logger.error("Prediction %s failed: %s", prediction.get("id"), error)
                raise classify_provider_message(str(error))

            if status == "canceled":
                raise ProviderError(f"Prediction {prediction.get('id')} was canceled.")

            if status not in PENDING_STATUSES:
                raise InvalidModelOutput(f"Unknown prediction status: {status!r}")

            if self._clock() - start_time >= self.max_wait:
                self._cancel(prediction)
                logger.error("Prediction timed out after %.0fs", self.max_wait)
                raise ProviderTimeout(f"Prediction timed out after {self.max_wait:.0f}s.")

            self._sleep(self.poll_interval)
            prediction = self._poll(prediction)

    def _poll(self, prediction: Dict[str, Any]) -> Dict[str, Any]:
        url = (prediction.get("urls") or {}).get("get")
        if not url:
            raise InvalidModelOutput("Prediction response did not include a polling URL.")
        try:
            response = self.session.get(url, headers=self._headers, timeout=self.request_timeout)
        except requests.exceptions.Timeout as exc:
            raise ProviderTimeout("Timed out polling prediction status.") from exc
        except requests.exceptions.RequestException as exc:
            raise ProviderError(f"Failed to poll prediction status: {exc}") from exc

        try:
            self._raise_for_status(response)
        except _TransientServerError as exc:
            raise ProviderError(f"Provider error while polling: {exc}") from exc
        return self._json(response)

    def _cancel(self, prediction: Dict[str, Any]) -> None:
        url = (prediction.get("urls") or {}).get("cancel")
        if not url:
            return
        try:
            self.session.post(url, headers=self._headers, timeout=self.request_timeout)
        except requests.exceptions.RequestException as exc:
            logger.warning("Failed to cancel prediction %s: %s", prediction.get("id"), exc)

    def _raise_for_status(self, response: requests.Response) -> None:
        status_code = response.status_code
        if status_code < 400:
            return

        detail = self._error_detail(response)
        if status_code >= 500:
            raise _TransientServerError(f"{status_code}: {detail}")

        if status_code == 429 and self.rate_limiter is not None:
            self.rate_limiter.report_429()

        logger.error("Replicate API error (%d): %s", status_code, detail)
        raise provider_error_for_status(status_code, f"Provider returned {status_code}: {detail}")

    @staticmethod
    def _error_detail(response: requests.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text[:200]
        if isinstance(body, dict):
            return str(body.get("detail") or body.get("title") or body)
        return str(body)

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise InvalidModelOutput("Provider returned a non-JSON response.") from exc
        if not isinstance(body, dict):
            raise InvalidModelOutput("Provider returned an unexpected response body.")
        return body
