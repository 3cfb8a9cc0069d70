"""
Error taxonomy for the Autopilot pipeline.

Three families matter to callers:

- `InvalidInputError`: malformed image or plan. Raised before orchestration
  starts and always fatal to the request.
- `ProviderError`: anything an external transformation provider raised.
  Recovered per step by the orchestrator; surfaced directly only by the
  single-step endpoints.
- `InternalError`: everything unexpected.
"""

from __future__ import annotations


class AutopilotError(RuntimeError):
    """Base class for all errors raised by the Autopilot service."""


class InvalidInputError(AutopilotError):
    """Raised when a request carries an unusable image or plan."""


class InvalidImageError(InvalidInputError):
    """Raised when an image payload is missing, empty, or of an unsupported type."""


class InvalidPlanError(InvalidInputError):
    """Raised when an enhancement plan violates its priority invariant."""


class MissingCredentialsError(AutopilotError):
    """Raised when no provider API token is configured."""


class InternalError(AutopilotError):
    """Raised for failures that indicate a bug rather than bad input."""


class ProviderError(AutopilotError):
    """
    Raised by a provider adapter when a transformation could not be produced.

    `kind` is a stable, machine-readable identifier that ends up in
    `StepResult.error_kind` and in API error payloads.
    """

    kind = "provider_error"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class QuotaExceeded(ProviderError):
    kind = "quota_exceeded"


class RateLimited(ProviderError):
    kind = "rate_limited"


class AuthenticationFailed(ProviderError):
    kind = "authentication_failed"


class InvalidModelOutput(ProviderError):
    kind = "invalid_model_output"


class ProviderTimeout(ProviderError):
    kind = "timeout"


def classify_provider_message(message: str, *, status_code: int | None = None) -> ProviderError:
    """
    Map a raw provider error message onto the matching ProviderError subclass.

    Replicate reports most failures as free text, so the triage is done on
    substrings the same way for both transports.
    """
    lowered = (message or "").lower()
    if "insufficient_quota" in lowered or "insufficient credit" in lowered:
        return QuotaExceeded(message, status_code=status_code)
    if "rate_limit" in lowered or "rate limit" in lowered or "too many requests" in lowered:
        return RateLimited(message, status_code=status_code)
    if "authentication" in lowered or "unauthenticated" in lowered or "invalid token" in lowered:
        return AuthenticationFailed(message, status_code=status_code)
    if "timed out" in lowered or "timeout" in lowered:
        return ProviderTimeout(message, status_code=status_code)
    return ProviderError(message, status_code=status_code)


def provider_error_for_status(status_code: int, message: str) -> ProviderError:
    """Map an HTTP status code returned by the provider API to an error kind."""
    if status_code in (401, 403):
        return AuthenticationFailed(message, status_code=status_code)
    if status_code == 402:
        return QuotaExceeded(message, status_code=status_code)
    if status_code == 429:
        return RateLimited(message, status_code=status_code)
    if status_code in (408, 504):
        return ProviderTimeout(message, status_code=status_code)
    return classify_provider_message(message, status_code=status_code)
