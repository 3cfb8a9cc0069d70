from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Iterable

from fastapi import Request

from autopilot.api.v1.schemas import QualityIssue, StepType
from autopilot.config import Settings
from autopilot.errors import AutopilotError, InternalError
from autopilot.models.pipeline import (
    AnalysisResult,
    DimensionScores,
    EnhancementPlan,
    ImagePayload,
    PipelineResult,
    StepConfig,
)
from autopilot.services.analysis import analyze_image, basic_quality_score, score_quality
from autopilot.services.ingestion import validate_image
from autopilot.services.orchestrator import AutopilotOrchestrator
from autopilot.services.planning import plan_enhancements
from autopilot.services.providers import Transport, build_adapters, build_transport
from autopilot.services.rate_limiter import ProviderRateLimiter
from autopilot.services.rating import rate_image

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AnalyzeOutcome:
    image: ImagePayload
    analysis: AnalysisResult
    scores: DimensionScores
    plan: EnhancementPlan
    basic_score: float


class AutopilotService:
    """
    Entry points for the analyze and enhance flows.

    Holds only configuration and the process-wide rate limiter; every domain
    object it creates belongs to the calling request.
    """

    def __init__(self, settings: Settings, rate_limiter: ProviderRateLimiter | None = None) -> None:
        self._settings = settings
        self._rate_limiter = rate_limiter

    @property
    def settings(self) -> Settings:
        return self._settings

    def load_image(self, image_base64: str | None) -> ImagePayload:
        return validate_image(image_base64, max_bytes=self._settings.max_image_bytes)

    def transport(self) -> Transport:
        """Build a provider transport; fails fast without credentials."""
        return build_transport(self._settings, self._rate_limiter)

    def analyze(
        self,
        image_base64: str | None,
        quality_issues: Iterable[QualityIssue] | None = None,
    ) -> AnalyzeOutcome:
        """Validate, analyze, score and plan. Pure: no provider calls."""
        image = self.load_image(image_base64)
        try:
            analysis = analyze_image(image, quality_issues)
            scores = score_quality(analysis)
            plan = plan_enhancements(scores)
            basic_score = basic_quality_score(analysis)
        except Exception as exc:
            logger.exception("Scoring failed for a %d-byte %s image", image.byte_size, image.media_type)
            raise InternalError("Image scoring failed.") from exc
        return AnalyzeOutcome(
            image=image,
            analysis=analysis,
            scores=scores,
            plan=plan,
            basic_score=basic_score,
        )

    def enhance(
        self,
        image_base64: str | None,
        plan: EnhancementPlan,
        cancel_event: threading.Event | None = None,
    ) -> PipelineResult:
        """
        Execute `plan` against the image.

        Credentials are checked before the image, so a misconfigured server
        is reported as such even for bad input.
        """
        transport = self.transport()
        image = self.load_image(image_base64)
        orchestrator = AutopilotOrchestrator(build_adapters(transport))
        try:
            return orchestrator.run(image.data_uri, plan, cancel_event=cancel_event)
        except AutopilotError:
            raise
        except Exception as exc:
            logger.exception("Autopilot run aborted by an unexpected error")
            raise InternalError("Enhancement pipeline failed.") from exc

    def enhance_single(self, image_base64: str | None, step_type: StepType, config: StepConfig) -> str:
        """Run one enhancement step directly; provider errors propagate."""
        transport = self.transport()
        image = self.load_image(image_base64)
        adapter = build_adapters(transport)[step_type]
        return adapter.invoke(image.data_uri, config)

    def rate(self, image_base64: str | None) -> float:
        transport = self.transport()
        image = self.load_image(image_base64)
        return rate_image(transport, image.data_uri)


def get_autopilot_service(request: Request) -> AutopilotService:
    """
    Return the application's service instance.

    Resolved through FastAPI dependency injection so tests can override it.
    """
    return request.app.state.autopilot_service
