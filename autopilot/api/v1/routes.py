import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, status

from autopilot.api.v1.schemas import (
    AnalysisSummary,
    AutopilotAnalyzeRequest,
    AutopilotAnalyzeResponse,
    AutopilotEnhanceRequest,
    AutopilotEnhanceResponse,
    BasicAnalyzeResponse,
    DetailEnhanceRequest,
    DetailRecommendation,
    EnhanceResponse,
    ImageRequest,
    PipelineResultModel,
    QualityFactors,
    QualityScores,
    RateResponse,
    Recommendations,
    StepResultModel,
    StepType,
    ToneEnhanceRequest,
    ToneRecommendation,
    UpscaleRecommendation,
    UpscaleRequest,
)
from autopilot.errors import (
    AuthenticationFailed,
    InternalError,
    InvalidInputError,
    MissingCredentialsError,
    ProviderError,
    ProviderTimeout,
    QuotaExceeded,
    RateLimited,
)
from autopilot.models.pipeline import (
    AnalysisResult,
    DetailStep,
    EnhancementPlan,
    PipelineResult,
    StepConfig,
    ToneStep,
    UpscaleStep,
)
from autopilot.services.autopilot_service import AutopilotService, get_autopilot_service

router = APIRouter(prefix="/api/v1")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _http_error(exc: Exception) -> HTTPException:
    """Translate a domain error into the HTTP error a client should see."""
    if isinstance(exc, InvalidInputError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, MissingCredentialsError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Provider credentials are not configured (REPLICATE_API_TOKEN).",
        )
    if isinstance(exc, ProviderError):
        if isinstance(exc, QuotaExceeded):
            code = status.HTTP_402_PAYMENT_REQUIRED
        elif isinstance(exc, RateLimited):
            code = status.HTTP_429_TOO_MANY_REQUESTS
        elif isinstance(exc, AuthenticationFailed):
            code = status.HTTP_401_UNAUTHORIZED
        elif isinstance(exc, ProviderTimeout):
            code = status.HTTP_504_GATEWAY_TIMEOUT
        else:
            code = status.HTTP_502_BAD_GATEWAY
        return HTTPException(status_code=code, detail={"error": str(exc), "kind": exc.kind})
    if isinstance(exc, InternalError):
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": str(exc), "kind": "internal_error"},
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error.")


def _analysis_summary(analysis: AnalysisResult) -> AnalysisSummary:
    return AnalysisSummary(
        format=analysis.format,
        byte_size=analysis.byte_size,
        estimated_pixel_count=analysis.estimated_pixel_count,
        quality_factors=QualityFactors(resolution=analysis.resolution, file_size=analysis.file_size),
        quality_issues=sorted(analysis.quality_issue_tags, key=lambda tag: tag.value),
    )


def plan_to_schema(plan: EnhancementPlan) -> Recommendations:
    return Recommendations(
        tone=ToneRecommendation(**plan.tone.params()) if plan.tone else None,
        detail=DetailRecommendation(**plan.detail.params()) if plan.detail else None,
        upscale=UpscaleRecommendation(**plan.upscale.params()) if plan.upscale else None,
        priority=list(plan.priority),
    )


def plan_from_schema(recommendations: Recommendations) -> EnhancementPlan:
    tone = recommendations.tone
    detail = recommendations.detail
    upscale = recommendations.upscale
    return EnhancementPlan(
        tone=ToneStep(enabled=tone.enabled, type=tone.type, intensity=tone.intensity) if tone else None,
        detail=DetailStep(enabled=detail.enabled, type=detail.type, strength=detail.strength) if detail else None,
        upscale=(
            UpscaleStep(
                enabled=upscale.enabled,
                scale=upscale.scale,
                model=upscale.model,
                face_enhance=upscale.face_enhance,
            )
            if upscale
            else None
        ),
        priority=list(recommendations.priority),
    )


def pipeline_to_schema(result: PipelineResult) -> PipelineResultModel:
    return PipelineResultModel(
        original=result.original,
        final=result.final,
        cancelled=result.cancelled,
        steps=[
            StepResultModel(
                type=step.type,
                config=step.config,
                status=step.status,
                result=step.result,
                error=step.error,
                error_kind=step.error_kind,
                processing_time_ms=step.processing_time_ms,
                success=step.success,
            )
            for step in result.steps
        ],
    )


@router.get("/health", tags=["health"])
async def health_check() -> dict:
    """API v1 health check endpoint."""
    return {"status": "ok", "api_version": "v1"}


@router.post(
    "/autopilot/analyze",
    response_model=AutopilotAnalyzeResponse,
    tags=["autopilot"],
    summary="Score an image and recommend an enhancement plan",
)
def autopilot_analyze(
    body: AutopilotAnalyzeRequest,
    service: AutopilotService = Depends(get_autopilot_service),
) -> AutopilotAnalyzeResponse:
    """
    Compute tone / detail / resolution scores and an ordered enhancement plan.

    Scoring is a heuristic over coarse, decode-free signals. Issue tags sent
    in `quality_issues` (for example from a separate vision-model pass)
    lower the tone and detail scores; without them only resolution varies.
    """
    start = time.perf_counter()
    try:
        outcome = service.analyze(body.image_base64, body.quality_issues)
    except (InvalidInputError, InternalError) as exc:
        raise _http_error(exc) from exc

    scores = outcome.scores
    return AutopilotAnalyzeResponse(
        scores=QualityScores(
            tone=scores.tone,
            detail=scores.detail,
            resolution=scores.resolution,
            overall=scores.overall,
        ),
        recommendations=plan_to_schema(outcome.plan),
        analysis=_analysis_summary(outcome.analysis),
        basic_score=outcome.basic_score,
        message="Autopilot analysis complete",
        timestamp=_now_iso(),
        processing_time_ms=_elapsed_ms(start),
    )


@router.post(
    "/autopilot/enhance",
    response_model=AutopilotEnhanceResponse,
    tags=["autopilot"],
    summary="Execute an enhancement plan",
)
def autopilot_enhance(
    body: AutopilotEnhanceRequest,
    service: AutopilotService = Depends(get_autopilot_service),
) -> AutopilotEnhanceResponse:
    """
    Run the plan's steps in priority order, feeding each output to the next.

    Individual step failures are reported inside `results.steps` and do not
    fail the request. When every step fails the response is still 200, with
    `success=false` and `results.final` equal to the original image.
    """
    start = time.perf_counter()
    try:
        result = service.enhance(body.image_base64, plan_from_schema(body.recommendations))
    except (InvalidInputError, MissingCredentialsError, InternalError) as exc:
        raise _http_error(exc) from exc

    all_failed = result.total_steps > 0 and result.successful_steps == 0
    return AutopilotEnhanceResponse(
        success=not all_failed,
        results=pipeline_to_schema(result),
        total_steps=result.total_steps,
        successful_steps=result.successful_steps,
        message="Autopilot enhancement failed for every step" if all_failed else "Autopilot enhancement complete",
        timestamp=_now_iso(),
        processing_time_ms=_elapsed_ms(start),
    )


@router.post(
    "/analyze",
    response_model=BasicAnalyzeResponse,
    tags=["analysis"],
    summary="Basic 1-5 quality rating",
)
def basic_analyze(
    body: ImageRequest,
    service: AutopilotService = Depends(get_autopilot_service),
) -> BasicAnalyzeResponse:
    start = time.perf_counter()
    try:
        outcome = service.analyze(body.image_base64)
    except (InvalidInputError, InternalError) as exc:
        raise _http_error(exc) from exc

    return BasicAnalyzeResponse(
        score=outcome.basic_score,
        analysis=_analysis_summary(outcome.analysis),
        message="Image quality analysis complete (basic mode)",
        timestamp=_now_iso(),
        processing_time_ms=_elapsed_ms(start),
    )


@router.post(
    "/rate",
    response_model=RateResponse,
    tags=["analysis"],
    summary="Rate image quality 1-10 with a vision-language model",
)
def rate(
    body: ImageRequest,
    service: AutopilotService = Depends(get_autopilot_service),
) -> RateResponse:
    try:
        score = service.rate(body.image_base64)
    except (InvalidInputError, MissingCredentialsError, ProviderError) as exc:
        raise _http_error(exc) from exc
    return RateResponse(score=score, message="Analysis complete", timestamp=_now_iso())


def _single_step(
    service: AutopilotService,
    image_base64: str,
    step_type: StepType,
    config: StepConfig,
    message: str,
) -> EnhanceResponse:
    start = time.perf_counter()
    try:
        output = service.enhance_single(image_base64, step_type, config)
    except (InvalidInputError, MissingCredentialsError, ProviderError) as exc:
        raise _http_error(exc) from exc
    return EnhanceResponse(
        enhanced_image=output,
        step=step_type,
        config=config.params(),
        message=message,
        timestamp=_now_iso(),
        processing_time_ms=_elapsed_ms(start),
    )


@router.post("/tone-enhance", response_model=EnhanceResponse, tags=["enhance"])
def tone_enhance(
    body: ToneEnhanceRequest,
    service: AutopilotService = Depends(get_autopilot_service),
) -> EnhanceResponse:
    """Single tonal correction pass."""
    config = ToneStep(type=body.enhance_type, intensity=body.intensity)
    return _single_step(service, body.image_base64, StepType.TONE, config, "Tone enhancement complete")


@router.post("/detail-enhance", response_model=EnhanceResponse, tags=["enhance"])
def detail_enhance(
    body: DetailEnhanceRequest,
    service: AutopilotService = Depends(get_autopilot_service),
) -> EnhanceResponse:
    """Single detail restoration pass."""
    config = DetailStep(type=body.enhance_type, strength=body.strength)
    return _single_step(service, body.image_base64, StepType.DETAIL, config, "Detail enhancement complete")


@router.post("/upscale", response_model=EnhanceResponse, tags=["enhance"])
def upscale(
    body: UpscaleRequest,
    service: AutopilotService = Depends(get_autopilot_service),
) -> EnhanceResponse:
    """Single super-resolution pass."""
    config = UpscaleStep(scale=body.scale, model=body.model, face_enhance=body.face_enhance)
    return _single_step(service, body.image_base64, StepType.UPSCALE, config, "Upscale complete")
