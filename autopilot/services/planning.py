from __future__ import annotations

import logging

from autopilot.api.v1.schemas import DetailType, StepType, ToneType, UpscaleModel
from autopilot.errors import InvalidPlanError
from autopilot.models.pipeline import (
    DetailStep,
    DimensionScores,
    EnhancementPlan,
    ToneStep,
    UpscaleStep,
)

logger = logging.getLogger(__name__)

SUPPORTED_SCALES = (2, 4, 8)

# A dimension scoring below its threshold gets a corrective step.
TONE_THRESHOLD = 80
DETAIL_THRESHOLD = 80
RESOLUTION_THRESHOLD = 70

# Tonal correction runs before detail work, and both before upscaling, so the
# most expensive operation always sees the best available input.
EXECUTION_ORDER = (StepType.TONE, StepType.DETAIL, StepType.UPSCALE)


def _tone_intensity(tone: int) -> float:
    if tone < 40:
        return 2.0
    if tone < 60:
        return 1.5
    return 1.0


def _detail_strength(detail: int) -> int:
    if detail < 40:
        return 3
    if detail < 60:
        return 2
    return 1


def plan_enhancements(scores: DimensionScores) -> EnhancementPlan:
    """
    Turn dimension scores into an ordered, parameterized enhancement plan.

    Each dimension is checked independently; `priority` lists the enabled
    steps in the fixed order tone -> detail -> upscale.
    """
    plan = EnhancementPlan()

    if scores.tone < TONE_THRESHOLD:
        plan.tone = ToneStep(
            type=ToneType.NIGHT if scores.tone < 50 else ToneType.GENERAL,
            intensity=_tone_intensity(scores.tone),
        )

    if scores.detail < DETAIL_THRESHOLD:
        plan.detail = DetailStep(
            type=DetailType.GENERAL,
            strength=_detail_strength(scores.detail),
        )

    if scores.resolution < RESOLUTION_THRESHOLD:
        plan.upscale = UpscaleStep(
            scale=4 if scores.resolution < 40 else 2,
            model=UpscaleModel.REAL_ESRGAN,
        )

    plan.priority = [step for step in EXECUTION_ORDER if plan.is_enabled(step)]
    logger.info(
        "Planned %d enhancement step(s): %s",
        len(plan.priority),
        ", ".join(step.value for step in plan.priority) or "none",
    )
    return plan


def validate_plan(plan: EnhancementPlan) -> None:
    """
    Check a (possibly client-edited) plan before execution.

    Raises:
        InvalidPlanError: if `priority` names a step more than once, names a
            step that is missing or disabled, or a step carries parameters
            outside the supported ranges.
    """
    seen: set[StepType] = set()
    for step in plan.priority:
        if step in seen:
            raise InvalidPlanError(f"Step '{step.value}' appears more than once in priority.")
        seen.add(step)
        if not plan.is_enabled(step):
            raise InvalidPlanError(
                f"Step '{step.value}' is listed in priority but is not enabled in the plan."
            )

    if plan.tone is not None and not 0.1 <= plan.tone.intensity <= 2.0:
        raise InvalidPlanError("Tone intensity must be between 0.1 and 2.0.")
    if plan.detail is not None and plan.detail.strength not in (1, 2, 3):
        raise InvalidPlanError("Detail strength must be 1, 2 or 3.")
    if plan.upscale is not None and plan.upscale.scale not in SUPPORTED_SCALES:
        raise InvalidPlanError(
            f"Unsupported upscale factor {plan.upscale.scale}; use one of {SUPPORTED_SCALES}."
        )
