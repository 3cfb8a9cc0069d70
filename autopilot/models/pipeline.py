from __future__ import annotations

import base64
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, List

from autopilot.api.v1.schemas import (
    DetailType,
    QualityIssue,
    StepStatus,
    StepType,
    ToneType,
    UpscaleModel,
)


@dataclass(frozen=True, slots=True)
class ImagePayload:
    """
    A validated, decoded image for the lifetime of one request.

    `declared` is False when the client sent bare base64 without a
    `data:image/...` prefix; the media type is then an assumed default.
    """

    data: bytes
    media_type: str
    declared: bool = True

    @property
    def byte_size(self) -> int:
        return len(self.data)

    @property
    def data_uri(self) -> str:
        """Encode the payload as a data URI suitable for provider inputs."""
        mime = "jpeg" if self.media_type == "jpg" else self.media_type
        encoded = base64.b64encode(self.data).decode("ascii")
        return f"data:image/{mime};base64,{encoded}"


@dataclass(frozen=True, slots=True)
class AnalysisResult:
    """
    Coarse, decode-free facts about an image.

    These are proxies for resolution and quality, not measurements; the
    scorer and planner consume them as-is.
    """

    format: str
    byte_size: int
    estimated_pixel_count: int
    # Informational buckets: "low" / "medium" / "high" and
    # "small" / "medium" / "large".
    resolution: str
    file_size: str
    quality_issue_tags: FrozenSet[QualityIssue] = frozenset()


@dataclass(frozen=True, slots=True)
class DimensionScores:
    tone: int
    detail: int
    resolution: int
    overall: int

    @classmethod
    def from_dimensions(cls, tone: float, detail: float, resolution: float) -> "DimensionScores":
        """Clamp each dimension to [0, 100] and derive the overall score."""
        tone_c = _clamp_score(tone)
        detail_c = _clamp_score(detail)
        resolution_c = _clamp_score(resolution)
        overall = round((tone_c + detail_c + resolution_c) / 3)
        return cls(tone=tone_c, detail=detail_c, resolution=resolution_c, overall=overall)


def _clamp_score(value: float) -> int:
    return int(max(0, min(100, round(value))))


@dataclass(slots=True)
class ToneStep:
    enabled: bool = True
    type: ToneType = ToneType.GENERAL
    intensity: float = 1.0

    def params(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "type": self.type.value, "intensity": self.intensity}


@dataclass(slots=True)
class DetailStep:
    enabled: bool = True
    type: DetailType = DetailType.GENERAL
    strength: int = 1

    def params(self) -> Dict[str, Any]:
        return {"enabled": self.enabled, "type": self.type.value, "strength": self.strength}


@dataclass(slots=True)
class UpscaleStep:
    enabled: bool = True
    scale: int = 2
    model: UpscaleModel = UpscaleModel.REAL_ESRGAN
    face_enhance: bool = True

    def params(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "scale": self.scale,
            "model": self.model.value,
            "face_enhance": self.face_enhance,
        }


StepConfig = ToneStep | DetailStep | UpscaleStep


@dataclass(slots=True)
class EnhancementPlan:
    """
    Ordered, parameterized enhancement plan.

    `priority` names the enabled steps in execution order; a configured but
    disabled step never appears in it.
    """

    tone: ToneStep | None = None
    detail: DetailStep | None = None
    upscale: UpscaleStep | None = None
    priority: List[StepType] = field(default_factory=list)

    def step(self, step_type: StepType) -> StepConfig | None:
        if step_type is StepType.TONE:
            return self.tone
        if step_type is StepType.DETAIL:
            return self.detail
        return self.upscale

    def is_enabled(self, step_type: StepType) -> bool:
        config = self.step(step_type)
        return config is not None and config.enabled


@dataclass(slots=True)
class StepResult:
    """Recorded outcome of one executed plan step."""

    type: StepType
    config: Dict[str, Any]
    status: StepStatus = StepStatus.PENDING
    result: str | None = None
    error: str | None = None
    error_kind: str | None = None
    processing_time_ms: int = 0

    @property
    def success(self) -> bool:
        return self.status is StepStatus.SUCCEEDED


@dataclass(slots=True)
class PipelineResult:
    """
    Aggregate result of an orchestrator run.

    `final` always points at the most recent successful step output, or the
    original image when nothing succeeded.
    """

    original: str
    final: str
    steps: List[StepResult] = field(default_factory=list)
    cancelled: bool = False

    @classmethod
    def start(cls, original: str) -> "PipelineResult":
        return cls(original=original, final=original)

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def successful_steps(self) -> int:
        return sum(1 for step in self.steps if step.success)
