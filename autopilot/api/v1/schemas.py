from enum import Enum
from typing import Any, Dict, List, Literal

from pydantic import BaseModel, ConfigDict, Field


class StepType(str, Enum):
    """Optional enhancement steps an Autopilot plan may contain."""

    TONE = "tone"
    DETAIL = "detail"
    UPSCALE = "upscale"


class StepStatus(str, Enum):
    """Lifecycle states for a single plan step."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ToneType(str, Enum):
    GENERAL = "general"
    NIGHT = "night"
    AUTO = "auto"
    BRIGHTNESS = "brightness"
    CONTRAST = "contrast"
    SATURATION = "saturation"
    COLOR_BALANCE = "color_balance"


class DetailType(str, Enum):
    GENERAL = "general"
    DENOISE = "denoise"
    SHARPEN = "sharpen"
    ARTIFACT_REDUCTION = "artifact_reduction"
    SUPER_RESOLUTION = "super_resolution"


class UpscaleModel(str, Enum):
    REAL_ESRGAN = "real-esrgan"
    AURA_SR_V2 = "aura-sr-v2"


class QualityIssue(str, Enum):
    """Issue tags an upstream single-shot analysis may attach to an image."""

    UNDEREXPOSED = "underexposed"
    OVEREXPOSED = "overexposed"
    LOW_CONTRAST = "low_contrast"
    COLOR_CAST = "color_cast"
    BLURRY = "blurry"
    NOISY = "noisy"
    COMPRESSION_ARTIFACTS = "compression_artifacts"
    SOFT_DETAILS = "soft_details"


class ImageRequest(BaseModel):
    """Base request carrying a base64 image, with or without a data URI prefix."""

    model_config = ConfigDict(populate_by_name=True)

    image_base64: str = Field(
        ...,
        alias="imageBase64",
        description="Base64 image data, optionally prefixed with 'data:image/<type>;base64,'.",
    )


class ToneRecommendation(BaseModel):
    enabled: bool = True
    type: ToneType = ToneType.GENERAL
    intensity: float = Field(default=1.0, ge=0.1, le=2.0)


class DetailRecommendation(BaseModel):
    enabled: bool = True
    type: DetailType = DetailType.GENERAL
    strength: int = Field(default=1, ge=1, le=3)


class UpscaleRecommendation(BaseModel):
    enabled: bool = True
    scale: Literal[2, 4, 8] = 2
    model: UpscaleModel = UpscaleModel.REAL_ESRGAN
    face_enhance: bool = True


class Recommendations(BaseModel):
    """Enhancement plan as exchanged with clients."""

    tone: ToneRecommendation | None = None
    detail: DetailRecommendation | None = None
    upscale: UpscaleRecommendation | None = None
    priority: List[StepType] = Field(
        default_factory=list,
        description="Enabled steps in execution order.",
    )


class QualityScores(BaseModel):
    tone: int = Field(..., ge=0, le=100)
    detail: int = Field(..., ge=0, le=100)
    resolution: int = Field(..., ge=0, le=100)
    overall: int = Field(..., ge=0, le=100)


class QualityFactors(BaseModel):
    resolution: Literal["low", "medium", "high"]
    file_size: Literal["small", "medium", "large"]


class AnalysisSummary(BaseModel):
    format: str
    byte_size: int
    estimated_pixel_count: int
    quality_factors: QualityFactors
    quality_issues: List[QualityIssue] = Field(default_factory=list)


class AutopilotAnalyzeRequest(ImageRequest):
    quality_issues: List[QualityIssue] = Field(
        default_factory=list,
        description="Optional issue tags from an upstream single-shot analysis.",
    )


class AutopilotAnalyzeResponse(BaseModel):
    success: bool = True
    scores: QualityScores
    recommendations: Recommendations
    analysis: AnalysisSummary
    basic_score: float = Field(..., ge=1.0, le=5.0)
    message: str
    timestamp: str
    processing_time_ms: int


class AutopilotEnhanceRequest(ImageRequest):
    recommendations: Recommendations


class StepResultModel(BaseModel):
    type: StepType
    config: Dict[str, Any] = Field(default_factory=dict)
    status: StepStatus
    result: str | None = None
    error: str | None = None
    error_kind: str | None = None
    processing_time_ms: int
    success: bool


class PipelineResultModel(BaseModel):
    original: str
    steps: List[StepResultModel] = Field(default_factory=list)
    final: str
    cancelled: bool = False


class AutopilotEnhanceResponse(BaseModel):
    success: bool
    results: PipelineResultModel
    total_steps: int
    successful_steps: int
    message: str
    timestamp: str
    processing_time_ms: int


class BasicAnalyzeResponse(BaseModel):
    success: bool = True
    score: float = Field(..., ge=1.0, le=5.0)
    analysis: AnalysisSummary
    message: str
    timestamp: str
    processing_time_ms: int


class ToneEnhanceRequest(ImageRequest):
    enhance_type: ToneType = ToneType.AUTO
    intensity: float = Field(default=1.0, ge=0.1, le=2.0)


class DetailEnhanceRequest(ImageRequest):
    enhance_type: DetailType = DetailType.DENOISE
    strength: int = Field(default=1, ge=1, le=3)


class UpscaleRequest(ImageRequest):
    scale: Literal[2, 4, 8] = 2
    face_enhance: bool = False
    model: UpscaleModel = UpscaleModel.REAL_ESRGAN


class EnhanceResponse(BaseModel):
    """Result of a single-step enhancement call."""

    success: bool = True
    enhanced_image: str
    step: StepType
    config: Dict[str, Any] = Field(default_factory=dict)
    message: str
    timestamp: str
    processing_time_ms: int


class RateResponse(BaseModel):
    score: float = Field(..., ge=1.0, le=10.0)
    message: str
    timestamp: str
