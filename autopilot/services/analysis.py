from __future__ import annotations

import logging
from typing import Dict, Iterable

from autopilot.api.v1.schemas import QualityIssue
from autopilot.models.pipeline import AnalysisResult, DimensionScores, ImagePayload


logger = logging.getLogger(__name__)


# Approximate pixels per encoded byte. The image is never decoded, so the
# pixel count is estimated from the payload size; lossy formats pack more
# pixels per byte than lossless ones. Scoring depends on these values.
COMPRESSION_FACTORS: Dict[str, int] = {
    "jpeg": 15,
    "jpg": 15,
    "webp": 20,
    "png": 4,
}

# Byte-size thresholds for the informational buckets.
RESOLUTION_HIGH_BYTES = 100_000
RESOLUTION_MEDIUM_BYTES = 50_000
FILE_SIZE_LARGE_BYTES = 500_000
FILE_SIZE_MEDIUM_BYTES = 100_000

TONE_BASE_SCORE = 70
DETAIL_BASE_SCORE = 75
RESOLUTION_BASE_SCORE = 80

TONE_PENALTIES: Dict[QualityIssue, int] = {
    QualityIssue.UNDEREXPOSED: 20,
    QualityIssue.OVEREXPOSED: 20,
    QualityIssue.LOW_CONTRAST: 15,
    QualityIssue.COLOR_CAST: 15,
}

DETAIL_PENALTIES: Dict[QualityIssue, int] = {
    QualityIssue.BLURRY: 25,
    QualityIssue.NOISY: 20,
    QualityIssue.COMPRESSION_ARTIFACTS: 15,
    QualityIssue.SOFT_DETAILS: 10,
}

# (exclusive upper bound on pixel count, penalty); first match wins.
RESOLUTION_PENALTIES = (
    (500_000, 30),
    (1_000_000, 20),
    (2_000_000, 10),
)


def _bucket_resolution(byte_size: int) -> str:
    if byte_size > RESOLUTION_HIGH_BYTES:
        return "high"
    if byte_size > RESOLUTION_MEDIUM_BYTES:
        return "medium"
    return "low"


def _bucket_file_size(byte_size: int) -> str:
    if byte_size > FILE_SIZE_LARGE_BYTES:
        return "large"
    if byte_size > FILE_SIZE_MEDIUM_BYTES:
        return "medium"
    return "small"


def analyze_image(
    image: ImagePayload,
    quality_issues: Iterable[QualityIssue] | None = None,
) -> AnalysisResult:
    """
    Derive coarse signals from a validated image without decoding it.

    `quality_issues` is only populated when an upstream single-shot analysis
    produced issue tags; the basic analyzer itself never infers any.
    """
    byte_size = image.byte_size
    factor = COMPRESSION_FACTORS[image.media_type]
    return AnalysisResult(
        format=image.media_type,
        byte_size=byte_size,
        estimated_pixel_count=byte_size * factor,
        resolution=_bucket_resolution(byte_size),
        file_size=_bucket_file_size(byte_size),
        quality_issue_tags=frozenset(quality_issues or ()),
    )


def _penalize(base: int, tags: Iterable[QualityIssue], penalties: Dict[QualityIssue, int]) -> int:
    score = base
    for tag in tags:
        score -= penalties.get(tag, 0)
    return score


def _resolution_score(estimated_pixel_count: int) -> int:
    score = RESOLUTION_BASE_SCORE
    for limit, penalty in RESOLUTION_PENALTIES:
        if estimated_pixel_count < limit:
            score -= penalty
            break
    return score


def score_quality(analysis: AnalysisResult) -> DimensionScores:
    """
    Map analyzer signals onto tone / detail / resolution scores in [0, 100].

    Without issue tags, tone and detail stay at their base scores and only
    the resolution dimension varies.
    """
    tags = analysis.quality_issue_tags
    scores = DimensionScores.from_dimensions(
        tone=_penalize(TONE_BASE_SCORE, tags, TONE_PENALTIES),
        detail=_penalize(DETAIL_BASE_SCORE, tags, DETAIL_PENALTIES),
        resolution=_resolution_score(analysis.estimated_pixel_count),
    )
    logger.debug(
        "Scored %s image (%d bytes, ~%d px, tags=%s): tone=%d detail=%d resolution=%d overall=%d",
        analysis.format,
        analysis.byte_size,
        analysis.estimated_pixel_count,
        sorted(tag.value for tag in tags),
        scores.tone,
        scores.detail,
        scores.resolution,
        scores.overall,
    )
    return scores


def basic_quality_score(analysis: AnalysisResult) -> float:
    """
    Legacy single-number rating on a 1.0-5.0 scale.

    Kept for the basic analyze endpoint; the Autopilot flow uses
    `score_quality` instead.
    """
    score = 3.0

    if analysis.resolution == "high":
        score += 1.0
    elif analysis.resolution == "low":
        score -= 0.5

    if analysis.file_size == "large":
        score += 0.5
    elif analysis.file_size == "small":
        score -= 0.3

    if analysis.format == "png":
        score += 0.3
    elif analysis.format == "webp":
        score += 0.2
    elif analysis.format in ("jpeg", "jpg"):
        score -= 0.2

    return max(1.0, min(5.0, round(score * 10) / 10))
