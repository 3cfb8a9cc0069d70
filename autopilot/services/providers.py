"""
Provider adapters for the three enhancement families.

Each adapter translates typed step parameters into Replicate model inputs,
runs the model through a transport, and returns the output image URL. Every
failure surfaces as a `ProviderError`; adapters never swallow errors, so the
orchestrator can record them per step.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Protocol

from autopilot.api.v1.schemas import DetailType, StepType, ToneType, UpscaleModel
from autopilot.config import Settings
from autopilot.errors import MissingCredentialsError
from autopilot.models.pipeline import DetailStep, StepConfig, ToneStep, UpscaleStep
from autopilot.services.rate_limiter import ProviderRateLimiter
from autopilot.services.replicate_client import ReplicateSDKClient
from autopilot.services.replicate_http_client import ReplicateHTTPClient, extract_output_url

logger = logging.getLogger(__name__)

SWINIR_MODEL = "jingyunliang/swinir:660d922d33153019e8c263a3bba265de882e7f4f70396546b6c9c8f9d47a021a"
REAL_ESRGAN_MODEL = "nightmareai/real-esrgan:f121d640bd286e1fdc67f9799164c1d5be36ff74576ee11c803ae5b665dd46aa"
AURA_SR_V2_MODEL = "zsxkib/aura-sr-v2:5c137257cce8d5ce16e8a334b70e9e025106b5580affed0bc7d48940b594e74c"

# SwinIR only accepts these denoising levels.
SWINIR_NOISE_LEVELS = (15, 25, 50)

TASK_DENOISE = "Color Image Denoising"
TASK_REAL_SR_MEDIUM = "Real-World Image Super-Resolution-Medium"
TASK_REAL_SR_LARGE = "Real-World Image Super-Resolution-Large"
TASK_JPEG_CAR = "JPEG Compression Artifact Reduction"

TONE_TASKS: Dict[ToneType, str] = {
    ToneType.GENERAL: TASK_DENOISE,
    ToneType.NIGHT: TASK_DENOISE,
    ToneType.AUTO: TASK_DENOISE,
    ToneType.COLOR_BALANCE: TASK_DENOISE,
    ToneType.BRIGHTNESS: TASK_REAL_SR_MEDIUM,
    ToneType.CONTRAST: TASK_REAL_SR_MEDIUM,
    ToneType.SATURATION: TASK_REAL_SR_MEDIUM,
}

# Detail strength 1..3 mapped onto model levels. Lower JPEG quality levels
# mean more aggressive artifact removal.
DETAIL_NOISE_BY_STRENGTH = {1: 15, 2: 25, 3: 50}
DETAIL_JPEG_BY_STRENGTH = {1: 40, 2: 20, 3: 10}

UPSCALE_MODELS: Dict[UpscaleModel, str] = {
    UpscaleModel.REAL_ESRGAN: REAL_ESRGAN_MODEL,
    UpscaleModel.AURA_SR_V2: AURA_SR_V2_MODEL,
}


class Transport(Protocol):
    def run(self, model: str, model_input: Dict[str, Any]) -> Any:
        ...


class ProviderAdapter(Protocol):
    step_type: StepType

    def invoke(self, image: str, params: StepConfig) -> str:
        ...


def snap_noise_level(value: float) -> int:
    """Return the SwinIR noise level closest to `value`."""
    return min(SWINIR_NOISE_LEVELS, key=lambda level: (abs(level - value), level))


class _ReplicateAdapter:
    step_type: StepType

    def __init__(self, transport: Transport) -> None:
        self._transport = transport

    def _run(self, model: str, model_input: Dict[str, Any]) -> str:
        output = self._transport.run(model, model_input)
        return extract_output_url(output)


class ToneProvider(_ReplicateAdapter):
    """Tonal correction through SwinIR."""

    step_type = StepType.TONE

    def build_input(self, image: str, params: ToneStep) -> Dict[str, Any]:
        noise = snap_noise_level(15 * params.intensity)
        if params.type is ToneType.NIGHT:
            # Night shots carry more sensor noise; go one level up.
            index = SWINIR_NOISE_LEVELS.index(noise)
            noise = SWINIR_NOISE_LEVELS[min(index + 1, len(SWINIR_NOISE_LEVELS) - 1)]
        return {
            "image": image,
            "task_type": TONE_TASKS[params.type],
            "noise": noise,
        }

    def invoke(self, image: str, params: ToneStep) -> str:
        logger.info("Tone enhancement: type=%s intensity=%.1f", params.type.value, params.intensity)
        return self._run(SWINIR_MODEL, self.build_input(image, params))


class DetailProvider(_ReplicateAdapter):
    """Detail restoration (denoise, sharpen, artifact reduction) through SwinIR."""

    step_type = StepType.DETAIL

    def build_input(self, image: str, params: DetailStep) -> Dict[str, Any]:
        strength = max(1, min(3, params.strength))
        model_input: Dict[str, Any] = {"image": image, "noise": 15}

        if params.type in (DetailType.GENERAL, DetailType.DENOISE):
            model_input["task_type"] = TASK_DENOISE
            model_input["noise"] = DETAIL_NOISE_BY_STRENGTH[strength]
        elif params.type in (DetailType.SHARPEN, DetailType.SUPER_RESOLUTION):
            model_input["task_type"] = TASK_REAL_SR_LARGE
        else:
            model_input["task_type"] = TASK_JPEG_CAR
            model_input["jpeg"] = DETAIL_JPEG_BY_STRENGTH[strength]
        return model_input

    def invoke(self, image: str, params: DetailStep) -> str:
        logger.info("Detail enhancement: type=%s strength=%d", params.type.value, params.strength)
        return self._run(SWINIR_MODEL, self.build_input(image, params))


class UpscaleProvider(_ReplicateAdapter):
    """Super-resolution through Real-ESRGAN or Aura SR v2."""

    step_type = StepType.UPSCALE

    def build_input(self, image: str, params: UpscaleStep) -> Dict[str, Any]:
        if params.model is UpscaleModel.AURA_SR_V2:
            return {"image": image, "upscale_factor": params.scale}
        return {"image": image, "scale": params.scale, "face_enhance": params.face_enhance}

    def invoke(self, image: str, params: UpscaleStep) -> str:
        logger.info("Upscale: %dx with %s", params.scale, params.model.value)
        return self._run(UPSCALE_MODELS[params.model], self.build_input(image, params))


def build_transport(settings: Settings, rate_limiter: ProviderRateLimiter | None = None) -> Transport:
    """
    Build the configured Replicate transport.

    Raises:
        MissingCredentialsError: if no API token is configured.
    """
    if not settings.has_credentials:
        raise MissingCredentialsError("REPLICATE_API_TOKEN is not configured.")
    if settings.provider_transport == "sdk":
        return ReplicateSDKClient.from_settings(settings, rate_limiter)
    return ReplicateHTTPClient.from_settings(settings, rate_limiter)


def build_adapters(transport: Transport) -> Mapping[StepType, ProviderAdapter]:
    """Create one adapter per enhancement family over a shared transport."""
    return {
        StepType.TONE: ToneProvider(transport),
        StepType.DETAIL: DetailProvider(transport),
        StepType.UPSCALE: UpscaleProvider(transport),
    }
