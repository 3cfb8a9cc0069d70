from __future__ import annotations

import logging
import re
from typing import Any

from autopilot.services.providers import Transport

logger = logging.getLogger(__name__)

LLAVA_MODEL = "yorickvp/llava-13b:b5f6212d032508382d61ff00469ddda3e32fd8a0e75dc39d8a4191bb742157fb"

RATING_PROMPT = (
    "Please analyze this image quality and rate it from 1 to 10 based on factors like "
    "sharpness, clarity, lighting, composition, and overall visual appeal. Only respond "
    "with a single number between 1 and 10, with one decimal place if needed. "
    "For example: 7.5"
)

DEFAULT_RATING = 5.0

_NUMBER_PATTERN = re.compile(r"\d+\.?\d*")


def parse_rating(output: Any) -> float:
    """
    Extract a 1-10 rating from free-form model output.

    Language models stream tokens, so list outputs are joined first. Anything
    without a number in range falls back to DEFAULT_RATING.
    """
    if output is None:
        return DEFAULT_RATING
    text = "".join(str(part) for part in output) if isinstance(output, list) else str(output)
    match = _NUMBER_PATTERN.search(text)
    if match is None:
        return DEFAULT_RATING
    value = float(match.group(0))
    if 1.0 <= value <= 10.0:
        return value
    return DEFAULT_RATING


def rate_image(transport: Transport, image: str) -> float:
    """Ask a vision-language model for a single 1-10 quality rating."""
    output = transport.run(
        LLAVA_MODEL,
        {"image": image, "prompt": RATING_PROMPT, "max_tokens": 10},
    )
    rating = parse_rating(output)
    logger.info("Vision model rating: %.1f (raw output: %r)", rating, output)
    return rating
