"""
Image ingestion and validation.

This is the single point where malformed image input is rejected. Everything
downstream receives an `ImagePayload` and may assume it is non-empty and of a
supported type.
"""

from __future__ import annotations

import base64
import binascii
import logging
import re

from autopilot.errors import InvalidImageError
from autopilot.models.pipeline import ImagePayload

logger = logging.getLogger(__name__)

SUPPORTED_MEDIA_TYPES = frozenset({"jpeg", "jpg", "png", "webp"})

# Media type assumed for bare base64 without a data URI prefix.
IMPLICIT_MEDIA_TYPE = "jpeg"

_DATA_URI_PATTERN = re.compile(r"^data:image/([A-Za-z0-9.+-]+);base64,", re.IGNORECASE)


def _normalize_media_type(media_type: str) -> str:
    media_type = media_type.strip().lower()
    if media_type.startswith("image/"):
        media_type = media_type[len("image/"):]
    return media_type


def _decode_base64(encoded: str) -> bytes:
    # Tolerate line-wrapped base64 from clients.
    compact = "".join(encoded.split())
    try:
        return base64.b64decode(compact, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidImageError("Image data is not valid base64.") from exc


def validate_image(payload: str | None, max_bytes: int | None = None) -> ImagePayload:
    """
    Validate a base64 image payload and return the decoded image.

    A `data:image/<type>;base64,` prefix is checked against the supported
    set {jpeg, jpg, png, webp}. A payload without any prefix is accepted and
    treated as an implicit JPEG.

    Raises:
        InvalidImageError: missing/empty payload, unsupported declared type,
            undecodable base64, or an image above `max_bytes`.
    """
    if payload is None or not payload.strip():
        raise InvalidImageError("Missing image data; provide base64-encoded image data.")

    payload = payload.strip()
    declared = payload.startswith("data:")

    if declared:
        match = _DATA_URI_PATTERN.match(payload)
        if match is None:
            raise InvalidImageError(
                "Unsupported image data URI; expected 'data:image/<type>;base64,'."
            )
        media_type = _normalize_media_type(match.group(1))
        if media_type not in SUPPORTED_MEDIA_TYPES:
            raise InvalidImageError(
                f"Unsupported image format '{media_type}'. Use JPG, PNG or WEBP."
            )
        encoded = payload[match.end():]
    else:
        media_type = IMPLICIT_MEDIA_TYPE
        encoded = payload

    data = _decode_base64(encoded)
    return _build_payload(data, media_type, declared=declared, max_bytes=max_bytes)


def validate_image_bytes(
    data: bytes | None,
    media_type: str | None,
    max_bytes: int | None = None,
) -> ImagePayload:
    """
    Validate raw image bytes with an optional declared media type.

    Same policy as `validate_image`: a missing media type is accepted as an
    implicit JPEG, an explicitly unsupported one is rejected.
    """
    if media_type:
        normalized = _normalize_media_type(media_type)
        if normalized not in SUPPORTED_MEDIA_TYPES:
            raise InvalidImageError(
                f"Unsupported image format '{normalized}'. Use JPG, PNG or WEBP."
            )
        return _build_payload(data or b"", normalized, declared=True, max_bytes=max_bytes)
    return _build_payload(data or b"", IMPLICIT_MEDIA_TYPE, declared=False, max_bytes=max_bytes)


def _build_payload(data: bytes, media_type: str, *, declared: bool, max_bytes: int | None) -> ImagePayload:
    if not data:
        raise InvalidImageError("Image data is empty.")
    if max_bytes is not None and len(data) > max_bytes:
        raise InvalidImageError(
            f"Image is too large ({len(data)} bytes); the limit is {max_bytes} bytes."
        )
    if not declared:
        logger.debug("No media type declared; treating %d-byte payload as %s", len(data), media_type)
    return ImagePayload(data=data, media_type=media_type, declared=declared)
