"""Tests for image payload validation."""

import base64

import pytest

from autopilot.errors import InvalidImageError
from autopilot.services.ingestion import validate_image, validate_image_bytes


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def test_data_uri_with_supported_type_is_accepted():
    image = validate_image("data:image/png;base64," + _b64(b"\x89PNG fake"))
    assert image.media_type == "png"
    assert image.declared is True
    assert image.data == b"\x89PNG fake"


def test_media_type_is_case_insensitive():
    image = validate_image("data:image/WEBP;base64," + _b64(b"RIFF"))
    assert image.media_type == "webp"


@pytest.mark.parametrize("payload", [None, "", "   "])
def test_missing_payload_is_rejected(payload):
    with pytest.raises(InvalidImageError):
        validate_image(payload)


def test_unsupported_declared_type_is_rejected():
    with pytest.raises(InvalidImageError, match="gif"):
        validate_image("data:image/gif;base64," + _b64(b"GIF89a"))


def test_non_image_data_uri_is_rejected():
    with pytest.raises(InvalidImageError):
        validate_image("data:text/plain;base64," + _b64(b"hello"))


def test_bare_base64_is_treated_as_implicit_jpeg():
    image = validate_image(_b64(b"\xff\xd8\xff\xe0 jpeg body"))
    assert image.media_type == "jpeg"
    assert image.declared is False
    assert image.data_uri.startswith("data:image/jpeg;base64,")


def test_undecodable_base64_is_rejected():
    with pytest.raises(InvalidImageError, match="base64"):
        validate_image("data:image/png;base64,@@not-base64@@")


def test_prefix_without_data_is_rejected():
    with pytest.raises(InvalidImageError, match="empty"):
        validate_image("data:image/png;base64,")


def test_line_wrapped_base64_is_accepted():
    encoded = _b64(b"x" * 120)
    wrapped = "\n".join(encoded[i:i + 76] for i in range(0, len(encoded), 76))
    image = validate_image("data:image/jpeg;base64," + wrapped)
    assert image.byte_size == 120


def test_oversized_payload_is_rejected():
    with pytest.raises(InvalidImageError, match="too large"):
        validate_image("data:image/png;base64," + _b64(b"x" * 11), max_bytes=10)


def test_jpg_data_uri_uses_jpeg_mime_type():
    image = validate_image("data:image/jpg;base64," + _b64(b"abc"))
    assert image.media_type == "jpg"
    assert image.data_uri == "data:image/jpeg;base64," + _b64(b"abc")


def test_raw_bytes_with_declared_type():
    image = validate_image_bytes(b"body", "image/webp")
    assert image.media_type == "webp"
    assert image.declared is True


def test_raw_bytes_without_type_default_to_jpeg():
    image = validate_image_bytes(b"body", None)
    assert image.media_type == "jpeg"
    assert image.declared is False


def test_raw_bytes_with_unsupported_type_are_rejected():
    with pytest.raises(InvalidImageError):
        validate_image_bytes(b"body", "image/tiff")


def test_empty_raw_bytes_are_rejected():
    with pytest.raises(InvalidImageError):
        validate_image_bytes(b"", "png")
