"""Validation and conversion helpers for image payloads."""

import base64
import binascii
import re
from typing import Tuple, Union

from fastapi import HTTPException, UploadFile

ALLOWED_UPLOAD_TYPES = {
    "image/jpeg",
    "image/png",
    "image/webp",
}

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[^;,]+)?(?P<b64>;base64)?,(?P<body>.*)$", re.DOTALL)


def decode_data_url(data_url: str) -> Tuple[bytes, str]:
    """Split a `data:` URL into raw bytes and its MIME type.

    Raises:
        ValueError: If the string is not a base64 data URL.
    """
    match = _DATA_URL_RE.match(data_url.strip())
    if not match or not match.group("b64"):
        raise ValueError("Expected a base64 data URL.")
    try:
        raw = base64.b64decode(match.group("body"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Data URL body is not valid base64.") from exc
    return raw, match.group("mime") or "image/png"


def to_data_url(data: bytes, mime_type: str) -> str:
    """Encode raw bytes as a base64 data URL."""
    encoded = base64.b64encode(data).decode("utf-8")
    return f"data:{mime_type};base64,{encoded}"


def coerce_image_payload(payload: Union[bytes, str], mime_type: str = "image/png") -> Tuple[bytes, str]:
    """Return `(bytes, mime_type)` for raw bytes or a data URL payload."""
    if isinstance(payload, (bytes, bytearray)):
        if not payload:
            raise ValueError("Image payload is empty.")
        return bytes(payload), mime_type
    if isinstance(payload, str):
        raw, detected = decode_data_url(payload)
        if not raw:
            raise ValueError("Image payload is empty.")
        return raw, detected
    raise ValueError("Image payload must be bytes or a data URL string.")


def validate_image_upload(image_file: UploadFile) -> str:
    """Check the declared content type of a phone upload and return it."""
    content_type = (image_file.content_type or "").lower().split(";", 1)[0].strip()
    if content_type not in ALLOWED_UPLOAD_TYPES:
        raise HTTPException(
            status_code=415,
            detail=f"File type {image_file.content_type or 'unknown'} not allowed. Use JPG, PNG, or WEBP.",
        )
    return content_type


async def read_image_upload(image_file: UploadFile, max_bytes: int) -> Tuple[bytes, str]:
    """Read validated image bytes, rejecting empty or oversized uploads."""
    content_type = validate_image_upload(image_file)
    image_bytes = await image_file.read()
    if not image_bytes:
        raise HTTPException(status_code=400, detail="Uploaded image is empty.")
    if len(image_bytes) > max_bytes:
        raise HTTPException(
            status_code=413,
            detail=f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB.",
        )
    return image_bytes, content_type
