"""Prepare stored images for recognition."""

from __future__ import annotations

import io
from dataclasses import dataclass

from PIL import Image

MAX_UPSCALE = 4.0


@dataclass
class PreparedImage:
    """PNG bytes actually sent to recognition, with their pixel size."""

    png: bytes
    width: int
    height: int


def prepare_for_recognition(data: bytes, min_dimension: int = 1000) -> PreparedImage:
    """Decode, flatten to RGB and upscale small images for the recognizer.

    The shorter side is scaled up to `min_dimension` (at most MAX_UPSCALE
    times). Word boxes come back in the prepared image's pixel space, so the
    returned width/height are what the exporter must scale against.

    Raises:
        ValueError: If the bytes are not a decodable image.
    """
    try:
        src = Image.open(io.BytesIO(data))
        src.load()
    except Exception as exc:
        raise ValueError("Image payload could not be decoded for recognition") from exc

    rgba = src.convert("RGBA")
    image = Image.new("RGB", rgba.size, (255, 255, 255))
    image.paste(rgba, mask=rgba.split()[3])

    width, height = image.size
    shorter = min(width, height)
    if 0 < shorter < min_dimension:
        factor = min(min_dimension / shorter, MAX_UPSCALE)
        width, height = max(1, round(width * factor)), max(1, round(height * factor))
        image = image.resize((width, height), Image.LANCZOS)

    out = io.BytesIO()
    image.save(out, format="PNG")
    return PreparedImage(png=out.getvalue(), width=width, height=height)
