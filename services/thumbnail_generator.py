"""Thumbnail generator service.

Provides a small OOP wrapper around Pillow to create thumbnails
from raw image bytes. The resulting thumbnail will fit within
`max_size` pixels and is returned as a PNG data URL that the
capture UI can show directly.

Public class: `ThumbnailGenerator`

Example:
    tg = ThumbnailGenerator(max_size=(240, 240))
    thumb_url = tg.create_thumbnail_data_url(png_bytes)
"""
from __future__ import annotations

import io
from typing import Tuple

from PIL import Image

from utils.media_validation import to_data_url


class ThumbnailGenerator:
    """Generate thumbnails from image bytes.

    Args:
        max_size: Maximum width and height for the thumbnail. Defaults to (240, 240).
        background: Optional background color used when converting images with alpha to RGB.
            If None, images with alpha are flattened against white.
    """

    def __init__(self, max_size: Tuple[int, int] = (240, 240), background: Tuple[int, int, int] | None = None):
        self.max_size = max_size
        self.background = background or (255, 255, 255)

    def create_thumbnail(self, data: bytes) -> bytes:
        """Create PNG thumbnail bytes from raw image bytes.

        Raises:
            ValueError: If the bytes cannot be opened as an image.
        """
        try:
            src = Image.open(io.BytesIO(data))
            src.load()
        except Exception as exc:
            raise ValueError("Bytes are not a supported image format") from exc

        # Convert to RGBA to preserve alpha if present, then flatten to RGB
        src = src.convert("RGBA")
        src.thumbnail(self.max_size, Image.LANCZOS)

        background = Image.new("RGB", src.size, self.background)
        background.paste(src, mask=src.split()[3])

        out_io = io.BytesIO()
        background.save(out_io, format="PNG", optimize=True)
        return out_io.getvalue()

    def create_thumbnail_data_url(self, data: bytes) -> str:
        """Create a thumbnail and return it as a `data:image/png;base64,...` URL."""
        return to_data_url(self.create_thumbnail(data), "image/png")
