"""Export captured images as a PDF with an invisible, aligned text layer.

Each image gets its own page, sized to the image plus a margin (never
smaller than A4). Recognized word boxes are scaled from the coordinates of
the image that was sent to recognition into the rendered image rectangle
and drawn with text render mode 3 (invisible), so the page looks exactly
like the picture while its text stays searchable and selectable.
"""

from __future__ import annotations

import io
import logging
import re
import zlib
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

import pikepdf
from PIL import Image

from models.capture_models import CapturedImage, RecognitionAnnotation

LOGGER = logging.getLogger(__name__)

DEFAULT_TITLE = "CaptureDeck"
DEFAULT_MIN_PAGE_SIZE = (595.0, 842.0)


@dataclass
class Placement:
    """Rendered image rectangle on a page, PDF points, origin bottom-left."""

    x: float
    y: float
    width: float
    height: float


@dataclass
class TextRun:
    x: float
    y: float
    width: float
    height: float
    text: str


@dataclass
class ExportedDocument:
    filename: str
    content: bytes
    page_count: int
    skipped: List[int] = field(default_factory=list)


def page_size_for(
    img_width: float,
    img_height: float,
    margin: float,
    min_size: Tuple[float, float] = DEFAULT_MIN_PAGE_SIZE,
) -> Tuple[float, float]:
    """Return a page that fits the image plus margins, floored at `min_size`."""
    return (
        max(img_width + margin * 2, min_size[0]),
        max(img_height + margin * 2, min_size[1]),
    )


def fit_to_page(
    img_width: float, img_height: float, page_width: float, page_height: float, margin: float
) -> Placement:
    """Scale the image down (never up) into the page's printable area and center it."""
    available_w = page_width - margin * 2
    available_h = page_height - margin * 2

    scale = 1.0
    if img_width > available_w or img_height > available_h:
        scale = min(available_w / img_width, available_h / img_height)

    width = img_width * scale
    height = img_height * scale
    return Placement(
        x=(page_width - width) / 2,
        y=(page_height - height) / 2,
        width=width,
        height=height,
    )


def map_word_boxes(
    annotation: Optional[RecognitionAnnotation],
    placement: Placement,
    min_box: float = 1.0,
) -> List[TextRun]:
    """Project recognized word boxes into page coordinates.

    Boxes are in the pixel space of the image that was recognized, whose size
    is `annotation.source_width x annotation.source_height`. That image may
    have been upscaled before recognition, so the scale is taken from those
    dimensions and not from the stored capture.
    """
    if annotation is None or not annotation.words:
        return []
    if annotation.source_width <= 0 or annotation.source_height <= 0:
        return []

    scale_x = placement.width / annotation.source_width
    scale_y = placement.height / annotation.source_height
    left_edge, right_edge = placement.x, placement.x + placement.width
    bottom_edge, top_edge = placement.y, placement.y + placement.height

    runs: List[TextRun] = []
    for word in annotation.words:
        text = (word.text or "").strip()
        if not text or word.bbox is None:
            continue
        box = word.bbox
        x0 = min(max(placement.x + box.x0 * scale_x, left_edge), right_edge)
        x1 = min(max(placement.x + box.x1 * scale_x, left_edge), right_edge)
        # Image y grows downward; PDF y grows upward from the rectangle's bottom.
        top = min(max(top_edge - box.y0 * scale_y, bottom_edge), top_edge)
        bottom = min(max(top_edge - box.y1 * scale_y, bottom_edge), top_edge)

        width = x1 - x0
        height = top - bottom
        if width < min_box or height < min_box:
            continue
        runs.append(TextRun(x=x0, y=bottom, width=width, height=height, text=text))
    return runs


def sanitize_filename(name: Optional[str], fallback: str = DEFAULT_TITLE) -> str:
    """Reduce a session name to a safe `.pdf` filename."""
    cleaned = re.sub(r"[^a-zA-Z0-9_\- ]", "", name or "")
    cleaned = re.sub(r"\s+", "_", cleaned.strip())
    return f"{cleaned or fallback}.pdf"


def _escape_pdf_text(raw: bytes) -> bytes:
    return raw.replace(b"\\", b"\\\\").replace(b"(", b"\\(").replace(b")", b"\\)")


def _text_run_operators(run: TextRun) -> bytes:
    encoded = _escape_pdf_text(f"{run.text} ".encode("cp1252", errors="replace"))
    font_size = max(1.0, run.height * 0.9)
    estimated_width = max(1.0, (len(run.text) + 1) * font_size * 0.5)
    horizontal_scale = max(10.0, min(1000.0, run.width / estimated_width * 100.0))
    baseline = run.y + run.height * 0.1
    return (
        f"BT 3 Tr /F1 {font_size:.2f} Tf {horizontal_scale:.2f} Tz "
        f"1 0 0 1 {run.x:.2f} {baseline:.2f} Tm (".encode("ascii")
        + encoded
        + b") Tj ET"
    )


class DocumentExporter:
    """Build a paginated PDF from captured images.

    Args:
        margin: Margin (points) around each image.
        min_page_size: Page size floor, A4 portrait by default.
        min_word_box: Minimum scaled word box size kept in the text layer.
    """

    def __init__(
        self,
        margin: float = 20.0,
        min_page_size: Tuple[float, float] = DEFAULT_MIN_PAGE_SIZE,
        min_word_box: float = 1.0,
    ) -> None:
        self.margin = margin
        self.min_page_size = min_page_size
        self.min_word_box = min_word_box

    def generate(
        self,
        images: Sequence[CapturedImage],
        title: Optional[str] = None,
        on_progress: Optional[Callable[[int, int], None]] = None,
    ) -> ExportedDocument:
        """Render `images` in order, skipping any that cannot be decoded.

        Returns:
            An ExportedDocument whose `skipped` lists the indexes left out.
        """
        total = len(images)
        skipped: List[int] = []

        with pikepdf.Pdf.new() as pdf:
            pdf.docinfo[pikepdf.Name.Title] = title or DEFAULT_TITLE
            pdf.docinfo[pikepdf.Name.Creator] = DEFAULT_TITLE
            pdf.docinfo[pikepdf.Name.Producer] = "pikepdf"
            font = pdf.make_indirect(
                pikepdf.Dictionary(
                    Type=pikepdf.Name.Font,
                    Subtype=pikepdf.Name.Type1,
                    BaseFont=pikepdf.Name.Helvetica,
                    Encoding=pikepdf.Name.WinAnsiEncoding,
                )
            )

            for index, image in enumerate(images):
                try:
                    self._add_page(pdf, font, image)
                except (OSError, ValueError, Image.DecompressionBombError) as exc:
                    LOGGER.warning("Skipping image %d (%s): %s", index + 1, image.id, exc)
                    skipped.append(index)
                    continue
                if on_progress:
                    on_progress(index + 1, total)

            page_count = len(pdf.pages)
            out = io.BytesIO()
            pdf.save(out)

        return ExportedDocument(
            filename=sanitize_filename(title),
            content=out.getvalue(),
            page_count=page_count,
            skipped=skipped,
        )

    def _add_page(self, pdf: pikepdf.Pdf, font: pikepdf.Object, image: CapturedImage) -> None:
        with Image.open(io.BytesIO(image.data)) as decoded:
            decoded.load()
            img_width, img_height = decoded.size
            xobject = self._embed_image(pdf, decoded, image.data)

        page_width, page_height = page_size_for(img_width, img_height, self.margin, self.min_page_size)
        placement = fit_to_page(img_width, img_height, page_width, page_height, self.margin)
        runs = map_word_boxes(image.annotation, placement, self.min_word_box)

        stream_lines = [
            (
                f"q {placement.width:.4f} 0 0 {placement.height:.4f} "
                f"{placement.x:.4f} {placement.y:.4f} cm /Im0 Do Q"
            ).encode("ascii")
        ]
        stream_lines.extend(_text_run_operators(run) for run in runs)

        page = pdf.add_blank_page(page_size=(page_width, page_height))
        page.obj.Resources = pikepdf.Dictionary(
            XObject=pikepdf.Dictionary(Im0=xobject),
            Font=pikepdf.Dictionary(F1=font),
        )
        page.obj.Contents = pdf.make_stream(b"\n".join(stream_lines) + b"\n")

    @staticmethod
    def _embed_image(pdf: pikepdf.Pdf, decoded: Image.Image, raw: bytes) -> pikepdf.Stream:
        """Embed the image as an XObject, passing JPEG data through untouched."""
        width, height = decoded.size
        if decoded.format == "JPEG" and decoded.mode in ("RGB", "L"):
            return pikepdf.Stream(
                pdf,
                raw,
                Type=pikepdf.Name.XObject,
                Subtype=pikepdf.Name.Image,
                Width=width,
                Height=height,
                ColorSpace=pikepdf.Name.DeviceRGB if decoded.mode == "RGB" else pikepdf.Name.DeviceGray,
                BitsPerComponent=8,
                Filter=pikepdf.Name.DCTDecode,
            )

        # Flatten transparency against white, as the thumbnails do.
        rgba = decoded.convert("RGBA")
        flattened = Image.new("RGB", rgba.size, (255, 255, 255))
        flattened.paste(rgba, mask=rgba.split()[3])
        return pikepdf.Stream(
            pdf,
            zlib.compress(flattened.tobytes()),
            Type=pikepdf.Name.XObject,
            Subtype=pikepdf.Name.Image,
            Width=width,
            Height=height,
            ColorSpace=pikepdf.Name.DeviceRGB,
            BitsPerComponent=8,
            Filter=pikepdf.Name.FlateDecode,
        )
