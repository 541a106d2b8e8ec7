from __future__ import annotations

import io
import logging

import pikepdf
import pytest

from models.capture_models import BoundingBox, CapturedImage, RecognitionAnnotation, RecognizedWord
from services.document_exporter import (
    DocumentExporter,
    Placement,
    fit_to_page,
    map_word_boxes,
    page_size_for,
    sanitize_filename,
)


def _image(data: bytes, annotation: RecognitionAnnotation = None, image_id: str = "img") -> CapturedImage:
    return CapturedImage(id=image_id, data=data, annotation=annotation or RecognitionAnnotation())


def test_small_images_get_a4_pages():
    assert page_size_for(100, 50, 20) == (595.0, 842.0)
    assert page_size_for(1000, 900, 20) == (1040.0, 940.0)


def test_fit_to_page_never_upscales_and_centers():
    placement = fit_to_page(100, 50, 595, 842, 20)

    assert (placement.width, placement.height) == (100, 50)
    assert placement.x == pytest.approx((595 - 100) / 2)
    assert placement.y == pytest.approx((842 - 50) / 2)


def test_fit_to_page_scales_down_to_available_area():
    placement = fit_to_page(2000, 1000, 595, 842, 20)

    assert placement.width == pytest.approx(555)
    assert placement.height == pytest.approx(277.5)
    assert placement.x == pytest.approx(20)


def test_word_boxes_scale_from_recognized_image_size():
    # Recognized at 4x the rendered size: boxes must shrink by 4.
    annotation = RecognitionAnnotation(
        text="alpha beta",
        words=[
            RecognizedWord("alpha", BoundingBox(0, 0, 200, 40)),
            RecognizedWord("beta", BoundingBox(240, 0, 400, 40)),
        ],
        source_width=400,
        source_height=200,
        attempted=True,
    )
    placement = Placement(x=100, y=300, width=100, height=50)

    runs = map_word_boxes(annotation, placement)

    assert [run.text for run in runs] == ["alpha", "beta"]
    assert runs[0].x == pytest.approx(100)
    assert runs[0].width == pytest.approx(50)
    assert runs[0].height == pytest.approx(10)
    # Top of the image maps to the top of the rectangle in PDF space.
    assert runs[0].y + runs[0].height == pytest.approx(350)
    assert runs[1].x == pytest.approx(160)


def test_word_boxes_are_clamped_inside_image_rect_and_keep_order():
    words = [
        RecognizedWord("left", BoundingBox(-50, -10, 100, 30)),
        RecognizedWord("middle", BoundingBox(150, 40, 300, 80)),
        RecognizedWord("right", BoundingBox(350, 170, 900, 260)),
    ]
    annotation = RecognitionAnnotation(words=words, source_width=400, source_height=200, attempted=True)
    placement = Placement(x=20, y=20, width=200, height=100)

    runs = map_word_boxes(annotation, placement)

    assert [run.text for run in runs] == ["left", "middle", "right"]
    xs = [run.x for run in runs]
    assert xs == sorted(xs)
    for run in runs:
        assert run.x >= placement.x
        assert run.y >= placement.y
        assert run.x + run.width <= placement.x + placement.width + 1e-9
        assert run.y + run.height <= placement.y + placement.height + 1e-9


def test_tiny_and_empty_words_are_skipped():
    words = [
        RecognizedWord("dot", BoundingBox(0, 0, 1, 1)),
        RecognizedWord("   ", BoundingBox(0, 0, 100, 100)),
        RecognizedWord("nobox"),
        RecognizedWord("ok", BoundingBox(0, 0, 100, 100)),
    ]
    annotation = RecognitionAnnotation(words=words, source_width=1000, source_height=1000, attempted=True)

    runs = map_word_boxes(annotation, Placement(0, 0, 100, 100), min_box=1.0)

    assert [run.text for run in runs] == ["ok"]


def test_annotation_without_source_size_yields_no_text():
    annotation = RecognitionAnnotation(words=[RecognizedWord("x", BoundingBox(0, 0, 5, 5))])

    assert map_word_boxes(annotation, Placement(0, 0, 10, 10)) == []


def test_sanitize_filename():
    assert sanitize_filename("Q3 review / draft*") == "Q3_review_draft.pdf"
    assert sanitize_filename("???") == "CaptureDeck.pdf"
    assert sanitize_filename(None) == "CaptureDeck.pdf"


def test_export_keeps_order_and_title(make_png, make_jpeg):
    images = [
        _image(make_png(300, 200), image_id="a"),
        _image(make_jpeg(800, 1200), image_id="b"),
        _image(make_png(50, 40), image_id="c"),
    ]

    document = DocumentExporter().generate(images, title="Sprint notes")

    assert document.page_count == 3
    assert document.skipped == []
    assert document.filename == "Sprint_notes.pdf"
    with pikepdf.open(io.BytesIO(document.content)) as pdf:
        assert str(pdf.docinfo["/Title"]) == "Sprint notes"
        sizes = [(float(page.mediabox[2]), float(page.mediabox[3])) for page in pdf.pages]
        assert sizes == [(595.0, 842.0), (840.0, 1240.0), (595.0, 842.0)]
        xobject = pdf.pages[1].Resources.XObject.Im0
        assert xobject.Filter == pikepdf.Name.DCTDecode


def test_export_skips_corrupt_images(make_png, caplog):
    images = [
        _image(b"definitely not an image", image_id="bad"),
        _image(make_png(100, 100, color=(1, 1, 1)), image_id="good1"),
        _image(make_png(120, 100, color=(2, 2, 2)), image_id="good2"),
    ]

    with caplog.at_level(logging.WARNING):
        document = DocumentExporter().generate(images, title="Mixed")

    assert document.page_count == 2
    assert document.skipped == [0]
    assert "bad" in caplog.text
    with pikepdf.open(io.BytesIO(document.content)) as pdf:
        widths = [int(pdf.pages[i].Resources.XObject.Im0.Width) for i in range(2)]
        assert widths == [100, 120]


def test_export_with_no_decodable_images_is_still_a_pdf():
    document = DocumentExporter().generate([_image(b"junk")], title="Empty")

    assert document.page_count == 0
    assert document.content.startswith(b"%PDF")


def test_text_layer_is_invisible_and_extractable(make_png):
    annotation = RecognitionAnnotation(
        text="Invoice total",
        words=[
            RecognizedWord("Invoice", BoundingBox(10, 10, 200, 60)),
            RecognizedWord("total", BoundingBox(220, 10, 330, 60)),
        ],
        source_width=400,
        source_height=300,
        attempted=True,
    )
    document = DocumentExporter().generate([_image(make_png(400, 300), annotation)], title="Text")

    with pikepdf.open(io.BytesIO(document.content)) as pdf:
        stream = pdf.pages[0].Contents.read_bytes()
    assert b"3 Tr" in stream
    assert b"(Invoice ) Tj" in stream
    assert b"(total ) Tj" in stream


def test_progress_callback_reports_each_page(make_png):
    seen = []
    DocumentExporter().generate([_image(make_png()), _image(make_png())], on_progress=lambda i, n: seen.append((i, n)))

    assert seen == [(1, 2), (2, 2)]
