import io

import fitz  # PyMuPDF
import pytest
from PIL import Image

from conftest import make_pdf, make_png
from pagegate.errors import UnsupportedFormat
from pagegate.models import ExtractedField, FieldAction, RedactionRequest
from pagegate.ocr import PdfPageRenderer
from pagegate.pipeline.compositor import composite, redact_document, select_for_redaction
from pagegate.pipeline.config import RunConfig
from pagegate.redact import fallback_layout


def _field(fid, page=0, box=None, words=None, action=FieldAction.REDACT, **kw):
    return ExtractedField(
        id=fid,
        label=kw.pop("label", fid),
        page_ordinal=page,
        bounding_box=box,
        word_boxes=words or [],
        action=action,
        **kw,
    )


def _pixel(content, xy):
    return Image.open(io.BytesIO(content)).convert("RGB").getpixel(xy)


def _filled_rects(pdf: bytes, ordinal: int):
    with fitz.open(stream=pdf, filetype="pdf") as doc:
        return [d["rect"] for d in doc[ordinal].get_drawings() if d.get("fill") is not None]


BOX = {"x": 0.1, "y": 0.1, "width": 0.2, "height": 0.05}


def test_select_for_redaction_filters_actions_and_placeholders():
    fields = [
        _field("a", action=FieldAction.REDACT),
        _field("b", action=FieldAction.EXTRACT_AND_REDACT),
        _field("c", action=FieldAction.EXTRACT),
        _field("d", action=FieldAction.IGNORE),
        _field("e", action=FieldAction.REDACT, required_but_missing=True),
    ]
    assert [f.id for f in select_for_redaction(fields)] == ["a", "b"]


def test_raster_image_fill_is_opaque_and_new_artifact():
    source = make_png(100, 100)
    cfg = RunConfig(redaction_padding=0)
    field = _field("f", box={"x": 0.1, "y": 0.1, "width": 0.2, "height": 0.2})
    res = composite(source, "image/png", [field], cfg)
    assert res.content_type == "image/png"
    assert res.content != source
    assert (res.page_count, res.applied, res.fallback) == (1, 1, 0)
    assert _pixel(res.content, (15, 15)) == (0, 0, 0)
    assert _pixel(res.content, (50, 50)) == (255, 255, 255)
    assert _pixel(source, (15, 15)) == (255, 255, 255)


def test_word_boxes_win_over_field_box():
    field = _field(
        "f",
        box={"x": 0.1, "y": 0.1, "width": 0.8, "height": 0.1},
        words=[
            {"x": 0.1, "y": 0.1, "width": 0.1, "height": 0.1},
            {"x": 0.7, "y": 0.1, "width": 0.1, "height": 0.1},
        ],
    )
    res = composite(make_png(100, 100), "image/png", [field], RunConfig(redaction_padding=0))
    assert res.applied == 2
    assert _pixel(res.content, (15, 15)) == (0, 0, 0)
    assert _pixel(res.content, (45, 15)) == (255, 255, 255)
    assert _pixel(res.content, (75, 15)) == (0, 0, 0)


def test_custom_fill_colour():
    field = _field("f", box={"x": 0.0, "y": 0.0, "width": 0.5, "height": 0.5})
    res = composite(make_png(50, 50), "image/png", [field], RunConfig(fill_rgb=(255, 0, 0)))
    assert _pixel(res.content, (5, 5)) == (255, 0, 0)


def test_field_without_geometry_uses_fallback_grid():
    res = composite(make_png(300, 200), "image/png", [_field("nogeo")], RunConfig())
    assert (res.applied, res.fallback) == (0, 1)
    assert res.per_page == {0: 1}
    assert _pixel(res.content, (11, 11)) == (0, 0, 0)


def test_fallback_boxes_all_land_on_small_surface():
    fields = [_field(f"n{i}") for i in range(3)]
    res = composite(make_png(60, 60), "image/png", fields, RunConfig())
    assert res.fallback == 3
    for x in (11, 30, 48):
        assert _pixel(res.content, (x, 9)) == (0, 0, 0)
    assert _pixel(res.content, (20, 9)) == (255, 255, 255)


@pytest.mark.parametrize(
    "count, width, height",
    [(3, 60, 60), (7, 600, 800), (12, 100, 50), (1, 30, 20), (40, 612, 792)],
)
def test_fallback_layout_stays_inside_page(count, width, height):
    rects = fallback_layout(count, width, 3, height)
    assert len(rects) == count
    for r in rects:
        x0, y0, x1, y1 = r.as_xyxy()
        assert x0 >= 0 and y0 >= 0
        assert x1 <= width + 1e-6 and y1 <= height + 1e-6
        assert r.width > 0 and r.height > 0
    assert len({(r.x, r.y) for r in rects}) == count


def test_fallback_layout_keeps_nominal_size_on_wide_pages():
    (r,) = fallback_layout(1, 1000, 3, 1000)
    assert (r.x, r.y, r.width, r.height) == (10, 10, 200, 40)


def test_stale_selection_is_skipped_not_fatal():
    fields = [_field("ok", box=BOX), _field("stale", page=4, box=BOX)]
    res = composite(make_png(100, 100), "image/png", fields, RunConfig())
    assert res.skipped == ["stale"]
    assert res.applied == 1


def test_vector_pdf_fill_lands_on_selected_page_only():
    source = make_pdf(3)
    res = composite(source, "application/pdf", [_field("f", page=1, box=BOX)], RunConfig())
    assert res.content_type == "application/pdf"
    assert res.page_count == 3
    with fitz.open(stream=res.content, filetype="pdf") as doc:
        assert doc.page_count == 3
    assert _filled_rects(res.content, 0) == []
    assert _filled_rects(res.content, 2) == []
    (rect,) = _filled_rects(res.content, 1)
    assert (rect.x0, rect.y0, rect.x1, rect.y1) == pytest.approx((58, 78, 182, 122), abs=0.5)


@pytest.mark.parametrize("rotation", [0, 90])
def test_vector_fill_covers_box_on_cropped_page(rotation):
    doc = fitz.open()
    page = doc.new_page(width=600, height=800)
    page.set_cropbox(fitz.Rect(50, 100, 550, 700))
    page.set_rotation(rotation)
    source = doc.tobytes()
    doc.close()
    box = {"x": 0.1, "y": 0.1, "width": 0.3, "height": 0.1}
    res = composite(source, "application/pdf", [_field("f", box=box)], RunConfig())

    with fitz.open(stream=res.content, filetype="pdf") as out:
        pix = out[0].get_pixmap(alpha=False)
    img = Image.frombytes("RGB", (pix.width, pix.height), pix.samples).convert("L")
    W, H = img.size
    assert (W, H) == ((500, 600) if rotation == 0 else (600, 500))
    x0, y0 = int(0.1 * W) + 2, int(0.1 * H) + 2
    x1, y1 = int(0.4 * W) - 2, int(0.2 * H) - 2
    inside = [img.getpixel((x, y)) for x in range(x0, x1) for y in range(y0, y1)]
    assert sum(v < 64 for v in inside) / len(inside) > 0.99
    assert img.getpixel((int(0.7 * W), int(0.6 * H))) > 200


def test_vector_pdf_fallback_box_is_labelled():
    res = composite(make_pdf(1), "application/pdf", [_field("nogeo", label="SSN")], RunConfig())
    assert res.fallback == 1
    (rect,) = _filled_rects(res.content, 0)
    assert (rect.x0, rect.y0, rect.x1, rect.y1) == pytest.approx((10, 10, 196.67, 50), abs=0.5)
    with fitz.open(stream=res.content, filetype="pdf") as doc:
        assert "SSN" in doc[0].get_text()


def test_scrub_text_removes_covered_text_layer():
    doc = fitz.open()
    page = doc.new_page(width=600, height=800)
    page.insert_text((100, 100), "SECRET-123")
    page.insert_text((100, 400), "keep me")
    source = doc.tobytes()
    doc.close()
    box = {"x": 90 / 600, "y": 80 / 800, "width": 150 / 600, "height": 30 / 800}
    res = composite(source, "application/pdf", [_field("f", box=box)], RunConfig(scrub_text=True))
    with fitz.open(stream=res.content, filetype="pdf") as out:
        text = out[0].get_text()
    assert "SECRET" not in text
    assert "keep me" in text


def test_flattened_pdf_is_rasterized_with_all_pages():
    cfg = RunConfig(flatten_pdf=True, dpi=36)
    res = composite(
        make_pdf(2),
        "application/pdf",
        [_field("f", page=0, box=BOX)],
        cfg,
        page_renderer=PdfPageRenderer(dpi=36),
    )
    assert res.page_count == 2
    with fitz.open(stream=res.content, filetype="pdf") as doc:
        assert doc.page_count == 2
        assert doc[0].get_text().strip() == ""


def test_unsupported_type_is_rejected():
    with pytest.raises(UnsupportedFormat):
        composite(b"x", "text/plain", [], RunConfig())


def test_redact_document_selects_ids_and_reports_unknown():
    fields = [
        _field("a", box={"x": 0.0, "y": 0.0, "width": 0.2, "height": 0.2}),
        _field("b", box={"x": 0.6, "y": 0.6, "width": 0.2, "height": 0.2}),
    ]
    req = RedactionRequest(
        source=make_png(100, 100),
        mime_type="image/png",
        field_ids=["a", "zzz"],
        fields=fields,
        fill_rgb=(0, 0, 255),
        padding=0,
    )
    res = redact_document(req)
    assert res.applied == 1
    assert res.skipped == ["zzz"]
    assert _pixel(res.content, (5, 5)) == (0, 0, 255)
    assert _pixel(res.content, (70, 70)) == (255, 255, 255)
