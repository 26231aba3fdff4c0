import pandas as pd
import pytest
import pytesseract

from conftest import make_pdf, make_png
from pagegate import ocr
from pagegate.align import build_text, span_word_boxes
from pagegate.fields import find_fields
from pagegate.models import ExtractionPayload
from pagegate.pipeline.config import RunConfig
from pagegate.taxonomy import load_taxonomy

COLUMNS = [
    "level", "page_num", "block_num", "par_num", "line_num", "word_num",
    "left", "top", "width", "height", "conf", "text",
]


def _tsv(rows):
    return pd.DataFrame(
        [[5, 1, 1, 1, line, i, *box, conf, text] for i, (line, box, conf, text) in enumerate(rows)],
        columns=COLUMNS,
    )


WORDS = _tsv(
    [
        (1, (10, 10, 36, 12), 96.0, "Email:"),
        (1, (50, 10, 100, 12), 95.0, "ada@example.com"),
        (2, (10, 40, 36, 12), 91.0, "Total:"),
        (2, (50, 40, 30, 12), 89.0, "42.00"),
        (2, (90, 40, 30, 12), 5.0, "~~"),
    ]
)


@pytest.fixture
def fake_tesseract(monkeypatch):
    configs = []

    def image_to_data(img, lang, config, output_type):
        configs.append(config)
        return WORDS.copy()

    monkeypatch.setattr(pytesseract, "image_to_data", image_to_data)
    return configs


def test_build_text_tracks_word_offsets():
    text, offsets = build_text(WORDS)
    assert text == "Email: ada@example.com\nTotal: 42.00 ~~"
    assert text[offsets[1][0]:offsets[1][1]] == "ada@example.com"
    assert span_word_boxes(WORDS, offsets, offsets[1][0], offsets[3][1]) == [
        (50, 10, 100, 12),
        (10, 40, 36, 12),
        (50, 40, 30, 12),
    ]


def test_extractor_returns_payload_with_normalized_word_boxes(fake_tesseract):
    extractor = ocr.TesseractExtractor(RunConfig(auto_psm=False))
    raw = extractor.extract(make_png(200, 100), 0)
    payload = ExtractionPayload.model_validate(raw)
    assert payload.success
    assert (payload.width, payload.height) == (200, 100)
    assert payload.text == "Email: ada@example.com\nTotal: 42.00"
    email, total = payload.fields
    assert (email.label, email.value) == ("Email", "ada@example.com")
    assert email.confidence == pytest.approx(0.95)
    (box,) = email.word_boxes
    assert (box.left, box.top, box.width, box.height) == pytest.approx((0.25, 0.1, 0.5, 0.12))
    assert (total.label, total.value) == ("Total", "42.00")
    assert "--psm 3" in fake_tesseract[0]
    assert "preserve_interword_spaces=1" in fake_tesseract[0]


def test_auto_psm_retries_sparse_pages(monkeypatch):
    configs = []
    sparse = WORDS.iloc[:2].copy()

    def image_to_data(img, lang, config, output_type):
        configs.append(config)
        return sparse.copy()

    monkeypatch.setattr(pytesseract, "image_to_data", image_to_data)
    ocr.TesseractExtractor(RunConfig(auto_psm=True)).extract(make_png(), 0)
    assert [c.split("--psm ")[1].split()[0] for c in configs] == ["3", "6", "4", "11"]


def test_missing_tesseract_fails_the_page(monkeypatch):
    def boom(*args, **kwargs):
        raise pytesseract.TesseractNotFoundError()

    monkeypatch.setattr(pytesseract, "image_to_data", boom)
    raw = ocr.TesseractExtractor().extract(make_png(), 0)
    assert raw["success"] is False
    assert "Tesseract" in raw["error"]


def test_unreadable_page_image_fails_the_page():
    raw = ocr.TesseractExtractor().extract(b"not an image", 3)
    assert raw["success"] is False


def test_taxonomy_patterns_label_fields(monkeypatch):
    words = _tsv([(1, (10, 10, 200, 12), 90.0, "DE89370400440532013000")])
    monkeypatch.setattr(pytesseract, "image_to_data", lambda *a, **k: words.copy())
    extractor = ocr.TesseractExtractor(RunConfig(auto_psm=False), load_taxonomy("default"))
    raw = extractor.extract(make_png(400, 100), 0, "Invoice")
    (field,) = raw["extractedFields"]
    assert field["label"] == "IBAN"


def test_find_fields_sources_and_overlap():
    text = "Name: Ada Lovelace\nreach me at ada@example.com or +44 20 7946 0958\nborn 10.12.1815"
    spans = find_fields(text)
    by_label = {s["label"]: s for s in spans}
    assert by_label["Name"]["text"] == "Ada Lovelace"
    assert by_label["Name"]["source"] == "KEY_VALUE"
    assert by_label["Email"]["text"] == "ada@example.com"
    assert by_label["Date"]["text"] == "10.12.1815"
    assert [s["start"] for s in spans] == sorted(s["start"] for s in spans)
    custom = find_fields("ref ABC-123", {"Reference": r"[A-Z]{3}-\d{3}"})
    assert custom[0]["label"] == "Reference"
    assert custom[0]["source"] == "TAXONOMY"


def test_pymupdf_renderer_counts_pages():
    renderer = ocr.PdfPageRenderer(dpi=36)
    pdf = make_pdf(3)
    assert renderer.page_count(pdf) == 3
    pages = renderer.render(pdf, "application/pdf")
    assert len(pages) == 3
    assert pages[0][:8] == b"\x89PNG\r\n\x1a\n"
