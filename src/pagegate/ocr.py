"""OCR adapters.

:class:`PdfPageRenderer` rasterizes PDFs into per-page PNG bytes and
:class:`TesseractExtractor` turns one page image into the extraction payload
the orchestrator consumes: page text, fields found by the detectors in
:mod:`pagegate.fields`, and per-word boxes relative to the page.

Options for difficult scans:
- Optional preprocessing (grayscale, autocontrast, binarize)
- Optional auto-PSM retry to maximize token recovery on noisy pages
"""

import io
import os
from typing import Any, Dict, List, Optional

import fitz  # PyMuPDF
import numpy as np
import pandas as pd
import pytesseract
from pdf2image import convert_from_bytes
from pdf2image.exceptions import PDFInfoNotInstalledError
from PIL import Image, ImageOps

from .align import build_text, normalize_box, span_word_boxes
from .errors import PageSplitFailure
from .fields import find_fields
from .geometry import BoundingBox
from .interfaces import Extractor, PageRenderer, TaxonomyService
from .logging import get_logger
from .pipeline.config import RunConfig
from .pipeline.orchestration import PDF_MIME

logger = get_logger("pagegate.ocr")


def _rasterize_with_pymupdf(source: bytes, dpi: int) -> List[Image.Image]:
    doc = fitz.open(stream=source, filetype="pdf")
    images: List[Image.Image] = []
    zoom = dpi / 72.0
    mat = fitz.Matrix(zoom, zoom)
    try:
        for page in doc:
            pix = page.get_pixmap(matrix=mat, alpha=False)
            images.append(Image.frombytes("RGB", (pix.width, pix.height), pix.samples))
    finally:
        doc.close()
    return images


def pdf_to_images(source: bytes, dpi: int = 300) -> List[Image.Image]:
    """Convert PDF bytes into a list of PIL images (one per page).

    Uses ``pdf2image`` first (requires Poppler); falls back to PyMuPDF when
    Poppler is not installed.

    Environment
    -----------
    POPPLER_PATH:
        Optional explicit path to the Poppler binaries for pdf2image.
    """
    poppler_path = os.environ.get("POPPLER_PATH")
    try:
        if poppler_path:
            return convert_from_bytes(source, dpi=dpi, poppler_path=poppler_path)
        return convert_from_bytes(source, dpi=dpi)
    except PDFInfoNotInstalledError:
        logger.debug("Poppler not found, rasterizing with PyMuPDF")
        return _rasterize_with_pymupdf(source, dpi)


def pdf_page_count(source: bytes) -> int:
    with fitz.open(stream=source, filetype="pdf") as doc:
        return doc.page_count


def encode_png(img: Image.Image) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class PdfPageRenderer(PageRenderer):
    """Page renderer for PDFs; single images pass through as one page."""

    def __init__(self, dpi: int = 300) -> None:
        self.dpi = dpi

    def render(self, source: bytes, mime_type: str) -> List[bytes]:
        if mime_type != PDF_MIME:
            return [source]
        try:
            images = pdf_to_images(source, dpi=self.dpi)
        except (fitz.FileDataError, RuntimeError) as exc:
            raise PageSplitFailure(f"Could not rasterize PDF: {exc}") from exc
        return [encode_png(im) for im in images]

    def page_count(self, source: bytes) -> int:
        if source[:5] != b"%PDF-":
            return 1
        return pdf_page_count(source)


def _preprocess_image(img: Image.Image, *, binarize: bool = True) -> Image.Image:
    """Grayscale, stretch contrast and optionally binarize at the mean level."""
    gray = ImageOps.autocontrast(ImageOps.grayscale(img))
    if not binarize:
        return gray
    arr = np.asarray(gray)
    threshold = float(arr.mean()) * 0.9
    return Image.fromarray(np.where(arr > threshold, 255, 0).astype(np.uint8))


def image_ocr_tsv(
    img: Image.Image,
    lang: str = "eng",
    psm: int = 3,
    *,
    preprocess: bool = False,
    auto_psm: bool = True,
    tess_configs: Optional[Dict[str, Any]] = None,
) -> pd.DataFrame:
    """Run Tesseract on an image and return word-level TSV.

    Parameters
    ----------
    img:
        Input image to OCR.
    lang:
        Tesseract language code.
    psm:
        Page segmentation mode (0-13).

    Returns
    -------
    pandas.DataFrame
        Columns ``level,page_num,block_num,par_num,line_num,word_num,left,top,
        width,height,conf,text``; rows without text are dropped.
    """
    if preprocess:
        img = _preprocess_image(img)

    cfg = {"preserve_interword_spaces": 1}
    if tess_configs:
        cfg.update(tess_configs)
    extra = "".join(f" -c {k}={v}" for k, v in cfg.items())

    def run(psm_value: int) -> pd.DataFrame:
        df = pytesseract.image_to_data(
            img,
            lang=lang,
            config=f"--oem 1 --psm {psm_value}{extra}",
            output_type=pytesseract.Output.DATAFRAME,
        )
        return df.dropna(subset=["text"]).reset_index(drop=True)

    tsv = run(psm)
    if auto_psm and len(tsv) < 5:
        best = tsv
        for alt in (6, 4, 11):
            try:
                alt_df = run(alt)
            except pytesseract.TesseractError as exc:
                logger.debug("PSM retry failed", extra={"extra": {"psm": alt, "error": str(exc)}})
                continue
            if len(alt_df) > len(best):
                best = alt_df
        tsv = best
    return tsv


def _words(tsv: pd.DataFrame, min_conf: float) -> pd.DataFrame:
    if tsv.empty:
        return tsv
    text = tsv["text"].astype(str).str.strip()
    keep = (text != "") & (tsv["conf"].astype(float) >= min_conf)
    words = tsv[keep].copy()
    words["text"] = text[keep]
    return words.reset_index(drop=True)


class TesseractExtractor(Extractor):
    """Extraction collaborator backed by a local Tesseract install."""

    def __init__(self, cfg: Optional[RunConfig] = None, taxonomy: Optional[TaxonomyService] = None) -> None:
        self.cfg = cfg or RunConfig()
        self.taxonomy = taxonomy

    def _patterns(self, document_type: str) -> Dict[str, str]:
        if not document_type or self.taxonomy is None:
            return {}
        return {
            e.name: e.pattern
            for e in self.taxonomy.expected_elements(document_type)
            if getattr(e, "pattern", None)
        }

    def extract(self, page_bytes: bytes, ordinal: int, document_type: str = "") -> Dict[str, Any]:
        try:
            img = Image.open(io.BytesIO(page_bytes))
            img.load()
        except (OSError, ValueError) as exc:
            return {"success": False, "error": f"Unreadable page image: {exc}"}
        if img.mode not in ("RGB", "L"):
            img = img.convert("RGB")
        width, height = img.size

        try:
            tsv = image_ocr_tsv(
                img,
                lang=self.cfg.lang,
                psm=self.cfg.psm,
                preprocess=self.cfg.preprocess,
                auto_psm=self.cfg.auto_psm,
                tess_configs=self.cfg.tess_configs,
            )
        except (pytesseract.TesseractError, pytesseract.TesseractNotFoundError) as exc:
            return {"success": False, "error": f"Tesseract failed: {exc}"}

        words = _words(tsv, self.cfg.min_word_conf)
        text, offsets = build_text(words)
        fields: List[Dict[str, Any]] = []
        for span in find_fields(text, self._patterns(document_type)):
            pixel_boxes = span_word_boxes(words, offsets, span["start"], span["end"])
            boxes = [normalize_box(b, width, height) for b in pixel_boxes]
            bbox = BoundingBox.union(boxes) if boxes else None
            confs = [
                float(words.iloc[i]["conf"])
                for i, (ws, we) in enumerate(offsets)
                if not (span["end"] <= ws or span["start"] >= we)
            ]
            fields.append(
                {
                    "label": span["label"],
                    "value": span["text"],
                    "confidence": sum(confs) / len(confs) if confs else 0.0,
                    "dataType": span["data_type"],
                    "boundingBox": bbox.model_dump() if bbox is not None else None,
                    "wordBoxes": [b.model_dump() for b in boxes],
                }
            )
        logger.debug(
            "Page extracted",
            extra={"extra": {"page": ordinal, "words": len(words), "fields": len(fields)}},
        )
        return {
            "success": True,
            "extractedText": text,
            "extractedFields": fields,
            "width": width,
            "height": height,
        }


__all__ = [
    "PdfPageRenderer",
    "TesseractExtractor",
    "image_ocr_tsv",
    "pdf_page_count",
    "pdf_to_images",
]
