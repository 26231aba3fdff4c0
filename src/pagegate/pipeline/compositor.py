"""Redaction compositing: selected fields in, new artifact bytes out.

Two renderers share the same placement rules:

* word boxes are preferred over the field box, each filled independently;
* each fill is padded by ``cfg.redaction_padding`` and clamped to the page;
* fields without geometry are laid out on a labelled fallback grid;
* selections pointing past the last page are skipped and reported.

``RasterCompositor`` draws on page images (images, flattened PDFs).
``VectorCompositor`` draws filled shapes into the PDF page content and keeps
every page without selections untouched.
"""

from __future__ import annotations

import io
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple

import fitz  # PyMuPDF
from PIL import Image

from pagegate.errors import StaleSelection, UnsupportedFormat
from pagegate.geometry import BoundingBox, DeviceRect
from pagegate.interfaces import PageRenderer
from pagegate.logging import get_logger
from pagegate.models import ExtractedField, RedactionRequest, RedactionResult
from pagegate.redact import (
    fallback_layout,
    fill_pdf_rects,
    image_bytes,
    images_to_pdf,
    label_image,
    label_pdf_rect,
    redact_image,
)

from .config import RunConfig
from .mapping import Surface, map_to_surface, unrotate_box
from .orchestration import PDF_MIME, SUPPORTED_IMAGE_TYPES, normalize_mime

logger = get_logger("pagegate.compositor")

FALLBACK_LABEL = "REDACTED"


def select_for_redaction(fields: Sequence[ExtractedField]) -> List[ExtractedField]:
    """Fields whose action asks for redaction; placeholders are never drawn."""
    return [f for f in fields if f.action.redacts and not f.required_but_missing]


def _boxes(field: ExtractedField) -> List[BoundingBox]:
    if field.word_boxes:
        return list(field.word_boxes)
    if field.bounding_box is not None:
        return [field.bounding_box]
    return []


def _label(field: ExtractedField) -> str:
    return field.label or FALLBACK_LABEL


def group_by_page(
    selections: Sequence[ExtractedField], page_count: int
) -> Tuple[Dict[int, List[ExtractedField]], List[str]]:
    """Bucket selections per page; stale ones are logged and returned apart."""
    by_page: Dict[int, List[ExtractedField]] = {}
    skipped: List[str] = []
    for f in selections:
        if f.page_ordinal < 0 or f.page_ordinal >= page_count:
            stale = StaleSelection(f.id, f.page_ordinal, page_count)
            logger.warning(
                str(stale),
                extra={"extra": {"field_id": f.id, "page": f.page_ordinal + 1}},
            )
            skipped.append(f.id)
            continue
        by_page.setdefault(f.page_ordinal, []).append(f)
    return by_page, skipped


class RasterCompositor:
    """Composite opaque fills onto page images with Pillow."""

    def __init__(self, page_renderer: Optional[PageRenderer] = None) -> None:
        self.page_renderer = page_renderer

    def redact_page(
        self, img: Image.Image, fields: Sequence[ExtractedField], cfg: RunConfig
    ) -> Tuple[Image.Image, int, int]:
        W, H = img.size
        surface = Surface(width=W, height=H)
        rects: List[DeviceRect] = []
        unplaced: List[ExtractedField] = []
        for f in fields:
            boxes = _boxes(f)
            if not boxes:
                unplaced.append(f)
                continue
            for b in boxes:
                rects.append(map_to_surface(b, surface).pad(cfg.redaction_padding, W, H))
        out = redact_image(img, rects, fill_rgb=cfg.fill_rgb)
        if unplaced:
            grid = fallback_layout(len(unplaced), W, cfg.fallback_columns, H)
            out = label_image(
                out,
                [(r, _label(f)) for r, f in zip(grid, unplaced)],
                fill_rgb=cfg.fill_rgb,
                text_rgb=cfg.label_rgb,
            )
        return out, len(rects), len(unplaced)

    def _load_pages(self, source: bytes, mime_type: str, cfg: RunConfig) -> List[Image.Image]:
        if mime_type == PDF_MIME:
            renderer = self.page_renderer
            if renderer is None:
                from pagegate.ocr import PdfPageRenderer

                renderer = PdfPageRenderer(dpi=cfg.dpi)
            return [Image.open(io.BytesIO(b)) for b in renderer.render(source, mime_type)]
        img = Image.open(io.BytesIO(source))
        img.load()
        return [img]

    def apply(
        self,
        source: bytes,
        mime_type: str,
        selections: Sequence[ExtractedField],
        cfg: RunConfig,
    ) -> RedactionResult:
        pages = self._load_pages(source, mime_type, cfg)
        by_page, skipped = group_by_page(selections, len(pages))
        out_pages: List[Image.Image] = []
        applied = fallback = 0
        per_page: Dict[int, int] = {}
        for ordinal, img in enumerate(pages):
            fields = by_page.get(ordinal)
            if not fields:
                out_pages.append(img)
                continue
            red, n_fill, n_fallback = self.redact_page(img, fields, cfg)
            out_pages.append(red)
            applied += n_fill
            fallback += n_fallback
            per_page[ordinal] = n_fill + n_fallback
        if mime_type == PDF_MIME:
            content, content_type = images_to_pdf(out_pages), PDF_MIME
        else:
            page = out_pages[0]
            if page.mode not in ("RGB", "RGBA", "L", "LA", "P"):
                page = page.convert("RGB")
            content, content_type = image_bytes(page, "PNG"), "image/png"
        return RedactionResult(
            content=content,
            content_type=content_type,
            page_count=len(pages),
            applied=applied,
            fallback=fallback,
            skipped=skipped,
            per_page=per_page,
        )


class VectorCompositor:
    """Draw filled rectangles into PDF page content with PyMuPDF."""

    @staticmethod
    def page_rects(
        page: "fitz.Page", boxes: Sequence[BoundingBox], padding: float
    ) -> List["fitz.Rect"]:
        """Map boxes given in displayed orientation to PyMuPDF page space.

        Boxes go through PDF user space (origin bottom-left) and are converted
        with ``page.transformation_matrix``. That matrix already carries the
        CropBox offset, so the origin is the CropBox bottom-left corner in
        page space.
        """
        ctm = page.transformation_matrix
        crop = page.cropbox
        origin = fitz.Point(0, crop.height) * ~ctm
        W, H = crop.width, crop.height
        surface = Surface(width=W, height=H, flip_y=True)
        out: List[fitz.Rect] = []
        for b in boxes:
            dr = map_to_surface(unrotate_box(b.clamp(), page.rotation), surface)
            dr = dr.pad(padding, W, H)
            x0, y0 = origin.x + dr.x, origin.y + dr.y
            rect = fitz.Rect(x0, y0, x0 + dr.width, y0 + dr.height) * ctm
            out.append(rect.normalize())
        return out

    def apply(
        self,
        source: bytes,
        mime_type: str,
        selections: Sequence[ExtractedField],
        cfg: RunConfig,
    ) -> RedactionResult:
        doc = fitz.open(stream=source, filetype="pdf")
        try:
            page_count = doc.page_count
            by_page, skipped = group_by_page(selections, page_count)
            applied = fallback = 0
            per_page: Dict[int, int] = {}
            for ordinal in sorted(by_page):
                page = doc[ordinal]
                boxes: List[BoundingBox] = []
                unplaced: List[ExtractedField] = []
                for f in by_page[ordinal]:
                    fb = _boxes(f)
                    if fb:
                        boxes.extend(fb)
                    else:
                        unplaced.append(f)
                n_fill = fill_pdf_rects(
                    page,
                    self.page_rects(page, boxes, cfg.redaction_padding),
                    fill_rgb=cfg.fill_rgb,
                    scrub_text=cfg.scrub_text,
                )
                grid = fallback_layout(
                    len(unplaced), page.rect.width, cfg.fallback_columns, page.rect.height
                )
                for r, f in zip(grid, unplaced):
                    rect = fitz.Rect(r.as_xyxy()) * page.derotation_matrix
                    label_pdf_rect(page, rect, _label(f), cfg.fill_rgb, cfg.label_rgb)
                applied += n_fill
                fallback += len(unplaced)
                per_page[ordinal] = n_fill + len(unplaced)
            content = doc.tobytes(garbage=3, deflate=True)
        finally:
            doc.close()
        return RedactionResult(
            content=content,
            content_type=PDF_MIME,
            page_count=page_count,
            applied=applied,
            fallback=fallback,
            skipped=skipped,
            per_page=per_page,
        )


def composite(
    source: bytes,
    mime_type: str,
    selections: Sequence[ExtractedField],
    cfg: Optional[RunConfig] = None,
    renderer=None,
    page_renderer: Optional[PageRenderer] = None,
) -> RedactionResult:
    """Produce a redacted copy of ``source``. The input bytes are never modified.

    ``renderer`` overrides the compositor choice (an object with ``apply``);
    by default images and flattened PDFs are rasterized and other PDFs are
    redacted in vector form.
    """
    cfg = cfg or RunConfig()
    mt = normalize_mime(mime_type)
    if mt not in SUPPORTED_IMAGE_TYPES and mt != PDF_MIME:
        raise UnsupportedFormat(mime_type)
    if renderer is None:
        if mt == PDF_MIME and not cfg.flatten_pdf:
            renderer = VectorCompositor()
        else:
            renderer = RasterCompositor(page_renderer)
    result = renderer.apply(bytes(source), mt, list(selections), cfg)
    logger.info(
        "Redaction composited",
        extra={
            "extra": {
                "mime_type": mt,
                "pages": result.page_count,
                "applied": result.applied,
                "fallback": result.fallback,
                "skipped": len(result.skipped),
            }
        },
    )
    return result


def redact_document(
    request: RedactionRequest,
    cfg: Optional[RunConfig] = None,
    page_renderer: Optional[PageRenderer] = None,
) -> RedactionResult:
    """Redact the fields of ``request`` whose ids were selected."""
    cfg = cfg or RunConfig()
    overrides = {}
    if request.fill_rgb is not None:
        overrides["fill_rgb"] = tuple(request.fill_rgb)
    if request.padding is not None:
        overrides["redaction_padding"] = request.padding
    if request.flatten is not None:
        overrides["flatten_pdf"] = request.flatten
    if overrides:
        cfg = replace(cfg, **overrides)
    wanted = set(request.field_ids)
    selections = [f for f in request.fields if f.id in wanted]
    unknown = sorted(wanted - {f.id for f in selections})
    if unknown:
        logger.warning("Unknown field ids requested", extra={"extra": {"ids": unknown}})
    result = composite(
        request.source, request.mime_type, selections, cfg, page_renderer=page_renderer
    )
    if unknown:
        result = result.model_copy(update={"skipped": result.skipped + unknown})
    return result


__all__ = [
    "RasterCompositor",
    "VectorCompositor",
    "composite",
    "group_by_page",
    "redact_document",
    "select_for_redaction",
]
