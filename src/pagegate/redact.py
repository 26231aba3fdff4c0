"""Redaction drawing primitives.

Raster helpers draw opaque rectangles on page images with Pillow and export
page images back to a compact PDF with ``img2pdf``. Vector helpers draw
filled shapes on PyMuPDF pages. Geometry is already resolved to device units
by the caller; nothing here knows about normalized boxes.
"""

from __future__ import annotations

import io
from typing import List, Optional, Sequence, Tuple

import img2pdf
import fitz  # PyMuPDF
from PIL import Image, ImageDraw, ImageFont

from .geometry import DeviceRect

RGB = Tuple[int, int, int]

FALLBACK_BOX_MAX_WIDTH = 200.0
FALLBACK_BOX_HEIGHT = 40.0
FALLBACK_GAP = 10.0


def fallback_layout(
    count: int, page_width: float, columns: int = 3, page_height: Optional[float] = None
) -> List[DeviceRect]:
    """Grid positions near the top of a page for fields without geometry.

    Positions are top-left based: column ``i % columns``, row ``i // columns``,
    box width ``min(200, page_width / columns)``, height 40, 10-unit gaps.
    On surfaces too small for that grid, gaps and boxes shrink so every box
    stays inside the page.
    """
    columns = max(1, int(columns))
    if count <= 0:
        return []
    rows = -(-count // columns)
    gap_x = min(FALLBACK_GAP, page_width / (4 * (columns + 1)))
    box_w = min(
        FALLBACK_BOX_MAX_WIDTH,
        page_width / columns,
        (page_width - (columns + 1) * gap_x) / columns,
    )
    gap_y, box_h = FALLBACK_GAP, FALLBACK_BOX_HEIGHT
    if page_height is not None:
        gap_y = min(FALLBACK_GAP, page_height / (4 * (rows + 1)))
        box_h = min(FALLBACK_BOX_HEIGHT, (page_height - (rows + 1) * gap_y) / rows)
    rects: List[DeviceRect] = []
    for i in range(count):
        row, col = divmod(i, columns)
        rects.append(
            DeviceRect(
                x=col * (box_w + gap_x) + gap_x,
                y=row * (box_h + gap_y) + gap_y,
                width=box_w,
                height=box_h,
            )
        )
    return rects


def _as_rgb(img: Image.Image) -> Image.Image:
    if img.mode not in ("RGB", "RGBA"):
        return img.convert("RGB")
    return img.copy()


def redact_image(
    img: Image.Image,
    rects: Sequence[DeviceRect],
    fill_rgb: RGB = (0, 0, 0),
) -> Image.Image:
    """Draw filled rectangles on a copy of the image.

    Rectangles are expected in pixel units and already padded/clamped.
    """
    out = _as_rgb(img)
    draw = ImageDraw.Draw(out)
    for r in rects:
        if r.area <= 0:
            continue
        x0, y0, x1, y1 = r.as_xyxy()
        draw.rectangle([x0, y0, x1, y1], fill=tuple(fill_rgb))
    return out


def label_image(
    img: Image.Image,
    labelled: Sequence[Tuple[DeviceRect, str]],
    fill_rgb: RGB = (0, 0, 0),
    text_rgb: RGB = (255, 255, 255),
) -> Image.Image:
    """Draw filled boxes with a centred label, used for fallback placements."""
    out = _as_rgb(img)
    W, H = out.size
    draw = ImageDraw.Draw(out)
    font = ImageFont.load_default()
    for rect, label in labelled:
        x0, y0, x1, y1 = rect.as_xyxy()
        x1, y1 = min(x1, W), min(y1, H)
        if x1 <= x0 or y1 <= y0:
            continue
        draw.rectangle([x0, y0, x1, y1], fill=tuple(fill_rgb))
        if not label:
            continue
        left, top, right, bottom = draw.textbbox((0, 0), label, font=font)
        tw, th = right - left, bottom - top
        tx = x0 + max(0.0, ((x1 - x0) - tw) / 2)
        ty = y0 + max(0.0, ((y1 - y0) - th) / 2)
        draw.text((tx, ty), label, fill=tuple(text_rgb), font=font)
    return out


def image_bytes(img: Image.Image, fmt: str = "PNG") -> bytes:
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


def images_to_pdf(images: Sequence[Image.Image]) -> bytes:
    """Assemble page images into a compact PDF."""
    pages = []
    for im in images:
        if im.mode != "RGB":
            im = im.convert("RGB")
        tmp = io.BytesIO()
        im.save(tmp, format="JPEG", quality=95)
        pages.append(tmp.getvalue())
    return img2pdf.convert(pages)


def _unit_rgb(rgb: RGB) -> Tuple[float, float, float]:
    return tuple(c / 255.0 for c in rgb)  # type: ignore[return-value]


def fill_pdf_rects(
    page: "fitz.Page",
    rects: Sequence["fitz.Rect"],
    fill_rgb: RGB = (0, 0, 0),
    scrub_text: bool = False,
) -> int:
    """Draw opaque rectangles onto the page content; returns the count drawn.

    With ``scrub_text`` the covered text is also removed via redaction
    annotations, so it no longer appears in the extracted text layer.
    """
    color = _unit_rgb(fill_rgb)
    drawn = [r for r in rects if not r.is_empty]
    if not drawn:
        return 0
    if scrub_text:
        for r in drawn:
            page.add_redact_annot(r, fill=color)
        page.apply_redactions(images=fitz.PDF_REDACT_IMAGE_NONE)
    shape = page.new_shape()
    for r in drawn:
        shape.draw_rect(r)
    shape.finish(color=None, fill=color)
    shape.commit(overlay=True)
    return len(drawn)


def label_pdf_rect(
    page: "fitz.Page",
    rect: "fitz.Rect",
    label: Optional[str],
    fill_rgb: RGB = (0, 0, 0),
    text_rgb: RGB = (255, 255, 255),
) -> None:
    fill_pdf_rects(page, [rect], fill_rgb)
    if label:
        page.insert_textbox(
            rect,
            label,
            fontsize=9,
            color=_unit_rgb(text_rgb),
            align=fitz.TEXT_ALIGN_CENTER,
        )


__all__ = [
    "fallback_layout",
    "redact_image",
    "label_image",
    "image_bytes",
    "images_to_pdf",
    "fill_pdf_rects",
    "label_pdf_rect",
]
