"""Page orchestration: split, extract per page, aggregate in page order."""

from __future__ import annotations

import io
import mimetypes
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

from PIL import Image, UnidentifiedImageError
from pydantic import ValidationError

from pagegate.errors import (
    InvalidGeometry,
    NoPagesProcessed,
    PageExtractionFailure,
    PageSplitFailure,
    PagegateError,
    UnsupportedFormat,
)
from pagegate.interfaces import Extractor, PageRenderer
from pagegate.logging import get_logger
from pagegate.models import (
    ExtractedField,
    ExtractionPayload,
    Page,
    PageOutcome,
    PageStatus,
    PipelineResult,
)

from .config import RunConfig

logger = get_logger("pagegate.orchestration")

PDF_MIME = "application/pdf"
SUPPORTED_IMAGE_TYPES = frozenset(
    {"image/jpeg", "image/png", "image/gif", "image/bmp", "image/webp", "image/tiff"}
)
SUPPORTED_MIME_TYPES = SUPPORTED_IMAGE_TYPES | {PDF_MIME}
_MIME_ALIASES = {"image/jpg": "image/jpeg", "image/x-ms-bmp": "image/bmp"}

ProgressSink = Callable[[str, int, int], None]


def normalize_mime(mime_type: Optional[str]) -> str:
    mt = (mime_type or "").split(";", 1)[0].strip().lower()
    return _MIME_ALIASES.get(mt, mt)


def guess_mime(path: str | Path) -> str:
    if Path(path).suffix.lower() == ".pdf":
        return PDF_MIME
    return normalize_mime(mimetypes.guess_type(str(path))[0])


class PageBuffer:
    """Ordinal-indexed slots for one run; each worker writes only its own slot."""

    def __init__(self, pages: List[Page]) -> None:
        ordinals = [p.ordinal for p in pages]
        if ordinals != list(range(len(pages))):
            raise PageSplitFailure(f"Page ordinals are not contiguous: {ordinals}")
        self._pages = pages

    @classmethod
    def of_size(cls, count: int) -> "PageBuffer":
        return cls([Page(ordinal=i) for i in range(count)])

    def __len__(self) -> int:
        return len(self._pages)

    def __iter__(self) -> Iterator[Page]:
        return iter(self._pages)

    def __getitem__(self, ordinal: int) -> Page:
        return self._pages[ordinal]

    @property
    def succeeded(self) -> List[Page]:
        return [p for p in self._pages if p.status is PageStatus.SUCCEEDED]

    def aggregate_text(self) -> str:
        parts = [
            f"[Page {p.ordinal + 1}]\n{p.extracted_text}"
            for p in self.succeeded
            if p.extracted_text.strip()
        ]
        return "\n\n".join(parts)

    def aggregate_fields(self) -> List[ExtractedField]:
        out: List[ExtractedField] = []
        for p in self.succeeded:
            out.extend(p.fields)
        return out

    def to_result(self) -> PipelineResult:
        ok = bool(self.succeeded)
        outcomes = [
            PageOutcome(
                ordinal=p.ordinal,
                success=p.status is PageStatus.SUCCEEDED,
                error=p.error,
                width=p.rendered_width,
                height=p.rendered_height,
            )
            for p in self._pages
        ]
        return PipelineResult(
            success=ok,
            error=None if ok else "Failed to process any pages of the document",
            extracted_text=self.aggregate_text(),
            fields=self.aggregate_fields(),
            pages=outcomes,
        )


def split_pages(
    source: bytes, mime_type: str, renderer: Optional[PageRenderer], cfg: RunConfig
) -> List[bytes]:
    """Return per-page image bytes; images become a single synthetic page."""
    mt = normalize_mime(mime_type)
    if mt in SUPPORTED_IMAGE_TYPES:
        return [source]
    if mt != PDF_MIME:
        raise UnsupportedFormat(mime_type)
    if renderer is None:
        from pagegate.ocr import PdfPageRenderer

        renderer = PdfPageRenderer(dpi=cfg.dpi)
    try:
        images = list(renderer.render(source, mt))
        expected = renderer.page_count(source)
    except PagegateError:
        raise
    except Exception as exc:
        raise PageSplitFailure(f"Failed to split document into pages: {exc}") from exc
    if not images:
        raise PageSplitFailure("Document contains no pages")
    if len(images) != expected:
        raise PageSplitFailure(
            f"Renderer produced {len(images)} page(s) but the document has {expected}"
        )
    return images


def _image_size(data: bytes) -> Tuple[int, int]:
    try:
        with Image.open(io.BytesIO(data)) as im:
            return im.size
    except (UnidentifiedImageError, OSError):
        logger.debug("Could not read page image size")
        return (0, 0)


def _extract_payload(
    extractor: Extractor, data: bytes, ordinal: int, document_type: str
) -> ExtractionPayload:
    try:
        raw = extractor.extract(data, ordinal, document_type)
    except Exception as exc:
        raise PageExtractionFailure(ordinal, str(exc) or type(exc).__name__) from exc
    try:
        payload = (
            raw if isinstance(raw, ExtractionPayload) else ExtractionPayload.model_validate(raw)
        )
    except (ValidationError, InvalidGeometry) as exc:
        raise PageExtractionFailure(ordinal, f"Invalid extraction payload: {exc}") from exc
    if not payload.success:
        raise PageExtractionFailure(ordinal, payload.error or "Extraction failed")
    return payload


def _with_ids(fields: List[ExtractedField], page_number: int) -> List[ExtractedField]:
    out = []
    for i, f in enumerate(fields, start=1):
        if not f.id:
            f = f.model_copy(update={"id": f"page-{page_number}-field-{i}"})
        out.append(f)
    return out


def _notify(progress: Optional[ProgressSink], message: str, done: int, total: int) -> None:
    if progress is None:
        return
    try:
        progress(message, done, total)
    except Exception:
        logger.warning("Progress sink raised; ignoring", exc_info=True)


def process_document(
    source: bytes,
    mime_type: str,
    renderer: Optional[PageRenderer],
    extractor: Extractor,
    cfg: Optional[RunConfig] = None,
    document_type: str = "",
    progress: Optional[ProgressSink] = None,
) -> PipelineResult:
    """Extract text and fields from every page of ``source``.

    Per-page failures are recorded in the result; if every page fails,
    :class:`NoPagesProcessed` is raised carrying the failed result.
    """
    cfg = cfg or RunConfig()
    page_images = split_pages(source, mime_type, renderer, cfg)
    buffer = PageBuffer.of_size(len(page_images))
    total = len(buffer)
    done = 0
    lock = threading.Lock()
    logger.info(
        "Processing document",
        extra={"extra": {"mime_type": normalize_mime(mime_type), "pages": total}},
    )
    _notify(progress, f"Processing {total} page(s)", 0, total)

    def work(ordinal: int, data: bytes) -> None:
        nonlocal done
        page = buffer[ordinal]
        try:
            payload = _extract_payload(extractor, data, ordinal, document_type)
        except PageExtractionFailure as exc:
            logger.warning(
                "Page extraction failed",
                extra={"extra": {"page": ordinal + 1, "error": exc.message}},
            )
            page.fail(exc.message)
        else:
            if payload.width and payload.height:
                size = (payload.width, payload.height)
            else:
                size = _image_size(data)
            page.succeed(payload.text, _with_ids(payload.fields, ordinal + 1), size)
        with lock:
            done += 1
            finished = done
        _notify(progress, f"Processed page {ordinal + 1} of {total}", finished, total)

    if cfg.workers > 1 and total > 1:
        with ThreadPoolExecutor(max_workers=min(cfg.workers, total)) as ex:
            futs = [ex.submit(work, i, data) for i, data in enumerate(page_images)]
            for fut in as_completed(futs):
                fut.result()
    else:
        for i, data in enumerate(page_images):
            work(i, data)

    result = buffer.to_result()
    _notify(progress, "Processing complete", total, total)
    if not result.success:
        raise NoPagesProcessed(result)
    logger.info(
        "Document processed",
        extra={
            "extra": {
                "pages": total,
                "succeeded": len(result.succeeded_pages),
                "fields": len(result.fields),
            }
        },
    )
    return result


def process_path(
    input_path: str,
    renderer: Optional[PageRenderer],
    extractor: Extractor,
    cfg: Optional[RunConfig] = None,
    document_type: str = "",
    progress: Optional[ProgressSink] = None,
) -> PipelineResult:
    path = Path(input_path)
    if not path.exists():
        raise FileNotFoundError(f"Input not found: {input_path}")
    return process_document(
        path.read_bytes(), guess_mime(path), renderer, extractor, cfg, document_type, progress
    )


__all__ = [
    "PDF_MIME",
    "SUPPORTED_IMAGE_TYPES",
    "SUPPORTED_MIME_TYPES",
    "PageBuffer",
    "ProgressSink",
    "guess_mime",
    "normalize_mime",
    "process_document",
    "process_path",
    "split_pages",
]
