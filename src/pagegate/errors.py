"""Error taxonomy for the document pipeline.

Fatal errors (split failure, total extraction failure, classification
failure) propagate to the caller. Per-page extraction failures are recorded in
the aggregate result and never raised out of the orchestrator. Stale
selections are logged and skipped by the compositor.
"""

from __future__ import annotations

from typing import Any, Optional


class PagegateError(Exception):
    """Base class for all pipeline errors."""


class InvalidGeometry(PagegateError, ValueError):
    """A bounding box is malformed (missing keys, negative or non-finite)."""


class UnsupportedFormat(PagegateError):
    """The MIME type is not handled by the pipeline."""

    def __init__(self, mime_type: str) -> None:
        super().__init__(f"Unsupported file type: {mime_type or 'unknown'}")
        self.mime_type = mime_type


class PageSplitFailure(PagegateError):
    """The page renderer could not split the source into pages."""


class PageExtractionFailure(PagegateError):
    """A single page failed extraction. Recorded, not fatal."""

    def __init__(self, ordinal: int, message: str) -> None:
        super().__init__(f"Page {ordinal + 1}: {message}")
        self.ordinal = ordinal
        self.message = message


class NoPagesProcessed(PagegateError):
    """Every page of a non-empty document failed extraction."""

    def __init__(self, result: Any, message: str = "Failed to process any pages of the document") -> None:
        super().__init__(message)
        self.result = result


class ClassificationFailure(PagegateError):
    """The classification collaborator failed or returned garbage."""


class StaleSelection(PagegateError):
    """A redaction selection references a page past the document's extent."""

    def __init__(self, field_id: str, page_ordinal: int, page_count: int) -> None:
        super().__init__(
            f"Selection {field_id!r} targets page {page_ordinal + 1} "
            f"but the document has {page_count} page(s)"
        )
        self.field_id = field_id
        self.page_ordinal = page_ordinal
        self.page_count = page_count


class InvalidTransition(PagegateError):
    """An event is not valid in the current workflow phase."""

    def __init__(self, phase: Any, event: Any, detail: Optional[str] = None) -> None:
        name = event if isinstance(event, str) else type(event).__name__
        msg = f"{name} is not allowed in phase {getattr(phase, 'value', phase)}"
        if detail:
            msg = f"{msg}: {detail}"
        super().__init__(msg)
        self.phase = phase
        self.event = event


class ArtifactNotFound(PagegateError, KeyError):
    """No artifact is stored under the given locator."""


class FeedbackNotFound(PagegateError, KeyError):
    """No feedback record exists with the given id."""


__all__ = [
    "PagegateError",
    "InvalidGeometry",
    "UnsupportedFormat",
    "PageSplitFailure",
    "PageExtractionFailure",
    "NoPagesProcessed",
    "ClassificationFailure",
    "StaleSelection",
    "InvalidTransition",
    "ArtifactNotFound",
    "FeedbackNotFound",
]
