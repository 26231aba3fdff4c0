"""Contracts for the external collaborators of the pipeline.

Each contract is a plain base class whose methods raise
``NotImplementedError``; concrete adapters live in ``pagegate.ocr``,
``pagegate.storage``, ``pagegate.feedback``, ``pagegate.taxonomy`` and the
``pagegate.pipeline`` LLM modules. Tests substitute in-process fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Union

from .models import ClassificationFeedback, ClassificationResult, ExtractedField


class PageRenderer:
    """Splits a multi-page source into per-page image bytes."""

    def render(self, source: bytes, mime_type: str) -> List[bytes]:
        """Return one encoded image per page, in page order."""
        raise NotImplementedError

    def page_count(self, source: bytes) -> int:
        raise NotImplementedError


class Extractor:
    """OCR engine: page image in, text and fields out.

    The returned payload is a mapping (or an ``ExtractionPayload``) with keys
    ``success``, ``extractedText``, ``extractedFields`` and optionally
    ``error``, ``width`` and ``height``.
    """

    def extract(self, page_bytes: bytes, ordinal: int, document_type: str = "") -> Any:
        raise NotImplementedError


class Classifier:
    def classify(self, content: Union[bytes, str]) -> ClassificationResult:
        raise NotImplementedError


@dataclass(frozen=True)
class FieldMatch:
    """Advisory pairing of an extracted field with a configured element."""

    field_id: str
    element_id: Optional[str]
    confidence: float = 0.0
    reasoning: str = ""


class FieldMatcher:
    def match(
        self, fields: Sequence[ExtractedField], elements: Sequence[Any]
    ) -> List[FieldMatch]:
        raise NotImplementedError


class ArtifactStore:
    def put(self, content: bytes, content_type: str) -> str:
        """Persist bytes and return an opaque locator."""
        raise NotImplementedError

    def get(self, locator: str) -> bytes:
        raise NotImplementedError

    def content_type(self, locator: str) -> str:
        raise NotImplementedError

    def delete(self, locator: str) -> None:
        """Remove an artifact; unknown locators are ignored."""
        raise NotImplementedError


class FeedbackStore:
    """Append-only log of classification feedback."""

    def append(self, record: ClassificationFeedback) -> str:
        raise NotImplementedError

    def get(self, record_id: str) -> ClassificationFeedback:
        raise NotImplementedError

    def list(self) -> List[ClassificationFeedback]:
        raise NotImplementedError

    def update_training_flag(
        self, record_id: str, job_id: Optional[str] = None
    ) -> ClassificationFeedback:
        """Flip ``has_been_used_for_training`` to true. Never flips back."""
        raise NotImplementedError

    def purge_before(self, cutoff: datetime) -> int:
        """Retention sweep; returns the number of removed records."""
        raise NotImplementedError


class TaxonomyService:
    def expected_elements(self, document_type_id: str) -> List[Any]:
        raise NotImplementedError

    def find(self, name: str) -> Optional[Any]:
        raise NotImplementedError

    def threshold_for(self, document_type_id: str, default: float) -> float:
        return default

    def to_dict(self) -> Dict[str, Any]:
        return {}


__all__ = [
    "PageRenderer",
    "Extractor",
    "Classifier",
    "FieldMatch",
    "FieldMatcher",
    "ArtifactStore",
    "FeedbackStore",
    "TaxonomyService",
]
