"""Data model shared by the pipeline, the workflow and the HTTP layer."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .geometry import BoundingBox


class FieldAction(str, Enum):
    """What the pipeline does with an extracted datum."""

    EXTRACT = "Extract"
    REDACT = "Redact"
    EXTRACT_AND_REDACT = "ExtractAndRedact"
    IGNORE = "Ignore"

    @property
    def redacts(self) -> bool:
        return self in (FieldAction.REDACT, FieldAction.EXTRACT_AND_REDACT)


class PageStatus(str, Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


def _scale_confidence(value: Any) -> float:
    # Textract and Tesseract report 0-100.
    num = float(value or 0.0)
    if num > 1.0:
        num = num / 100.0
    return min(max(num, 0.0), 1.0)


class ExtractedField(BaseModel):
    """One extracted element, optionally with geometry for redaction."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = ""
    label: str = ""
    value: str = Field("", validation_alias=AliasChoices("value", "text"))
    confidence: float = 0.0
    page_ordinal: int = Field(
        0, validation_alias=AliasChoices("page_ordinal", "pageOrdinal", "pageIndex")
    )
    bounding_box: Optional[BoundingBox] = Field(None, alias="boundingBox")
    word_boxes: List[BoundingBox] = Field(default_factory=list, alias="wordBoxes")
    action: FieldAction = FieldAction.EXTRACT
    category: str = "General"
    data_type: str = Field("Text", alias="dataType")
    original_label: Optional[str] = Field(None, alias="originalLabel")
    required_but_missing: bool = Field(False, alias="requiredButMissing")

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, value: Any) -> float:
        return _scale_confidence(value)

    @field_validator("bounding_box", mode="before")
    @classmethod
    def _box(cls, value: Any) -> Optional[BoundingBox]:
        if value is None:
            return None
        return BoundingBox.normalize(value)

    @field_validator("word_boxes", mode="before")
    @classmethod
    def _word_boxes(cls, value: Any) -> List[BoundingBox]:
        boxes: List[BoundingBox] = []
        for item in value or []:
            # Word blocks may wrap their geometry: {"text": ..., "boundingBox": {...}}
            if isinstance(item, dict) and "boundingBox" in item:
                item = item["boundingBox"]
            if item is None:
                continue
            boxes.append(BoundingBox.normalize(item))
        return boxes

    @property
    def has_geometry(self) -> bool:
        return self.bounding_box is not None or bool(self.word_boxes)


class ExtractionPayload(BaseModel):
    """Validated response of an extraction collaborator for one page."""

    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    error: Optional[str] = None
    text: str = Field("", alias="extractedText")
    fields: List[ExtractedField] = Field(default_factory=list, alias="extractedFields")
    width: Optional[int] = None
    height: Optional[int] = None

    @field_validator("text", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        return "" if value is None else str(value)


@dataclass
class Page:
    """One unit of a multi-page source, resolved exactly once."""

    ordinal: int
    rendered_width: int = 0
    rendered_height: int = 0
    status: PageStatus = PageStatus.PENDING
    error: Optional[str] = None
    extracted_text: str = ""
    fields: List[ExtractedField] = field(default_factory=list)

    def _ensure_pending(self) -> None:
        if self.status is not PageStatus.PENDING:
            raise RuntimeError(f"Page {self.ordinal} was already resolved ({self.status.value})")

    def succeed(self, text: str, fields: List[ExtractedField], size: Tuple[int, int]) -> None:
        self._ensure_pending()
        self.rendered_width, self.rendered_height = size
        self.extracted_text = text
        self.fields = [f.model_copy(update={"page_ordinal": self.ordinal}) for f in fields]
        self.status = PageStatus.SUCCEEDED

    def fail(self, error: str) -> None:
        self._ensure_pending()
        self.error = error
        self.status = PageStatus.FAILED


class PageOutcome(BaseModel):
    ordinal: int
    success: bool
    error: Optional[str] = None
    width: int = 0
    height: int = 0


class PipelineResult(BaseModel):
    """Aggregate of one orchestrator run, always in ordinal order."""

    success: bool
    error: Optional[str] = None
    extracted_text: str = ""
    fields: List[ExtractedField] = Field(default_factory=list)
    pages: List[PageOutcome] = Field(default_factory=list)

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def succeeded_pages(self) -> List[int]:
        return [p.ordinal for p in self.pages if p.success]


class ClassificationResult(BaseModel):
    """Output of the classification collaborator. Immutable."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    document_type: str = Field(alias="documentType")
    sub_type: Optional[str] = Field(None, alias="subType")
    confidence: float = Field(ge=0.0, le=1.0)
    reasoning: Optional[str] = None


class FeedbackSource(str, Enum):
    AUTO = "auto"
    MANUAL = "manual"
    REVIEW = "review"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ClassificationFeedback(BaseModel):
    """Training signal recorded once per classification decision."""

    id: str = Field(default_factory=lambda: uuid4().hex)
    document_id: str
    original_classification: Optional[ClassificationResult] = None
    corrected_document_type: Optional[str] = None
    document_sub_type: Optional[str] = None
    source: FeedbackSource = FeedbackSource.MANUAL
    timestamp: datetime = Field(default_factory=_utcnow)
    has_been_used_for_training: bool = False
    training_job_id: Optional[str] = None
    trained_at: Optional[datetime] = None

    @property
    def effective_document_type(self) -> str:
        if self.corrected_document_type:
            return self.corrected_document_type
        if self.original_classification is not None:
            return self.original_classification.document_type
        return "Unknown"

    def mark_used_for_training(self, job_id: Optional[str] = None) -> "ClassificationFeedback":
        """Return a copy flagged as used; already-flagged records are returned as is."""
        if self.has_been_used_for_training:
            return self
        return self.model_copy(
            update={
                "has_been_used_for_training": True,
                "training_job_id": job_id,
                "trained_at": _utcnow(),
            }
        )


class RedactionRequest(BaseModel):
    """Inputs of a single redaction call."""

    source: bytes
    mime_type: str
    field_ids: List[str]
    fields: List[ExtractedField]
    fill_rgb: Optional[Tuple[int, int, int]] = None
    padding: Optional[float] = None
    flatten: Optional[bool] = None


class RedactionResult(BaseModel):
    """New artifact produced by the compositor; the source is never touched."""

    content: bytes
    content_type: str
    page_count: int
    applied: int = 0
    fallback: int = 0
    skipped: List[str] = Field(default_factory=list)
    per_page: Dict[int, int] = Field(default_factory=dict)


__all__ = [
    "FieldAction",
    "PageStatus",
    "ExtractedField",
    "ExtractionPayload",
    "Page",
    "PageOutcome",
    "PipelineResult",
    "ClassificationResult",
    "FeedbackSource",
    "ClassificationFeedback",
    "RedactionRequest",
    "RedactionResult",
]
