"""Classification confidence gate.

The gate is a pure state machine: :func:`transition` maps a frozen
:class:`GateSnapshot` and an event to the next snapshot. Every event carries
the generation it was issued under; events from an older generation (issued
before a reset) are dropped. :class:`ClassificationWorkflow` drives the
machine, calls the collaborators outside its lock and records feedback.

Phases::

    Idle -> Uploading -> Classifying -> Classified ----------> Processing -> Completed
                                     \\-> VerificationNeeded -/
    (any) -> Error            (any) -> Idle on Reset
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING, List, Optional, Tuple, Union

from pydantic import BaseModel, Field

from pagegate.errors import ClassificationFailure, InvalidTransition, UnsupportedFormat
from pagegate.logging import get_logger
from pagegate.models import (
    ClassificationFeedback,
    ClassificationResult,
    ExtractedField,
    FeedbackSource,
    PipelineResult,
)

from .compositor import composite, select_for_redaction
from .config import RunConfig
from .matching import apply_matches
from .orchestration import SUPPORTED_MIME_TYPES, ProgressSink, normalize_mime, process_document

if TYPE_CHECKING:  # pragma: no cover
    from pagegate.context import PipelineContext

logger = get_logger("pagegate.gate")


class Phase(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    CLASSIFYING = "classifying"
    CLASSIFIED = "classified"
    VERIFICATION_NEEDED = "verification_needed"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def terminal(self) -> bool:
        return self in (Phase.COMPLETED, Phase.ERROR)


class RedactionSummary(BaseModel):
    locator: str
    content_type: str
    page_count: int
    applied: int = 0
    fallback: int = 0
    skipped: List[str] = Field(default_factory=list)


class ProcessingOutcome(BaseModel):
    """What downstream processing produced for an accepted classification."""

    document_id: str
    document_type: str
    sub_type: Optional[str] = None
    extraction: PipelineResult
    missing_required: List[str] = Field(default_factory=list)
    redaction: Optional[RedactionSummary] = None

    @property
    def fields(self) -> List[ExtractedField]:
        return self.extraction.fields


@dataclass(frozen=True)
class GateSnapshot:
    phase: Phase = Phase.IDLE
    generation: int = 0
    document_id: Optional[str] = None
    classification: Optional[ClassificationResult] = None
    resolved_type: Optional[str] = None
    error: Optional[str] = None
    outcome: Optional[ProcessingOutcome] = None
    verification_episodes: int = 0


@dataclass(frozen=True)
class Event:
    generation: int


@dataclass(frozen=True)
class DocumentSupplied(Event):
    document_id: str


@dataclass(frozen=True)
class UploadSucceeded(Event):
    pass


@dataclass(frozen=True)
class ClassificationSucceeded(Event):
    result: ClassificationResult
    threshold: float = 0.8
    known_type: bool = True


@dataclass(frozen=True)
class VerificationResolved(Event):
    verified: bool
    corrected_type: Optional[str] = None


@dataclass(frozen=True)
class ProcessingStarted(Event):
    pass


@dataclass(frozen=True)
class ProcessingFinished(Event):
    outcome: ProcessingOutcome


@dataclass(frozen=True)
class Failed(Event):
    message: str


@dataclass(frozen=True)
class Reset(Event):
    pass


GateEvent = Union[
    DocumentSupplied,
    UploadSucceeded,
    ClassificationSucceeded,
    VerificationResolved,
    ProcessingStarted,
    ProcessingFinished,
    Failed,
    Reset,
]


def auto_accepts(result: ClassificationResult, threshold: float, known_type: bool = True) -> bool:
    return known_type and result.confidence >= threshold


def transition(state: GateSnapshot, event: Event) -> GateSnapshot:
    """Next snapshot for ``event``. Pure; raises :class:`InvalidTransition`."""
    if event.generation < state.generation:
        return state
    if event.generation > state.generation:
        raise InvalidTransition(state.phase, event, "event from a future generation")

    phase = state.phase
    if isinstance(event, Reset):
        return GateSnapshot(generation=state.generation + 1)
    if isinstance(event, Failed):
        return replace(state, phase=Phase.ERROR, error=event.message)

    if isinstance(event, DocumentSupplied) and phase is Phase.IDLE:
        return replace(state, phase=Phase.UPLOADING, document_id=event.document_id)
    if isinstance(event, UploadSucceeded) and phase is Phase.UPLOADING:
        return replace(state, phase=Phase.CLASSIFYING)
    if isinstance(event, ClassificationSucceeded) and phase is Phase.CLASSIFYING:
        if auto_accepts(event.result, event.threshold, event.known_type):
            return replace(
                state,
                phase=Phase.CLASSIFIED,
                classification=event.result,
                resolved_type=event.result.document_type,
            )
        return replace(
            state,
            phase=Phase.VERIFICATION_NEEDED,
            classification=event.result,
            verification_episodes=state.verification_episodes + 1,
        )
    if isinstance(event, VerificationResolved) and phase is Phase.VERIFICATION_NEEDED:
        if not event.verified and not (event.corrected_type or "").strip():
            raise InvalidTransition(phase, event, "a rejected classification needs a corrected type")
        resolved = (
            state.classification.document_type
            if event.verified and state.classification is not None
            else event.corrected_type
        )
        return replace(state, phase=Phase.PROCESSING, resolved_type=resolved)
    if isinstance(event, ProcessingStarted) and phase is Phase.CLASSIFIED:
        return replace(state, phase=Phase.PROCESSING)
    if isinstance(event, ProcessingFinished) and phase is Phase.PROCESSING:
        return replace(state, phase=Phase.COMPLETED, outcome=event.outcome)
    raise InvalidTransition(phase, event)


class ClassificationWorkflow:
    """Drive one document through the gate.

    State changes happen under a lock; classifier, extractor and store calls
    happen outside it with the generation captured at dispatch, so a
    :meth:`reset` during a slow call makes its result stale and dropped.
    """

    def __init__(
        self,
        context: "PipelineContext",
        cfg: Optional[RunConfig] = None,
        progress: Optional[ProgressSink] = None,
    ) -> None:
        self.context = context
        self.cfg = cfg or context.cfg
        self.progress = progress
        self._lock = threading.Lock()
        self._state = GateSnapshot()
        self._source: Optional[bytes] = None
        self._mime_type: str = ""
        self._source_locator: Optional[str] = None
        self._classifying = False
        self._processing = False

    @property
    def snapshot(self) -> GateSnapshot:
        with self._lock:
            return self._state

    @property
    def source_locator(self) -> Optional[str]:
        return self._source_locator

    def _apply_locked(self, event: Event) -> Tuple[GateSnapshot, bool]:
        before = self._state
        after = transition(before, event)
        if after is before:
            logger.debug(
                "Dropped stale event",
                extra={"extra": {"event": type(event).__name__, "generation": event.generation}},
            )
            return after, False
        self._state = after
        logger.info(
            "Gate transition",
            extra={
                "extra": {
                    "from": before.phase.value,
                    "to": after.phase.value,
                    "generation": after.generation,
                    "document_id": after.document_id,
                }
            },
        )
        return after, True

    def _apply(self, event: Event) -> Tuple[GateSnapshot, bool]:
        with self._lock:
            return self._apply_locked(event)

    def _fail(self, generation: int, exc: Exception) -> GateSnapshot:
        message = str(exc) or type(exc).__name__
        logger.error(
            "Workflow failed",
            extra={"extra": {"generation": generation, "error": message}},
        )
        with self._lock:
            if generation == self._state.generation:
                self._classifying = False
                self._processing = False
            return self._apply_locked(Failed(generation, message))[0]

    def _record_feedback(self, record: ClassificationFeedback) -> None:
        try:
            self.context.feedback.append(record)
        except Exception:
            logger.error(
                "Failed to record classification feedback",
                exc_info=True,
                extra={"extra": {"document_id": record.document_id}},
            )

    def submit(self, document_id: str, source: bytes, mime_type: str) -> GateSnapshot:
        """Accept a document and store the source artifact."""
        with self._lock:
            generation = self._state.generation
            self._apply_locked(DocumentSupplied(generation, document_id))
        mt = normalize_mime(mime_type)
        if mt not in SUPPORTED_MIME_TYPES:
            return self._fail(generation, UnsupportedFormat(mime_type))
        try:
            locator = self.context.artifacts.put(source, mt)
        except Exception as exc:
            return self._fail(generation, exc)
        with self._lock:
            if generation != self._state.generation:
                return self._state
            self._source, self._mime_type, self._source_locator = bytes(source), mt, locator
            return self._apply_locked(UploadSucceeded(generation))[0]

    def _threshold(self, result: ClassificationResult) -> Tuple[float, bool]:
        taxonomy = self.context.taxonomy
        if taxonomy is None:
            return self.cfg.confidence_threshold, True
        known = taxonomy.find(result.document_type) is not None
        return taxonomy.threshold_for(result.document_type, self.cfg.confidence_threshold), known

    def classify(self) -> GateSnapshot:
        """Run the classifier once and gate on its confidence."""
        with self._lock:
            state = self._state
            if state.phase is not Phase.CLASSIFYING:
                raise InvalidTransition(state.phase, "classify")
            if self._classifying:
                raise InvalidTransition(state.phase, "classify", "classification already in flight")
            self._classifying = True
            generation, source = state.generation, self._source
        classifier = self.context.classifier
        try:
            if classifier is None:
                raise ClassificationFailure("No classifier configured")
            result = classifier.classify(source or b"")
            if not isinstance(result, ClassificationResult):
                result = ClassificationResult.model_validate(result)
        except ClassificationFailure as exc:
            return self._fail(generation, exc)
        except Exception as exc:
            return self._fail(generation, ClassificationFailure(f"Classification failed: {exc}"))
        threshold, known = self._threshold(result)
        if not known:
            logger.warning(
                "Classified type is not in the taxonomy",
                extra={"extra": {"document_type": result.document_type}},
            )
        with self._lock:
            if generation == self._state.generation:
                self._classifying = False
            after, applied = self._apply_locked(
                ClassificationSucceeded(generation, result, threshold, known)
            )
        if applied and after.phase is Phase.CLASSIFIED:
            self._record_feedback(
                ClassificationFeedback(
                    document_id=after.document_id or "",
                    original_classification=result,
                    corrected_document_type=None,
                    document_sub_type=result.sub_type,
                    source=FeedbackSource.AUTO,
                )
            )
        return after

    def verify(self, verified: bool, corrected_type: Optional[str] = None) -> GateSnapshot:
        """Resolve an open verification episode; processing may follow."""
        with self._lock:
            state = self._state
            after, applied = self._apply_locked(
                VerificationResolved(state.generation, verified, corrected_type)
            )
        if applied:
            self._record_feedback(
                ClassificationFeedback(
                    document_id=after.document_id or "",
                    original_classification=state.classification,
                    corrected_document_type=None if verified else corrected_type,
                    document_sub_type=state.classification.sub_type if state.classification else None,
                    source=FeedbackSource.MANUAL,
                )
            )
        return after

    def _sub_type(self, state: GateSnapshot) -> Optional[str]:
        c = state.classification
        if c is not None and c.document_type == state.resolved_type:
            return c.sub_type
        return None

    def process(self, redact: bool = False) -> GateSnapshot:
        """Extract (and optionally redact) using the resolved document type."""
        with self._lock:
            state = self._state
            if state.phase is Phase.CLASSIFIED:
                state, _ = self._apply_locked(ProcessingStarted(state.generation))
            elif state.phase is not Phase.PROCESSING or self._processing:
                raise InvalidTransition(state.phase, "process")
            self._processing = True
            generation = state.generation
            source, mime_type = self._source or b"", self._mime_type
        try:
            outcome = self._run_processing(state, source, mime_type, redact)
        except Exception as exc:
            return self._fail(generation, exc)
        with self._lock:
            if generation == self._state.generation:
                self._processing = False
            return self._apply_locked(ProcessingFinished(generation, outcome))[0]

    def _run_processing(
        self, state: GateSnapshot, source: bytes, mime_type: str, redact: bool
    ) -> ProcessingOutcome:
        doc_type = state.resolved_type or ""
        sub_type = self._sub_type(state)
        taxonomy = self.context.taxonomy
        elements = taxonomy.expected_elements(doc_type, sub_type) if taxonomy else []
        result = process_document(
            source,
            mime_type,
            self.context.renderer,
            self.context.extractor,
            self.cfg,
            document_type=doc_type,
            progress=self.progress,
        )
        matches = []
        if self.context.matcher is not None and elements and result.fields:
            try:
                matches = self.context.matcher.match(result.fields, elements)
            except Exception:
                logger.warning("Field matcher failed; using label matching only", exc_info=True)
        fields, missing = apply_matches(result.fields, elements, matches)
        result = result.model_copy(update={"fields": fields})
        summary = None
        if redact:
            red = composite(
                source,
                mime_type,
                select_for_redaction(fields),
                self.cfg,
                page_renderer=self.context.renderer,
            )
            locator = self.context.artifacts.put(red.content, red.content_type)
            summary = RedactionSummary(
                locator=locator,
                content_type=red.content_type,
                page_count=red.page_count,
                applied=red.applied,
                fallback=red.fallback,
                skipped=red.skipped,
            )
        return ProcessingOutcome(
            document_id=state.document_id or "",
            document_type=doc_type,
            sub_type=sub_type,
            extraction=result,
            missing_required=missing,
            redaction=summary,
        )

    def run(
        self, document_id: str, source: bytes, mime_type: str, redact: bool = False
    ) -> GateSnapshot:
        """Submit and classify; process right away when auto-accepted."""
        state = self.submit(document_id, source, mime_type)
        if state.phase is Phase.CLASSIFYING:
            state = self.classify()
        if state.phase is Phase.CLASSIFIED:
            state = self.process(redact=redact)
        return state

    def reset(self) -> GateSnapshot:
        with self._lock:
            after, _ = self._apply_locked(Reset(self._state.generation))
            self._source = None
            self._mime_type = ""
            self._source_locator = None
            self._classifying = False
            self._processing = False
            return after


__all__ = [
    "Phase",
    "GateSnapshot",
    "Event",
    "DocumentSupplied",
    "UploadSucceeded",
    "ClassificationSucceeded",
    "VerificationResolved",
    "ProcessingStarted",
    "ProcessingFinished",
    "Failed",
    "Reset",
    "ProcessingOutcome",
    "RedactionSummary",
    "ClassificationWorkflow",
    "auto_accepts",
    "transition",
]
