"""FastAPI service exposing the pagegate classification gate.

* Pydantic models capture request/response payloads and enforce validation.
* Routers group health probes, document workflows, artifacts and feedback.
* Collaborators come from a :class:`~pagegate.context.PipelineContext`
  supplied by the ``get_context`` dependency; tests override it with fakes.
* Swagger UI (``/docs``) and ReDoc (``/redoc``) document every endpoint.

Run locally::

    uvicorn pagegate.api:app --host 0.0.0.0 --port 8000

Or via the CLI::

    pagegate serve --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from functools import lru_cache
from typing import Dict, List, Literal, Optional, Tuple
from uuid import uuid4

from fastapi import (
    APIRouter,
    Depends,
    FastAPI,
    File,
    Form,
    HTTPException,
    Response,
    UploadFile,
    status,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from . import __version__
from .context import PipelineContext, build_context
from .errors import ArtifactNotFound, FeedbackNotFound, InvalidTransition
from .feedback import FeedbackStats, TrainingClaim, claim_for_training, feedback_stats
from .health import run_readiness_checks
from .logging import get_logger
from .models import ClassificationFeedback, ClassificationResult, RedactionRequest
from .pipeline.compositor import redact_document
from .pipeline.gate import ClassificationWorkflow, Phase, ProcessingOutcome, RedactionSummary
from .pipeline.orchestration import SUPPORTED_MIME_TYPES, normalize_mime
from .settings import ServiceSettings, get_settings

settings: ServiceSettings = get_settings()
logger = get_logger("pagegate.api")


class HealthResponse(BaseModel):
    """Canonical health endpoint payload."""

    status: Literal["ok"] = "ok"


class ReadinessCheckModel(BaseModel):
    name: str
    status: Literal["pass", "warn", "fail"]
    detail: Optional[str] = None
    required: bool


class ReadyResponse(BaseModel):
    """Aggregated readiness response."""

    ready: bool
    checks: List[ReadinessCheckModel]


class DocumentView(BaseModel):
    """Public view of one document's gate state."""

    document_id: str
    phase: Phase
    generation: int
    classification: Optional[ClassificationResult] = None
    resolved_type: Optional[str] = None
    error: Optional[str] = None
    verification_episodes: int = 0
    source_locator: Optional[str] = None
    outcome: Optional[ProcessingOutcome] = None


class VerificationRequest(BaseModel):
    verified: bool
    corrected_type: Optional[str] = None
    redact: bool = False


class RedactionCreate(BaseModel):
    """Fields to redact from a completed document."""

    field_ids: List[str] = Field(min_length=1)
    fill_rgb: Optional[Tuple[int, int, int]] = None
    padding: Optional[float] = Field(None, ge=0)
    flatten: Optional[bool] = None


class TrainingFlagRequest(BaseModel):
    job_id: Optional[str] = None


class TrainingClaimRequest(BaseModel):
    document_type: str = "all"
    sub_type: Optional[str] = None
    limit: Optional[int] = Field(None, ge=1)
    job_id: Optional[str] = None


class FeedbackListResponse(BaseModel):
    items: List[ClassificationFeedback]
    total: int


class WorkflowRegistry:
    """In-memory map of document id to its workflow.

    Holds at most ``capacity`` workflows. When full, the oldest workflows in a
    terminal phase are evicted together with their stored source; workflows
    still in flight are never evicted.
    """

    def __init__(self, capacity: int = 1000) -> None:
        self.capacity = max(1, int(capacity))
        self._lock = threading.Lock()
        self._items: Dict[str, Tuple[ClassificationWorkflow, datetime]] = {}

    def _evict_locked(self) -> None:
        overflow = len(self._items) - self.capacity + 1
        if overflow <= 0:
            return
        terminal = sorted(
            (created, doc_id)
            for doc_id, (wf, created) in self._items.items()
            if wf.snapshot.phase.terminal
        )
        for _, doc_id in terminal[:overflow]:
            wf, _ = self._items.pop(doc_id)
            if wf.source_locator:
                wf.context.artifacts.delete(wf.source_locator)
            logger.info("Evicted workflow", extra={"extra": {"document_id": doc_id}})

    def create(self, document_id: str, context: PipelineContext) -> ClassificationWorkflow:
        with self._lock:
            if document_id in self._items:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail=f"Document {document_id} already exists",
                )
            self._evict_locked()
            wf = ClassificationWorkflow(context)
            self._items[document_id] = (wf, datetime.now(timezone.utc))
            return wf

    def get(self, document_id: str) -> ClassificationWorkflow:
        with self._lock:
            item = self._items.get(document_id)
        if item is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND, detail="Document not found"
            )
        return item[0]

    def __len__(self) -> int:
        return len(self._items)


@lru_cache(maxsize=1)
def get_context() -> PipelineContext:
    """Process-wide pipeline context built from :class:`ServiceSettings`."""
    return build_context(
        settings.to_run_config(),
        artifact_dir=settings.artifact_dir,
        feedback_path=settings.feedback_path,
    )


_registry = WorkflowRegistry(settings.max_documents)


def get_registry() -> WorkflowRegistry:
    return _registry


app = FastAPI(
    title="pagegate API",
    description="Classification-gated document extraction and redaction.",
    version=__version__,
    openapi_tags=[
        {"name": "health", "description": "Service health and readiness probes."},
        {"name": "documents", "description": "Upload, classify, verify and process documents."},
        {"name": "artifacts", "description": "Stored sources and redacted outputs."},
        {"name": "feedback", "description": "Classification feedback and training bookkeeping."},
    ],
)

if settings.cors_origins:
    allow_origins = ["*"] if "*" in settings.cors_origins else settings.cors_origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )


health_router = APIRouter(tags=["health"])
documents_router = APIRouter(prefix="/documents", tags=["documents"])
artifacts_router = APIRouter(prefix="/artifacts", tags=["artifacts"])
feedback_router = APIRouter(prefix="/feedback", tags=["feedback"])


def _view(document_id: str, wf: ClassificationWorkflow) -> DocumentView:
    snap = wf.snapshot
    return DocumentView(
        document_id=snap.document_id or document_id,
        phase=snap.phase,
        generation=snap.generation,
        classification=snap.classification,
        resolved_type=snap.resolved_type,
        error=snap.error,
        verification_episodes=snap.verification_episodes,
        source_locator=wf.source_locator,
        outcome=snap.outcome,
    )


def _conflict(exc: InvalidTransition) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


@health_router.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    return HealthResponse()


@health_router.get("/livez", response_model=HealthResponse)
def livez() -> HealthResponse:
    return HealthResponse(status="ok")


@health_router.get("/readyz", response_model=ReadyResponse)
def readyz():
    checks = run_readiness_checks(settings)
    ready = True
    payload: List[ReadinessCheckModel] = []
    for check in checks:
        payload.append(
            ReadinessCheckModel(
                name=check.name,
                status=check.status,
                detail=check.detail,
                required=check.required,
            )
        )
        if check.required and check.status == "fail":
            ready = False
        if (
            check.required
            and check.status == "warn"
            and not settings.allowance_warn_only_checks
        ):
            ready = False
    response = ReadyResponse(ready=ready, checks=payload)
    status_code = status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE
    return JSONResponse(status_code=status_code, content=response.model_dump())


@documents_router.post("", response_model=DocumentView, status_code=status.HTTP_201_CREATED)
async def create_document(
    file: UploadFile = File(...),
    document_id: Optional[str] = Form(None),
    redact: bool = Form(False),
    context: PipelineContext = Depends(get_context),
    registry: WorkflowRegistry = Depends(get_registry),
) -> DocumentView:
    """Upload a document, classify it and process it when auto-accepted."""
    mime_type = normalize_mime(file.content_type)
    if mime_type not in SUPPORTED_MIME_TYPES:
        raise HTTPException(
            status_code=status.HTTP_415_UNSUPPORTED_MEDIA_TYPE,
            detail=f"Unsupported content type: {file.content_type}",
        )
    content = await file.read()
    if not content:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Empty upload")
    doc_id = document_id or uuid4().hex
    wf = registry.create(doc_id, context)
    wf.run(doc_id, content, mime_type, redact=redact)
    return _view(doc_id, wf)


@documents_router.get("/{document_id}", response_model=DocumentView)
def get_document(
    document_id: str, registry: WorkflowRegistry = Depends(get_registry)
) -> DocumentView:
    return _view(document_id, registry.get(document_id))


@documents_router.post("/{document_id}/verification", response_model=DocumentView)
def verify_document(
    document_id: str,
    payload: VerificationRequest,
    registry: WorkflowRegistry = Depends(get_registry),
) -> DocumentView:
    """Confirm or correct a low-confidence classification."""
    wf = registry.get(document_id)
    try:
        snap = wf.verify(payload.verified, payload.corrected_type)
        if snap.phase is Phase.PROCESSING:
            wf.process(redact=payload.redact)
    except InvalidTransition as exc:
        raise _conflict(exc) from exc
    return _view(document_id, wf)


@documents_router.post("/{document_id}/reset", response_model=DocumentView)
def reset_document(
    document_id: str, registry: WorkflowRegistry = Depends(get_registry)
) -> DocumentView:
    wf = registry.get(document_id)
    wf.reset()
    return _view(document_id, wf)


@documents_router.post(
    "/{document_id}/redactions",
    response_model=RedactionSummary,
    status_code=status.HTTP_201_CREATED,
)
def create_redaction(
    document_id: str,
    payload: RedactionCreate,
    context: PipelineContext = Depends(get_context),
    registry: WorkflowRegistry = Depends(get_registry),
) -> RedactionSummary:
    """Redact selected fields of a completed document into a new artifact."""
    wf = registry.get(document_id)
    snap = wf.snapshot
    if snap.phase is not Phase.COMPLETED or snap.outcome is None or not wf.source_locator:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Document is {snap.phase.value}, not completed",
        )
    try:
        source = context.artifacts.get(wf.source_locator)
        mime_type = context.artifacts.content_type(wf.source_locator)
    except ArtifactNotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Source artifact missing"
        ) from exc
    result = redact_document(
        RedactionRequest(
            source=source,
            mime_type=mime_type,
            field_ids=payload.field_ids,
            fields=snap.outcome.fields,
            fill_rgb=payload.fill_rgb,
            padding=payload.padding,
            flatten=payload.flatten,
        ),
        wf.cfg,
        page_renderer=context.renderer,
    )
    locator = context.artifacts.put(result.content, result.content_type)
    return RedactionSummary(
        locator=locator,
        content_type=result.content_type,
        page_count=result.page_count,
        applied=result.applied,
        fallback=result.fallback,
        skipped=result.skipped,
    )


@artifacts_router.get("/{key}")
def download_artifact(key: str, context: PipelineContext = Depends(get_context)) -> Response:
    try:
        content = context.artifacts.get(key)
        media_type = context.artifacts.content_type(key)
    except ArtifactNotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Artifact not found"
        ) from exc
    return Response(content=content, media_type=media_type)


@feedback_router.get("", response_model=FeedbackListResponse)
def list_feedback(context: PipelineContext = Depends(get_context)) -> FeedbackListResponse:
    items = context.feedback.list()
    return FeedbackListResponse(items=items, total=len(items))


@feedback_router.get("/stats", response_model=FeedbackStats)
def get_feedback_stats(context: PipelineContext = Depends(get_context)) -> FeedbackStats:
    return feedback_stats(context.feedback.list())


@feedback_router.post("/claims", response_model=TrainingClaim)
def claim_feedback(
    payload: TrainingClaimRequest, context: PipelineContext = Depends(get_context)
) -> TrainingClaim:
    """Mark untrained feedback as used by a training job."""
    return claim_for_training(
        context.feedback,
        document_type=payload.document_type,
        sub_type=payload.sub_type,
        limit=payload.limit,
        job_id=payload.job_id,
    )


@feedback_router.post("/{record_id}/training", response_model=ClassificationFeedback)
def mark_feedback_trained(
    record_id: str,
    payload: Optional[TrainingFlagRequest] = None,
    context: PipelineContext = Depends(get_context),
) -> ClassificationFeedback:
    try:
        return context.feedback.update_training_flag(
            record_id, payload.job_id if payload else None
        )
    except FeedbackNotFound as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Feedback record not found"
        ) from exc


app.include_router(health_router)
app.include_router(documents_router)
app.include_router(artifacts_router)
app.include_router(feedback_router)


def run(
    host: Optional[str] = None,
    port: Optional[int] = None,
    reload: bool = False,
    workers: int = 1,
    log_level: str = "info",
) -> None:
    """Launch the API server via ``uvicorn``."""

    import uvicorn

    bind_host = host or settings.api_host
    bind_port = port or settings.api_port
    uvicorn.run(
        "pagegate.api:app",
        host=bind_host,
        port=bind_port,
        reload=reload,
        workers=workers,
        log_level=log_level,
    )
