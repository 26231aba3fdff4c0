"""Public entry points of the pagegate pipeline.

The implementation lives in ``pagegate.pipeline`` modules split by
responsibility (orchestration, mapping, compositing, gating). This module
re-exports the surface expected by downstream callers.
"""

from __future__ import annotations

from .context import PipelineContext, build_context
from .pipeline import (
    ClassificationWorkflow,
    GateSnapshot,
    PageBuffer,
    Phase,
    RunConfig,
    composite,
    process_document,
    process_path,
    redact_document,
    select_for_redaction,
    transition,
)

__all__ = [
    "ClassificationWorkflow",
    "GateSnapshot",
    "PageBuffer",
    "Phase",
    "PipelineContext",
    "RunConfig",
    "build_context",
    "composite",
    "process_document",
    "process_path",
    "redact_document",
    "select_for_redaction",
    "transition",
]
