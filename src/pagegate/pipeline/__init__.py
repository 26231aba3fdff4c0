"""Composable building blocks for the pagegate document pipeline."""

from .config import RunConfig
from .mapping import Surface, map_to_surface
from .orchestration import PageBuffer, process_document, process_path
from .compositor import composite, redact_document, select_for_redaction
from .gate import ClassificationWorkflow, GateSnapshot, Phase, transition

__all__ = [
    "RunConfig",
    "Surface",
    "map_to_surface",
    "PageBuffer",
    "process_document",
    "process_path",
    "composite",
    "redact_document",
    "select_for_redaction",
    "ClassificationWorkflow",
    "GateSnapshot",
    "Phase",
    "transition",
]
