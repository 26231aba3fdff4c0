"""Explicit bundle of collaborator handles.

A :class:`PipelineContext` is built once by the caller (CLI, API, tests) and
passed to the workflow; nothing in the package keeps collaborators in module
globals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .feedback import FallbackFeedbackStore, InMemoryFeedbackStore, JsonlFeedbackStore
from .interfaces import (
    ArtifactStore,
    Classifier,
    Extractor,
    FeedbackStore,
    FieldMatcher,
    PageRenderer,
    TaxonomyService,
)
from .pipeline.config import RunConfig
from .storage import FallbackArtifactStore, InMemoryArtifactStore, LocalArtifactStore


@dataclass
class PipelineContext:
    extractor: Extractor
    classifier: Optional[Classifier] = None
    renderer: Optional[PageRenderer] = None
    matcher: Optional[FieldMatcher] = None
    artifacts: ArtifactStore = field(default_factory=InMemoryArtifactStore)
    feedback: FeedbackStore = field(default_factory=InMemoryFeedbackStore)
    taxonomy: Optional[TaxonomyService] = None
    cfg: RunConfig = field(default_factory=RunConfig)


def build_context(
    cfg: Optional[RunConfig] = None,
    artifact_dir: Optional[str] = None,
    feedback_path: Optional[str] = None,
) -> PipelineContext:
    """Wire the reference adapters: Tesseract OCR, Ollama LLM, local stores."""
    from .ocr import PdfPageRenderer, TesseractExtractor
    from .pipeline.classification import KeywordClassifier, OllamaClassifier
    from .pipeline.matching import OllamaFieldMatcher
    from .taxonomy import load_taxonomy

    cfg = cfg or RunConfig()
    taxonomy = load_taxonomy(cfg.taxonomy_path)
    renderer = PdfPageRenderer(dpi=cfg.dpi)
    extractor = TesseractExtractor(cfg, taxonomy)
    if cfg.use_llm:
        classifier: Classifier = OllamaClassifier(cfg, taxonomy, extractor, renderer)
        matcher: Optional[FieldMatcher] = OllamaFieldMatcher(cfg)
    else:
        classifier = KeywordClassifier(taxonomy, extractor, renderer)
        matcher = None

    artifacts: ArtifactStore = InMemoryArtifactStore()
    if artifact_dir:
        artifacts = FallbackArtifactStore(LocalArtifactStore(artifact_dir), artifacts)
    feedback: FeedbackStore = InMemoryFeedbackStore()
    if feedback_path:
        Path(feedback_path).parent.mkdir(parents=True, exist_ok=True)
        feedback = FallbackFeedbackStore(JsonlFeedbackStore(feedback_path), feedback)

    return PipelineContext(
        extractor=extractor,
        classifier=classifier,
        renderer=renderer,
        matcher=matcher,
        artifacts=artifacts,
        feedback=feedback,
        taxonomy=taxonomy,
        cfg=cfg,
    )


__all__ = ["PipelineContext", "build_context"]
