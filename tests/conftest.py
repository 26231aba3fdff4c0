import io
import threading
import time
from typing import Dict, List, Optional

import fitz  # PyMuPDF
import pytest
from PIL import Image

from pagegate.context import PipelineContext
from pagegate.interfaces import Classifier, Extractor, PageRenderer
from pagegate.models import ClassificationResult
from pagegate.pipeline.config import RunConfig
from pagegate.taxonomy import load_taxonomy


def make_png(width: int = 100, height: int = 80, color=(255, 255, 255)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format="PNG")
    return buf.getvalue()


def make_pdf(pages: int = 1, width: float = 600, height: float = 800, rotation: int = 0) -> bytes:
    doc = fitz.open()
    for i in range(pages):
        page = doc.new_page(width=width, height=height)
        page.insert_text((72, 72), f"Page {i + 1}")
        if rotation:
            page.set_rotation(rotation)
    data = doc.tobytes()
    doc.close()
    return data


class FakeRenderer(PageRenderer):
    """Returns ``count`` blank PNG pages; ``declared`` overrides page_count."""

    def __init__(self, count: int, declared: Optional[int] = None, size=(100, 80)) -> None:
        self.count = count
        self.declared = count if declared is None else declared
        self.size = size

    def render(self, source: bytes, mime_type: str) -> List[bytes]:
        return [make_png(*self.size) for _ in range(self.count)]

    def page_count(self, source: bytes) -> int:
        return self.declared


class FakeExtractor(Extractor):
    """Scripted per-ordinal payloads.

    ``fail`` ordinals raise, ``delays`` sleep to shuffle completion order.
    """

    def __init__(
        self,
        fields: Optional[Dict[int, List[dict]]] = None,
        fail: tuple = (),
        delays: Optional[Dict[int, float]] = None,
    ) -> None:
        self.fields = fields or {}
        self.fail = set(fail)
        self.delays = delays or {}
        self.calls: List[int] = []
        self.document_types: List[str] = []
        self._lock = threading.Lock()

    def extract(self, page_bytes: bytes, ordinal: int, document_type: str = ""):
        with self._lock:
            self.calls.append(ordinal)
            self.document_types.append(document_type)
        if ordinal in self.delays:
            time.sleep(self.delays[ordinal])
        if ordinal in self.fail:
            raise RuntimeError(f"ocr exploded on page {ordinal + 1}")
        return {
            "success": True,
            "extractedText": f"text of page {ordinal + 1}",
            "extractedFields": self.fields.get(ordinal, []),
        }


class FakeClassifier(Classifier):
    def __init__(self, document_type: str = "Invoice", confidence: float = 0.92, error=None) -> None:
        self.result = ClassificationResult(document_type=document_type, confidence=confidence)
        self.error = error
        self.calls = 0

    def classify(self, content):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture
def taxonomy():
    return load_taxonomy("default")


@pytest.fixture
def make_context(taxonomy):
    def factory(
        classifier: Optional[Classifier] = None,
        extractor: Optional[Extractor] = None,
        renderer: Optional[PageRenderer] = None,
        **cfg_kwargs,
    ) -> PipelineContext:
        return PipelineContext(
            extractor=extractor or FakeExtractor(),
            classifier=classifier or FakeClassifier(),
            renderer=renderer or FakeRenderer(1),
            taxonomy=taxonomy,
            cfg=RunConfig(**cfg_kwargs),
        )

    return factory
