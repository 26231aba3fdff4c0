"""Reference classifiers.

Both read the first page through the extraction collaborator and decide the
document type from its text. :class:`OllamaClassifier` asks a local model;
:class:`KeywordClassifier` scores taxonomy types by the element names found
in the text and needs no LLM.
"""

from __future__ import annotations

import json
from typing import Any, Dict, Optional, Union

import regex as re
from pydantic import ValidationError

from pagegate.errors import ClassificationFailure
from pagegate.interfaces import Classifier, Extractor, PageRenderer
from pagegate.llm import LLMClient
from pagegate.logging import get_logger
from pagegate.models import ClassificationResult, ExtractionPayload
from pagegate.taxonomy import Taxonomy, normalize_label

from .config import RunConfig
from .llm_utils import get_ollama_client, parse_json_object
from .orchestration import PDF_MIME
from .prompts import CLASSIFY_PROMPT_FALLBACK, CLASSIFY_PROMPT_FILENAME, load_prompt

logger = get_logger("pagegate.classification")

MAX_PROMPT_CHARS = 4000
_NON_WORD_RE = re.compile(r"[^\p{L}\p{N}]+")


def _words(value: str) -> str:
    return _NON_WORD_RE.sub(" ", normalize_label(value)).strip()


def first_page_text(
    content: Union[bytes, str],
    extractor: Optional[Extractor],
    renderer: Optional[PageRenderer],
) -> str:
    """Text of the first page; strings are taken as already-extracted text."""
    if isinstance(content, str):
        return content
    data = bytes(content)
    if data[:5] == b"%PDF-":
        if renderer is None:
            raise ClassificationFailure("A page renderer is required to classify PDFs")
        pages = renderer.render(data, PDF_MIME)
        if not pages:
            raise ClassificationFailure("Document contains no pages")
        data = pages[0]
    if extractor is None:
        raise ClassificationFailure("An extractor is required to classify binary content")
    raw = extractor.extract(data, 0, "")
    payload = raw if isinstance(raw, ExtractionPayload) else ExtractionPayload.model_validate(raw)
    if not payload.success:
        raise ClassificationFailure(payload.error or "Text extraction failed")
    return payload.text


def _result_from(parsed: dict) -> ClassificationResult:
    conf = parsed.get("confidence", 0.0)
    try:
        conf = float(conf)
    except (TypeError, ValueError):
        conf = 0.0
    if conf > 1.0:
        conf = conf / 100.0
    sub_type = parsed.get("subType") or parsed.get("sub_type")
    return ClassificationResult(
        document_type=str(parsed.get("documentType") or parsed.get("document_type") or "Unknown"),
        sub_type=str(sub_type) if sub_type else None,
        confidence=min(max(conf, 0.0), 1.0),
        reasoning=parsed.get("reasoning"),
    )


class OllamaClassifier(Classifier):
    def __init__(
        self,
        cfg: RunConfig,
        taxonomy: Optional[Taxonomy] = None,
        extractor: Optional[Extractor] = None,
        renderer: Optional[PageRenderer] = None,
        client: Optional[LLMClient] = None,
    ) -> None:
        self.cfg = cfg
        self.taxonomy = taxonomy
        self.extractor = extractor
        self.renderer = renderer
        self.client = client or get_ollama_client(cfg.llm_url)

    def build_prompt(self, text: str) -> str:
        prompt = load_prompt(
            self.cfg.classify_prompt_path, CLASSIFY_PROMPT_FILENAME, CLASSIFY_PROMPT_FALLBACK
        )
        user: Dict[str, Any] = {"text": text[:MAX_PROMPT_CHARS]}
        if self.taxonomy is not None:
            user["allowed_document_types"] = self.taxonomy.type_names()
        return f"{prompt}\n\nUSER:\n{json.dumps(user)}"

    def classify(self, content: Union[bytes, str]) -> ClassificationResult:
        text = first_page_text(content, self.extractor, self.renderer)
        if not text.strip():
            raise ClassificationFailure("No text found to classify")
        response = self.client.generate(
            self.build_prompt(text),
            model=self.cfg.llm_model,
            timeout=self.cfg.llm_timeout,
            json_mode=True,
        )
        try:
            result = _result_from(parse_json_object(response))
        except (ValueError, ValidationError) as exc:
            raise ClassificationFailure(f"Unusable classifier response: {exc}") from exc
        logger.info(
            "Document classified",
            extra={
                "extra": {
                    "document_type": result.document_type,
                    "confidence": result.confidence,
                    "model": self.cfg.llm_model,
                }
            },
        )
        return result


class KeywordClassifier(Classifier):
    """Offline classifier: type name and element names found in the text.

    Score = 0.5 if the type name appears, plus 0.5 times the share of the
    type's element names that appear.
    """

    def __init__(
        self,
        taxonomy: Taxonomy,
        extractor: Optional[Extractor] = None,
        renderer: Optional[PageRenderer] = None,
    ) -> None:
        self.taxonomy = taxonomy
        self.extractor = extractor
        self.renderer = renderer

    def classify(self, content: Union[bytes, str]) -> ClassificationResult:
        text = f" {_words(first_page_text(content, self.extractor, self.renderer))} "
        best: Optional[ClassificationResult] = None
        for dt in self.taxonomy.document_types:
            if not dt.is_active:
                continue
            names = [_words(e.name) for e in dt.data_elements]
            hits = [n for n in names if n and f" {n} " in text]
            score = 0.0
            if f" {_words(dt.name)} " in text:
                score += 0.5
            if names:
                score += 0.5 * len(hits) / len(names)
            if score > 0 and (best is None or score > best.confidence):
                best = ClassificationResult(
                    document_type=dt.name,
                    confidence=round(min(score, 1.0), 4),
                    reasoning=f"matched {len(hits)} of {len(names)} element names",
                )
        return best or ClassificationResult(
            document_type="Unknown", confidence=0.0, reasoning="no known type found"
        )


__all__ = ["KeywordClassifier", "OllamaClassifier", "first_page_text"]
