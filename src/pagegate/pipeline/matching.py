"""Pair extracted fields with the elements configured for a document type."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence, Tuple

from pagegate.interfaces import FieldMatch, FieldMatcher
from pagegate.llm import LLMClient
from pagegate.logging import get_logger
from pagegate.models import ExtractedField
from pagegate.taxonomy import DataElementConfig, normalize_label

from .config import RunConfig
from .llm_utils import get_ollama_client, parse_json_object
from .prompts import MATCH_PROMPT_FALLBACK, MATCH_PROMPT_FILENAME, load_prompt

logger = get_logger("pagegate.matching")


def apply_matches(
    fields: Sequence[ExtractedField],
    elements: Sequence[DataElementConfig],
    matches: Sequence[FieldMatch] = (),
) -> Tuple[List[ExtractedField], List[str]]:
    """Assign element name, action and category to matching fields.

    Matcher suggestions win; otherwise labels are compared after
    :func:`normalize_label`. Required elements left unmatched are appended as
    placeholder fields flagged ``required_but_missing`` and their names are
    returned alongside.
    """
    by_id = {e.id: e for e in elements}
    by_label: Dict[str, DataElementConfig] = {}
    for e in elements:
        by_label.setdefault(normalize_label(e.name), e)
        by_label.setdefault(normalize_label(e.id), e)
    suggested = {m.field_id: m.element_id for m in matches if m.element_id in by_id}

    used = set()
    out: List[ExtractedField] = []
    for f in fields:
        el = by_id.get(suggested.get(f.id) or "") or by_label.get(normalize_label(f.label))
        if el is None:
            out.append(f)
            continue
        used.add(el.id)
        out.append(
            f.model_copy(
                update={
                    "label": el.name,
                    "original_label": f.original_label or f.label,
                    "action": el.action,
                    "category": el.category,
                    "data_type": el.type,
                }
            )
        )

    missing = [e for e in elements if e.required and e.id not in used]
    for e in missing:
        out.append(
            ExtractedField(
                id=f"missing-{e.id}",
                label=e.name,
                action=e.action,
                category=e.category,
                data_type=e.type,
                required_but_missing=True,
            )
        )
    return out, [e.name for e in missing]


def _confidence(value: Any) -> float:
    try:
        return min(max(float(value), 0.0), 1.0)
    except (TypeError, ValueError):
        return 0.0


class OllamaFieldMatcher(FieldMatcher):
    """Semantic field matching through a local Ollama model."""

    def __init__(self, cfg: RunConfig, client: Optional[LLMClient] = None) -> None:
        self.cfg = cfg
        self.client = client or get_ollama_client(cfg.llm_url)

    def build_prompt(
        self, fields: Sequence[ExtractedField], elements: Sequence[DataElementConfig]
    ) -> str:
        prompt = load_prompt(self.cfg.match_prompt_path, MATCH_PROMPT_FILENAME, MATCH_PROMPT_FALLBACK)
        user = {
            "configured_elements": [
                {
                    "id": e.id,
                    "name": e.name,
                    "description": e.description,
                    "category": e.category,
                    "action": e.action.value,
                }
                for e in elements
            ],
            "extracted_elements": [
                {"id": f.id, "label": f.label or "Unknown", "text": f.value, "type": f.data_type}
                for f in fields
            ],
        }
        return f"{prompt}\n\nUSER:\n{json.dumps(user)}"

    def match(
        self, fields: Sequence[ExtractedField], elements: Sequence[DataElementConfig]
    ) -> List[FieldMatch]:
        if not fields or not elements:
            return []
        response = self.client.generate(
            self.build_prompt(fields, elements),
            model=self.cfg.llm_model,
            timeout=self.cfg.llm_timeout,
            json_mode=True,
            options={"temperature": 0.01},
        )
        parsed = parse_json_object(response)
        known = {f.id for f in fields}
        out: List[FieldMatch] = []
        for raw in parsed.get("matches", []) or []:
            if not isinstance(raw, dict):
                continue
            field_id = raw.get("extractedElementId")
            if field_id is None or str(field_id) not in known:
                continue
            element_id = raw.get("configuredElementId")
            out.append(
                FieldMatch(
                    field_id=str(field_id),
                    element_id=None if element_id in (None, "", "null") else str(element_id),
                    confidence=_confidence(raw.get("confidence")),
                    reasoning=str(raw.get("reasoning") or ""),
                )
            )
        logger.debug("Field matches", extra={"extra": {"matches": len(out), "fields": len(known)}})
        return out


__all__ = ["OllamaFieldMatcher", "apply_matches"]
