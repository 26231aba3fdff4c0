"""Prompt loading helpers shared by LLM integrations."""

from __future__ import annotations

from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Optional

CLASSIFY_PROMPT_FILENAME = "classify.txt"
MATCH_PROMPT_FILENAME = "match_fields.txt"

CLASSIFY_PROMPT_FALLBACK = (
    "SYSTEM: You classify documents from their OCR text.\n"
    "Return STRICT JSON: {documentType, subType, confidence, reasoning}. "
    "confidence is a number between 0 and 1. Use one of the allowed document types "
    "when possible."
)

MATCH_PROMPT_FALLBACK = (
    "SYSTEM: You match extracted document fields to configured data elements.\n"
    "Ignore casing; treat underscores and spaces alike; match on meaning.\n"
    "Return STRICT JSON: {matches:[{extractedElementId, configuredElementId, confidence, reasoning}]}. "
    "Use null for configuredElementId when nothing matches."
)


@lru_cache(maxsize=16)
def _read_text_cached(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


@lru_cache(maxsize=4)
def _load_packaged_prompt(filename: str) -> Optional[str]:
    ref = resources.files("pagegate.data").joinpath("prompts", filename)
    if ref.is_file():
        return ref.read_text(encoding="utf-8")
    return None


def load_prompt(explicit_path: Optional[str], packaged_filename: str, fallback: str) -> str:
    """Resolve a prompt from an explicit path, the packaged copy, or the fallback."""
    if explicit_path:
        path_obj = Path(explicit_path)
        if path_obj.exists():
            return _read_text_cached(str(path_obj.resolve()))
    packaged_prompt = _load_packaged_prompt(packaged_filename)
    if packaged_prompt:
        return packaged_prompt
    return fallback


__all__ = [
    "load_prompt",
    "CLASSIFY_PROMPT_FILENAME",
    "MATCH_PROMPT_FILENAME",
    "CLASSIFY_PROMPT_FALLBACK",
    "MATCH_PROMPT_FALLBACK",
]
