"""Shared helpers for interacting with Ollama LLM backends."""

from functools import lru_cache
from typing import Any, Dict

import orjson
import regex as re

from pagegate.llm import OllamaClient

_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


@lru_cache(maxsize=4)
def get_ollama_client(url: str) -> OllamaClient:
    return OllamaClient(url=url)


def parse_json_object(response: str) -> Dict[str, Any]:
    """Parse an LLM response as a JSON object, tolerating surrounding chatter.

    Raises ``ValueError`` when no object can be recovered.
    """
    try:
        parsed = orjson.loads(response)
    except orjson.JSONDecodeError:
        match = _OBJECT_RE.search(response or "")
        if not match:
            raise ValueError("LLM response contains no JSON object")
        parsed = orjson.loads(match.group(0))
    if not isinstance(parsed, dict):
        raise ValueError(f"Expected a JSON object, got {type(parsed).__name__}")
    return parsed


__all__ = ["get_ollama_client", "parse_json_object"]
