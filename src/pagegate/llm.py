"""Pluggable LLM client interface with retry/backoff.

Default implementation targets Ollama's `/api/generate` endpoint. Retries
live here, in the collaborator client; the pipeline never retries.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
import time

import requests

from .logging import get_logger

logger = get_logger("pagegate.llm")


class LLMClient:
    def generate(
        self,
        prompt: str,
        *,
        model: str,
        options: Optional[Dict[str, Any]] = None,
        timeout: int = 120,
        json_mode: bool = False,
    ) -> str:  # noqa: D401
        """Generate a completion. Implement in subclasses."""
        raise NotImplementedError


@dataclass
class OllamaClient(LLMClient):
    url: str = "http://localhost:11434/api/generate"
    retries: int = 2
    backoff: float = 1.5

    def _post(self, payload: Dict[str, Any], timeout: int) -> Dict[str, Any]:
        for attempt in range(self.retries + 1):
            try:
                r = requests.post(self.url, json=payload, timeout=timeout)
                r.raise_for_status()
                return r.json()
            except requests.RequestException as e:
                if attempt >= self.retries:
                    raise
                logger.warning(
                    "LLM request failed; retrying",
                    extra={"extra": {"attempt": attempt + 1, "error": str(e)}},
                )
                time.sleep(self.backoff * (attempt + 1))
        return {}

    def generate_raw(
        self,
        prompt: str,
        *,
        model: str,
        options: Optional[Dict[str, Any]] = None,
        timeout: int = 120,
        json_mode: bool = False,
    ) -> Dict[str, Any]:
        """Return full Ollama JSON (includes timings, counts) for explainability."""
        payload: Dict[str, Any] = {"model": model, "prompt": prompt, "stream": False}
        if options:
            payload["options"] = options
        if json_mode:
            payload["format"] = "json"
        return self._post(payload, timeout)

    def generate(
        self,
        prompt: str,
        *,
        model: str,
        options: Optional[Dict[str, Any]] = None,
        timeout: int = 120,
        json_mode: bool = False,
    ) -> str:
        raw = self.generate_raw(
            prompt, model=model, options=options, timeout=timeout, json_mode=json_mode
        )
        return raw.get("response", "")


__all__ = ["LLMClient", "OllamaClient"]
