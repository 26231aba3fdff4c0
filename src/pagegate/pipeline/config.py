"""Configuration primitives for the pagegate pipeline."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple


@dataclass
class RunConfig:
    """Runtime configuration for rendering, OCR, gating and redaction."""

    lang: str = "eng"
    psm: int = 3
    dpi: int = 300
    preprocess: bool = False
    auto_psm: bool = True
    min_word_conf: float = 30.0
    tess_configs: Optional[Dict[str, Any]] = None
    workers: int = 1
    confidence_threshold: float = 0.8
    redaction_padding: float = 2.0
    fill_rgb: Tuple[int, int, int] = (0, 0, 0)
    label_rgb: Tuple[int, int, int] = (255, 255, 255)
    fallback_columns: int = 3
    flatten_pdf: bool = False
    scrub_text: bool = False
    use_llm: bool = True
    llm_model: str = "gemma3:4b"
    llm_url: str = "http://localhost:11434/api/generate"
    llm_timeout: int = 120
    classify_prompt_path: Optional[str] = None
    match_prompt_path: Optional[str] = None
    taxonomy_path: Optional[str] = None

    def snapshot(self) -> Dict[str, Any]:
        """Plain dict view for audit records."""
        return asdict(self)


__all__ = ["RunConfig"]
