"""Service configuration helpers for deployment environments.

All ``PAGEGATE_*`` environment lookups live here so the CLI and the FastAPI
app read configuration the same way, without import-time side effects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional
import os

from .pipeline.config import RunConfig


def _parse_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    v = value.strip().lower()
    if v in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if v in {"0", "false", "f", "no", "n", "off"}:
        return False
    return default


def _split_csv(value: str | None) -> List[str]:
    if not value:
        return []
    return [p.strip() for p in value.split(",") if p.strip()]


@dataclass
class ServiceSettings:
    """Runtime settings tailored for container/Kubernetes deployments."""

    api_host: str = "127.0.0.1"
    api_port: int = 8000
    cors_origins: List[str] = field(default_factory=list)
    artifact_dir: Optional[str] = None
    feedback_path: Optional[str] = None
    taxonomy_path: Optional[str] = None
    confidence_threshold: float = 0.8
    workers: int = 1
    dpi: int = 300
    lang: str = "eng"
    use_llm: bool = True
    llm_model: str = "gemma3:4b"
    llm_generate_url: str = "http://localhost:11434/api/generate"
    readiness_check_ocr: bool = True
    readiness_check_llm: bool = False
    readiness_tesseract_langs: List[str] = field(default_factory=lambda: ["eng"])
    readiness_llm_health_url: Optional[str] = None
    allowance_warn_only_checks: bool = True
    max_documents: int = 1000

    @staticmethod
    def from_env() -> "ServiceSettings":
        env = os.environ
        return ServiceSettings(
            api_host=env.get("PAGEGATE_API_HOST", "127.0.0.1"),
            api_port=int(env.get("PAGEGATE_API_PORT", "8000")),
            cors_origins=_split_csv(env.get("PAGEGATE_API_CORS_ORIGINS")),
            artifact_dir=env.get("PAGEGATE_ARTIFACT_DIR") or None,
            feedback_path=env.get("PAGEGATE_FEEDBACK_PATH") or None,
            taxonomy_path=env.get("PAGEGATE_TAXONOMY") or None,
            confidence_threshold=float(env.get("PAGEGATE_CONFIDENCE_THRESHOLD", "0.8")),
            workers=int(env.get("PAGEGATE_WORKERS", "1")),
            dpi=int(env.get("PAGEGATE_DPI", "300")),
            lang=env.get("PAGEGATE_LANG", "eng"),
            use_llm=_parse_bool(env.get("PAGEGATE_USE_LLM"), default=True),
            llm_model=env.get("PAGEGATE_LLM_MODEL", "gemma3:4b"),
            llm_generate_url=env.get(
                "PAGEGATE_LLM_URL", "http://localhost:11434/api/generate"
            ),
            readiness_check_ocr=_parse_bool(
                env.get("PAGEGATE_READY_CHECK_OCR"), default=True
            ),
            readiness_check_llm=_parse_bool(
                env.get("PAGEGATE_READY_CHECK_LLM"), default=False
            ),
            readiness_tesseract_langs=_split_csv(env.get("PAGEGATE_READY_TESS_LANGS"))
            or ["eng"],
            readiness_llm_health_url=env.get("PAGEGATE_LLM_HEALTH_URL"),
            allowance_warn_only_checks=_parse_bool(
                env.get("PAGEGATE_READY_WARN_ONLY"), default=True
            ),
            max_documents=int(env.get("PAGEGATE_MAX_DOCUMENTS", "1000")),
        )

    def to_run_config(self) -> RunConfig:
        return RunConfig(
            lang=self.lang,
            dpi=self.dpi,
            workers=self.workers,
            confidence_threshold=self.confidence_threshold,
            use_llm=self.use_llm,
            llm_model=self.llm_model,
            llm_url=self.llm_generate_url,
            taxonomy_path=self.taxonomy_path,
        )


@lru_cache(maxsize=1)
def get_settings() -> ServiceSettings:
    """Return cached service settings."""
    return ServiceSettings.from_env()


def reset_settings_cache() -> None:
    """Reset cached settings (useful in tests)."""
    get_settings.cache_clear()  # type: ignore[attr-defined]
