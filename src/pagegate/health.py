"""Infrastructure readiness checks for API / Kubernetes probes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional
import shutil

import pytesseract
import requests

from .settings import ServiceSettings


@dataclass
class HealthCheckResult:
    name: str
    status: str  # "pass" | "fail" | "warn"
    detail: Optional[str] = None
    required: bool = True


def _check_tesseract(langs: List[str]) -> HealthCheckResult:
    try:
        pytesseract.get_tesseract_version()
    except (pytesseract.TesseractNotFoundError, OSError) as exc:
        return HealthCheckResult(name="tesseract", status="fail", detail=str(exc))

    try:
        available = set(pytesseract.get_languages(config=""))
    except (pytesseract.TesseractError, OSError):
        available = set()
    missing = [lang for lang in langs if lang not in available]
    if missing and available:
        return HealthCheckResult(
            name="tesseract",
            status="warn",
            detail=f"Missing language packs: {', '.join(missing)}",
        )
    if missing and not available:
        return HealthCheckResult(
            name="tesseract",
            status="warn",
            detail="Could not enumerate language packs; ensure tessdata is mounted.",
        )
    return HealthCheckResult(name="tesseract", status="pass")


def _check_pdf_renderer() -> HealthCheckResult:
    if shutil.which("pdftoppm") is None:
        return HealthCheckResult(
            name="poppler",
            status="warn",
            detail="Poppler not on PATH, PDFs are rasterized with PyMuPDF",
            required=False,
        )
    return HealthCheckResult(name="poppler", status="pass", required=False)


def _check_llm_endpoint(url: str, health_url: Optional[str]) -> HealthCheckResult:
    target = health_url or url
    try:
        resp = requests.request("HEAD", target, timeout=2)
    except requests.RequestException as exc:
        return HealthCheckResult(name="llm", status="fail", detail=str(exc))
    if resp.status_code >= 500:
        return HealthCheckResult(name="llm", status="fail", detail=f"HTTP {resp.status_code}")
    if resp.status_code == 405:
        return HealthCheckResult(
            name="llm",
            status="warn",
            detail="HEAD not supported, endpoint reachable",
        )
    return HealthCheckResult(name="llm", status="pass")


def run_readiness_checks(settings: ServiceSettings) -> List[HealthCheckResult]:
    checks: List[HealthCheckResult] = []
    if settings.readiness_check_ocr:
        checks.append(_check_tesseract(settings.readiness_tesseract_langs))
        checks.append(_check_pdf_renderer())
    if settings.readiness_check_llm:
        checks.append(
            _check_llm_endpoint(
                settings.llm_generate_url, settings.readiness_llm_health_url
            )
        )
    return checks
