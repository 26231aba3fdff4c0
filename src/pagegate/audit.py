"""Audit records for pagegate runs.

An audit JSON is written alongside a redacted artifact. It carries hashes of
the source and the output, per-page fill counts, the configuration snapshot,
the classification decision and an optional HMAC signature when
``PAGEGATE_HMAC_KEY`` is present.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from pathlib import Path
import getpass
import hashlib
import hmac
import os
import socket
import time

import orjson

from .models import ClassificationResult, PipelineResult, RedactionResult


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def sign_record(record: Dict[str, Any], key: str) -> Dict[str, Any]:
    """HMAC-SHA256 over the orjson encoding of ``record`` (sorted keys)."""
    data = orjson.dumps(record, option=orjson.OPT_SORT_KEYS)
    sig = hmac.new(key.encode("utf-8"), data, hashlib.sha256).hexdigest()
    return {"alg": "HMAC-SHA256", "key_hint": "env:PAGEGATE_HMAC_KEY", "value": sig}


def build_audit(
    source: bytes,
    output: Optional[bytes] = None,
    *,
    source_name: Optional[str] = None,
    extraction: Optional[PipelineResult] = None,
    redaction: Optional[RedactionResult] = None,
    classification: Optional[ClassificationResult] = None,
    cfg: Optional[Dict[str, Any]] = None,
    errors: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """Assemble the audit record; signed when ``PAGEGATE_HMAC_KEY`` is set."""
    from pagegate import __version__ as version

    pages: List[Dict[str, Any]] = []
    if extraction is not None:
        for p in extraction.pages:
            pages.append(
                {
                    "ordinal": p.ordinal,
                    "success": p.success,
                    "error": p.error,
                    "fields": sum(1 for f in extraction.fields if f.page_ordinal == p.ordinal),
                    "fills": redaction.per_page.get(p.ordinal, 0) if redaction else 0,
                }
            )
    elif redaction is not None:
        pages = [
            {"ordinal": k, "fills": redaction.per_page.get(k, 0)}
            for k in range(redaction.page_count)
        ]

    record: Dict[str, Any] = {
        "version": version,
        "timestamp": int(time.time()),
        "user": getpass.getuser(),
        "host": socket.gethostname(),
        "input": {"name": source_name, "sha256": sha256_bytes(source)},
        "output": {
            "sha256": sha256_bytes(output) if output is not None else None,
            "content_type": redaction.content_type if redaction else None,
        },
        "config": cfg,
        "classification": classification.model_dump() if classification else None,
        "result": {
            "summary": {
                "pages": len(pages),
                "applied": redaction.applied if redaction else 0,
                "fallback": redaction.fallback if redaction else 0,
                "skipped": list(redaction.skipped) if redaction else [],
            },
            "pages": pages,
        },
        "errors": errors or [],
    }

    key = os.environ.get("PAGEGATE_HMAC_KEY")
    if key:
        record["hmac"] = sign_record(record, key)
    return record


def verify_audit(record: Dict[str, Any], key: str) -> bool:
    sig = record.get("hmac")
    if not sig:
        return False
    body = {k: v for k, v in record.items() if k != "hmac"}
    return hmac.compare_digest(sign_record(body, key)["value"], sig.get("value", ""))


def write_audit(output_path: str | Path, record: Dict[str, Any]) -> Path:
    """Write ``record`` next to ``output_path`` and return the audit path."""
    audit_path = Path(output_path).with_suffix(".audit.json")
    audit_path.write_bytes(orjson.dumps(record, option=orjson.OPT_INDENT_2))
    return audit_path
