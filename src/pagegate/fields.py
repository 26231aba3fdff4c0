"""Deterministic field detectors.

This module uses the third-party ``regex`` package and returns span
dictionaries compatible with :mod:`pagegate.align`. Three sources feed it:

- ``Label: value`` lines (the label becomes the field label);
- patterns configured on taxonomy elements;
- generic detectors (email, phone, IBAN, card number, date).

Overlapping spans keep the first source that claimed them, in that order.
"""

import regex as re
from typing import Any, Dict, List, Optional, Tuple

KEY_VALUE_RE = re.compile(
    r"^[ \t]*(?P<label>\p{L}[\p{L}\p{N} ./'_-]{1,40}?)[ \t]*:[ \t]*(?P<value>\S[^\n]*?)[ \t]*$",
    re.M,
)
EMAIL_RE = re.compile(r"[A-Z0-9._%+-]+@[A-Z0-9.-]+\.[A-Z]{2,}", re.I)
PHONE_RE = re.compile(r"(?:\+\d{1,3}[\s-]?)?(?:\(?\d{2,4}\)?[\s-]?)?\d{3,4}[\s-]?\d{3,4}")
IBAN_RE = re.compile(r"\b[A-Z]{2}\d{2}[A-Z0-9]{11,30}\b")
CREDIT_RE = re.compile(r"\b(?:\d[ -]*?){13,19}\b")
DATE_RE = re.compile(
    r"\b(?:\d{1,2}[./-]\d{1,2}[./-]\d{2,4}|\d{4}-\d{2}-\d{2}|\d{1,2} \p{L}{3,9} \d{4})\b"
)

GENERIC_DETECTORS = [
    ("Email", "Email", EMAIL_RE),
    ("IBAN", "Text", IBAN_RE),
    ("Credit Card", "Number", CREDIT_RE),
    ("Date", "Date", DATE_RE),
    ("Phone", "Phone", PHONE_RE),
]


def _overlaps(span: Tuple[int, int], taken: List[Tuple[int, int]]) -> bool:
    s, e = span
    return any(not (e <= ts or s >= te) for ts, te in taken)


def find_fields(
    text: str, patterns: Optional[Dict[str, str]] = None
) -> List[Dict[str, Any]]:
    """Find field-like spans.

    Parameters
    ----------
    text:
        Page text to scan.
    patterns:
        Optional ``{element name: regex}`` from the taxonomy.

    Returns
    -------
    list[dict]
        Span dictionaries with keys: ``label``, ``start``, ``end``, ``text``,
        ``data_type``, ``source``; sorted by ``start``.
    """
    out: List[Dict[str, Any]] = []
    taken: List[Tuple[int, int]] = []

    def add(label: str, start: int, end: int, data_type: str, source: str) -> None:
        if end <= start or _overlaps((start, end), taken):
            return
        taken.append((start, end))
        out.append({
            "label": label,
            "start": start,
            "end": end,
            "text": text[start:end],
            "data_type": data_type,
            "source": source,
        })

    for m in KEY_VALUE_RE.finditer(text):
        add(m.group("label").strip(), m.start("value"), m.end("value"), "Text", "KEY_VALUE")
    for name, pat in (patterns or {}).items():
        try:
            compiled = re.compile(pat)
        except re.error:
            continue
        for m in compiled.finditer(text):
            add(name, m.start(), m.end(), "Text", "TAXONOMY")
    for name, data_type, pat in GENERIC_DETECTORS:
        for m in pat.finditer(text):
            add(name, m.start(), m.end(), data_type, "REGEX")
    out.sort(key=lambda s: (s["start"], s["end"]))
    return out
