"""pagegate

Classification-gated document pipeline: split a PDF or image into pages,
extract text and fields per page, gate on classifier confidence with human
verification, and redact selected fields into a new artifact. See
``pagegate.pipeline`` for the composable APIs and ``pagegate.cli`` /
``pagegate.api`` for user entrypoints.
"""

__all__ = [
    "core",
    "geometry",
    "models",
    "ocr",
    "fields",
    "align",
    "redact",
    "taxonomy",
    "storage",
    "feedback",
    "audit",
    "api",
    "llm",
    "logging",
    "settings",
    "health",
]

__version__ = "0.1.0"
