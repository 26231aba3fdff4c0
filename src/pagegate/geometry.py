"""Canonical bounding-box geometry.

OCR engines report field locations in one of two wire schemas:

- ``{"x", "y", "width", "height"}`` (lowercase, generic OCR output)
- ``{"Left", "Top", "Width", "Height"}`` (capitalized, Textract style)

Both describe a rectangle normalized to the page, ``[0, 1]`` on each axis.
:meth:`BoundingBox.normalize` is the single entry point that accepts either
schema (and our own ``left/top`` dumps); every other module works with
:class:`BoundingBox` only.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable, Mapping, Tuple

from pydantic import BaseModel, ConfigDict

from .errors import InvalidGeometry


class BoxSchema(str, Enum):
    """Wire schema a raw bounding box was reported in."""

    GENERIC = "generic"  # x, y, width, height
    TEXTRACT = "textract"  # Left, Top, Width, Height
    CANONICAL = "canonical"  # left, top, width, height (our own dumps)


_SCHEMA_KEYS = {
    BoxSchema.GENERIC: ("x", "y", "width", "height"),
    BoxSchema.TEXTRACT: ("Left", "Top", "Width", "Height"),
    BoxSchema.CANONICAL: ("left", "top", "width", "height"),
}


def detect_schema(raw: Mapping[str, Any]) -> BoxSchema:
    """Discriminate the wire schema by its capitalized dimension keys."""
    if "Width" in raw or "Height" in raw:
        return BoxSchema.TEXTRACT
    if "left" in raw and "top" in raw:
        return BoxSchema.CANONICAL
    return BoxSchema.GENERIC


def _coerce(value: Any, key: str) -> float:
    if isinstance(value, bool):
        raise InvalidGeometry(f"{key} must be numeric, got bool")
    try:
        num = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidGeometry(f"{key} must be numeric, got {value!r}") from exc
    if not math.isfinite(num):
        raise InvalidGeometry(f"{key} must be finite, got {value!r}")
    if num < 0:
        raise InvalidGeometry(f"{key} must be non-negative, got {num}")
    return num


class BoundingBox(BaseModel):
    """Rectangle in normalized page coordinates (origin top-left)."""

    model_config = ConfigDict(frozen=True)

    left: float
    top: float
    width: float
    height: float

    @classmethod
    def normalize(cls, raw: Any) -> "BoundingBox":
        """Build a box from either wire schema.

        Raises
        ------
        InvalidGeometry
            If keys are missing or any value is negative, non-numeric or
            non-finite.
        """
        if isinstance(raw, BoundingBox):
            return raw
        if not isinstance(raw, Mapping):
            raise InvalidGeometry(f"Bounding box must be a mapping, got {type(raw).__name__}")
        schema = detect_schema(raw)
        keys = _SCHEMA_KEYS[schema]
        missing = [k for k in keys if k not in raw]
        if missing:
            raise InvalidGeometry(
                f"Bounding box ({schema.value}) is missing keys: {', '.join(missing)}"
            )
        left, top, width, height = (_coerce(raw[k], k) for k in keys)
        return cls(left=left, top=top, width=width, height=height)

    def clamp(self) -> "BoundingBox":
        """Restrict the box to the page.

        Left/top are clamped into ``[0, 1]``; width/height shrink so the box
        never extends past the page edge. The origin is never moved inward to
        compensate for an oversized box.
        """
        left = min(max(self.left, 0.0), 1.0)
        top = min(max(self.top, 0.0), 1.0)
        width = min(max(self.width, 0.0), 1.0 - left)
        height = min(max(self.height, 0.0), 1.0 - top)
        if (left, top, width, height) == (self.left, self.top, self.width, self.height):
            return self
        return BoundingBox(left=left, top=top, width=width, height=height)

    @property
    def right(self) -> float:
        return self.left + self.width

    @property
    def bottom(self) -> float:
        return self.top + self.height

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def to_device_rect(
        self, surface_width: float, surface_height: float, flip_y: bool = False
    ) -> "DeviceRect":
        """Scale to a surface. ``flip_y`` uses the PDF origin (bottom-left)."""
        x = self.left * surface_width
        w = self.width * surface_width
        h = self.height * surface_height
        if flip_y:
            y = surface_height - self.top * surface_height - self.height * surface_height
        else:
            y = self.top * surface_height
        return DeviceRect(x=x, y=y, width=w, height=h)

    @staticmethod
    def union(boxes: Iterable["BoundingBox"]) -> "BoundingBox":
        """Smallest box covering all inputs."""
        items = list(boxes)
        if not items:
            raise InvalidGeometry("Cannot take the union of zero boxes")
        left = min(b.left for b in items)
        top = min(b.top for b in items)
        right = max(b.right for b in items)
        bottom = max(b.bottom for b in items)
        return BoundingBox(left=left, top=top, width=right - left, height=bottom - top)


@dataclass(frozen=True)
class DeviceRect:
    """Rectangle in device units of a concrete surface."""

    x: float
    y: float
    width: float
    height: float

    def pad(self, padding: float, surface_width: float, surface_height: float) -> "DeviceRect":
        """Inflate on all sides while clamping to the surface bounds."""
        x2 = max(0.0, self.x - padding)
        y2 = max(0.0, self.y - padding)
        w2 = min(surface_width - x2, self.width + 2 * padding)
        h2 = min(surface_height - y2, self.height + 2 * padding)
        return DeviceRect(x=x2, y=y2, width=max(0.0, w2), height=max(0.0, h2))

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return (self.x, self.y, self.x + self.width, self.y + self.height)

    @property
    def area(self) -> float:
        return self.width * self.height


__all__ = ["BoundingBox", "BoxSchema", "DeviceRect", "detect_schema"]
