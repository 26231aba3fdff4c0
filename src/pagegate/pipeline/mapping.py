"""Project normalized boxes onto concrete render surfaces.

A surface is whatever a box ends up drawn on: a page image, a PDF page in
user space, or a zoomed and rotated viewer canvas. ``width``/``height`` are the
displayed size at zoom 1, i.e. after rotation.
"""

from __future__ import annotations

from dataclasses import dataclass

from pagegate.errors import InvalidGeometry
from pagegate.geometry import BoundingBox, DeviceRect

_ROTATIONS = (0, 90, 180, 270)


@dataclass(frozen=True)
class Surface:
    width: float
    height: float
    flip_y: bool = False
    zoom: float = 1.0
    rotation: int = 0

    def __post_init__(self) -> None:
        if self.rotation % 360 not in _ROTATIONS:
            raise InvalidGeometry(f"Rotation must be a multiple of 90, got {self.rotation}")
        if self.width < 0 or self.height < 0 or self.zoom <= 0:
            raise InvalidGeometry("Surface dimensions must be non-negative and zoom positive")

    @property
    def device_width(self) -> float:
        return self.width * self.zoom

    @property
    def device_height(self) -> float:
        return self.height * self.zoom


def rotate_box(box: BoundingBox, rotation: int) -> BoundingBox:
    """Rotate a normalized box clockwise by ``rotation`` degrees about the page."""
    r = rotation % 360
    if r == 0:
        return box
    if r == 90:
        return BoundingBox(
            left=1.0 - box.bottom, top=box.left, width=box.height, height=box.width
        )
    if r == 180:
        return BoundingBox(
            left=1.0 - box.right, top=1.0 - box.bottom, width=box.width, height=box.height
        )
    if r == 270:
        return BoundingBox(
            left=box.top, top=1.0 - box.right, width=box.height, height=box.width
        )
    raise InvalidGeometry(f"Rotation must be a multiple of 90, got {rotation}")


def unrotate_box(box: BoundingBox, rotation: int) -> BoundingBox:
    """Inverse of :func:`rotate_box`."""
    return rotate_box(box, (360 - rotation % 360) % 360)


def map_to_surface(box: BoundingBox, surface: Surface) -> DeviceRect:
    """Map a normalized box to device units on ``surface``. Pure."""
    shown = rotate_box(box.clamp(), surface.rotation).clamp()
    return shown.to_device_rect(surface.device_width, surface.device_height, surface.flip_y)


__all__ = ["Surface", "map_to_surface", "rotate_box", "unrotate_box"]
