import math

import pytest

from pagegate.errors import InvalidGeometry
from pagegate.geometry import BoundingBox, BoxSchema, DeviceRect, detect_schema


def test_generic_and_textract_schemas_normalize_to_same_box():
    generic = BoundingBox.normalize({"x": 0.1, "y": 0.2, "width": 0.3, "height": 0.05})
    textract = BoundingBox.normalize({"Left": 0.1, "Top": 0.2, "Width": 0.3, "Height": 0.05})
    assert generic == textract
    assert detect_schema({"Left": 0, "Top": 0, "Width": 1, "Height": 1}) is BoxSchema.TEXTRACT
    assert detect_schema({"x": 0, "y": 0, "width": 1, "height": 1}) is BoxSchema.GENERIC


def test_canonical_dump_round_trips():
    box = BoundingBox(left=0.25, top=0.5, width=0.1, height=0.1)
    assert detect_schema(box.model_dump()) is BoxSchema.CANONICAL
    assert BoundingBox.normalize(box.model_dump()) == box
    assert BoundingBox.normalize({"Left": 0.25, "Top": 0.5, "Width": 0.1, "Height": 0.1}) == box


@pytest.mark.parametrize(
    "raw",
    [
        {"x": -0.1, "y": 0, "width": 0.1, "height": 0.1},
        {"x": 0, "y": 0, "width": "wide", "height": 0.1},
        {"x": 0, "y": 0, "width": math.inf, "height": 0.1},
        {"x": 0, "y": 0, "width": 0.1},
        [0, 0, 1, 1],
    ],
)
def test_invalid_boxes_are_rejected(raw):
    with pytest.raises(InvalidGeometry):
        BoundingBox.normalize(raw)


def test_clamp_shrinks_without_moving_origin():
    box = BoundingBox(left=0.9, top=0.95, width=0.5, height=0.2).clamp()
    assert box.left == pytest.approx(0.9)
    assert box.top == pytest.approx(0.95)
    assert box.right == pytest.approx(1.0)
    assert box.bottom == pytest.approx(1.0)


@pytest.mark.parametrize(
    "raw",
    [
        {"x": 0.9, "y": 0.95, "width": 0.5, "height": 0.2},
        {"x": 1.0, "y": 0.5, "width": 0.2, "height": 0.1},
        {"x": 0.3, "y": 0.3, "width": 0.0, "height": 0.0},
        {"x": 0.1, "y": 0.2, "width": 0.3, "height": 0.05},
        {"x": 2.5, "y": 3.0, "width": 4.0, "height": 1.0},
        {"Left": 0.9, "Top": 0.95, "Width": 0.5, "Height": 0.2},
        {"Left": 1.0, "Top": 1.0, "Width": 0.1, "Height": 0.1},
        {"Left": 0.0, "Top": 0.0, "Width": 0.0, "Height": 0.0},
        {"Left": 0.25, "Top": 0.5, "Width": 0.5, "Height": 0.25},
    ],
)
def test_clamp_is_idempotent_and_stays_on_page(raw):
    once = BoundingBox.normalize(raw).clamp()
    assert once.clamp() == once
    for value in (once.left, once.top, once.width, once.height):
        assert 0.0 <= value <= 1.0
    assert once.right <= 1.0 + 1e-6
    assert once.bottom <= 1.0 + 1e-6


def test_to_device_rect_with_and_without_flip():
    box = BoundingBox(left=0.1, top=0.1, width=0.2, height=0.05)
    top_left = box.to_device_rect(600, 800)
    assert (top_left.x, top_left.y) == pytest.approx((60, 80))
    flipped = box.to_device_rect(600, 800, flip_y=True)
    assert flipped.y == pytest.approx(680)
    assert (flipped.width, flipped.height) == pytest.approx((120, 40))


def test_union_covers_all_boxes():
    a = BoundingBox(left=0.1, top=0.1, width=0.1, height=0.1)
    b = BoundingBox(left=0.5, top=0.05, width=0.2, height=0.1)
    u = BoundingBox.union([a, b])
    assert (u.left, u.top) == pytest.approx((0.1, 0.05))
    assert (u.right, u.bottom) == pytest.approx((0.7, 0.2))
    with pytest.raises(InvalidGeometry):
        BoundingBox.union([])


def test_pad_is_clamped_to_surface():
    r = DeviceRect(x=1, y=1, width=10, height=10).pad(5, 14, 100)
    assert (r.x, r.y) == (0.0, 0.0)
    assert r.width == 14
    assert r.height == 20
