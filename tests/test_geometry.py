from __future__ import annotations

import pytest

from labelfit.geometry import (
    Bounds,
    PreviewSize,
    clamp,
    clamp_target,
    compute_bounds_overlap,
    compute_rotated_bounds,
    has_rotation,
    normalize_degrees,
    round_half_up,
    shift_item_to,
)
from labelfit.types import BoundsIndex, ShapeItem, TextItem


def test_round_half_up_matches_renderer() -> None:
    assert round_half_up(2.5) == 3
    assert round_half_up(-2.5) == -2
    assert round_half_up(1.49) == 1
    assert round_half_up(-0.5) == 0


def test_clamp_swaps_inverted_range() -> None:
    assert clamp(5, 10, 0) == 5
    assert clamp(-1, 0, 10) == 0
    assert clamp(42, 10, 0) == 10


def test_overlap_is_zero_for_touching_edges() -> None:
    overlap = compute_bounds_overlap(Bounds(0, 0, 10, 10), Bounds(5, 5, 10, 10))
    assert (overlap.overlap_x, overlap.overlap_y, overlap.area) == (5, 5, 25)
    touching = compute_bounds_overlap(Bounds(0, 0, 10, 10), Bounds(10, 0, 5, 5))
    assert touching.area == 0


def test_clamp_target_keeps_item_inside_preview() -> None:
    assert clamp_target(Bounds(0, 0, 50, 20), PreviewSize(100, 40), 80, -5) == (50, 0)
    assert clamp_target(Bounds(0, 0, 50, 20), PreviewSize(100, 40), 10, 10) == (10, 10)


def test_normalize_degrees_folds_into_signed_range() -> None:
    assert normalize_degrees(270) == -90
    assert normalize_degrees(-90) == -90
    assert normalize_degrees(540) == 180
    assert normalize_degrees("abc") == 0
    assert normalize_degrees(float("nan")) == 0
    assert not has_rotation(360)
    assert has_rotation(0.5)


def test_quarter_turn_swaps_extent_around_center() -> None:
    rotated = compute_rotated_bounds(Bounds(0, 0, 40, 10), 90)
    assert rotated.x == pytest.approx(15)
    assert rotated.y == pytest.approx(-15)
    assert rotated.width == pytest.approx(10)
    assert rotated.height == pytest.approx(40)
    unrotated = compute_rotated_bounds(Bounds(3, 4, 0, 0), 0)
    assert (unrotated.width, unrotated.height) == (1, 1)


def test_shift_item_to_accumulates_offsets() -> None:
    item = TextItem(id="t", x_offset=5, y_offset=-3)
    shift_item_to(item, Bounds(10, 20, 30, 12), 20.4, 18)
    assert item.x_offset == 15
    assert item.y_offset == -5


def test_bounds_index_shift_updates_cached_bounds() -> None:
    shape = ShapeItem(id="s", width=14, height=14)
    index = BoundsIndex(PreviewSize(100, 50), {"s": Bounds(10, 10, 14, 14)})
    assert "s" in index and len(index) == 1

    assert index.shift_clamped(shape, 200, 5)
    bounds = index.get(shape)
    assert (bounds.x, bounds.y) == (86, 5)
    assert (shape.x_offset, shape.y_offset) == (76, -5)

    assert not index.shift_clamped(shape, 86.2, 5.4)
    assert index.get(TextItem(id="missing")) is None
    assert not index.shift_clamped(TextItem(id="missing"), 0, 0)


def test_bounds_index_snapshot_skips_unmeasured_items() -> None:
    items = [TextItem(id="a"), TextItem(id="b")]
    index = BoundsIndex.snapshot(items, {"a": Bounds(1, 2, 0, 0)}, PreviewSize(220, 128))
    assert len(index) == 1
    bounds = index.get(items[0])
    assert (bounds.width, bounds.height) == (1, 1)
    assert index.get(items[1]) is None
