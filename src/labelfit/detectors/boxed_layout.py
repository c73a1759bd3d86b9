"""Geometry for boxed barcode forms: frame, separators, header fitting and bands.

Draw space is the renderer's top-left coordinate system. Horizontal previews
store x relative to the feed pad and y relative to the vertical center, so
shape targets are converted before they are written to item offsets.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Optional

from labelfit.geometry import Bounds, PreviewSize, clamp, compute_bounds_overlap, round_half_up
from labelfit.types import BarcodeItem, BoundsIndex, ShapeItem, TextItem

FEED_PAD_START = 2
FRAME_PADDING_X = 6
FRAME_PADDING_Y = 4
FRAME_MIN_WIDTH = 20
FRAME_MIN_HEIGHT = 24
BARCODE_GAP = 6
HEADER_GAP = 8
HEADER_OVERLAP_ATTEMPTS = 10


@dataclass
class BoxedRows:
    left_header: TextItem
    right_header: TextItem
    middle_row: TextItem
    barcode: BarcodeItem

    @property
    def texts(self) -> list[TextItem]:
        return [self.left_header, self.right_header, self.middle_row]


@dataclass(frozen=True)
class LayoutTargets:
    header_top_y: float
    header_separator_y: float
    middle_separator_y: float
    divider_x: float
    left_header_x: float
    right_header_x: float
    vertical_line_length: float
    barcode_gap: float = BARCODE_GAP


@dataclass(frozen=True)
class ShapeTarget:
    x: float
    y: float
    width: float
    height: float
    rotation: float = 0


@dataclass(frozen=True)
class ShapeOffsets:
    x_offset: int
    y_offset: int
    width: int
    height: int


def to_horizontal_x_offset(draw_x: float, feed_pad_start: float = FEED_PAD_START) -> int:
    return max(0, round_half_up(draw_x - feed_pad_start))


def to_horizontal_y_offset(draw_y: float, item_height: float, preview_height: float) -> int:
    return round_half_up(draw_y - (max(1, preview_height) - max(1, item_height)) / 2)


def to_horizontal_draw_x(x_offset: float, feed_pad_start: float = FEED_PAD_START) -> float:
    return feed_pad_start + x_offset


def to_horizontal_draw_y(y_offset: float, item_height: float, preview_height: float) -> float:
    return (max(1, preview_height) - max(1, item_height)) / 2 + y_offset


def resolve_shape_offsets(target: ShapeTarget, preview: PreviewSize, is_horizontal: bool) -> ShapeOffsets:
    width = max(1, round_half_up(target.width or 1))
    height = max(1, round_half_up(target.height or 1))
    draw_x = max(0, round_half_up(target.x))
    draw_y = max(0, round_half_up(target.y))
    if not is_horizontal:
        return ShapeOffsets(draw_x, draw_y, width, height)
    return ShapeOffsets(
        to_horizontal_x_offset(draw_x),
        to_horizontal_y_offset(draw_y, height, preview.height or 1),
        width,
        height,
    )


def build_shape_diagnostic(
    shape: ShapeItem | None, role: str, preview: PreviewSize, is_horizontal: bool
) -> dict[str, Any] | None:
    if shape is None:
        return None
    width = max(1, round_half_up(shape.width or 1))
    height = max(1, round_half_up(shape.height or 1))
    x_offset = round_half_up(shape.x_offset or 0)
    y_offset = round_half_up(shape.y_offset or 0)
    draw_x = to_horizontal_draw_x(x_offset) if is_horizontal else x_offset
    draw_y = to_horizontal_draw_y(y_offset, height, preview.height or 1) if is_horizontal else y_offset
    return {
        "role": role,
        "id": shape.id,
        "shapeType": shape.shape_type,
        "xOffset": x_offset,
        "yOffset": y_offset,
        "width": width,
        "height": height,
        "rotation": round_half_up(shape.rotation or 0),
        "drawX": round_half_up(draw_x),
        "drawY": round_half_up(draw_y),
    }


def resolve_frame(rows: BoxedRows, index: BoundsIndex) -> Bounds | None:
    """Padded box around the headers, the middle row and the barcode."""
    content = [index.get(item) for item in (*rows.texts, rows.barcode)]
    if any(bounds is None for bounds in content):
        return None
    preview_width = max(1, index.preview.width or 1)
    preview_height = max(1, index.preview.height or 1)
    x = max(0, round_half_up(min(b.x for b in content) - FRAME_PADDING_X))
    y = max(0, round_half_up(min(b.y for b in content) - FRAME_PADDING_Y))
    right = min(preview_width, round_half_up(max(b.right for b in content) + FRAME_PADDING_X))
    bottom = min(preview_height, round_half_up(max(b.bottom for b in content) + FRAME_PADDING_Y))
    width = max(FRAME_MIN_WIDTH, right - x)
    height = max(FRAME_MIN_HEIGHT, bottom - y)
    if not math.isfinite(width) or not math.isfinite(height):
        return None
    return Bounds(x, y, width, height)


def resolve_layout_targets(rows: BoxedRows, frame: Bounds, index: BoundsIndex) -> LayoutTargets:
    left = index.get(rows.left_header)
    right = index.get(rows.right_header)
    middle = index.get(rows.middle_row)
    barcode = index.get(rows.barcode)
    top_header_y = min(left.y, right.y)
    header_bottom = max(left.bottom, right.bottom)
    header_text_height = max(left.height, right.height)
    frame_bottom = frame.bottom

    header_band = max(16, round_half_up(frame.height * 0.18))
    header_separator_max = max(
        frame.y + header_band + 4,
        min(frame.y + round_half_up(frame.height * 0.44), barcode.y - 22),
    )
    header_separator_y = round_half_up(
        clamp(header_bottom + 3, frame.y + header_band, header_separator_max)
    )
    middle_preferred = min(barcode.y - BARCODE_GAP, middle.bottom + 4)
    middle_separator_y = round_half_up(
        clamp(
            middle_preferred,
            header_separator_y + 10,
            min(frame_bottom - 6, barcode.y - BARCODE_GAP),
        )
    )
    divider_preferred = round_half_up((left.right + right.x) / 2)
    divider_x = max(
        frame.x + round_half_up(frame.width * 0.35),
        min(frame.x + round_half_up(frame.width * 0.65), divider_preferred),
    )
    header_top_y = round_half_up(
        clamp(
            top_header_y,
            frame.y + 2,
            max(frame.y + 2, header_separator_y - max(8, header_text_height) - 2),
        )
    )
    preview_height = max(1, index.preview.height or 1)
    return LayoutTargets(
        header_top_y=min(max(0, header_top_y), preview_height - 4),
        header_separator_y=header_separator_y,
        middle_separator_y=middle_separator_y,
        divider_x=divider_x,
        left_header_x=frame.x + 6,
        right_header_x=divider_x + 8,
        vertical_line_length=max(12, header_separator_y - frame.y + 2),
    )


def _min_header_size(header_cap: float) -> int:
    return max(6, round_half_up((header_cap or 16) * 0.42))


def _fitted_font_size(
    current_size: float, current_width: float, max_width: float, header_cap: float, min_size: float
) -> int:
    safe_size = max(6, round_half_up(current_size or 12))
    safe_width = max(1, current_width or 1)
    safe_max_width = max(24, max_width or 24)
    safe_cap = max(8, round_half_up(header_cap or 16))
    safe_min = max(6, round_half_up(min_size or 9))
    if safe_width <= safe_max_width:
        fitted = safe_size
    else:
        fitted = math.floor(safe_size * (safe_max_width - 2) / safe_width)
    return max(safe_min, min(safe_cap, fitted))


def apply_header_font_size(item: TextItem, index: BoundsIndex, next_size: float) -> bool:
    """Set the font size and scale the cached bounds by the same ratio."""
    target = max(6, round_half_up(next_size or item.font_size or 12))
    current = max(6, round_half_up(item.font_size or 12))
    if current == target:
        return False
    item.font_size = target
    bounds = index.get(item)
    if bounds is None:
        return True
    ratio = target / current
    index.resize(item, bounds.width * ratio, bounds.height * ratio)
    return True


def fit_header_text_to_cells(
    rows: BoxedRows, index: BoundsIndex, frame: Bounds, targets: LayoutTargets, header_cap: float
) -> bool:
    left_bounds = index.get(rows.left_header)
    right_bounds = index.get(rows.right_header)
    if left_bounds is None or right_bounds is None:
        return False
    left_cell = max(48, targets.divider_x - targets.left_header_x - 8)
    right_cell = max(48, frame.right - targets.right_header_x - 6)
    shared_cell = max(40, min(left_cell, right_cell))
    min_size = _min_header_size(header_cap)
    target_size = min(
        _fitted_font_size(rows.left_header.font_size, left_bounds.width, shared_cell, header_cap, min_size),
        _fitted_font_size(rows.right_header.font_size, right_bounds.width, shared_cell, header_cap, min_size),
    )
    did_mutate = apply_header_font_size(rows.left_header, index, target_size)
    did_mutate = apply_header_font_size(rows.right_header, index, target_size) or did_mutate
    return did_mutate


def resolve_top_header_overlap(
    rows: BoxedRows, index: BoundsIndex, frame: Bounds, targets: LayoutTargets, header_cap: float
) -> bool:
    """Separate overlapping duplicate headers by shifting, then shrinking, in bounded steps."""
    left_item, right_item = rows.left_header, rows.right_header
    min_size = _min_header_size(header_cap)
    did_mutate = False
    for _attempt in range(HEADER_OVERLAP_ATTEMPTS):
        left_bounds = index.get(left_item)
        right_bounds = index.get(right_item)
        if left_bounds is None or right_bounds is None:
            break
        if compute_bounds_overlap(left_bounds, right_bounds).overlap_x <= 0:
            break

        minimum_right_x = left_bounds.right + HEADER_GAP
        did_mutate = (
            index.shift_clamped(right_item, max(targets.right_header_x, minimum_right_x), targets.header_top_y)
            or did_mutate
        )
        right_bounds = index.get(right_item)
        if compute_bounds_overlap(left_bounds, right_bounds).overlap_x <= 0:
            break
        post_shift_gap = right_bounds.x - left_bounds.right
        if post_shift_gap < HEADER_GAP:
            budget = max(0, left_bounds.x - (frame.x + 2))
            left_shift = min(budget, round_half_up(HEADER_GAP - post_shift_gap))
            if left_shift > 0:
                did_mutate = (
                    index.shift_clamped(left_item, left_bounds.x - left_shift, targets.header_top_y)
                    or did_mutate
                )
                if compute_bounds_overlap(index.get(left_item), index.get(right_item)).overlap_x <= 0:
                    break

        next_size = max(min_size, min(left_item.font_size or 12, right_item.font_size or 12) - 1)
        left_changed = apply_header_font_size(left_item, index, next_size)
        right_changed = apply_header_font_size(right_item, index, next_size)
        if not left_changed and not right_changed:
            break
        did_mutate = True
        right_now = index.get(right_item)
        max_right_x = max(targets.right_header_x, frame.right - right_now.width - 4)
        did_mutate = (
            index.shift_clamped(
                right_item,
                min(max(targets.right_header_x, minimum_right_x), max_right_x),
                targets.header_top_y,
            )
            or did_mutate
        )
    return did_mutate


def enforce_middle_and_barcode_bands(
    rows: BoxedRows, index: BoundsIndex, frame: Bounds, targets: LayoutTargets
) -> bool:
    """Keep the middle row between the separators and the barcode below it."""
    middle_item, barcode_item = rows.middle_row, rows.barcode
    min_gap = max(4, targets.barcode_gap or BARCODE_GAP)
    did_mutate = False

    middle = index.get(middle_item)
    if middle is not None:
        low = targets.header_separator_y + 3
        high = max(low, targets.middle_separator_y - middle.height - 2)
        did_mutate = index.shift_clamped(middle_item, middle.x, clamp(middle.y, low, high)) or did_mutate

    barcode = index.get(barcode_item)
    if barcode is not None:
        low = targets.middle_separator_y + min_gap
        high = max(low, frame.bottom - barcode.height - 2)
        did_mutate = index.shift_clamped(barcode_item, barcode.x, clamp(barcode.y, low, high)) or did_mutate

    middle = index.get(middle_item)
    barcode = index.get(barcode_item)
    if middle is not None and barcode is not None:
        required_bottom = barcode.y - min_gap
        if middle.bottom > required_bottom:
            target_y = max(targets.header_separator_y + 3, required_bottom - middle.height)
            did_mutate = index.shift_clamped(middle_item, middle.x, target_y) or did_mutate

    middle = index.get(middle_item)
    barcode = index.get(barcode_item)
    if middle is not None and barcode is not None and middle.bottom + min_gap > barcode.y:
        max_by_frame = max(0, frame.bottom - barcode.height - 2)
        max_by_preview = max(0, (index.preview.height or 0) - barcode.height)
        target_y = clamp(middle.bottom + min_gap, barcode.y, min(max_by_frame, max_by_preview))
        did_mutate = index.shift_clamped(barcode_item, barcode.x, target_y) or did_mutate
    return did_mutate


def build_diagnostics(
    rows: BoxedRows,
    index: BoundsIndex,
    targets: LayoutTargets,
    shapes: Optional[dict[str, Any]],
    frame: Bounds,
) -> dict[str, Any]:
    middle = index.get(rows.middle_row)
    barcode = index.get(rows.barcode)
    overlap = compute_bounds_overlap(middle, barcode) if middle and barcode else None
    required_gap = max(4, targets.barcode_gap or BARCODE_GAP)
    gap = barcode.y - middle.bottom if middle and barcode else None
    return {
        "rowTargets": {
            "frame": {
                "x": round_half_up(frame.x),
                "y": round_half_up(frame.y),
                "width": round_half_up(frame.width),
                "height": round_half_up(frame.height),
            },
            "headerTopY": round_half_up(targets.header_top_y),
            "headerSeparatorY": round_half_up(targets.header_separator_y),
            "middleSeparatorY": round_half_up(targets.middle_separator_y),
            "dividerX": round_half_up(targets.divider_x),
            "leftHeaderX": round_half_up(targets.left_header_x),
            "rightHeaderX": round_half_up(targets.right_header_x),
            "verticalLineLength": round_half_up(targets.vertical_line_length),
            "barcodeGap": required_gap,
        },
        "shapeTargets": shapes,
        "overlapChecks": {
            "middleAndBarcodeOverlap": bool(overlap and overlap.area > 0),
            "middleTextAboveBarcode": None if gap is None else gap >= required_gap,
            "barcodeBelowMiddleSeparator": (
                None if barcode is None else barcode.y >= targets.middle_separator_y + required_gap
            ),
            "middleTextGapToBarcode": None if gap is None else round_half_up(gap),
        },
    }
