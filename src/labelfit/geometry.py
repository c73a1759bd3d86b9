from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

ROTATION_EPSILON = 0.0001


@dataclass
class Bounds:
    """Measured render-space rectangle of one item, in dots."""

    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center_x(self) -> float:
        return self.x + self.width / 2

    @property
    def center_y(self) -> float:
        return self.y + self.height / 2

    def copy(self) -> Bounds:
        return Bounds(self.x, self.y, self.width, self.height)

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class PreviewSize:
    width: float
    height: float


@dataclass(frozen=True)
class Overlap:
    overlap_x: float
    overlap_y: float
    area: float


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves going up, as the renderer does."""
    return int(math.floor(value + 0.5))


def clamp(value: float, low: float, high: float) -> float:
    """Clamp into [low, high]; an inverted range is swapped first."""
    lo, hi = min(low, high), max(low, high)
    return max(lo, min(hi, value))


def compute_bounds_overlap(left: Bounds, right: Bounds) -> Overlap:
    overlap_x = min(left.right, right.right) - max(left.x, right.x)
    overlap_y = min(left.bottom, right.bottom) - max(left.y, right.y)
    if overlap_x <= 0 or overlap_y <= 0:
        return Overlap(0, 0, 0)
    return Overlap(overlap_x, overlap_y, overlap_x * overlap_y)


def clamp_target(
    bounds: Bounds, preview: PreviewSize, target_x: float, target_y: float
) -> tuple[float, float]:
    width = max(1, bounds.width)
    height = max(1, bounds.height)
    preview_width = max(1, preview.width)
    preview_height = max(1, preview.height)
    x = max(0, min(preview_width - width, target_x))
    y = max(0, min(preview_height - height, target_y))
    return x, y


def shift_item_to(item: Any, bounds: Bounds, target_x: float, target_y: float) -> None:
    """Accumulate the delta between bounds and target into the item offsets.

    The bounds rectangle is left untouched; callers owning a bounds cache must
    update it themselves.
    """
    item.x_offset = round_half_up((item.x_offset or 0) + (target_x - bounds.x))
    item.y_offset = round_half_up((item.y_offset or 0) + (target_y - bounds.y))


def normalize_degrees(value: Any, fallback: float = 0) -> float:
    try:
        raw = float(value)
    except (TypeError, ValueError):
        return fallback
    if not math.isfinite(raw):
        return fallback
    normalized = raw % 360
    signed = normalized - 360 if normalized > 180 else normalized
    return round_half_up(signed * 1000) / 1000


def has_rotation(value: Any, epsilon: float = ROTATION_EPSILON) -> bool:
    return abs(normalize_degrees(value)) > max(ROTATION_EPSILON, abs(epsilon))


def compute_rotated_bounds(bounds: Bounds, rotation: Any) -> Bounds:
    """Axis-aligned box of ``bounds`` rotated about its center."""
    safe = Bounds(bounds.x, bounds.y, max(1, bounds.width), max(1, bounds.height))
    degrees = normalize_degrees(rotation)
    if not has_rotation(degrees):
        return safe
    radians = math.radians(degrees)
    sin_value = math.sin(radians)
    cos_value = math.cos(radians)
    half_w = safe.width / 2
    half_h = safe.height / 2
    xs: list[float] = []
    ys: list[float] = []
    for corner_x, corner_y in ((-half_w, -half_h), (half_w, -half_h), (half_w, half_h), (-half_w, half_h)):
        xs.append(safe.center_x + corner_x * cos_value - corner_y * sin_value)
        ys.append(safe.center_y + corner_x * sin_value + corner_y * cos_value)
    return Bounds(
        min(xs),
        min(ys),
        max(1, max(xs) - min(xs)),
        max(1, max(ys) - min(ys)),
    )


def center_distance(left: Bounds, right: Bounds) -> float:
    return math.hypot(left.center_x - right.center_x, left.center_y - right.center_y)
