from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

from labelfit.geometry import Bounds, center_distance, clamp_target, round_half_up
from labelfit.heuristics import is_machine_readable, is_square_marker_shape
from labelfit.text_lines import TextLineEntry, collect_text_line_entries, text_items
from labelfit.types import BoundsIndex, Detection, Item, ShapeItem, TextItem

MIN_MARKER_LEFT_MARGIN = 11


@dataclass
class MarkerSnapshot:
    """Text lines captured before marker prefixes are stripped."""

    line_entries: list[TextLineEntry] = field(default_factory=list)
    marker_entries: list[TextLineEntry] = field(default_factory=list)

    @property
    def has_text_marker(self) -> bool:
        return bool(self.marker_entries)


@dataclass
class MarkerGroupRoles:
    text_items: list[TextItem]
    marker_shapes: list[ShapeItem]
    has_text_marker: bool


@dataclass
class MarkerPair:
    marker: ShapeItem
    text: TextItem


def capture_marker_snapshot(items: Sequence[Item]) -> MarkerSnapshot:
    line_entries = collect_text_line_entries(items)
    return MarkerSnapshot(line_entries, [entry for entry in line_entries if entry.has_marker])


def marker_shapes(items: Sequence[Item]) -> list[ShapeItem]:
    return [item for item in items if isinstance(item, ShapeItem) and is_square_marker_shape(item)]


def detect_marker_group(items: Sequence[Item], snapshot: MarkerSnapshot) -> Detection:
    """Checkbox-like group: marker glyphs in text, or square shapes beside a few texts."""
    texts = text_items(items)
    shapes = marker_shapes(items)
    if not texts or any(is_machine_readable(item) for item in items):
        return Detection(False, "skip-machine-readable")
    has_text_marker = snapshot.has_text_marker
    has_shape_pattern = bool(shapes) and len(texts) >= 2
    if not has_text_marker and not has_shape_pattern:
        return Detection(False, "skip-no-marker-evidence")
    if not has_text_marker and len(texts) > 3:
        return Detection(False, "skip-ambiguous-many-text-items")
    return Detection(True, "marker-group-candidate", MarkerGroupRoles(texts, shapes, has_text_marker))


def resolve_marker_text_pairs(items: Sequence[Item], index: BoundsIndex) -> list[MarkerPair]:
    """Pair every measured marker shape with the text whose center is nearest."""
    texts = text_items(items)
    shapes = marker_shapes(items)
    if not texts or not shapes:
        return []
    pairs: list[MarkerPair] = []
    for marker in shapes:
        marker_bounds = index.get(marker)
        if marker_bounds is None:
            continue
        best: tuple[float, TextItem] | None = None
        for text in texts:
            text_bounds = index.get(text)
            if text_bounds is None:
                continue
            distance = center_distance(marker_bounds, text_bounds)
            if best is None or distance < best[0]:
                best = (distance, text)
        if best is not None:
            pairs.append(MarkerPair(marker, best[1]))
    return pairs


def _heading_above(
    option: TextItem, option_bounds: Bounds, entries: list[tuple[TextItem, Bounds]]
) -> Optional[tuple[TextItem, Bounds]]:
    others = [entry for entry in entries if entry[0].id != option.id]
    above = [entry for entry in others if entry[1].y <= option_bounds.y + 1]
    if above:
        return min(above, key=lambda entry: (abs(option_bounds.y - entry[1].bottom), entry[1].x))
    if others:
        return min(others, key=lambda entry: entry[1].y)
    return None


def enforce_marker_flow_vertical_stack(
    items: Sequence[Item], index: BoundsIndex, pairs: Sequence[MarkerPair]
) -> bool:
    """Keep the heading near the top and each paired option a readable gap below it."""
    if not pairs:
        return False
    entries = [(item, index.get(item)) for item in text_items(items)]
    measured = [(item, bounds) for item, bounds in entries if bounds is not None]
    if len(measured) < 2:
        return False

    preview_height = max(1, index.preview.height or 1)
    top_margin = max(3, round_half_up(preview_height * 0.03))
    heading_max_top = max(top_margin, round_half_up(preview_height * 0.08))
    bottom_margin = max(3, round_half_up(preview_height * 0.03))
    did_move = False
    for pair in pairs:
        option_bounds = index.get(pair.text)
        if option_bounds is None:
            continue
        heading = _heading_above(pair.text, option_bounds, measured)
        if heading is None:
            continue
        heading_item, heading_bounds = heading
        heading_target_y = max(top_margin, min(heading_max_top, heading_bounds.y))
        did_move = index.shift_clamped(heading_item, heading_bounds.x, heading_target_y) or did_move

        heading_bottom = heading_bounds.bottom
        base_font = max(8, float(pair.text.font_size or heading_item.font_size or 12))
        min_gap = max(4, round_half_up(preview_height * 0.025), round_half_up(base_font * 0.32))
        preferred_gap = max(min_gap, round_half_up(base_font * 0.48))
        max_gap = max(preferred_gap + 2, round_half_up(base_font * 0.7))
        min_option_y = heading_bottom + min_gap
        preferred_option_y = heading_bottom + preferred_gap
        max_option_by_bottom = preview_height - bottom_margin - option_bounds.height
        max_option_y = max(min_option_y, min(heading_bottom + max_gap, max_option_by_bottom))
        target_y = option_bounds.y
        if target_y < min_option_y:
            target_y = min_option_y
        elif target_y > max_option_y:
            target_y = max_option_y
        elif target_y > preferred_option_y and max_option_y >= preferred_option_y:
            target_y = preferred_option_y
        did_move = index.shift_clamped(pair.text, option_bounds.x, min(target_y, max_option_by_bottom)) or did_move
    return did_move


def align_markers_to_text(pairs: Sequence[MarkerPair], index: BoundsIndex) -> bool:
    """Place each marker left of its text, vertically centered on it.

    A marker is moved whenever it reaches into the text column or sits too far
    off the centered row, even if the clamped target equals its position.
    """
    preview = index.preview
    did_move = False
    for pair in pairs:
        marker_bounds = index.get(pair.marker)
        text_bounds = index.get(pair.text)
        if marker_bounds is None or text_bounds is None:
            continue
        gap = max(
            10,
            round_half_up(preview.height * 0.065),
            round_half_up(max(8, float(pair.text.font_size or 12)) * 0.75),
        )
        desired_x = text_bounds.x - marker_bounds.width - gap
        desired_y = text_bounds.y + round_half_up((text_bounds.height - marker_bounds.height) / 2)
        target_x, target_y = clamp_target(marker_bounds, preview, desired_x, desired_y)
        needs_left = marker_bounds.right > text_bounds.x - 1
        needs_vertical = abs(marker_bounds.y - target_y) > max(1, marker_bounds.height * 0.2)
        if not needs_left and not needs_vertical:
            continue
        index.shift(pair.marker, target_x, target_y)
        did_move = True
    return did_move


def enforce_marker_left_of_text(pairs: Sequence[MarkerPair], index: BoundsIndex) -> bool:
    """Keep a left margin for each marker and a gap between it and its text."""
    preview = index.preview
    did_move = False
    for pair in pairs:
        marker_bounds = index.get(pair.marker)
        text_bounds = index.get(pair.text)
        if marker_bounds is None or text_bounds is None:
            continue
        minimum_gap = max(8, round_half_up(max(8, float(pair.text.font_size or 12)) * 0.7))
        max_marker_right = text_bounds.x - minimum_gap
        needs_left_margin = marker_bounds.x < MIN_MARKER_LEFT_MARGIN
        needs_gap = marker_bounds.right > max_marker_right
        if not needs_left_margin and not needs_gap:
            continue
        target_x = marker_bounds.x
        if needs_left_margin:
            target_x = max(target_x, MIN_MARKER_LEFT_MARGIN)
        if needs_gap:
            target_x = min(target_x, max_marker_right - marker_bounds.width)
        clamped_x, clamped_y = clamp_target(marker_bounds, preview, target_x, marker_bounds.y)
        max_marker_x = max(0, max(1, preview.width or 1) - marker_bounds.width)
        marker_target_x = max(MIN_MARKER_LEFT_MARGIN, min(max_marker_x, clamped_x))
        if round_half_up(marker_target_x) != round_half_up(marker_bounds.x):
            index.shift(pair.marker, marker_target_x, clamped_y)
            did_move = True

        if marker_bounds.right <= max_marker_right:
            continue
        text_x, text_y = clamp_target(text_bounds, preview, marker_bounds.right + minimum_gap, text_bounds.y)
        if round_half_up(text_x) == round_half_up(text_bounds.x):
            continue
        index.shift(pair.text, text_x, text_y)
        did_move = True
    return did_move


def nearest_marker_distance(text_bounds: Bounds, marker_bounds: Sequence[Bounds]) -> float:
    return min((center_distance(text_bounds, bounds) for bounds in marker_bounds), default=math.inf)
