"""Structural rewrite of marker/checkbox groups.

A flat text block such as ``"Heading\\n☐ Option"`` (or a couple of texts next
to a small square shape) is rebuilt into three items: a heading text, a square
marker shape and an option text. The rewrite is committed only when the
resulting id sequence differs from the current one.
"""

from __future__ import annotations

import logging
import math
from typing import Optional, Sequence

from labelfit.config import LabelFitConfig, load_config
from labelfit.detectors.markers import (
    MarkerGroupRoles,
    MarkerSnapshot,
    detect_marker_group,
    marker_shapes,
    nearest_marker_distance,
)
from labelfit.geometry import Bounds, center_distance, round_half_up
from labelfit.heuristics import is_square_marker_shape
from labelfit.media import resolve_media_width_mm
from labelfit.preview import PreviewSurface, ensure_bounds, resolve_preview_size
from labelfit.text_lines import (
    TextLineEntry,
    collect_text_line_entries,
    count_non_empty_lines,
    estimated_line_height,
    has_leading_marker,
    normalize_text,
    strip_leading_marker,
)
from labelfit.types import (
    BoundsIndex,
    Item,
    LabelState,
    RewriteResult,
    ShapeItem,
    TextItem,
    generate_item_id,
)

logger = logging.getLogger(__name__)

MIN_HEADING_X = 11


def create_text_item_from_source(source: Optional[TextItem], text: str) -> TextItem:
    """Fresh absolute text that inherits the style and position of ``source``."""
    return TextItem(
        id=generate_item_id("text"),
        position_mode="absolute",
        text=str(text or ""),
        x_offset=float(source.x_offset or 0) if source else 0,
        y_offset=float(source.y_offset or 0) if source else 0,
        rotation=float(source.rotation or 0) if source else 0,
        font_family=str(source.font_family or "Barlow") if source else "Barlow",
        font_size=max(8, round_half_up(float(source.font_size or 12) if source else 12)),
        text_bold=bool(source.text_bold) if source else False,
        text_italic=bool(source.text_italic) if source else False,
        text_underline=bool(source.text_underline) if source else False,
        text_strikethrough=bool(source.text_strikethrough) if source else False,
    )


def resolve_marker_square_size(source: Optional[ShapeItem], option: Optional[TextItem]) -> int:
    font_size = max(8, round_half_up(float(option.font_size or 12) if option else 12))
    line_count = count_non_empty_lines(option.text if option else "")
    line_height = max(8, round_half_up(font_size * 1.18))
    preferred = round_half_up(line_count * line_height * (0.8 if line_count > 1 else 0.95))
    min_size = max(14, round_half_up(font_size * 1.2))
    max_size = max(28, round_half_up(font_size * 2.2))
    source_width = max(0, float(source.width or 0)) if source else 0
    source_height = max(0, float(source.height or 0)) if source else 0
    modeled = max(min_size, min(max_size, preferred))
    return max(8, round_half_up(max(modeled, source_width, source_height)))


def create_marker_shape_from_source(source: Optional[ShapeItem], option: TextItem) -> ShapeItem:
    size = resolve_marker_square_size(source, option)
    if source is not None:
        x_offset, y_offset = float(source.x_offset or 0), float(source.y_offset or 0)
    else:
        x_offset = max(0, float(option.x_offset or 0) - size - 8)
        y_offset = float(option.y_offset or 0)
    return ShapeItem(
        id=generate_item_id("shape"),
        position_mode="absolute",
        shape_type="rect",
        width=max(8, size),
        height=max(8, size),
        stroke_width=max(1, round_half_up(float(source.stroke_width or 2) if source else 2)),
        corner_radius=0,
        sides=4,
        x_offset=x_offset,
        y_offset=y_offset,
        rotation=float(source.rotation or 0) if source else 0,
    )


def resolve_item_top(item: Optional[Item], index: Optional[BoundsIndex]) -> float:
    if item is None:
        return math.inf
    bounds = index.get(item) if index is not None else None
    if bounds is not None:
        return bounds.y
    return float(item.y_offset or 0)


def find_nearest_shape_to_line(
    line_bounds: Optional[Bounds], shapes: Sequence[ShapeItem], index: Optional[BoundsIndex]
) -> Optional[ShapeItem]:
    if not shapes:
        return None
    if line_bounds is None or index is None:
        return shapes[0]
    best: tuple[float, ShapeItem] | None = None
    for shape in shapes:
        bounds = index.get(shape)
        if bounds is None:
            continue
        distance = center_distance(bounds, line_bounds)
        if best is None or distance < best[0]:
            best = (distance, shape)
    return best[1] if best else shapes[0]


def find_nearest_text_item_to_markers(
    texts: Sequence[TextItem], shapes: Sequence[ShapeItem], index: Optional[BoundsIndex]
) -> Optional[TextItem]:
    if not texts:
        return None
    marker_bounds = [bounds for bounds in (index.get(shape) for shape in shapes) if bounds] if index else []
    if not marker_bounds:
        return max(texts, key=lambda item: float(item.y_offset or 0))
    best: tuple[float, TextItem] | None = None
    for text in texts:
        bounds = index.get(text) or Bounds(float(text.x_offset or 0), float(text.y_offset or 0), 1, 1)
        distance = nearest_marker_distance(bounds, marker_bounds)
        if best is None or distance < best[0]:
            best = (distance, text)
    return best[1] if best else None


def _same_source(left: Optional[Item], right: Optional[Item]) -> bool:
    return (left.id if left else None) == (right.id if right else None)


def enforce_stacked_marker_sections(
    heading: TextItem,
    option: TextItem,
    heading_text: str,
    heading_source: Optional[TextItem],
    option_source: Optional[TextItem],
) -> None:
    """Keep the option below the heading; a split monolith also gets a marker gutter."""
    line_height = estimated_line_height(heading.font_size)
    section_gap = max(6, round_half_up(line_height * 0.55))
    minimum_y = float(heading.y_offset or 0) + count_non_empty_lines(heading_text) * line_height + section_gap
    same_source = _same_source(heading_source, option_source)
    if float(option.y_offset or 0) < minimum_y or same_source:
        option.y_offset = minimum_y
    if same_source:
        gutter = max(12, round_half_up(float(option.font_size or 12) * 1.1))
        minimum_x = float(heading.x_offset or 0) + gutter
        if float(option.x_offset or 0) < minimum_x:
            option.x_offset = minimum_x


def refine_marker_section_typography(
    has_text_marker: bool,
    heading_source: Optional[TextItem],
    option_source: Optional[TextItem],
    heading: TextItem,
    option: TextItem,
) -> None:
    if not has_text_marker or heading_source is None or option_source is None:
        return
    if heading_source.id != option_source.id:
        return
    heading.text_italic = bool(heading_source.text_italic)
    option.text_italic = False
    heading_size = max(8, round_half_up(float(heading.font_size or 12)))
    option_size = max(8, round_half_up(float(option.font_size or 12)))
    if option_size >= heading_size:
        option.font_size = max(8, round_half_up(heading_size * 0.9))


def _section_height(heading_lines: int, option_lines: int, heading_size: int, option_size: int) -> int:
    heading_line_height = max(8, round_half_up(heading_size * 1.22))
    option_line_height = max(8, round_half_up(option_size * 1.18))
    section_gap = max(4, round_half_up(heading_line_height * 0.5))
    return heading_lines * heading_line_height + section_gap + option_lines * option_line_height


def harmonize_marker_section_sizing(
    state: LabelState, heading: TextItem, option: TextItem, config: LabelFitConfig
) -> bool:
    """Cap both font sizes by the tape width and keep the option indented under the heading."""
    media_width_mm = resolve_media_width_mm(state, config, use_media_table=False)
    band_dots = max(48, round_half_up(media_width_mm * 180 * 0.75 / 25.4))
    heading_lines = count_non_empty_lines(heading.text)
    option_lines = count_non_empty_lines(option.text)

    heading_size = max(8, round_half_up(float(heading.font_size or 12)))
    option_size = max(8, round_half_up(float(option.font_size or 12)))
    heading_size = min(heading_size, max(12, round_half_up(media_width_mm * 0.72)))
    option_size = min(option_size, max(10, round_half_up(media_width_mm * 0.62)), max(8, heading_size - 1))

    target_height = max(40, round_half_up(band_dots * 0.9))
    required = _section_height(heading_lines, option_lines, heading_size, option_size)
    if required > target_height:
        scale = max(0.65, target_height / required)
        heading_size = max(8, round_half_up(heading_size * scale))
        option_size = max(8, round_half_up(option_size * scale))
        if option_size >= heading_size:
            option_size = max(8, heading_size - 1)
        required = _section_height(heading_lines, option_lines, heading_size, option_size)
        if required > target_height and heading_size > 8:
            heading_size = max(8, heading_size - 1)
            if option_size >= heading_size:
                option_size = max(8, heading_size - 1)

    did_mutate = False
    if round_half_up(float(heading.font_size or 0)) != heading_size:
        heading.font_size = heading_size
        did_mutate = True
    if round_half_up(float(option.font_size or 0)) != option_size:
        option.font_size = option_size
        did_mutate = True

    if state.is_vertical:
        heading_line_height = max(8, round_half_up(heading_size * 1.22))
        section_gap = max(4, round_half_up(heading_line_height * 0.42))
        minimum_y = float(heading.y_offset or 0) + heading_lines * heading_line_height + section_gap
        if float(option.y_offset or 0) < minimum_y:
            option.y_offset = minimum_y
            did_mutate = True

    if float(heading.x_offset or 0) < MIN_HEADING_X:
        heading.x_offset = MIN_HEADING_X
        did_mutate = True
    minimum_option_x = float(heading.x_offset or 0) + max(12, round_half_up(option_size * 1.2))
    if float(option.x_offset or 0) < minimum_option_x:
        option.x_offset = minimum_option_x
        did_mutate = True
    return did_mutate


def _resolve_marker_option_start(
    entries: list[TextLineEntry], snapshot: MarkerSnapshot
) -> Optional[TextLineEntry]:
    if not snapshot.marker_entries:
        return None
    marker_index = snapshot.marker_entries[0].global_index
    for entry in entries:
        if entry.global_index == marker_index:
            return entry
    if not entries:
        return None
    return entries[max(0, min(len(entries) - 1, marker_index))]


def _find_nearest_option_line_from_marker_shape(
    entries: list[TextLineEntry], shapes: Sequence[ShapeItem], index: Optional[BoundsIndex]
) -> Optional[TextLineEntry]:
    lines = [entry for entry in entries if entry.line]
    if not lines or not shapes:
        return None
    shape_bounds = [bounds for bounds in (index.get(shape) for shape in shapes) if bounds] if index else []
    if not shape_bounds:
        return lines[-1]
    best: tuple[float, TextLineEntry] | None = None
    for entry in lines:
        if entry.bounds is None:
            continue
        for bounds in shape_bounds:
            distance = center_distance(entry.bounds, bounds)
            if best is None or distance < best[0]:
                best = (distance, entry)
    return best[1] if best else lines[-1]


def _resolve_option_source_item(
    option_start_item: Optional[TextItem],
    heading_source: Optional[TextItem],
    texts: Sequence[TextItem],
    option_primary_line: str,
    marker_source: Optional[ShapeItem],
    index: Optional[BoundsIndex],
) -> Optional[TextItem]:
    """Prefer the text that repeats the option line and sits closest to the marker."""
    fallback = option_start_item or heading_source or (texts[0] if texts else None)
    primary = normalize_text(option_primary_line)
    if not primary:
        return fallback
    heading_id = heading_source.id if heading_source else None
    candidates = [item for item in texts if item.id != heading_id and primary in normalize_text(item.text)]
    if not candidates:
        return fallback

    marker_bounds = index.get(marker_source) if index is not None and marker_source is not None else None
    if marker_bounds is not None:
        best: tuple[float, TextItem] | None = None
        for candidate in candidates:
            bounds = index.get(candidate)
            if bounds is None:
                continue
            score = center_distance(marker_bounds, bounds) + count_non_empty_lines(candidate.text) * 4
            if best is None or score < best[0]:
                best = (score, candidate)
        if best is not None:
            return best[1]
    ranked = sorted(
        candidates,
        key=lambda item: (count_non_empty_lines(item.text), -float(item.y_offset or 0)),
    )
    return ranked[0] if ranked else fallback


def _commit_rewrite(
    state: LabelState,
    marker_source: Optional[ShapeItem],
    heading: TextItem,
    marker: ShapeItem,
    option: TextItem,
) -> bool:
    """Swap in the rebuilt group; False when the id sequence would not change."""
    passthrough = [
        item
        for item in state.items
        if not isinstance(item, TextItem)
        and not (marker_source is not None and item.id == marker_source.id)
        and not is_square_marker_shape(item)
    ]
    next_items: list[Item] = [*passthrough, heading, marker, option]
    same_structure = len(next_items) == len(state.items) and all(
        candidate.id == current.id for candidate, current in zip(next_items, state.items)
    )
    if same_structure:
        return False
    state.replace_items(next_items)
    return True


def _rewrite_shape_two_text_group(
    state: LabelState, roles: MarkerGroupRoles, index: Optional[BoundsIndex], config: LabelFitConfig
) -> bool:
    texts, shapes = roles.text_items, roles.marker_shapes
    ordered = sorted(texts, key=lambda item: resolve_item_top(item, index))
    heading_source: Optional[TextItem] = ordered[0]
    option_source: Optional[TextItem] = ordered[-1]
    if abs(resolve_item_top(option_source, index) - resolve_item_top(heading_source, index)) < 2:
        nearest = find_nearest_text_item_to_markers(texts, shapes, index)
        if nearest is not None:
            option_source = nearest
            heading_source = next((item for item in texts if item.id != nearest.id), heading_source)
    heading_text = str(heading_source.text or "").strip() if heading_source else ""
    option_text = str(option_source.text or "").strip() if option_source else ""
    if not heading_text or not option_text:
        return False

    option_bounds = index.get(option_source) if index is not None else None
    marker_source = find_nearest_shape_to_line(option_bounds, shapes, index) or shapes[0]
    heading = create_text_item_from_source(heading_source, heading_text)
    option = create_text_item_from_source(option_source, option_text)
    enforce_stacked_marker_sections(heading, option, heading_text, heading_source, option_source)
    harmonize_marker_section_sizing(state, heading, option, config)
    marker = create_marker_shape_from_source(marker_source, option)
    return _commit_rewrite(state, marker_source, heading, marker, option)


async def rewrite_marker_group(
    state: LabelState,
    surface: PreviewSurface,
    snapshot: MarkerSnapshot,
    config: LabelFitConfig | None = None,
    log: logging.Logger | None = None,
) -> RewriteResult:
    """Rebuild a marker group into heading + marker shape + option."""
    active_config = config or load_config()
    active_logger = log or logger
    items = state.items
    shape_count = len(marker_shapes(items))
    detection = detect_marker_group(items, snapshot)
    if not detection.matched:
        confidence = 0.2 if detection.reason == "skip-ambiguous-many-text-items" else 0
        return RewriteResult(False, confidence, detection.reason, shape_count)
    roles: MarkerGroupRoles = detection.roles
    texts, shapes = roles.text_items, roles.marker_shapes

    await ensure_bounds(surface, len(items), active_config.solver.bounds_retries)
    measured = surface.measured_bounds()
    index = (
        BoundsIndex.snapshot(items, measured, resolve_preview_size(surface, active_config.preview))
        if measured is not None
        else None
    )

    if not roles.has_text_marker and shapes and len(texts) == 2:
        if _rewrite_shape_two_text_group(state, roles, index, active_config):
            active_logger.debug("marker-rewrite %s", {"reason": "rewrote-shape-two-text-group"})
            return RewriteResult(True, 0.74, "rewrote-shape-two-text-group", 1)

    entries = collect_text_line_entries(items, index)
    if not entries:
        return RewriteResult(False, 0, "skip-no-lines", shape_count)

    if roles.has_text_marker:
        option_start = _resolve_marker_option_start(entries, snapshot)
    else:
        option_start = _find_nearest_option_line_from_marker_shape(entries, shapes, index)
    if option_start is None:
        return RewriteResult(False, 0.25, "skip-no-option-anchor", shape_count)

    heading_lines = [entry.line.strip() for entry in entries if entry.global_index < option_start.global_index]
    heading_lines = [line for line in heading_lines if line]
    if not heading_lines:
        return RewriteResult(False, 0.3, "skip-no-heading-lines", shape_count)

    option_entries = [entry for entry in entries if entry.global_index >= option_start.global_index]
    first_option = strip_leading_marker(option_entries[0].line).text
    second_option = next(
        (
            entry.line.strip()
            for entry in option_entries[1:]
            if entry.line.strip() and not has_leading_marker(entry.line.strip())
        ),
        None,
    )
    option_lines = [first_option]
    if second_option and (second_option.startswith("(") or len(second_option) <= 48):
        option_lines.append(second_option)

    heading_text = "\n".join(heading_lines).strip()
    option_text = "\n".join(line.strip() for line in option_lines if line.strip()).strip()
    if not heading_text or not option_text:
        return RewriteResult(False, 0.35, "skip-invalid-sections", shape_count)

    heading_source = next(
        (entry.item for entry in entries if entry.global_index < option_start.global_index),
        texts[0] if texts else None,
    )
    marker_source = find_nearest_shape_to_line(option_start.bounds, shapes, index)
    option_source = _resolve_option_source_item(
        option_start.item, heading_source, texts, first_option, marker_source, index
    )

    heading = create_text_item_from_source(heading_source, heading_text)
    option = create_text_item_from_source(option_source, option_text)
    enforce_stacked_marker_sections(heading, option, heading_text, heading_source, option_source)
    refine_marker_section_typography(roles.has_text_marker, heading_source, option_source, heading, option)
    harmonize_marker_section_sizing(state, heading, option, active_config)
    marker = create_marker_shape_from_source(marker_source, option)

    if _commit_rewrite(state, marker_source, heading, marker, option):
        reason = "rewrote-marker-text-group" if roles.has_text_marker else "rewrote-shape-text-group"
        active_logger.debug("marker-rewrite %s", {"reason": reason, "itemCount": len(state.items)})
        return RewriteResult(True, 0.82 if roles.has_text_marker else 0.67, reason, 1)
    return RewriteResult(False, 0.45, "skip-structure-unchanged", shape_count)
