from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Optional, Sequence

from labelfit.config import LabelFitConfig, load_config
from labelfit.detectors.boxed_layout import (
    BoxedRows,
    LayoutTargets,
    ShapeTarget,
    build_diagnostics,
    build_shape_diagnostic,
    enforce_middle_and_barcode_bands,
    fit_header_text_to_cells,
    resolve_frame,
    resolve_layout_targets,
    resolve_shape_offsets,
    resolve_top_header_overlap,
)
from labelfit.geometry import Bounds, round_half_up
from labelfit.heuristics import is_quarter_turn_text
from labelfit.media import resolve_header_font_cap
from labelfit.preview import PreviewSurface, ensure_bounds, resolve_preview_size
from labelfit.types import (
    BarcodeItem,
    BoundsIndex,
    Detection,
    Item,
    LabelState,
    QrItem,
    ShapeItem,
    TextItem,
    generate_item_id,
)

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")
_LETTER_RE = re.compile(r"[A-Z]")
_DIGIT_RE = re.compile(r"\d")


@dataclass
class BoxedCandidate:
    barcode: BarcodeItem
    texts: list[TextItem]
    line_shapes: list[ShapeItem]
    duplicate_groups: dict[str, list[TextItem]] = field(default_factory=dict)


@dataclass
class BoxedFormResult:
    applied: bool
    did_mutate: bool
    reason: str
    diagnostics: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "applied": self.applied,
            "didMutate": self.did_mutate,
            "reason": self.reason,
        }
        if self.diagnostics is not None:
            data["diagnostics"] = self.diagnostics
        return data


def normalize_code_like_text(text: str) -> str:
    return _WHITESPACE_RE.sub("", str(text or "")).upper().strip()


def is_code_like_token(normalized: str) -> bool:
    token = str(normalized or "")
    if len(token) < 10:
        return False
    return bool(_LETTER_RE.search(token)) and bool(_DIGIT_RE.search(token))


def _is_line_shape(item: Item) -> bool:
    return isinstance(item, ShapeItem) and item.normalized_shape_type == "line"


def detect_boxed_barcode(items: Sequence[Item]) -> Detection:
    """Narrow boxed form: one barcode, a duplicated code header pair and a middle row."""
    barcodes = [item for item in items if isinstance(item, BarcodeItem)]
    qrs = [item for item in items if isinstance(item, QrItem)]
    texts = [item for item in items if isinstance(item, TextItem)]
    if len(barcodes) != 1 or qrs:
        return Detection(False, "boxed-barcode-skip-machine-readable-mismatch")
    if not 3 <= len(texts) <= 5:
        return Detection(False, "boxed-barcode-skip-text-count")
    if any(is_quarter_turn_text(item) for item in texts):
        return Detection(False, "boxed-barcode-skip-rotated-text")

    groups: dict[str, list[TextItem]] = {}
    for item in texts:
        normalized = normalize_code_like_text(item.text)
        if is_code_like_token(normalized):
            groups.setdefault(normalized, []).append(item)
    if not any(len(group) >= 2 for group in groups.values()):
        return Detection(False, "boxed-barcode-skip-no-duplicate-code-text")

    candidate = BoxedCandidate(
        barcode=barcodes[0],
        texts=texts,
        line_shapes=[item for item in items if _is_line_shape(item)],
        duplicate_groups=groups,
    )
    return Detection(True, "boxed-barcode-candidate", candidate)


def resolve_boxed_rows(candidate: BoxedCandidate, index: BoundsIndex) -> BoxedRows | None:
    barcode_bounds = index.get(candidate.barcode)
    if barcode_bounds is None:
        return None
    entries = [(item, index.get(item)) for item in candidate.texts if item.id in index]
    if len(entries) < 3:
        return None
    above = [
        (item, bounds) for item, bounds in entries if bounds.y + bounds.height / 2 <= barcode_bounds.y + 2
    ]
    rows = above if len(above) >= 3 else entries
    row_ids = {item.id for item, _bounds in rows}

    best: tuple[float, TextItem, TextItem] | None = None
    for group in candidate.duplicate_groups.values():
        members = sorted(
            (item for item in group if item.id in row_ids),
            key=lambda item: (index.get(item).y, index.get(item).x),
        )
        if len(members) < 2:
            continue
        left, right = sorted(members[:2], key=lambda item: index.get(item).x)
        score = index.get(left).y + index.get(right).y
        if best is None or score < best[0]:
            best = (score, left, right)
    if best is None:
        return None

    _score, left_header, right_header = best
    middle_candidates = sorted(
        (item for item, _bounds in rows if item.id not in (left_header.id, right_header.id)),
        key=lambda item: -index.get(item).bottom,
    )
    if not middle_candidates:
        return None
    return BoxedRows(left_header, right_header, middle_candidates[0], candidate.barcode)


def _apply_shape_patch(shape: ShapeItem, **patch: Any) -> bool:
    changed = False
    for key, value in patch.items():
        next_value = round_half_up(value) if isinstance(value, (int, float)) and not isinstance(value, bool) else value
        if getattr(shape, key) == next_value:
            continue
        setattr(shape, key, next_value)
        changed = True
    return changed


def _is_vertical_line_shape(shape: ShapeItem) -> bool:
    rotation = abs(float(shape.rotation or 0)) % 180
    if abs(rotation - 90) <= 20:
        return True
    return float(shape.height or 0) > float(shape.width or 0) * 1.2


def _score_line_candidate(shape: ShapeItem, x_offset: float, y_offset: float, vertical: bool) -> float:
    is_vertical = _is_vertical_line_shape(shape)
    penalty = 0 if is_vertical == vertical else 500
    x_delta = abs(float(shape.x_offset or 0) - x_offset)
    y_delta = abs(float(shape.y_offset or 0) - y_offset)
    rotation_delta = abs(abs(float(shape.rotation or 0)) % 180)
    return penalty + x_delta * 0.5 + y_delta + rotation_delta


class _ShapeUpserter:
    """Reuses existing frame/line shapes where possible and appends the missing ones."""

    def __init__(self, state: LabelState, index: BoundsIndex, is_horizontal: bool) -> None:
        self.state = state
        self.preview = index.preview
        self.is_horizontal = is_horizontal
        shapes = [item for item in state.items if isinstance(item, ShapeItem)]
        self.rects = [item for item in shapes if item.normalized_shape_type == "rect"]
        self.lines = [item for item in shapes if item.normalized_shape_type == "line"]
        self.used_line_ids: set[str] = set()

    def frame(self, target: Bounds) -> tuple[bool, dict[str, Any] | None]:
        safe = ShapeTarget(
            x=max(0, round_half_up(target.x)),
            y=max(0, round_half_up(target.y)),
            width=max(20, round_half_up(target.width or 20)),
            height=max(24, round_half_up(target.height or 24)),
        )
        offsets = resolve_shape_offsets(safe, self.preview, self.is_horizontal)
        existing = max(self.rects, key=lambda item: (item.width or 0) * (item.height or 0), default=None)
        shape = existing or ShapeItem(id=generate_item_id("shape-frame"), shape_type="rect")
        changed = _apply_shape_patch(
            shape,
            shape_type="rect",
            position_mode="absolute",
            x_offset=offsets.x_offset,
            y_offset=offsets.y_offset,
            width=safe.width,
            height=safe.height,
            rotation=0,
            stroke_width=2,
        )
        if existing is None:
            shape.corner_radius = 0
            self.state.items.append(shape)
            changed = True
        elif float(shape.corner_radius or 0) != 0:
            shape.corner_radius = 0
            changed = True
        return changed, build_shape_diagnostic(shape, "frame", self.preview, self.is_horizontal)

    def line(self, target: ShapeTarget, role: str, vertical: bool) -> tuple[bool, dict[str, Any] | None]:
        safe = ShapeTarget(
            x=max(0, round_half_up(target.x)),
            y=max(0, round_half_up(target.y)),
            width=max(8, round_half_up(target.width or 8)),
            height=max(2, round_half_up(target.height or 2)),
            rotation=round_half_up(target.rotation or 0),
        )
        offsets = resolve_shape_offsets(safe, self.preview, self.is_horizontal)
        available = [shape for shape in self.lines if shape.id not in self.used_line_ids]
        existing = (
            sorted(
                available,
                key=lambda shape: _score_line_candidate(shape, offsets.x_offset, offsets.y_offset, vertical),
            )[0]
            if available
            else None
        )
        if existing is not None:
            self.used_line_ids.add(existing.id)
        shape = existing or ShapeItem(id=generate_item_id("shape-line"), shape_type="line")
        changed = _apply_shape_patch(
            shape,
            shape_type="line",
            position_mode="absolute",
            x_offset=offsets.x_offset,
            y_offset=offsets.y_offset,
            width=safe.width,
            height=2,
            rotation=safe.rotation,
            stroke_width=2,
        )
        if existing is None:
            self.state.items.append(shape)
            changed = True
        return changed, build_shape_diagnostic(shape, role, self.preview, self.is_horizontal)


def _upsert_structure_shapes(
    state: LabelState, index: BoundsIndex, frame: Bounds, targets: LayoutTargets, is_horizontal: bool
) -> tuple[bool, dict[str, Any]]:
    upserter = _ShapeUpserter(state, index, is_horizontal)
    diagnostics: dict[str, Any] = {}
    did_mutate = False

    changed, diagnostics["frame"] = upserter.frame(frame)
    did_mutate |= changed
    separator_width = max(8, frame.width - 2)
    changed, diagnostics["headerSeparator"] = upserter.line(
        ShapeTarget(frame.x + 1, targets.header_separator_y, separator_width, 2), "headerSeparator", False
    )
    did_mutate |= changed
    changed, diagnostics["middleSeparator"] = upserter.line(
        ShapeTarget(frame.x + 1, targets.middle_separator_y, separator_width, 2), "middleSeparator", False
    )
    did_mutate |= changed
    changed, diagnostics["verticalDivider"] = upserter.line(
        ShapeTarget(targets.divider_x, frame.y + 1, max(8, targets.vertical_line_length), 2, rotation=90),
        "verticalDivider",
        True,
    )
    did_mutate |= changed
    return did_mutate, diagnostics


def _clear_structural_underlines(items: Sequence[TextItem]) -> bool:
    did_mutate = False
    for item in items:
        if item.text_underline:
            item.text_underline = False
            did_mutate = True
    return did_mutate


def apply_boxed_barcode_pass(
    candidate: BoxedCandidate, state: LabelState, index: BoundsIndex, config: LabelFitConfig
) -> BoxedFormResult:
    """Align the boxed rows and upsert the frame and separators around them."""
    rows = resolve_boxed_rows(candidate, index)
    if rows is None:
        return BoxedFormResult(True, False, "boxed-barcode-skip-missing-rows")
    has_line_intent = bool(candidate.line_shapes)
    has_underline_intent = any(item.text_underline for item in rows.texts)
    if not has_line_intent and not has_underline_intent:
        return BoxedFormResult(True, False, "boxed-barcode-skip-no-form-intent")
    frame = resolve_frame(rows, index)
    if frame is None:
        return BoxedFormResult(True, False, "boxed-barcode-skip-invalid-frame")

    targets = resolve_layout_targets(rows, frame, index)
    header_cap = resolve_header_font_cap(state, config)
    did_mutate = fit_header_text_to_cells(rows, index, frame, targets, header_cap)
    did_mutate = index.shift_clamped(rows.left_header, targets.left_header_x, targets.header_top_y) or did_mutate
    did_mutate = index.shift_clamped(rows.right_header, targets.right_header_x, targets.header_top_y) or did_mutate
    did_mutate = resolve_top_header_overlap(rows, index, frame, targets, header_cap) or did_mutate
    did_mutate = enforce_middle_and_barcode_bands(rows, index, frame, targets) or did_mutate
    did_mutate = _clear_structural_underlines(rows.texts) or did_mutate
    shapes_changed, shapes = _upsert_structure_shapes(state, index, frame, targets, not state.is_vertical)
    did_mutate = shapes_changed or did_mutate

    diagnostics = build_diagnostics(rows, index, targets, shapes, frame)
    reason = "applied-boxed-barcode-form-fidelity" if did_mutate else "boxed-barcode-form-fidelity-no-change"
    return BoxedFormResult(True, did_mutate, reason, diagnostics)


async def apply_boxed_barcode_form(
    state: LabelState,
    surface: PreviewSurface,
    config: LabelFitConfig | None = None,
    log: logging.Logger | None = None,
) -> BoxedFormResult:
    """Run the boxed form pass once against a live preview surface."""
    active_config = config or load_config()
    active_logger = log or logger
    detection = detect_boxed_barcode(state.items)
    if not detection.matched:
        return BoxedFormResult(False, False, detection.reason)
    if not await ensure_bounds(surface, len(state.items), active_config.solver.bounds_retries):
        return BoxedFormResult(True, False, "boxed-barcode-skip-missing-bounds")
    measured = surface.measured_bounds()
    if measured is None:
        return BoxedFormResult(True, False, "boxed-barcode-skip-missing-entry-map")
    index = BoundsIndex.snapshot(
        state.items, measured, resolve_preview_size(surface, active_config.preview)
    )
    result = apply_boxed_barcode_pass(detection.roles, state, index, active_config)
    active_logger.debug("boxed-barcode-form %s", {"reason": result.reason, "didMutate": result.did_mutate})
    return result
