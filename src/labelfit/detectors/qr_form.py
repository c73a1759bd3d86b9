from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import Optional, Sequence

from labelfit.config import LabelFitConfig
from labelfit.geometry import Bounds, round_half_up
from labelfit.media import clamp_qr_size
from labelfit.text_lines import non_empty_lines
from labelfit.types import BarcodeItem, BoundsIndex, Detection, Item, LabelState, PassResult, QrItem, TextItem

MIN_ROW_GAP = 3
MIN_COLUMN_GAP = 4
MIN_FONT_SIZE = 10

_HEADING_END_RE = re.compile(r":\s*$")


@dataclass
class QrFormRoles:
    qr: Optional[QrItem]
    qr_bounds: Optional[Bounds]
    text_items: list[TextItem] = field(default_factory=list)
    heading_items: list[TextItem] = field(default_factory=list)


@dataclass
class _TextEntry:
    item: TextItem
    bounds: Bounds


def is_heading_like_text(item: Item | None) -> bool:
    """A heading row is a text whose last non-empty line ends with a colon."""
    if not isinstance(item, TextItem):
        return False
    lines = non_empty_lines(item.text)
    return bool(lines) and bool(_HEADING_END_RE.search(lines[-1]))


def resolve_qr_form_roles(items: Sequence[Item], index: BoundsIndex) -> QrFormRoles:
    qr = next((item for item in items if isinstance(item, QrItem)), None)
    qr_bounds = index.get(qr)
    texts = [item for item in items if isinstance(item, TextItem) and item.id in index]
    return QrFormRoles(
        qr=qr,
        qr_bounds=qr_bounds.copy() if qr_bounds else None,
        text_items=texts,
        heading_items=[item for item in texts if is_heading_like_text(item)],
    )


def detect_qr_form(items: Sequence[Item], marker_evidence: bool, index: BoundsIndex) -> Detection:
    """Heading/value text column on the left of a single QR code."""
    if marker_evidence:
        return Detection(False, "skip-marker-evidence")
    qrs = [item for item in items if isinstance(item, QrItem)]
    barcodes = [item for item in items if isinstance(item, BarcodeItem)]
    texts = [item for item in items if isinstance(item, TextItem)]
    if len(qrs) != 1 or barcodes:
        return Detection(False, "skip-machine-readable-mismatch")
    if not 4 <= len(texts) <= 8:
        return Detection(False, "skip-text-count")
    if not all(item.is_absolute for item in [*texts, qrs[0]]):
        return Detection(False, "skip-flow-items")
    roles = resolve_qr_form_roles(items, index)
    if roles.qr_bounds is None or len(roles.heading_items) < 2 or len(roles.text_items) < 4:
        return Detection(False, "skip-missing-rows")
    qr_center_x = roles.qr_bounds.center_x
    entries = _collect_entries(roles, index)
    left_count = sum(1 for entry in entries if entry.bounds.right <= qr_center_x)
    if left_count < math.ceil(len(entries) / 2):
        return Detection(False, "skip-text-not-left-of-qr")
    return Detection(True, "qr-form-candidate", roles)


def _collect_entries(roles: QrFormRoles, index: BoundsIndex) -> list[_TextEntry]:
    entries = []
    for item in roles.text_items:
        bounds = index.get(item)
        if bounds is not None:
            entries.append(_TextEntry(item, bounds))
    return entries


def _top_to_bottom(entries: list[_TextEntry]) -> list[_TextEntry]:
    return sorted(entries, key=lambda entry: (entry.bounds.y, entry.bounds.x))


def _text_column_right(entries: list[_TextEntry]) -> float:
    return max((entry.bounds.right for entry in entries), default=0)


def _row_gap(previous: _TextEntry, current: _TextEntry) -> int:
    font_size = current.item.font_size or previous.item.font_size or 12
    return max(MIN_ROW_GAP, round_half_up(max(8, font_size) * 0.25))


def _align_first_pair_underline(entries: list[_TextEntry]) -> bool:
    ordered = _top_to_bottom(entries)
    for position in range(len(ordered) - 1):
        heading = ordered[position].item
        if not is_heading_like_text(heading):
            continue
        value = ordered[position + 1].item
        if not (heading.text_underline or value.text_underline):
            return False
        did_mutate = False
        if not heading.text_underline:
            heading.text_underline = True
            did_mutate = True
        if not value.text_underline:
            value.text_underline = True
            did_mutate = True
        return did_mutate
    return False


def _stack_targets(entries: list[_TextEntry], preview_height: float, compress: bool = False) -> list[float] | None:
    if not entries:
        return None
    gaps = []
    required = entries[0].bounds.height
    for position in range(1, len(entries)):
        gap = MIN_ROW_GAP if compress else _row_gap(entries[position - 1], entries[position])
        gaps.append(gap)
        required += gap + entries[position].bounds.height
    max_start = max(1, preview_height) - required
    if max_start < 0:
        return None
    targets = [max(0, min(entries[0].bounds.y, max_start))]
    for position in range(1, len(entries)):
        targets.append(targets[-1] + entries[position - 1].bounds.height + gaps[position - 1])
    return targets


def _required_stack_height(entries: list[_TextEntry]) -> float:
    if not entries:
        return 0
    required = entries[0].bounds.height
    for position in range(1, len(entries)):
        required += _row_gap(entries[position - 1], entries[position]) + entries[position].bounds.height
    return required


def _downscale_to_fit(entries: list[_TextEntry], preview_height: float) -> bool:
    safe_height = max(1, preview_height)
    required = _required_stack_height(entries)
    if not entries or required <= safe_height + 0.5:
        return False
    scale = max(0.2, min(1, safe_height / required))
    return _scale_fonts(entries, scale)


def _scale_fonts(entries: list[_TextEntry], scale: float) -> bool:
    did_mutate = False
    for entry in entries:
        current = max(MIN_FONT_SIZE, round_half_up(entry.item.font_size or 12))
        target = max(MIN_FONT_SIZE, round_half_up(current * scale))
        if target >= current:
            continue
        entry.item.font_size = target
        did_mutate = True
    return did_mutate


def is_qr_form_resolved(roles: QrFormRoles, index: BoundsIndex) -> bool:
    """Rows keep order with visible gaps, text stays in view and the QR sits right of the column."""
    if roles.qr is None:
        return False
    entries = _top_to_bottom(_collect_entries(roles, index))
    qr_bounds = index.get(roles.qr)
    if qr_bounds is None or len(entries) < 2:
        return False
    for position in range(1, len(entries)):
        previous = entries[position - 1].bounds
        if entries[position].bounds.y < previous.bottom + MIN_ROW_GAP - 0.5:
            return False
    preview_width = max(1, index.preview.width or 1)
    preview_height = max(1, index.preview.height or 1)
    bottom_most = max((entry.bounds.bottom for entry in entries), default=0)
    qr_inside = (
        qr_bounds.x >= -0.5
        and qr_bounds.y >= -0.5
        and qr_bounds.right <= preview_width + 0.5
        and qr_bounds.bottom <= preview_height + 0.5
    )
    return (
        bottom_most <= preview_height + 0.5
        and qr_bounds.x >= _text_column_right(entries) + MIN_ROW_GAP
        and qr_inside
    )


def apply_qr_form_pass(
    roles: QrFormRoles, index: BoundsIndex, state: LabelState, config: LabelFitConfig
) -> PassResult:
    qr = roles.qr
    if qr is None:
        return PassResult(False)
    entries = _top_to_bottom(_collect_entries(roles, index))
    qr_bounds = index.get(qr)
    if qr_bounds is None or len(entries) < 2:
        return PassResult(False)

    did_mutate = _align_first_pair_underline(entries)
    preview_width = max(1, index.preview.width or 1)
    preview_height = max(1, index.preview.height or 1)

    targets = _stack_targets(entries, preview_height)
    if targets is None:
        targets = _stack_targets(entries, preview_height, compress=True)
        if targets is None:
            if _downscale_to_fit(entries, preview_height):
                return PassResult(True)
            return PassResult(did_mutate)
    for entry, target_y in zip(entries, targets):
        did_mutate |= index.shift_clamped(entry.item, entry.bounds.x, target_y)

    downscaled = False
    qr_bounds = index.get(qr)
    if qr_bounds is not None:
        column_right = _text_column_right(_collect_entries(roles, index))
        overlap_x = column_right + MIN_COLUMN_GAP - qr_bounds.x
        if overlap_x > 0:
            target_x = min(preview_width - qr_bounds.width, qr_bounds.x + overlap_x)
            if target_x > qr_bounds.x + 0.5:
                did_mutate |= index.shift_clamped(qr, target_x, qr_bounds.y)
            else:
                minimum_size = clamp_qr_size(state, config, max(40, round_half_up(preview_height * 0.35)))
                max_allowed = max(1, math.floor(preview_width - (column_right + MIN_COLUMN_GAP)))
                current_size = max(1, qr.size or qr.width or qr.height or qr_bounds.width or 1)
                target_size = clamp_qr_size(
                    state, config, max(minimum_size, min(current_size, max_allowed))
                )
                if target_size < current_size:
                    qr.set_size(target_size)
                    index.resize(qr, target_size, target_size)
                    did_mutate = True
                    qr_bounds = index.get(qr)
                    freed_x = min(preview_width - qr_bounds.width, column_right + MIN_COLUMN_GAP)
                    if freed_x > qr_bounds.x + 0.5:
                        did_mutate |= index.shift_clamped(qr, freed_x, qr_bounds.y)
                qr_bounds = index.get(qr)
                residual = _text_column_right(_collect_entries(roles, index)) + MIN_COLUMN_GAP - qr_bounds.x
                if residual > 0 and _scale_fonts(_top_to_bottom(_collect_entries(roles, index)), 0.85):
                    did_mutate = True
                    downscaled = True

    if downscaled:
        return PassResult(did_mutate, placement_resolved=False)
    return PassResult(did_mutate, placement_resolved=is_qr_form_resolved(roles, index))
