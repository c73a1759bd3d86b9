from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any

from labelfit.config import LabelFitConfig
from labelfit.geometry import round_half_up
from labelfit.types import LabelState

MM_PER_INCH = 25.4

_MEDIA_CODE_RE = re.compile(r"^W(\d{1,2})$")


@dataclass(frozen=True)
class ProminenceFloors:
    min_token_font_size: int
    min_barcode_width: int
    min_barcode_height: int


def _media_key(state: LabelState) -> str:
    return str(state.media or "").strip()


def resolve_print_area(state: LabelState, config: LabelFitConfig) -> float | None:
    areas = config.media.print_area_dots
    area = areas.get(_media_key(state))
    if area is None:
        area = areas.get(config.media.default)
    return area


def resolve_media_width_mm(state: LabelState, config: LabelFitConfig, use_media_table: bool = True) -> float:
    """Tape width in mm from a ``W<n>`` code, then the media table, else 24."""
    code = str(state.media or "").strip().upper()
    match = _MEDIA_CODE_RE.match(code)
    if match:
        width = float(match.group(1))
        if 3 <= width <= 62:
            return width
    if use_media_table:
        width_mm = config.media.width_mm.get(code) or config.media.width_mm.get(_media_key(state))
        if width_mm and width_mm > 0:
            return float(width_mm)
    return 24


def _resolution(state: LabelState, config: LabelFitConfig) -> str:
    resolution = str(state.resolution or "").strip()
    if resolution in config.resolution.dpi:
        return resolution
    return config.resolution.default


def compute_length_constrained_qr_max(state: LabelState, config: LabelFitConfig) -> float:
    try:
        length_mm = float(state.media_length_mm) if state.media_length_mm is not None else math.nan
    except (TypeError, ValueError):
        length_mm = math.nan
    if not math.isfinite(length_mm) or length_mm <= 0:
        return math.inf
    resolution = _resolution(state, config)
    dpi = config.resolution.dpi.get(resolution) or 180
    min_length = max(0, config.resolution.min_length_dots.get(resolution, 0) or 0)
    forced_length = max(min_length, round_half_up(length_mm / MM_PER_INCH * dpi))
    return max(1, forced_length - config.qr.feed_padding)


def compute_max_qr_size(state: LabelState, config: LabelFitConfig) -> int:
    max_by_width = max(1, resolve_print_area(state, config) or config.qr.default_size)
    max_by_length = compute_length_constrained_qr_max(state, config)
    return max(1, math.floor(min(max_by_width, max_by_length)))


def compute_initial_qr_size(state: LabelState, config: LabelFitConfig) -> float:
    return min(config.qr.default_size, compute_max_qr_size(state, config))


def clamp_qr_size(state: LabelState, config: LabelFitConfig, value: Any) -> int:
    max_size = compute_max_qr_size(state, config)
    try:
        safe_value = float(value)
    except (TypeError, ValueError):
        safe_value = math.nan
    if not math.isfinite(safe_value):
        safe_value = compute_initial_qr_size(state, config)
    return max(1, min(max_size, round_half_up(safe_value)))


def prominent_qr_floor(state: LabelState, config: LabelFitConfig) -> int:
    return max(
        round_half_up(config.qr.min_size),
        round_half_up(compute_max_qr_size(state, config) * config.qr.rebuild_floor_ratio),
    )


def resolve_barcode_photo_floors(state: LabelState, config: LabelFitConfig) -> ProminenceFloors:
    """Scale the reference prominence floors by the media print area."""
    reference = max(1, config.media.print_area_dots.get(config.media.reference) or 128)
    area = max(1, resolve_print_area(state, config) or reference)
    scale = max(0.72, min(1.35, area / reference))
    return ProminenceFloors(
        min_token_font_size=max(18, round_half_up(58 * scale)),
        min_barcode_width=max(96, round_half_up(240 * scale)),
        min_barcode_height=max(16, round_half_up(40 * scale)),
    )


def resolve_header_font_cap(state: LabelState, config: LabelFitConfig) -> int:
    scale = max(0.7, min(1.6, resolve_media_width_mm(state, config) / 24))
    return max(10, round_half_up(16 * scale))
