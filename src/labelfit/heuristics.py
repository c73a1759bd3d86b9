from __future__ import annotations

import re
from typing import Any

from labelfit.types import BarcodeItem, QrItem, ShapeItem, TextItem

MARKER_SHAPE_TYPES = {"rect", "roundrect", "square"}

_WHITESPACE_RE = re.compile(r"\s+")


def is_machine_readable(item: Any) -> bool:
    return isinstance(item, (QrItem, BarcodeItem))


def is_quarter_turn_text(item: Any) -> bool:
    if not isinstance(item, TextItem):
        return False
    normalized = abs(float(item.rotation or 0)) % 180
    return abs(normalized - 90) <= 12


def is_short_token_text(item: Any) -> bool:
    if not isinstance(item, TextItem):
        return False
    lines = [line.strip() for line in str(item.text or "").replace("\r", "").split("\n")]
    normalized = _WHITESPACE_RE.sub("", " ".join(line for line in lines if line))
    return 0 < len(normalized) <= 3


def is_square_marker_shape(item: Any) -> bool:
    """Small, nearly square rectangle that reads as a checkbox."""
    if not isinstance(item, ShapeItem):
        return False
    shape_type = item.normalized_shape_type
    if shape_type and shape_type not in MARKER_SHAPE_TYPES:
        return False
    width = max(0, float(item.width or 0))
    height = max(0, float(item.height or 0))
    if width < 4 or height < 4:
        return False
    max_side = max(width, height)
    min_side = max(1, min(width, height))
    return max_side <= 36 and max_side / min_side <= 1.65


def should_prefer_vertical_overlap_flow(
    left: Any,
    right: Any,
    is_text_text_overlap: bool,
    touches_machine_readable: bool,
) -> bool:
    """True when an overlap should be resolved downwards instead of sideways."""
    mixed_rotation = is_text_text_overlap and is_quarter_turn_text(left) != is_quarter_turn_text(right)
    short_token = is_text_text_overlap and is_short_token_text(left) != is_short_token_text(right)
    machine_short_token = touches_machine_readable and (
        (is_machine_readable(left) and is_short_token_text(right))
        or (is_machine_readable(right) and is_short_token_text(left))
    )
    return (is_text_text_overlap and not mixed_rotation and not short_token) or (
        touches_machine_readable and not machine_short_token
    )
