from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional, Sequence

from labelfit.geometry import Bounds, center_distance, round_half_up
from labelfit.heuristics import is_quarter_turn_text, is_short_token_text
from labelfit.media import ProminenceFloors
from labelfit.types import BarcodeItem, BoundsIndex, Detection, Item, PassResult, TextItem

SIDE_TO_TOKEN_GAP = 6
SIDE_TO_CODE_GAP = 12
LEFT_GUTTER_RIGHT_RATIO = 0.22
TOKEN_GAP = 6
BARCODE_TARGET_GAP = 12
BARCODE_MIN_GAP = 8
BARCODE_MAX_GAP = 22
MAX_COLUMN_DELTA = 24
UPPER_BAND_RATIO = 0.68


@dataclass
class BarcodePhotoRoles:
    side_text: Optional[TextItem]
    short_token: Optional[TextItem]
    code_text: Optional[TextItem]
    barcode: Optional[BarcodeItem]

    @property
    def complete(self) -> bool:
        return all((self.side_text, self.short_token, self.code_text, self.barcode))


def _pair_score(barcode: Bounds, code: Bounds) -> float:
    horizontal = abs(barcode.x - code.x)
    vertical = barcode.y - code.y
    score = horizontal * 2 + abs(vertical) + center_distance(barcode, code) * 0.2
    if vertical < -6:
        score += 48
    if horizontal > 64:
        score += (horizontal - 64) * 2.2
    return score


def _short_token_score(token: Bounds | None, code: Bounds) -> float:
    if token is None:
        return math.inf
    penalty = 36 if token.x > code.x else 0
    return center_distance(token, code) + penalty


def resolve_barcode_photo_roles(items: Sequence[Item], index: BoundsIndex) -> BarcodePhotoRoles:
    texts = [item for item in items if isinstance(item, TextItem)]
    barcodes = [item for item in items if isinstance(item, BarcodeItem)]

    def side_key(item: TextItem) -> float:
        bounds = index.get(item)
        return (bounds.x if bounds and bounds.x else item.x_offset) or 0

    side_candidates = sorted((item for item in texts if is_quarter_turn_text(item)), key=side_key)
    side_text = side_candidates[0] if side_candidates else None

    code_candidates = [
        item for item in texts if not is_quarter_turn_text(item) and not is_short_token_text(item)
    ]
    best: tuple[float, BarcodeItem, TextItem] | None = None
    for barcode in barcodes:
        barcode_bounds = index.get(barcode)
        if barcode_bounds is None:
            continue
        for code in code_candidates:
            code_bounds = index.get(code)
            if code_bounds is None:
                continue
            score = _pair_score(barcode_bounds, code_bounds)
            if best is None or score < best[0]:
                best = (score, barcode, code)

    barcode_item = best[1] if best else (barcodes[0] if barcodes else None)
    code_text = best[2] if best else None
    token_candidates = [
        item
        for item in texts
        if is_short_token_text(item) and not (side_text is not None and item.id == side_text.id)
    ]
    short_token = token_candidates[0] if token_candidates else None
    if code_text is not None and token_candidates:
        code_bounds = index.get(code_text)
        if code_bounds is not None:
            short_token = sorted(
                token_candidates, key=lambda item: _short_token_score(index.get(item), code_bounds)
            )[0]
    return BarcodePhotoRoles(side_text, short_token, code_text, barcode_item)


def detect_barcode_photo(
    items: Sequence[Item], marker_evidence: bool, index: BoundsIndex
) -> Detection:
    """Absolute layout with side text, short token, code text and a barcode under it."""
    if marker_evidence:
        return Detection(False, "skip-marker-evidence")
    texts = [item for item in items if isinstance(item, TextItem)]
    barcodes = [item for item in items if isinstance(item, BarcodeItem)]
    if len(texts) < 3 or not barcodes:
        return Detection(False, "skip-item-counts")
    if not all(item.is_absolute for item in [*texts, *barcodes]):
        return Detection(False, "skip-flow-items")
    roles = resolve_barcode_photo_roles(items, index)
    if not roles.complete:
        return Detection(False, "skip-incomplete-roles")
    code_bounds = index.get(roles.code_text)
    barcode_bounds = index.get(roles.barcode)
    if code_bounds is None or barcode_bounds is None:
        return Detection(False, "skip-missing-bounds")
    horizontal = abs(barcode_bounds.x - code_bounds.x)
    vertical = barcode_bounds.y - code_bounds.y
    looks_near = (
        horizontal <= 56
        and -12 <= vertical <= 120
        and center_distance(code_bounds, barcode_bounds) <= 220
    )
    if not looks_near:
        return Detection(False, "skip-code-barcode-apart")
    return Detection(True, "barcode-photo-candidate", roles)


def apply_barcode_photo_floors(roles: BarcodePhotoRoles, floors: ProminenceFloors) -> bool:
    """Raise token font and barcode size to the floors; larger values are kept."""
    token = roles.short_token
    barcode = roles.barcode
    if token is None or barcode is None:
        return False
    min_font = max(6, round_half_up(floors.min_token_font_size or 0))
    min_width = max(1, round_half_up(floors.min_barcode_width or 0))
    min_height = max(1, round_half_up(floors.min_barcode_height or 0))
    did_mutate = False
    if float(token.font_size or 0) < min_font:
        token.font_size = min_font
        did_mutate = True
    if float(barcode.width or 0) < min_width:
        barcode.width = min_width
        did_mutate = True
    if float(barcode.height or 0) < min_height:
        barcode.height = min_height
        did_mutate = True
    return did_mutate


def apply_barcode_photo_pass(roles: BarcodePhotoRoles, index: BoundsIndex) -> PassResult:
    side, token, code, barcode = roles.side_text, roles.short_token, roles.code_text, roles.barcode
    if side is None or token is None or code is None or barcode is None:
        return PassResult(False)
    preview = index.preview
    did_mutate = False

    side_bounds = index.get(side)
    token_bounds = index.get(token)
    code_bounds = index.get(code)
    if side_bounds and token_bounds and code_bounds:
        preview_width = max(1, preview.width or 220)
        side_limit = min(
            token_bounds.x - SIDE_TO_TOKEN_GAP,
            code_bounds.x - SIDE_TO_CODE_GAP,
            round_half_up(preview_width * LEFT_GUTTER_RIGHT_RATIO),
        )
        if side_bounds.right > side_limit:
            did_mutate |= index.shift_clamped(side, side_limit - side_bounds.width, side_bounds.y)

    side_bounds = index.get(side)
    if side_bounds and side_bounds.x < 0:
        did_mutate |= index.shift_clamped(side, 0, side_bounds.y)

    token_bounds = index.get(token)
    code_bounds = index.get(code)
    if token_bounds and code_bounds:
        desired_right = code_bounds.x - TOKEN_GAP
        if token_bounds.right > desired_right:
            did_mutate |= index.shift_clamped(token, desired_right - token_bounds.width, token_bounds.y)
        overlap = token_bounds.right - (code_bounds.x - TOKEN_GAP)
        if overlap > 0:
            did_mutate |= index.shift_clamped(code, code_bounds.x + overlap, code_bounds.y)

    code_bounds = index.get(code)
    barcode_bounds = index.get(barcode)
    if code_bounds and barcode_bounds:
        if abs(barcode_bounds.x - code_bounds.x) > MAX_COLUMN_DELTA:
            did_mutate |= index.shift_clamped(barcode, code_bounds.x, barcode_bounds.y)
        current_gap = barcode_bounds.y - code_bounds.bottom
        if current_gap < BARCODE_MIN_GAP or current_gap > BARCODE_MAX_GAP:
            did_mutate |= index.shift_clamped(
                barcode, barcode_bounds.x, code_bounds.bottom + BARCODE_TARGET_GAP
            )

    code_bounds = index.get(code)
    barcode_bounds = index.get(barcode)
    if code_bounds and barcode_bounds:
        upper_band_top = max(0, round_half_up((preview.height or 1) * UPPER_BAND_RATIO))
        if barcode_bounds.y > upper_band_top:
            requested = barcode_bounds.y - upper_band_top
            safe_shift = max(0, min(requested, code_bounds.y, barcode_bounds.y))
            if safe_shift > 0:
                did_mutate |= index.shift_clamped(code, code_bounds.x, code_bounds.y - safe_shift)
                did_mutate |= index.shift_clamped(barcode, barcode_bounds.x, barcode_bounds.y - safe_shift)

    return PassResult(did_mutate, placement_resolved=not did_mutate)
