from __future__ import annotations

import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from labelfit.geometry import Bounds, normalize_degrees, round_half_up, shift_item_to
from labelfit.preview import PreviewSurface
from labelfit.text_lines import non_empty_lines
from labelfit.types import BarcodeItem, Item, LabelState, TextItem, generate_item_id

logger = logging.getLogger(__name__)

PLACEMENT_ATTEMPTS = 4

_SINGLE_GLYPH_RE = re.compile(r"^[A-Za-z0-9ÄÖÜ]$")
_GLYPH_RE = re.compile(r"[A-Za-z0-9ÄÖÜ]")
_LETTER_RE = re.compile(r"[A-Za-z]")
_DIGIT_RE = re.compile(r"\d")
_FIELD_LABEL_RE = re.compile(r"^artikel(name|nummer|platz)\s*:?$", re.IGNORECASE)
_STRONG_CODE_RE = re.compile(r"^[A-Za-z]{1,4}\s*\d{1,4}(?:\s+\d{1,4}){1,6}\s*[A-Za-z0-9]{0,4}$", re.IGNORECASE)
_SIDE_PATTERN_RE = re.compile(r"(?:^|[\s-])\d{2,4}(?:-\d{2,4}){1,3}(?:$|[\s-])")
_SIDE_PREFIX_RE = re.compile(r"^[A-Za-z]{1,4}\s+\d{2,4}[-\s]\d{2,4}[-\s]\d{2,4}$")
_WHITESPACE_RE = re.compile(r"\s+")


@dataclass
class _TextEntry:
    entry_id: str
    item: TextItem
    text: str
    rotation: float
    font_size: float
    is_vertical: bool
    is_single_letter: bool
    is_code_like: bool
    is_strong_code_like: bool
    is_likely_side_text: bool
    side_confidence: int


@dataclass
class TemplateParts:
    """Semantic pieces pulled out of a barcode-centric label."""

    side_text: Optional[TextItem]
    big_letter: TextItem
    code_text: TextItem
    barcode: BarcodeItem

    @property
    def items(self) -> list[Item]:
        head: list[Item] = [self.side_text] if self.side_text is not None else []
        return [*head, self.big_letter, self.code_text, self.barcode]


@dataclass
class BarcodeTemplateResult:
    applied: bool
    reason: str
    item_ids: dict[str, Optional[str]] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"applied": self.applied, "reason": self.reason, "itemIds": self.item_ids}


def _build_text_entries(texts: Sequence[TextItem]) -> list[_TextEntry]:
    entries: list[_TextEntry] = []
    for item in texts:
        source = str(item.text or "")
        lines = non_empty_lines(source)
        candidates = lines if len(lines) > 1 else [source.strip()]
        rotation = normalize_degrees(item.rotation)
        font_size = max(6, float(item.font_size or 12))
        for line_index, line in enumerate(line for line in candidates if line):
            is_single_letter = bool(_SINGLE_GLYPH_RE.match(line))
            has_digit = bool(_DIGIT_RE.search(line))
            entries.append(
                _TextEntry(
                    entry_id=f"{item.id}::{line_index}",
                    item=item,
                    text=line,
                    rotation=rotation,
                    font_size=font_size,
                    is_vertical=abs(abs(rotation) - 90) <= 20,
                    is_single_letter=is_single_letter,
                    is_code_like=len(line) >= 8
                    and bool(_LETTER_RE.search(line))
                    and has_digit
                    and not _FIELD_LABEL_RE.match(line),
                    is_strong_code_like=bool(_STRONG_CODE_RE.match(line)),
                    is_likely_side_text=bool(_SIDE_PATTERN_RE.search(line)) and not is_single_letter,
                    side_confidence=(3 if _SIDE_PREFIX_RE.match(line) else 0)
                    + (2 if "-" in line else 0)
                    + (1 if has_digit else 0),
                )
            )
    return entries


def _code_score(entry: _TextEntry) -> float:
    return (
        (2000 if entry.is_strong_code_like else 0)
        + (1000 if entry.is_code_like else 0)
        + len(entry.text)
        + entry.font_size
    )


def _first_max(entries: Sequence[_TextEntry], key: Any) -> Optional[_TextEntry]:
    return max(entries, key=key) if entries else None


def extract_template_parts(texts: Sequence[TextItem], barcode: BarcodeItem) -> Optional[TemplateParts]:
    """Pick side text, big letter, code text and barcode settings; None when the code is missing."""
    entries = _build_text_entries(texts)
    if not entries:
        return None

    side = _first_max([entry for entry in entries if entry.is_vertical], key=lambda entry: len(entry.text))
    if side is None:
        side = _first_max(
            [entry for entry in entries if not entry.is_vertical and entry.is_likely_side_text],
            key=lambda entry: entry.side_confidence * 100 + len(entry.text),
        )
    side_id = side.entry_id if side else None
    big = _first_max(
        [entry for entry in entries if entry.is_single_letter and entry.entry_id != side_id],
        key=lambda entry: entry.font_size,
    )
    big_id = big.entry_id if big else None
    content = [entry for entry in entries if entry.entry_id not in (side_id, big_id)]
    if not any(entry.is_strong_code_like or entry.is_code_like for entry in content):
        return None
    code = _first_max(content, key=_code_score)
    if code is None:
        return None

    barcode_data = str(barcode.data or "").strip() or _WHITESPACE_RE.sub("", code.text)
    if not barcode_data:
        return None
    code_text = code.text if len(code.text) >= 6 else barcode_data

    big_text = big.text.strip() if big else ""
    if not big_text:
        match = _GLYPH_RE.search(code.text or barcode_data)
        big_text = match.group(0).upper() if match else ""
    if not big_text:
        return None
    if big is not None:
        big_font = max(30, min(120, round_half_up(big.font_size)))
    else:
        big_font = max(34, min(96, round_half_up(code.font_size * 2.3)))

    side_item = None
    if side is not None:
        side_item = TextItem(
            id=generate_item_id("text"),
            text=side.text,
            rotation=-90 if side.rotation < 0 else 90,
            font_size=max(8, min(24, round_half_up(side.font_size))),
            text_bold=bool(side.item.text_bold),
            text_italic=bool(side.item.text_italic),
            text_underline=bool(side.item.text_underline),
        )
    return TemplateParts(
        side_text=side_item,
        big_letter=TextItem(id=generate_item_id("text"), text=big_text, font_size=big_font, text_bold=True),
        code_text=TextItem(
            id=generate_item_id("text"),
            text=code_text,
            font_size=max(12, min(32, round_half_up(code.font_size))),
            text_bold=bool(code.item.text_bold),
            text_italic=bool(code.item.text_italic),
            text_underline=True,
        ),
        barcode=BarcodeItem(
            id=generate_item_id("barcode"),
            data=barcode_data,
            width=max(120, float(barcode.width or 180)),
            height=max(18, float(barcode.height or 26)),
            barcode_format=str(barcode.barcode_format or "code128"),
            barcode_show_text=False,
            barcode_module_width=max(1, round_half_up(float(barcode.barcode_module_width or 2))),
            barcode_margin=max(0, round_half_up(float(barcode.barcode_margin or 0))),
        ),
    )


@dataclass(frozen=True)
class _TemplateMetrics:
    preview_height: float
    edge_padding: int
    left_gutter: int
    right_block_gap: int
    code_top: int
    code_to_barcode_gap: int
    big_baseline_inset: int
    big_font: int
    barcode_height: int

    @classmethod
    def for_height(cls, preview_height: float) -> _TemplateMetrics:
        edge = max(1, round_half_up(preview_height * 0.015))
        return cls(
            preview_height=preview_height,
            edge_padding=edge,
            left_gutter=max(12, round_half_up(preview_height * 0.11)),
            right_block_gap=max(28, round_half_up(preview_height * 0.34)),
            code_top=max(edge, round_half_up(preview_height * 0.16)),
            code_to_barcode_gap=max(6, round_half_up(preview_height * 0.07)),
            big_baseline_inset=max(1, round_half_up(preview_height * 0.03)),
            big_font=max(52, min(128, round_half_up(preview_height * 0.84))),
            barcode_height=max(30, min(58, round_half_up(preview_height * 0.42))),
        )


def _lookup(surface: PreviewSurface, item: Optional[Item]) -> Optional[Bounds]:
    if item is None:
        return None
    measured: Mapping[str, Bounds] | None = surface.measured_bounds()
    return (measured or {}).get(item.id)


def _has_all_bounds(surface: PreviewSurface, parts: TemplateParts) -> bool:
    return all(_lookup(surface, item) is not None for item in parts.items)


def _fit_fonts(parts: TemplateParts, surface: PreviewSurface, metrics: _TemplateMetrics) -> list[dict[str, Any]]:
    updates: list[dict[str, Any]] = []
    current_big = max(8, round_half_up(float(parts.big_letter.font_size or 0)))
    if current_big != metrics.big_font:
        parts.big_letter.font_size = metrics.big_font
        updates.append({"role": "big", "currentFont": current_big, "nextFont": metrics.big_font})
    side_bounds = _lookup(surface, parts.side_text)
    if parts.side_text is not None and side_bounds is not None:
        max_side_height = max(1, metrics.preview_height - metrics.edge_padding * 2)
        side_height = max(1, side_bounds.height)
        if side_height > max_side_height + 1:
            current_side = max(7, float(parts.side_text.font_size or 10))
            next_side = max(7, math.floor(current_side * max_side_height / side_height))
            if next_side < current_side:
                parts.side_text.font_size = next_side
                updates.append({"role": "side", "currentFont": current_side, "nextFont": next_side})
    return updates


async def _place_template(
    parts: TemplateParts, surface: PreviewSurface, active_logger: logging.Logger
) -> bool:
    _width, height = surface.preview_extent()
    metrics = _TemplateMetrics.for_height(max(64, float(height or 0) or 128))
    preview_height = metrics.preview_height
    has_side = parts.side_text is not None
    for attempt in range(1, PLACEMENT_ATTEMPTS + 1):
        if not _has_all_bounds(surface, parts):
            active_logger.debug("barcode-template-place-retry %s", {"attempt": attempt, "reason": "missing-bounds"})
            await surface.remeasure()
            continue

        updates = _fit_fonts(parts, surface, metrics)
        if updates:
            active_logger.debug("barcode-template-font-fit %s", {"attempt": attempt, "updates": updates})
            await surface.remeasure()
            if not _has_all_bounds(surface, parts):
                continue

        side_bounds = _lookup(surface, parts.side_text)
        big_bounds = _lookup(surface, parts.big_letter)
        code_bounds = _lookup(surface, parts.code_text)
        side_height = side_bounds.height if side_bounds else 0
        side_width = side_bounds.width if side_bounds else 0
        edge = metrics.edge_padding

        side_target_x = edge
        side_target_y = min(
            max(edge, preview_height - side_height - edge),
            max(edge, round_half_up((preview_height - side_height) / 2)),
        )
        side_reserved = round_half_up(side_width + edge * 2) if has_side else 0
        if has_side:
            big_target_x = max(metrics.left_gutter, side_reserved + round_half_up(preview_height * 0.02))
        else:
            big_target_x = edge + max(2, round_half_up(preview_height * 0.02))
        big_target_y = max(edge, round_half_up(preview_height - big_bounds.height - metrics.big_baseline_inset))
        code_target_x = max(
            round_half_up(preview_height * 0.85),
            round_half_up(big_target_x + big_bounds.width + metrics.right_block_gap),
        )
        code_target_y = metrics.code_top

        barcode = parts.barcode
        barcode_width = max(
            220, min(420, round_half_up(max(code_bounds.width * 1.05, preview_height * 2.2)))
        )
        previous = (round_half_up(float(barcode.width or 0)), round_half_up(float(barcode.height or 0)))
        barcode.height = metrics.barcode_height
        barcode.width = barcode_width
        barcode.barcode_show_text = False
        barcode.barcode_margin = max(0, float(barcode.barcode_margin or 0))
        if previous != (barcode_width, metrics.barcode_height):
            active_logger.debug(
                "barcode-template-barcode-fit %s",
                {"attempt": attempt, "previous": previous, "next": (barcode_width, metrics.barcode_height)},
            )

        if has_side and side_bounds is not None:
            shift_item_to(parts.side_text, side_bounds, side_target_x, side_target_y)
        shift_item_to(parts.big_letter, big_bounds, big_target_x, big_target_y)
        shift_item_to(parts.code_text, code_bounds, code_target_x, code_target_y)
        await surface.remeasure()

        code_bounds = _lookup(surface, parts.code_text)
        barcode_bounds = _lookup(surface, barcode)
        if code_bounds is None or barcode_bounds is None:
            await surface.remeasure()
            continue

        centered_x = round_half_up(code_bounds.x + code_bounds.width / 2 - barcode_width / 2)
        barcode_target_x = max(round_half_up(code_target_x - preview_height * 0.02), centered_x)
        natural_y = round_half_up(code_bounds.bottom + metrics.code_to_barcode_gap)
        max_y = max(edge, round_half_up(preview_height - metrics.barcode_height - edge))
        barcode_target_y = min(max_y, natural_y)
        shift_item_to(barcode, barcode_bounds, barcode_target_x, barcode_target_y)
        await surface.remeasure()

        active_logger.debug(
            "barcode-template-place %s",
            {
                "attempt": attempt,
                "sideTarget": (side_target_x, side_target_y),
                "bigTarget": (big_target_x, big_target_y),
                "codeTarget": (code_target_x, code_target_y),
                "barcodeTarget": (barcode_target_x, barcode_target_y),
            },
        )
        return True
    return False


async def rebuild_barcode_template(
    state: LabelState, surface: PreviewSurface, log: logging.Logger | None = None
) -> BarcodeTemplateResult:
    """Replace a barcode-centric label with the side/big-letter/code/barcode quad and place it."""
    active_logger = log or logger
    barcodes = [item for item in state.items if isinstance(item, BarcodeItem)]
    texts = [item for item in state.items if isinstance(item, TextItem)]
    if not barcodes or not texts:
        active_logger.debug(
            "barcode-template-skip %s",
            {"reason": "insufficient-items", "barcodeItemCount": len(barcodes), "textItemCount": len(texts)},
        )
        return BarcodeTemplateResult(False, "skip-insufficient-items")

    parts = extract_template_parts(texts, barcodes[0])
    if parts is None:
        active_logger.debug("barcode-template-skip %s", {"reason": "missing-required-parts"})
        return BarcodeTemplateResult(False, "skip-missing-required-parts")

    state.replace_items(parts.items)
    await surface.remeasure()
    placed = await _place_template(parts, surface, active_logger)
    await surface.remeasure()
    item_ids = {
        "side": parts.side_text.id if parts.side_text else None,
        "big": parts.big_letter.id,
        "code": parts.code_text.id,
        "barcode": parts.barcode.id,
    }
    active_logger.debug("barcode-template-apply %s", {"textCount": len(texts), "placed": placed})
    reason = "applied-barcode-template" if placed else "applied-barcode-template-unplaced"
    return BarcodeTemplateResult(True, reason, item_ids)
