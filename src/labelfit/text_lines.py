from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Iterable, Optional

from labelfit.geometry import Bounds, round_half_up
from labelfit.types import BoundsIndex, Item, TextItem

_MARKER_RE = re.compile(r"^(?:\s*(?:☐|□|▢|◻|\[\s*\])\s*|\s*[\-*•]\s+)")
_COMBINING_RE = re.compile("[\u0300-\u036f]")
_WHITESPACE_RE = re.compile(r"\s+")
_WHITESPACE_RUN_RE = re.compile(r"\s{2,}")


@dataclass
class TextLineEntry:
    line: str
    item: TextItem
    item_index: int
    line_index: int
    global_index: int
    has_marker: bool
    bounds: Optional[Bounds]


@dataclass(frozen=True)
class StrippedLine:
    text: str
    removed_marker: bool


@dataclass(frozen=True)
class MarkerCleanup:
    changed_count: int
    removed_marker_count: int


def text_items(items: Iterable[Item]) -> list[TextItem]:
    return [item for item in items if isinstance(item, TextItem)]


def split_lines(text: str) -> list[str]:
    return str(text or "").replace("\r", "").split("\n")


def non_empty_lines(text: str) -> list[str]:
    return [line.strip() for line in split_lines(text) if line.strip()]


def count_non_empty_lines(text: str) -> int:
    return max(1, len(non_empty_lines(text)))


def estimated_line_height(font_size: float) -> int:
    return max(8, round_half_up(float(font_size or 12) * 1.15))


def normalize_text(text: str) -> str:
    """Fold accents, lowercase and collapse whitespace for structural matching."""
    decomposed = unicodedata.normalize("NFD", str(text or ""))
    stripped = _COMBINING_RE.sub("", decomposed).lower()
    return _WHITESPACE_RE.sub(" ", stripped).strip()


def has_leading_marker(line: str) -> bool:
    return bool(_MARKER_RE.match(str(line or "")))


def strip_leading_marker(line: str) -> StrippedLine:
    source = str(line or "")
    removed = bool(_MARKER_RE.match(source))
    cleaned = _WHITESPACE_RUN_RE.sub(" ", _MARKER_RE.sub("", source, count=1)).rstrip()
    return StrippedLine(cleaned, removed)


def strip_leading_markers_from_text_items(items: Iterable[Item]) -> MarkerCleanup:
    changed_count = 0
    removed_marker_count = 0
    for item in text_items(items):
        original = str(item.text or "")
        item_changed = False
        next_lines: list[str] = []
        for line in original.replace("\r", "").split("\n"):
            stripped = strip_leading_marker(line)
            if stripped.removed_marker:
                removed_marker_count += 1
                if stripped.text != line:
                    item_changed = True
            next_lines.append(stripped.text)
        next_text = "\n".join(next_lines)
        if item_changed and next_text != original:
            item.text = next_text
            changed_count += 1
    return MarkerCleanup(changed_count, removed_marker_count)


def collect_text_line_entries(
    items: Iterable[Item], index: BoundsIndex | None = None
) -> list[TextLineEntry]:
    """Split every text item into its non-empty lines.

    With a bounds index, each line gets an estimated band walking down from the
    item's measured top; blank lines still advance the cursor.
    """
    entries: list[TextLineEntry] = []
    for item_index, item in enumerate(text_items(items)):
        item_bounds = index.get(item) if index is not None else None
        cursor_y = float(item_bounds.y) if item_bounds else 0.0
        line_height = estimated_line_height(item.font_size)
        for line_index, raw_line in enumerate(split_lines(item.text)):
            trimmed = raw_line.strip()
            if not trimmed:
                cursor_y += line_height
                continue
            line_bounds = (
                Bounds(float(item_bounds.x), cursor_y, float(item_bounds.width or 1), line_height)
                if item_bounds
                else None
            )
            entries.append(
                TextLineEntry(
                    line=trimmed,
                    item=item,
                    item_index=item_index,
                    line_index=line_index,
                    global_index=len(entries),
                    has_marker=has_leading_marker(trimmed),
                    bounds=line_bounds,
                )
            )
            cursor_y += line_height
    return entries


def find_duplicated_aggregate_text_item(items: Iterable[Item]) -> TextItem | None:
    texts = text_items(items)
    if len(texts) < 2:
        return None
    rows = [(item, normalize_text(item.text), len(non_empty_lines(item.text))) for item in texts]
    candidates = sorted(
        (row for row in rows if row[2] >= 4 and len(row[1]) >= 24),
        key=lambda row: -row[2],
    )
    for candidate, normalized, _count in candidates:
        overlap_count = sum(
            1
            for item, other, _lines in rows
            if item.id != candidate.id and len(other) >= 4 and other in normalized
        )
        if overlap_count >= 2:
            return candidate
    return None
