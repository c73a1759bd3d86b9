from __future__ import annotations

from labelfit.geometry import Bounds, PreviewSize
from labelfit.heuristics import (
    is_quarter_turn_text,
    is_short_token_text,
    is_square_marker_shape,
    should_prefer_vertical_overlap_flow,
)
from labelfit.text_lines import (
    StrippedLine,
    collect_text_line_entries,
    count_non_empty_lines,
    find_duplicated_aggregate_text_item,
    normalize_text,
    strip_leading_marker,
    strip_leading_markers_from_text_items,
)
from labelfit.types import BarcodeItem, BoundsIndex, ShapeItem, TextItem


def test_strip_leading_marker_variants() -> None:
    assert strip_leading_marker("☐ Option") == StrippedLine("Option", True)
    assert strip_leading_marker("- item") == StrippedLine("item", True)
    assert strip_leading_marker("[ ]  Yes   please") == StrippedLine("Yes please", True)
    assert strip_leading_marker("-5 degrees") == StrippedLine("-5 degrees", False)
    assert strip_leading_marker("Plain") == StrippedLine("Plain", False)


def test_normalize_text_folds_accents_and_whitespace() -> None:
    assert normalize_text("  Café\n  Menü ") == "cafe menu"
    assert normalize_text("") == ""


def test_strip_markers_rewrites_text_items_in_place() -> None:
    item = TextItem(id="t", text="Heading\n☐ Yes\n☐ No")
    untouched = TextItem(id="u", text="Nothing here")
    cleanup = strip_leading_markers_from_text_items([item, untouched])
    assert cleanup.changed_count == 1
    assert cleanup.removed_marker_count == 2
    assert item.text == "Heading\nYes\nNo"
    assert untouched.text == "Nothing here"


def test_line_entries_walk_down_from_measured_top() -> None:
    item = TextItem(id="t", text="A\n\n☐ B", font_size=12)
    index = BoundsIndex(PreviewSize(220, 128), {"t": Bounds(4, 10, 60, 40)})
    entries = collect_text_line_entries([item], index)
    assert [entry.line for entry in entries] == ["A", "☐ B"]
    assert [entry.line_index for entry in entries] == [0, 2]
    assert [entry.global_index for entry in entries] == [0, 1]
    assert [entry.has_marker for entry in entries] == [False, True]
    assert entries[0].bounds.y == 10
    assert entries[1].bounds.y == 38
    assert collect_text_line_entries([item])[0].bounds is None
    assert count_non_empty_lines(item.text) == 2
    assert count_non_empty_lines("") == 1


def test_duplicated_aggregate_text_is_found() -> None:
    aggregate = TextItem(id="agg", text="Product name\nArticle 1234\nShelf B-12\nBatch 7")
    parts = [TextItem(id="p1", text="Product name"), TextItem(id="p2", text="Article 1234")]
    assert find_duplicated_aggregate_text_item([aggregate, *parts]) is aggregate
    assert find_duplicated_aggregate_text_item([aggregate, parts[0]]) is None


def test_square_marker_shape_rules() -> None:
    assert is_square_marker_shape(ShapeItem(id="s", shape_type="rect", width=14, height=14))
    assert is_square_marker_shape(ShapeItem(id="s", shape_type="", width=14, height=14))
    assert not is_square_marker_shape(ShapeItem(id="s", shape_type="rect", width=40, height=40))
    assert not is_square_marker_shape(ShapeItem(id="s", shape_type="rect", width=14, height=30))
    assert not is_square_marker_shape(ShapeItem(id="s", shape_type="line", width=14, height=14))
    assert not is_square_marker_shape(TextItem(id="t"))


def test_text_classifiers() -> None:
    assert is_short_token_text(TextItem(id="t", text="A1"))
    assert not is_short_token_text(TextItem(id="t", text="ABCD"))
    assert not is_short_token_text(TextItem(id="t", text=""))
    assert is_quarter_turn_text(TextItem(id="t", rotation=-90))
    assert is_quarter_turn_text(TextItem(id="t", rotation=80))
    assert not is_quarter_turn_text(TextItem(id="t", rotation=45))


def test_vertical_overlap_flow_preference() -> None:
    long_a = TextItem(id="a", text="Hello world")
    long_b = TextItem(id="b", text="Another line")
    token = TextItem(id="c", text="A")
    barcode = BarcodeItem(id="bc")
    assert should_prefer_vertical_overlap_flow(long_a, long_b, True, False)
    assert not should_prefer_vertical_overlap_flow(long_a, token, True, False)
    assert not should_prefer_vertical_overlap_flow(barcode, token, False, True)
    assert should_prefer_vertical_overlap_flow(barcode, long_a, False, True)
