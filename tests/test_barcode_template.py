from __future__ import annotations

import asyncio

from labelfit.barcode_template import extract_template_parts, rebuild_barcode_template
from labelfit.preview import EstimatingPreview
from labelfit.types import BarcodeItem, LabelState, TextItem


def _label_items() -> list:
    return [
        TextItem(id="side", text="12-34-56", rotation=90),
        TextItem(id="big", text="B", font_size=40),
        TextItem(id="code", text="ABC 123 456", font_size=14),
        TextItem(id="note", text="Artikelname:"),
        BarcodeItem(id="bc", width=150, height=20),
    ]


def test_extract_template_parts_assigns_roles() -> None:
    items = _label_items()
    parts = extract_template_parts([item for item in items if isinstance(item, TextItem)], items[-1])
    assert parts is not None
    assert parts.side_text.text == "12-34-56"
    assert parts.side_text.rotation == 90
    assert (parts.big_letter.text, parts.big_letter.font_size) == ("B", 40)
    assert parts.code_text.text == "ABC 123 456"
    assert parts.code_text.text_underline
    assert parts.barcode.data == "ABC123456"
    assert parts.barcode.barcode_show_text is False
    assert parts.barcode.width == 150


def test_big_letter_falls_back_to_code_glyph() -> None:
    code = TextItem(id="code", text="xy 12 34 56", font_size=20)
    parts = extract_template_parts([code], BarcodeItem(id="bc", data="XY123456"))
    assert parts is not None
    assert parts.side_text is None
    assert parts.big_letter.text == "X"
    assert parts.big_letter.font_size == 46
    assert parts.barcode.data == "XY123456"


def test_rebuild_places_template_items() -> None:
    state = LabelState(items=_label_items())
    preview = EstimatingPreview(state, width=360, height=128, anchor="top", measure_on_init=True)
    result = asyncio.run(rebuild_barcode_template(state, preview))
    assert result.applied
    assert result.reason == "applied-barcode-template"
    assert len(state.items) == 4
    assert [item.id for item in state.items] == [
        result.item_ids["side"],
        result.item_ids["big"],
        result.item_ids["code"],
        result.item_ids["barcode"],
    ]

    side, big, code, barcode = state.items
    assert big.font_size == 108
    assert barcode.height == 54
    assert 220 <= barcode.width <= 420
    bounds = preview.measured_bounds()
    assert bounds[big.id].x < bounds[code.id].x
    assert bounds[barcode.id].y >= bounds[code.id].bottom
    assert bounds[side.id].x < bounds[big.id].x


def test_rebuild_skips_without_required_parts() -> None:
    no_barcode = LabelState(items=[TextItem(id="t", text="ABC 123 456")])
    preview = EstimatingPreview(no_barcode, measure_on_init=True)
    assert asyncio.run(rebuild_barcode_template(no_barcode, preview)).reason == "skip-insufficient-items"

    no_code = LabelState(items=[TextItem(id="t", text="Hello"), BarcodeItem(id="bc")])
    result = asyncio.run(rebuild_barcode_template(no_code, EstimatingPreview(no_code, measure_on_init=True)))
    assert not result.applied
    assert result.reason == "skip-missing-required-parts"
    assert [item.id for item in no_code.items] == ["t", "bc"]
