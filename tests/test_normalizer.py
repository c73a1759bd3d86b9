from __future__ import annotations

import asyncio

from labelfit.config import LabelFitConfig, SolverConfig
from labelfit.detectors.boxed_barcode import apply_boxed_barcode_form
from labelfit.normalizer import LayoutNormalizer, normalize_layout
from labelfit.preview import EstimatingPreview
from labelfit.types import BarcodeItem, LabelState, NormalizationWarning, QrItem, ShapeItem, TextItem

CONFIG = LabelFitConfig()


def _normalize(state: LabelState, config: LabelFitConfig = CONFIG, **kwargs):
    preview = EstimatingPreview(state, width=kwargs.pop("width", 220), height=128, measure_on_init=True)
    return asyncio.run(normalize_layout(state, preview, config=config, **kwargs))


def _boxed_state() -> LabelState:
    return LabelState(
        items=[
            BarcodeItem(id="bc", width=200, height=30, position_mode="absolute", x_offset=10, y_offset=20),
            TextItem(
                id="left",
                text="AB12345678X",
                position_mode="absolute",
                x_offset=10,
                y_offset=-40,
                text_underline=True,
            ),
            TextItem(
                id="right",
                text="AB12345678X",
                position_mode="absolute",
                x_offset=120,
                y_offset=-40,
                text_underline=True,
            ),
            TextItem(id="mid", text="Middle row", position_mode="absolute", x_offset=10, y_offset=-15),
        ]
    )


def test_empty_items() -> None:
    result = _normalize(LabelState())
    assert not result.applied
    assert result.reason == "empty-items"
    assert result.to_dict()["warnings"] == []


def test_aggregate_text_is_removed() -> None:
    state = LabelState(
        items=[
            TextItem(id="agg", text="Product name\nArticle 1234\nShelf B-12\nBatch 7"),
            TextItem(id="p1", text="Product name"),
            TextItem(id="p2", text="Article 1234"),
        ]
    )
    result = _normalize(state)
    assert result.did_mutate
    assert [item.id for item in state.items] == ["p1", "p2"]
    assert result.reason == "applied-placement-solver"
    assert result.confidence == 0.64
    assert result.warnings == []


def test_marker_text_is_rebuilt_into_group() -> None:
    state = LabelState(items=[TextItem(id="t1", text="Heading\n☐ Option")])
    result = _normalize(state)
    assert result.applied
    assert result.confidence == 0.82
    assert result.reason == "applied-placement-solver"
    assert [item.kind for item in state.items] == ["text", "shape", "text"]
    assert {item.text for item in state.items if isinstance(item, TextItem)} == {"Heading", "Option"}


def test_low_confidence_warning_is_reported() -> None:
    received: list[NormalizationWarning] = []
    state = LabelState(items=[TextItem(id="t", text="- apple")])
    result = _normalize(state, on_warning=received.append)
    assert result.reason == "normalized-marker-prefixes"
    assert result.confidence == 0.4
    assert state.items[0].text == "apple"
    assert [warning.code for warning in result.warnings] == ["W3102_LOW_CONFIDENCE"]
    assert received == result.warnings


def test_unresolved_marker_placement_warns() -> None:
    config = LabelFitConfig(solver=SolverConfig(max_iterations=1))
    state = LabelState(items=[TextItem(id="t", text="- apple", x_offset=300)])
    result = _normalize(state, config)
    assert result.did_mutate
    assert not result.placement_resolved
    assert result.confidence == 0.52
    codes = [warning["code"] for warning in result.to_dict()["warnings"]]
    assert codes == ["W3101_PLACEMENT_APPROXIMATE", "W3102_LOW_CONFIDENCE"]


def test_force_rebuild_raises_qr_floor() -> None:
    qr = QrItem(id="q", size=20, width=20, height=20)
    state = LabelState(items=[qr])
    _normalize(state, force_rebuild=True)
    assert (qr.size, qr.width, qr.height) == (77, 77, 77)


def test_post_process_rebuild_reports_change() -> None:
    state = LabelState(items=[QrItem(id="q", size=120)])
    preview = EstimatingPreview(state, measure_on_init=True)
    normalizer = LayoutNormalizer(CONFIG)
    assert not asyncio.run(normalizer.post_process_rebuild(state, preview))
    assert preview.render_count == 1


def test_qr_form_end_to_end_with_rebuild() -> None:
    rows = ["Artikelname:", "Hammermutter Nut 10 M8", "Artikelnummer:", "18123689", "Lagerplatz:", "R1-S5-F3"]
    texts = [
        TextItem(id=f"row{n}", text=text, position_mode="absolute", y_offset=n * 10 - 40)
        for n, text in enumerate(rows)
    ]
    texts[0].text_underline = True
    texts[1].text_underline = True
    qr = QrItem(id="qr", size=88, position_mode="absolute", x_offset=250)
    state = LabelState(media="W24", items=[*texts, qr])
    preview = EstimatingPreview(state, width=480, height=128, measure_on_init=True)
    result = asyncio.run(normalize_layout(state, preview, config=CONFIG, force_rebuild=True))
    assert result.reason == "applied-qr-form-photo-fidelity"
    assert result.confidence == 0.75
    assert result.placement_resolved
    assert qr.size == 88
    assert texts[0].text_underline and texts[1].text_underline

    bounds = preview.measured_bounds()
    ordered = [bounds[item.id] for item in texts]
    for upper, lower in zip(ordered, ordered[1:]):
        assert lower.y - upper.bottom >= 2
    assert bounds["qr"].x >= max(row.right for row in ordered) + 2


def test_boxed_form_end_to_end() -> None:
    state = _boxed_state()
    result = _normalize(state, width=360)
    assert result.reason == "applied-boxed-barcode-form-fidelity"
    assert result.confidence == 0.76
    shapes = [item for item in state.items if isinstance(item, ShapeItem)]
    assert sorted(shape.shape_type for shape in shapes) == ["line", "line", "line", "rect"]
    assert not any(item.text_underline for item in state.items if isinstance(item, TextItem))


def test_boxed_form_single_pass_reports_diagnostics() -> None:
    state = _boxed_state()
    preview = EstimatingPreview(state, width=360, height=128)
    result = asyncio.run(apply_boxed_barcode_form(state, preview, CONFIG))
    assert result.applied and result.did_mutate
    assert result.reason == "applied-boxed-barcode-form-fidelity"
    payload = result.to_dict()
    assert set(payload["diagnostics"]["shapeTargets"]) == {
        "frame",
        "headerSeparator",
        "middleSeparator",
        "verticalDivider",
    }
    assert payload["diagnostics"]["shapeTargets"]["verticalDivider"]["rotation"] == 90

    skipped = asyncio.run(
        apply_boxed_barcode_form(LabelState(items=[TextItem(id="t", text="x")]), preview, CONFIG)
    )
    assert not skipped.applied
    assert skipped.reason == "boxed-barcode-skip-machine-readable-mismatch"
