from __future__ import annotations

from labelfit.config import LabelFitConfig
from labelfit.detectors import detect_barcode_photo, detect_boxed_barcode, detect_marker_group, detect_qr_form
from labelfit.detectors.barcode_photo import apply_barcode_photo_floors, apply_barcode_photo_pass
from labelfit.detectors.markers import (
    align_markers_to_text,
    capture_marker_snapshot,
    enforce_marker_left_of_text,
    resolve_marker_text_pairs,
)
from labelfit.detectors.qr_form import (
    apply_qr_form_pass,
    is_heading_like_text,
    is_qr_form_resolved,
    resolve_qr_form_roles,
)
from labelfit.geometry import Bounds, PreviewSize
from labelfit.media import resolve_barcode_photo_floors
from labelfit.types import BarcodeItem, BoundsIndex, LabelState, QrItem, ShapeItem, TextItem

PREVIEW = PreviewSize(220, 128)


def _index(preview: PreviewSize, **entries: Bounds) -> BoundsIndex:
    return BoundsIndex(preview, entries)


def _barcode_photo_items(token_mode: str = "absolute") -> list:
    return [
        TextItem(id="side", text="12-34-56", rotation=90, position_mode="absolute"),
        TextItem(id="token", text="A", position_mode=token_mode),
        TextItem(id="code", text="ABC 123 456", position_mode="absolute"),
        BarcodeItem(id="bc", width=140, height=30, position_mode="absolute"),
    ]


def _barcode_photo_index() -> BoundsIndex:
    return _index(
        PREVIEW,
        side=Bounds(2, 10, 14, 100),
        token=Bounds(20, 20, 20, 30),
        code=Bounds(60, 20, 100, 16),
        bc=Bounds(60, 44, 140, 30),
    )


def test_marker_group_detection_reasons() -> None:
    glyph = [TextItem(id="t", text="Heading\n☐ Option")]
    detection = detect_marker_group(glyph, capture_marker_snapshot(glyph))
    assert detection.matched
    assert detection.reason == "marker-group-candidate"
    assert detection.roles.has_text_marker

    with_qr = [*glyph, QrItem(id="q", size=20)]
    assert detect_marker_group(with_qr, capture_marker_snapshot(with_qr)).reason == "skip-machine-readable"

    plain = [TextItem(id="a", text="One"), TextItem(id="b", text="Two")]
    assert detect_marker_group(plain, capture_marker_snapshot(plain)).reason == "skip-no-marker-evidence"

    crowded = [TextItem(id=f"t{n}", text=f"Line {n}") for n in range(4)]
    crowded.append(ShapeItem(id="s", shape_type="rect", width=14, height=14))
    detection = detect_marker_group(crowded, capture_marker_snapshot(crowded))
    assert not detection.matched
    assert detection.reason == "skip-ambiguous-many-text-items"


def test_marker_pairs_use_nearest_text_center() -> None:
    marker = ShapeItem(id="m", width=14, height=14)
    near = TextItem(id="near", text="Yes")
    far = TextItem(id="far", text="Heading")
    index = _index(PREVIEW, m=Bounds(0, 50, 14, 14), near=Bounds(20, 50, 50, 13), far=Bounds(20, 5, 50, 13))
    pairs = resolve_marker_text_pairs([far, near, marker], index)
    assert [(pair.marker.id, pair.text.id) for pair in pairs] == [("m", "near")]
    assert resolve_marker_text_pairs([far, near], index) == []


def test_marker_is_moved_left_of_its_text() -> None:
    marker = ShapeItem(id="m", width=14, height=14)
    text = TextItem(id="t", text="Option", font_size=12)
    index = _index(PREVIEW, m=Bounds(100, 10, 14, 14), t=Bounds(20, 50, 50, 13))
    pairs = resolve_marker_text_pairs([text, marker], index)
    assert align_markers_to_text(pairs, index)
    assert (index.get(marker).x, index.get(marker).y) == (0, 50)


def test_marker_keeps_left_margin_and_gap() -> None:
    marker = ShapeItem(id="m", width=14, height=14)
    text = TextItem(id="t", text="Option", font_size=12)
    index = _index(PREVIEW, m=Bounds(2, 50, 14, 14), t=Bounds(20, 50, 50, 13))
    pairs = resolve_marker_text_pairs([text, marker], index)
    assert enforce_marker_left_of_text(pairs, index)
    assert index.get(marker).x == 11
    assert index.get(text).x == 33
    assert (marker.x_offset, text.x_offset) == (9, 13)
    assert not enforce_marker_left_of_text(pairs, index)


def test_barcode_photo_detection() -> None:
    items = _barcode_photo_items()
    index = _barcode_photo_index()
    detection = detect_barcode_photo(items, False, index)
    assert detection.matched
    roles = detection.roles
    assert (roles.side_text.id, roles.short_token.id, roles.code_text.id, roles.barcode.id) == (
        "side",
        "token",
        "code",
        "bc",
    )
    assert detect_barcode_photo(items, True, index).reason == "skip-marker-evidence"
    assert detect_barcode_photo(_barcode_photo_items("flow"), False, index).reason == "skip-flow-items"
    assert detect_barcode_photo(items[1:], False, index).reason == "skip-item-counts"


def test_barcode_photo_pass_settles() -> None:
    items = _barcode_photo_items()
    index = _barcode_photo_index()
    roles = detect_barcode_photo(items, False, index).roles

    first = apply_barcode_photo_pass(roles, index)
    assert first.did_mutate
    assert index.get(items[0]).x == 0
    assert items[0].x_offset == -2

    second = apply_barcode_photo_pass(roles, index)
    assert not second.did_mutate
    assert second.placement_resolved


def test_barcode_photo_floors_raise_small_values() -> None:
    items = _barcode_photo_items()
    roles = detect_barcode_photo(items, False, _barcode_photo_index()).roles
    floors = resolve_barcode_photo_floors(LabelState(media="W24"), LabelFitConfig())
    assert apply_barcode_photo_floors(roles, floors)
    assert items[1].font_size == 58
    assert (items[3].width, items[3].height) == (240, 40)
    assert not apply_barcode_photo_floors(roles, floors)


def test_qr_form_detection() -> None:
    texts = [
        TextItem(id="h1", text="Name:", position_mode="absolute"),
        TextItem(id="v1", text="Widget", position_mode="absolute"),
        TextItem(id="h2", text="Serial:", position_mode="absolute"),
        TextItem(id="v2", text="SN-1234", position_mode="absolute"),
    ]
    qr = QrItem(id="q", size=88, width=88, height=88, position_mode="absolute")
    index = _index(
        PreviewSize(480, 128),
        h1=Bounds(2, 0, 35, 13),
        v1=Bounds(2, 16, 42, 13),
        h2=Bounds(2, 32, 49, 13),
        v2=Bounds(2, 48, 49, 13),
        q=Bounds(252, 0, 88, 88),
    )
    detection = detect_qr_form([*texts, qr], False, index)
    assert detection.matched
    assert [item.id for item in detection.roles.heading_items] == ["h1", "h2"]
    assert is_qr_form_resolved(detection.roles, index)

    assert detect_qr_form([*texts, qr], True, index).reason == "skip-marker-evidence"
    assert detect_qr_form([*texts[:3], qr], False, index).reason == "skip-text-count"
    assert detect_qr_form(texts, False, index).reason == "skip-machine-readable-mismatch"


def test_qr_form_pass_moves_shrunk_qr_beside_column() -> None:
    heading = TextItem(id="h1", text="Artikelname:", text_underline=True, position_mode="absolute")
    value = TextItem(id="v1", text="Hammermutter Nut 10 M8", position_mode="absolute", y_offset=16)
    qr = QrItem(id="q", size=150, width=150, height=150, position_mode="absolute")
    state = LabelState(items=[heading, value, qr])
    index = _index(
        PreviewSize(280, 128),
        h1=Bounds(2, 0, 70, 13),
        v1=Bounds(2, 16, 153, 13),
        q=Bounds(130, 0, 150, 128),
    )
    result = apply_qr_form_pass(resolve_qr_form_roles(state.items, index), index, state, LabelFitConfig())
    assert result.did_mutate
    assert result.placement_resolved
    assert qr.size == 121
    assert index.get(qr).x == 159
    assert qr.x_offset == 29
    assert value.text_underline
    assert (heading.font_size, value.font_size) == (12, 12)


def test_heading_like_text() -> None:
    assert is_heading_like_text(TextItem(id="t", text="Name:"))
    assert is_heading_like_text(TextItem(id="t", text="First\nSecond :  "))
    assert not is_heading_like_text(TextItem(id="t", text="Name: value"))
    assert not is_heading_like_text(QrItem(id="q"))


def _boxed_items() -> list:
    return [
        BarcodeItem(id="bc", width=200, height=30),
        TextItem(id="left", text="AB12345678X"),
        TextItem(id="right", text="ab 12345678x"),
        TextItem(id="mid", text="Middle row"),
    ]


def test_boxed_barcode_candidacy() -> None:
    detection = detect_boxed_barcode(_boxed_items())
    assert detection.matched
    assert sorted(item.id for item in detection.roles.duplicate_groups["AB12345678X"]) == ["left", "right"]

    with_qr = [*_boxed_items(), QrItem(id="q")]
    assert detect_boxed_barcode(with_qr).reason == "boxed-barcode-skip-machine-readable-mismatch"

    distinct = _boxed_items()
    distinct[2].text = "CD98765432Y"
    assert detect_boxed_barcode(distinct).reason == "boxed-barcode-skip-no-duplicate-code-text"

    rotated = _boxed_items()
    rotated[3].rotation = 90
    assert detect_boxed_barcode(rotated).reason == "boxed-barcode-skip-rotated-text"

    assert detect_boxed_barcode(_boxed_items()[:3]).reason == "boxed-barcode-skip-text-count"
