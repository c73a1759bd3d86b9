from __future__ import annotations

from labelfit.detectors.boxed_layout import BoxedRows, resolve_frame, resolve_layout_targets
from labelfit.geometry import Bounds, PreviewSize, round_half_up
from labelfit.types import BarcodeItem, BoundsIndex, TextItem

PREVIEW = PreviewSize(360, 128)


def _rows() -> BoxedRows:
    return BoxedRows(
        left_header=TextItem(id="left", text="AB12345678X"),
        right_header=TextItem(id="right", text="AB12345678X"),
        middle_row=TextItem(id="mid", text="Middle row"),
        barcode=BarcodeItem(id="bc", width=200, height=40),
    )


def _index(left: Bounds, right: Bounds, middle: Bounds, barcode: Bounds) -> BoundsIndex:
    return BoundsIndex(PREVIEW, {"left": left, "right": right, "mid": middle, "bc": barcode})


def _measured(middle: Bounds | None = None, header_y: float = 10, header_height: float = 14) -> BoundsIndex:
    return _index(
        Bounds(20, header_y, 80, header_height),
        Bounds(150, header_y, 80, header_height),
        middle or Bounds(20, 40, 100, 14),
        Bounds(20, 70, 200, 40),
    )


def test_frame_pads_content_box() -> None:
    frame = resolve_frame(_rows(), _measured())
    assert (frame.x, frame.y, frame.width, frame.height) == (14, 6, 222, 108)
    assert frame.x == 20 - 6
    assert frame.right == 230 + 6
    assert frame.y == 10 - 4
    assert frame.bottom == 110 + 4


def test_frame_keeps_minimum_size() -> None:
    index = _index(Bounds(10, 10, 2, 2), Bounds(11, 10, 2, 2), Bounds(10, 12, 2, 2), Bounds(10, 13, 3, 3))
    frame = resolve_frame(_rows(), index)
    assert (frame.x, frame.y) == (4, 6)
    assert (frame.width, frame.height) == (20, 24)


def test_frame_needs_every_row_measured() -> None:
    index = BoundsIndex(PREVIEW, {"left": Bounds(20, 10, 80, 14)})
    assert resolve_frame(_rows(), index) is None


def test_layout_targets_for_measured_form() -> None:
    rows, index = _rows(), _measured()
    frame = resolve_frame(rows, index)
    targets = resolve_layout_targets(rows, frame, index)
    assert targets.header_separator_y == 27
    assert targets.header_separator_y >= frame.y + max(16, round_half_up(frame.height * 0.18))
    assert targets.middle_separator_y == 58
    assert targets.divider_x == 125
    assert frame.x + round_half_up(frame.width * 0.35) <= targets.divider_x
    assert targets.divider_x <= frame.x + round_half_up(frame.width * 0.65)
    assert targets.header_top_y == 10
    assert (targets.left_header_x, targets.right_header_x) == (20, 133)
    assert targets.vertical_line_length == 23


def test_header_separator_respects_header_band() -> None:
    rows = _rows()
    index = _measured(header_y=8, header_height=6)
    frame = resolve_frame(rows, index)
    assert (frame.y, frame.height) == (4, 110)
    targets = resolve_layout_targets(rows, frame, index)
    assert targets.header_separator_y == frame.y + 20


def test_middle_separator_is_clamped_between_bands() -> None:
    rows = _rows()
    high = _measured(middle=Bounds(20, 20, 100, 10))
    targets = resolve_layout_targets(rows, resolve_frame(rows, high), high)
    assert targets.middle_separator_y == targets.header_separator_y + 10

    low = _measured(middle=Bounds(20, 60, 100, 14))
    frame = resolve_frame(rows, low)
    targets = resolve_layout_targets(rows, frame, low)
    assert targets.middle_separator_y == min(frame.bottom - 6, 70 - 6)


def test_divider_is_clamped_into_middle_band() -> None:
    rows = _rows()
    index = _index(Bounds(20, 10, 30, 14), Bounds(54, 10, 30, 14), Bounds(20, 40, 100, 14), Bounds(20, 70, 200, 40))
    frame = resolve_frame(rows, index)
    assert (frame.x, frame.width) == (14, 212)
    targets = resolve_layout_targets(rows, frame, index)
    assert targets.divider_x == frame.x + round_half_up(frame.width * 0.35) == 88

    index = _index(
        Bounds(20, 10, 200, 14), Bounds(226, 10, 10, 14), Bounds(20, 40, 100, 14), Bounds(20, 70, 200, 40)
    )
    frame = resolve_frame(rows, index)
    targets = resolve_layout_targets(rows, frame, index)
    assert targets.divider_x == frame.x + round_half_up(frame.width * 0.65)
