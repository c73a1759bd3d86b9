from __future__ import annotations

import asyncio
from typing import Mapping, Optional

from labelfit.config import PreviewConfig
from labelfit.geometry import Bounds
from labelfit.preview import EstimatingPreview, PreviewSurface, ensure_bounds, resolve_preview_size
from labelfit.types import LabelState, QrItem, TextItem


class _StuckSurface:
    def __init__(self, bounds: Optional[Mapping[str, Bounds]], extent: tuple = (None, None)) -> None:
        self.bounds = bounds
        self.extent = extent
        self.remeasures = 0

    def measured_bounds(self) -> Optional[Mapping[str, Bounds]]:
        return self.bounds

    def preview_extent(self) -> tuple:
        return self.extent

    async def remeasure(self) -> None:
        self.remeasures += 1


def test_estimating_preview_measures_text_and_qr() -> None:
    text = TextItem(id="t", text="Hello", font_size=12, x_offset=10, y_offset=5)
    qr = QrItem(id="q", size=40)
    preview = EstimatingPreview(LabelState(items=[text, qr]), width=220, height=128)
    assert isinstance(preview, PreviewSurface)
    assert preview.measured_bounds() is None

    asyncio.run(preview.remeasure())
    assert preview.render_count == 1
    bounds = preview.measured_bounds()
    assert bounds["t"] == Bounds(12, 63, 35, 13)
    assert (bounds["q"].width, bounds["q"].height) == (40, 40)
    assert bounds["q"].y == 44


def test_top_anchor_uses_raw_offsets() -> None:
    text = TextItem(id="t", text="Hi", y_offset=7)
    preview = EstimatingPreview(LabelState(items=[text]), anchor="top", measure_on_init=True)
    assert preview.render_count == 1
    assert preview.measured_bounds()["t"].y == 7


def test_resolve_preview_size_applies_defaults_and_minimums() -> None:
    default = resolve_preview_size(_StuckSurface({}))
    assert (default.width, default.height) == (220, 128)
    small = resolve_preview_size(_StuckSurface({}, (30, 20)), PreviewConfig())
    assert (small.width, small.height) == (64, 48)


def test_ensure_bounds_gives_up_after_retries() -> None:
    empty = _StuckSurface({})
    assert asyncio.run(ensure_bounds(empty, 2, retries=3)) is False
    assert empty.remeasures == 3

    partial = _StuckSurface({"a": Bounds(0, 0, 5, 5)})
    assert asyncio.run(ensure_bounds(partial, 2, retries=2)) is True
    assert asyncio.run(ensure_bounds(_StuckSurface(None), 1, retries=1)) is False
