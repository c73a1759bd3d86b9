from __future__ import annotations

import logging
from typing import Literal, Mapping, Optional, Protocol, runtime_checkable

from labelfit.config import LabelFitConfig, PreviewConfig
from labelfit.geometry import Bounds, PreviewSize, compute_rotated_bounds, round_half_up
from labelfit.text_lines import split_lines
from labelfit.types import BarcodeItem, Item, LabelState, QrItem, ShapeItem, TextItem

logger = logging.getLogger(__name__)

PreviewAnchor = Literal["centered", "top"]

FEED_PAD_START = 2


@runtime_checkable
class PreviewSurface(Protocol):
    """Renderer seam: measured bounds by item id plus an async remeasure."""

    def measured_bounds(self) -> Optional[Mapping[str, Bounds]]: ...

    def preview_extent(self) -> tuple[Optional[float], Optional[float]]: ...

    async def remeasure(self) -> None: ...


def resolve_preview_size(surface: PreviewSurface, config: PreviewConfig | None = None) -> PreviewSize:
    preview = config or PreviewConfig()
    width, height = surface.preview_extent()
    return PreviewSize(
        width=max(preview.min_width, float(width or 0) or preview.default_width),
        height=max(preview.min_height, float(height or 0) or preview.default_height),
    )


async def ensure_bounds(surface: PreviewSurface, item_count: int, retries: int = 4) -> bool:
    """Remeasure until every item has bounds; settle for a partial map after the retries."""
    for _attempt in range(retries):
        measured = surface.measured_bounds()
        if measured is not None and len(measured) >= item_count:
            return True
        await surface.remeasure()
    measured = surface.measured_bounds()
    return measured is not None and len(measured) > 0


class EstimatingPreview:
    """Deterministic preview surface that estimates bounds from item content.

    Text width is ``longest line × max(8, font) × 0.58`` and height
    ``max(8, font) × 1.08`` per non-empty line. Items start at the feed pad plus
    ``x_offset``. With the ``centered`` anchor, y is centered on the cross axis
    plus ``y_offset``; with ``top`` it is ``y_offset``. Rotated items report the
    axis-aligned box of the rotated rectangle.
    """

    def __init__(
        self,
        state: LabelState,
        width: float = 220,
        height: float = 128,
        anchor: PreviewAnchor = "centered",
        measure_on_init: bool = False,
    ) -> None:
        self.state = state
        self.width = width
        self.height = height
        self.anchor = anchor
        self.render_count = 0
        self._bounds: Optional[dict[str, Bounds]] = None
        if measure_on_init:
            self._measure()

    @classmethod
    def from_config(
        cls, state: LabelState, config: LabelFitConfig, anchor: PreviewAnchor = "centered"
    ) -> EstimatingPreview:
        return cls(state, config.preview.default_width, config.preview.default_height, anchor)

    def measured_bounds(self) -> Optional[Mapping[str, Bounds]]:
        return self._bounds

    def preview_extent(self) -> tuple[Optional[float], Optional[float]]:
        return self.width, self.height

    async def remeasure(self) -> None:
        self._measure()

    def _measure(self) -> None:
        self.render_count += 1
        self._bounds = {item.id: self.estimate(item) for item in self.state.items}
        logger.debug("preview-remeasure %s", {"renderCount": self.render_count, "items": len(self._bounds)})

    def _item_size(self, item: Item) -> tuple[float, float]:
        if isinstance(item, QrItem):
            side = max(1, float(item.size or item.width or 16))
            return side, side
        if isinstance(item, BarcodeItem):
            return max(24, float(item.width or 120)), max(12, float(item.height or 24))
        if isinstance(item, ShapeItem):
            width = max(4, float(item.width or 12))
            if item.normalized_shape_type == "line":
                return width, max(2, float(item.height or 2))
            return width, max(4, float(item.height or 12))
        if isinstance(item, TextItem):
            lines = split_lines(item.text)
            font_size = max(8, float(item.font_size or 12))
            longest = max(1, *(len(line) for line in lines))
            line_count = max(1, sum(1 for line in lines if line.strip()))
            width = min(
                self.width - 8,
                max(10, round_half_up(longest * font_size * 0.58)),
            )
            return width, max(10, round_half_up(font_size * 1.08 * line_count))
        return max(1, float(getattr(item, "width", 0) or 12)), max(1, float(getattr(item, "height", 0) or 12))

    def estimate(self, item: Item) -> Bounds:
        width, height = self._item_size(item)
        x = FEED_PAD_START + float(item.x_offset or 0)
        if self.anchor == "top":
            y = float(item.y_offset or 0)
        else:
            y = max(0, round_half_up((self.height - height) / 2 + float(item.y_offset or 0)))
        return compute_rotated_bounds(Bounds(x, y, width, height), item.rotation)
