from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, ClassVar, Iterable, Literal, Mapping, Optional, Union

from labelfit.geometry import Bounds, PreviewSize, clamp_target, round_half_up, shift_item_to

ItemKind = Literal["text", "qr", "barcode", "image", "icon", "shape"]
PositionMode = Literal["flow", "absolute"]
Orientation = Literal["horizontal", "vertical"]
ResolutionId = Literal["LOW", "HIGH"]


@dataclass
class _ItemBase:
    id: str
    position_mode: PositionMode = "flow"
    x_offset: float = 0
    y_offset: float = 0
    rotation: float = 0

    kind: ClassVar[ItemKind]

    @property
    def is_absolute(self) -> bool:
        return str(self.position_mode or "flow").strip().lower() == "absolute"


@dataclass
class TextItem(_ItemBase):
    text: str = ""
    font_family: str = "Barlow"
    font_size: float = 12
    text_bold: bool = False
    text_italic: bool = False
    text_underline: bool = False
    text_strikethrough: bool = False

    kind: ClassVar[ItemKind] = "text"


@dataclass
class QrItem(_ItemBase):
    data: str = ""
    size: float = 0
    width: float = 0
    height: float = 0

    kind: ClassVar[ItemKind] = "qr"

    def set_size(self, size: float) -> None:
        self.size = size
        self.width = size
        self.height = size


@dataclass
class BarcodeItem(_ItemBase):
    data: str = ""
    width: float = 0
    height: float = 0
    barcode_format: str = "code128"
    barcode_module_width: float = 2
    barcode_margin: float = 0
    barcode_show_text: bool = True

    kind: ClassVar[ItemKind] = "barcode"


@dataclass
class ImageItem(_ItemBase):
    data: str = ""
    width: float = 0
    height: float = 0

    kind: ClassVar[ItemKind] = "image"


@dataclass
class IconItem(_ItemBase):
    icon_id: str = ""
    width: float = 0
    height: float = 0

    kind: ClassVar[ItemKind] = "icon"


@dataclass
class ShapeItem(_ItemBase):
    shape_type: str = "rect"
    width: float = 0
    height: float = 0
    stroke_width: float = 2
    corner_radius: float = 0
    sides: int = 4

    kind: ClassVar[ItemKind] = "shape"

    @property
    def normalized_shape_type(self) -> str:
        return str(self.shape_type or "").strip().lower()


Item = Union[TextItem, QrItem, BarcodeItem, ImageItem, IconItem, ShapeItem]
MachineReadableItem = Union[QrItem, BarcodeItem]


@dataclass
class LabelState:
    """Mutable label document: item list plus media setup."""

    items: list[Item] = field(default_factory=list)
    media: str = "W24"
    orientation: Orientation = "horizontal"
    resolution: ResolutionId = "LOW"
    media_length_mm: Optional[float] = None

    @property
    def is_vertical(self) -> bool:
        return str(self.orientation or "horizontal").strip().lower() == "vertical"

    def replace_items(self, items: Iterable[Item]) -> None:
        self.items[:] = list(items)


class BoundsIndex:
    """Bounds snapshot for one solver iteration, keyed by item id.

    Offsets are only changed through ``shift``/``shift_clamped``/``resize`` so
    the cached rectangle always follows the mutation within the iteration.
    """

    def __init__(self, preview: PreviewSize, entries: Mapping[str, Bounds] | None = None) -> None:
        self.preview = preview
        self._entries: dict[str, Bounds] = dict(entries or {})

    @classmethod
    def snapshot(
        cls,
        items: Iterable[Item],
        measured: Mapping[str, Bounds] | None,
        preview: PreviewSize,
    ) -> BoundsIndex:
        entries: dict[str, Bounds] = {}
        for item in items:
            bounds = (measured or {}).get(item.id)
            if bounds is None:
                continue
            entries[item.id] = Bounds(
                float(bounds.x or 0),
                float(bounds.y or 0),
                max(1, float(bounds.width or 1)),
                max(1, float(bounds.height or 1)),
            )
        return cls(preview, entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._entries

    def get(self, item: Item | None) -> Bounds | None:
        if item is None:
            return None
        return self._entries.get(item.id)

    def shift(self, item: Item, target_x: float, target_y: float) -> None:
        bounds = self._entries.get(item.id)
        if bounds is None:
            return
        shift_item_to(item, bounds, target_x, target_y)
        bounds.x = target_x
        bounds.y = target_y

    def shift_clamped(self, item: Item, target_x: float, target_y: float) -> bool:
        """Clamp the target into the preview and shift; False when nothing moves."""
        bounds = self._entries.get(item.id)
        if bounds is None:
            return False
        x, y = clamp_target(bounds, self.preview, target_x, target_y)
        if round_half_up(x) == round_half_up(bounds.x) and round_half_up(y) == round_half_up(bounds.y):
            return False
        self.shift(item, x, y)
        return True

    def resize(self, item: Item, width: float, height: float) -> None:
        bounds = self._entries.get(item.id)
        if bounds is None:
            return
        bounds.width = max(1, width)
        bounds.height = max(1, height)


@dataclass
class Detection:
    """Verdict of one pattern detector."""

    matched: bool
    reason: str = ""
    roles: Any = None


@dataclass
class PassResult:
    did_mutate: bool
    placement_resolved: bool = False


@dataclass
class RewriteResult:
    did_mutate: bool
    confidence: float
    reason: str
    marker_shape_count: int = 0


@dataclass
class PlacementResult:
    did_mutate: bool
    confidence: float
    reason: str
    placement_resolved: bool
    marker_evidence: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "didMutate": self.did_mutate,
            "confidence": self.confidence,
            "reason": self.reason,
            "placementResolved": self.placement_resolved,
            "markerEvidence": self.marker_evidence,
        }


@dataclass
class NormalizationWarning:
    code: str
    message: str
    hint: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code, "message": self.message, "hint": self.hint}
        if self.params:
            data["params"] = self.params
        return data


@dataclass
class NormalizeResult:
    applied: bool
    did_mutate: bool
    confidence: float
    reason: str
    placement_resolved: bool
    warnings: list[NormalizationWarning] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "applied": self.applied,
            "didMutate": self.did_mutate,
            "confidence": self.confidence,
            "reason": self.reason,
            "placementResolved": self.placement_resolved,
            "warnings": [warning.to_dict() for warning in self.warnings],
        }


def generate_item_id(prefix: str) -> str:
    return f"{prefix or 'item'}-{uuid.uuid4().hex[:8]}"
