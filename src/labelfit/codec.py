from __future__ import annotations

import json
from dataclasses import fields
from pathlib import Path
from typing import Any, Mapping

from labelfit.errors import LabelFitError
from labelfit.geometry import normalize_degrees
from labelfit.types import (
    BarcodeItem,
    IconItem,
    ImageItem,
    Item,
    LabelState,
    QrItem,
    ShapeItem,
    TextItem,
    generate_item_id,
)

ITEM_TYPES: dict[str, type] = {
    cls.kind: cls for cls in (TextItem, QrItem, BarcodeItem, ImageItem, IconItem, ShapeItem)
}

ORIENTATIONS = ("horizontal", "vertical")
RESOLUTIONS = ("LOW", "HIGH")


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part[:1].upper() + part[1:] for part in rest)


def _number(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(value)
    if isinstance(value, int):
        return value
    result = float(value)
    return int(result) if result.is_integer() else result


def _item_error(item_id: str, key: str, value: Any) -> LabelFitError:
    return LabelFitError(
        code="E2102_ITEM_INVALID",
        message=f"Item {item_id or '<unnamed>'} has an invalid {key}: {value!r}",
        hint="Numeric fields must be numbers; flags must be booleans.",
    )


def decode_item(data: Any) -> Item:
    """Build a typed item from its camelCase JSON object."""
    if not isinstance(data, Mapping):
        raise LabelFitError(
            code="E2102_ITEM_INVALID",
            message=f"Item must be an object, got {type(data).__name__}",
            hint="Each entry of items must be a JSON object with a type.",
        )
    kind = str(data.get("type") or "").strip().lower()
    cls = ITEM_TYPES.get(kind)
    if cls is None:
        raise LabelFitError(
            code="E2101_ITEM_TYPE_UNKNOWN",
            message=f"Unknown item type: {data.get('type')!r}",
            hint=f"Use one of: {', '.join(sorted(ITEM_TYPES))}.",
        )
    item_id = str(data.get("id") or "").strip() or generate_item_id(kind)
    values: dict[str, Any] = {"id": item_id}
    for entry in fields(cls):
        if entry.name == "id":
            continue
        key = _camel(entry.name)
        if key not in data or data[key] is None:
            continue
        raw = data[key]
        if isinstance(entry.default, bool):
            values[entry.name] = bool(raw)
        elif isinstance(entry.default, (int, float)):
            try:
                values[entry.name] = _number(raw)
            except (TypeError, ValueError) as exc:
                raise _item_error(item_id, key, raw) from exc
        else:
            values[entry.name] = str(raw)
    item = cls(**values)
    item.position_mode = "absolute" if str(item.position_mode).strip().lower() == "absolute" else "flow"
    item.rotation = normalize_degrees(item.rotation)
    if isinstance(item, QrItem):
        size = item.size or item.width or item.height
        if size:
            item.set_size(size)
    return item


def encode_item(item: Item) -> dict[str, Any]:
    data: dict[str, Any] = {"type": item.kind}
    for entry in fields(item):
        data[_camel(entry.name)] = getattr(item, entry.name)
    return data


def _state_error(message: str) -> LabelFitError:
    return LabelFitError(
        code="E2103_STATE_INVALID",
        message=message,
        hint="Provide an object with an items array (or the items array itself).",
    )


def decode_state(data: Any) -> LabelState:
    if isinstance(data, list):
        data = {"items": data}
    if not isinstance(data, Mapping):
        raise _state_error(f"Label state must be an object, got {type(data).__name__}")
    raw_items = data.get("items", [])
    if not isinstance(raw_items, list):
        raise _state_error("Label state items must be an array")

    orientation = str(data.get("orientation") or "horizontal").strip().lower()
    if orientation not in ORIENTATIONS:
        raise _state_error(f"Unknown orientation: {data.get('orientation')!r}")
    resolution = str(data.get("resolution") or "LOW").strip().upper()
    if resolution not in RESOLUTIONS:
        raise _state_error(f"Unknown resolution: {data.get('resolution')!r}")
    media_length = data.get("mediaLengthMm")
    if media_length is not None:
        try:
            media_length = float(media_length)
        except (TypeError, ValueError) as exc:
            raise _state_error(f"Invalid mediaLengthMm: {media_length!r}") from exc

    return LabelState(
        items=[decode_item(entry) for entry in raw_items],
        media=str(data.get("media") or "W24").strip(),
        orientation=orientation,
        resolution=resolution,
        media_length_mm=media_length,
    )


def encode_state(state: LabelState) -> dict[str, Any]:
    data: dict[str, Any] = {
        "media": state.media,
        "orientation": state.orientation,
        "resolution": state.resolution,
        "items": [encode_item(item) for item in state.items],
    }
    if state.media_length_mm is not None:
        data["mediaLengthMm"] = state.media_length_mm
    return data


def load_state(path: Path) -> LabelState:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise _state_error(f"{path} is not valid JSON: {exc.msg} (line {exc.lineno})") from exc
    return decode_state(data)
