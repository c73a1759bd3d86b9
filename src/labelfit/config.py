from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from labelfit.errors import LabelFitError

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "labelfit.v1.yaml"

_DEFAULT_PRINT_AREA_DOTS = {"W3_5": 24, "W6": 32, "W9": 50, "W12": 70, "W18": 112, "W24": 128}
_DEFAULT_WIDTH_MM = {"W3_5": 4, "W6": 6, "W9": 9, "W12": 12, "W18": 18, "W24": 24}


@dataclass(frozen=True)
class MediaConfig:
    default: str = "W24"
    reference: str = "W24"
    print_area_dots: dict[str, float] = field(default_factory=lambda: dict(_DEFAULT_PRINT_AREA_DOTS))
    width_mm: dict[str, float] = field(default_factory=lambda: dict(_DEFAULT_WIDTH_MM))


@dataclass(frozen=True)
class ResolutionConfig:
    default: str = "LOW"
    dpi: dict[str, float] = field(default_factory=lambda: {"LOW": 180, "HIGH": 320})
    min_length_dots: dict[str, float] = field(default_factory=lambda: {"LOW": 31, "HIGH": 62})


@dataclass(frozen=True)
class SolverConfig:
    max_iterations: int = 5
    bounds_retries: int = 4
    low_confidence_threshold: float = 0.55


@dataclass(frozen=True)
class PreviewConfig:
    min_width: float = 64
    min_height: float = 48
    default_width: float = 220
    default_height: float = 128


@dataclass(frozen=True)
class QrConfig:
    default_size: float = 120
    min_size: float = 8
    feed_padding: float = 10
    rebuild_floor_ratio: float = 0.6


@dataclass(frozen=True)
class LabelFitConfig:
    media: MediaConfig = field(default_factory=MediaConfig)
    resolution: ResolutionConfig = field(default_factory=ResolutionConfig)
    solver: SolverConfig = field(default_factory=SolverConfig)
    preview: PreviewConfig = field(default_factory=PreviewConfig)
    qr: QrConfig = field(default_factory=QrConfig)


def _load_yaml(path: Path) -> dict[str, Any]:
    data = yaml.safe_load(path.read_text())
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Config must be a mapping: {path}")
    return data


def _section(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key, {}) or {}
    return value if isinstance(value, dict) else {}


def _number_map(raw: Any, fallback: dict[str, float]) -> dict[str, float]:
    merged = dict(fallback)
    if isinstance(raw, dict):
        for key, value in raw.items():
            merged[str(key)] = float(value)
    return merged


def config_from_dict(data: dict[str, Any]) -> LabelFitConfig:
    defaults = LabelFitConfig()
    media = _section(data, "media")
    resolution = _section(data, "resolution")
    solver = _section(data, "solver")
    preview = _section(data, "preview")
    qr = _section(data, "qr")
    return LabelFitConfig(
        media=MediaConfig(
            default=str(media.get("default", defaults.media.default)),
            reference=str(media.get("reference", defaults.media.reference)),
            print_area_dots=_number_map(media.get("print_area_dots"), defaults.media.print_area_dots),
            width_mm=_number_map(media.get("width_mm"), defaults.media.width_mm),
        ),
        resolution=ResolutionConfig(
            default=str(resolution.get("default", defaults.resolution.default)),
            dpi=_number_map(resolution.get("dpi"), defaults.resolution.dpi),
            min_length_dots=_number_map(
                resolution.get("min_length_dots"), defaults.resolution.min_length_dots
            ),
        ),
        solver=SolverConfig(
            max_iterations=int(solver.get("max_iterations", defaults.solver.max_iterations)),
            bounds_retries=int(solver.get("bounds_retries", defaults.solver.bounds_retries)),
            low_confidence_threshold=float(
                solver.get("low_confidence_threshold", defaults.solver.low_confidence_threshold)
            ),
        ),
        preview=PreviewConfig(
            min_width=float(preview.get("min_width", defaults.preview.min_width)),
            min_height=float(preview.get("min_height", defaults.preview.min_height)),
            default_width=float(preview.get("default_width", defaults.preview.default_width)),
            default_height=float(preview.get("default_height", defaults.preview.default_height)),
        ),
        qr=QrConfig(
            default_size=float(qr.get("default_size", defaults.qr.default_size)),
            min_size=float(qr.get("min_size", defaults.qr.min_size)),
            feed_padding=float(qr.get("feed_padding", defaults.qr.feed_padding)),
            rebuild_floor_ratio=float(qr.get("rebuild_floor_ratio", defaults.qr.rebuild_floor_ratio)),
        ),
    )


def load_config(path: Path | None = None) -> LabelFitConfig:
    """Load the YAML config; without a path the bundled file or defaults are used."""
    if path is None:
        if DEFAULT_CONFIG_PATH.exists():
            return config_from_dict(_load_yaml(DEFAULT_CONFIG_PATH))
        return LabelFitConfig()
    if not path.exists():
        raise LabelFitError(
            code="E5103_CONFIG_MISSING",
            message=f"Config not found: {path}",
            hint="Pass an existing YAML file or omit --config to use the defaults.",
        )
    return config_from_dict(_load_yaml(path))
