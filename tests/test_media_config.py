from __future__ import annotations

from pathlib import Path

import pytest

from labelfit.config import LabelFitConfig, load_config
from labelfit.errors import LabelFitError
from labelfit.media import (
    clamp_qr_size,
    compute_max_qr_size,
    prominent_qr_floor,
    resolve_barcode_photo_floors,
    resolve_header_font_cap,
    resolve_media_width_mm,
)
from labelfit.types import LabelState

CONFIG = LabelFitConfig()


def test_bundled_config_loads() -> None:
    config = load_config()
    assert config.resolution.dpi["HIGH"] == 320
    assert config.solver.max_iterations == 5
    assert config.media.print_area_dots["W12"] == 70
    assert config.preview.default_width == 220


def test_partial_config_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "labelfit.yaml"
    path.write_text("solver:\n  max_iterations: 2\nmedia:\n  print_area_dots:\n    W24: 120\n")
    config = load_config(path)
    assert config.solver.max_iterations == 2
    assert config.solver.bounds_retries == 4
    assert config.media.print_area_dots["W24"] == 120
    assert config.media.print_area_dots["W6"] == 32


def test_missing_config_raises(tmp_path: Path) -> None:
    with pytest.raises(LabelFitError) as excinfo:
        load_config(tmp_path / "missing.yaml")
    assert excinfo.value.code == "E5103_CONFIG_MISSING"


def test_qr_max_follows_print_area_and_media_length() -> None:
    assert compute_max_qr_size(LabelState(media="W24"), CONFIG) == 128
    assert compute_max_qr_size(LabelState(media="W24", media_length_mm=20), CONFIG) == 128
    assert compute_max_qr_size(LabelState(media="W24", media_length_mm=10), CONFIG) == 61
    high = LabelState(media="W24", resolution="HIGH", media_length_mm=10)
    assert compute_max_qr_size(high, CONFIG) == 116
    assert compute_max_qr_size(LabelState(media="unknown"), CONFIG) == 128


def test_clamp_qr_size_handles_bad_values() -> None:
    state = LabelState(media="W24")
    assert clamp_qr_size(state, CONFIG, 500) == 128
    assert clamp_qr_size(state, CONFIG, 40.5) == 41
    assert clamp_qr_size(state, CONFIG, float("nan")) == 120
    assert clamp_qr_size(state, CONFIG, None) == 120
    assert prominent_qr_floor(state, CONFIG) == 77


def test_media_width_resolution() -> None:
    assert resolve_media_width_mm(LabelState(media="W12"), CONFIG) == 12
    assert resolve_media_width_mm(LabelState(media="W3_5"), CONFIG) == 4
    assert resolve_media_width_mm(LabelState(media="W3_5"), CONFIG, use_media_table=False) == 24
    assert resolve_media_width_mm(LabelState(media="XYZ"), CONFIG) == 24


def test_prominence_floors_scale_with_print_area() -> None:
    wide = resolve_barcode_photo_floors(LabelState(media="W24"), CONFIG)
    assert (wide.min_token_font_size, wide.min_barcode_width, wide.min_barcode_height) == (58, 240, 40)
    narrow = resolve_barcode_photo_floors(LabelState(media="W12"), CONFIG)
    assert (narrow.min_token_font_size, narrow.min_barcode_width, narrow.min_barcode_height) == (42, 173, 29)


def test_header_font_cap() -> None:
    assert resolve_header_font_cap(LabelState(media="W24"), CONFIG) == 16
    assert resolve_header_font_cap(LabelState(media="W12"), CONFIG) == 11
