#!/usr/bin/env python3
from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import typer

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from labelfit import (  # noqa: E402
    EstimatingPreview,
    LabelFitError,
    LabelState,
    apply_boxed_barcode_form,
    encode_state,
    load_config,
    load_state,
    normalize_layout,
    rebuild_barcode_template,
)
from labelfit.config import LabelFitConfig  # noqa: E402
from labelfit.detectors import (  # noqa: E402
    detect_barcode_photo,
    detect_boxed_barcode,
    detect_marker_group,
    detect_qr_form,
)
from labelfit.detectors.markers import capture_marker_snapshot  # noqa: E402
from labelfit.preview import resolve_preview_size  # noqa: E402
from labelfit.types import BoundsIndex  # noqa: E402

app = typer.Typer(
    add_completion=False,
    help="Normalize AI-proposed label layouts, inspect pattern detectors, or run single rewrites.",
)

INPUT_HELP = "Label state JSON (object with items, or a bare items array)."


def _fail(exc: Exception) -> None:
    if isinstance(exc, LabelFitError):
        typer.echo(f"ERROR {exc.code}: {exc.message}", err=True)
        typer.echo(f"HINT: {exc.hint}", err=True)
    else:
        typer.echo(f"ERROR E1199_UNEXPECTED: {exc}", err=True)
        typer.echo("HINT: Check the input JSON and config file.", err=True)
    raise typer.Exit(code=1)


def _setup(
    input_json: Path,
    config_path: Path | None,
    width: float | None,
    height: float | None,
    anchor: str,
    verbose: bool,
) -> tuple[LabelState, EstimatingPreview, LabelFitConfig]:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s %(levelname)s %(message)s")
    if anchor not in {"centered", "top"}:
        raise LabelFitError(
            code="E1104_ANCHOR_INVALID",
            message=f"Unknown preview anchor: {anchor}",
            hint="Use --anchor centered or --anchor top.",
        )
    config = load_config(config_path)
    state = load_state(input_json)
    preview = EstimatingPreview(
        state,
        width=width or config.preview.default_width,
        height=height or config.preview.default_height,
        anchor=anchor,  # type: ignore[arg-type]
    )
    return state, preview, config


def _emit(payload: dict[str, Any], out: Path | None) -> None:
    text = json.dumps(payload, indent=2, sort_keys=True)
    if out is not None:
        out.write_text(text)
    typer.echo(text)


OUT_OPTION = typer.Option(None, "--out", dir_okay=False, help="Optional path to write the JSON output.")
WIDTH_OPTION = typer.Option(None, "--preview-width", help="Preview width in dots (default from config).")
HEIGHT_OPTION = typer.Option(None, "--preview-height", help="Preview height in dots (default from config).")
ANCHOR_OPTION = typer.Option("centered", "--anchor", help="Cross-axis anchor: centered or top.")
CONFIG_OPTION = typer.Option(None, "--config", dir_okay=False, help="Optional labelfit YAML config.")
VERBOSE_OPTION = typer.Option(False, "--verbose", help="Log solver debug events to stderr.")


@app.command()
def normalize(
    input_json: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help=INPUT_HELP),
    out: Path | None = OUT_OPTION,
    preview_width: float | None = WIDTH_OPTION,
    preview_height: float | None = HEIGHT_OPTION,
    anchor: str = ANCHOR_OPTION,
    force_rebuild: bool = typer.Option(
        False,
        "--force-rebuild",
        help="Apply rebuild cleanup (aggregate text removal, QR size floor) first.",
    ),
    config_path: Path | None = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Run the full normalization and print the result with the rewritten state."""
    try:
        state, preview, config = _setup(input_json, config_path, preview_width, preview_height, anchor, verbose)
        result = asyncio.run(normalize_layout(state, preview, config=config, force_rebuild=force_rebuild))
    except Exception as exc:  # noqa: BLE001
        _fail(exc)
    _emit({"result": result.to_dict(), "state": encode_state(state)}, out)


@app.command()
def detect(
    input_json: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help=INPUT_HELP),
    preview_width: float | None = WIDTH_OPTION,
    preview_height: float | None = HEIGHT_OPTION,
    anchor: str = ANCHOR_OPTION,
    config_path: Path | None = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Print every pattern detector verdict for the measured input."""
    try:
        state, preview, config = _setup(input_json, config_path, preview_width, preview_height, anchor, verbose)
        asyncio.run(preview.remeasure())
        index = BoundsIndex.snapshot(
            state.items, preview.measured_bounds(), resolve_preview_size(preview, config.preview)
        )
        snapshot = capture_marker_snapshot(state.items)
        evidence = snapshot.has_text_marker
        verdicts = {
            "markerGroup": detect_marker_group(state.items, snapshot),
            "barcodePhoto": detect_barcode_photo(state.items, evidence, index),
            "qrForm": detect_qr_form(state.items, evidence, index),
            "boxedBarcode": detect_boxed_barcode(state.items),
        }
    except Exception as exc:  # noqa: BLE001
        _fail(exc)
    _emit(
        {name: {"matched": verdict.matched, "reason": verdict.reason} for name, verdict in verdicts.items()},
        None,
    )


@app.command()
def template(
    input_json: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help=INPUT_HELP),
    out: Path | None = OUT_OPTION,
    preview_width: float | None = WIDTH_OPTION,
    preview_height: float | None = HEIGHT_OPTION,
    anchor: str = ANCHOR_OPTION,
    config_path: Path | None = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Rewrite a barcode label into the side/big-letter/code/barcode template."""
    try:
        state, preview, _config = _setup(input_json, config_path, preview_width, preview_height, anchor, verbose)
        result = asyncio.run(rebuild_barcode_template(state, preview))
    except Exception as exc:  # noqa: BLE001
        _fail(exc)
    _emit({"result": result.to_dict(), "state": encode_state(state)}, out)


@app.command()
def boxed(
    input_json: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help=INPUT_HELP),
    out: Path | None = OUT_OPTION,
    preview_width: float | None = WIDTH_OPTION,
    preview_height: float | None = HEIGHT_OPTION,
    anchor: str = ANCHOR_OPTION,
    config_path: Path | None = CONFIG_OPTION,
    verbose: bool = VERBOSE_OPTION,
) -> None:
    """Run the boxed barcode form pass once and print its diagnostics."""
    try:
        state, preview, config = _setup(input_json, config_path, preview_width, preview_height, anchor, verbose)
        result = asyncio.run(apply_boxed_barcode_form(state, preview, config))
    except Exception as exc:  # noqa: BLE001
        _fail(exc)
    _emit({"result": result.to_dict(), "state": encode_state(state)}, out)


if __name__ == "__main__":
    app(prog_name="labelfit")
