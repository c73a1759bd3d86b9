from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Optional, Sequence

from labelfit.config import LabelFitConfig, load_config
from labelfit.detectors.barcode_photo import (
    apply_barcode_photo_floors,
    apply_barcode_photo_pass,
    detect_barcode_photo,
    resolve_barcode_photo_roles,
)
from labelfit.detectors.boxed_barcode import apply_boxed_barcode_pass, detect_boxed_barcode
from labelfit.detectors.markers import (
    MarkerPair,
    align_markers_to_text,
    enforce_marker_flow_vertical_stack,
    enforce_marker_left_of_text,
    resolve_marker_text_pairs,
)
from labelfit.detectors.qr_form import apply_qr_form_pass, detect_qr_form, resolve_qr_form_roles
from labelfit.geometry import clamp_target, compute_bounds_overlap, round_half_up
from labelfit.heuristics import is_machine_readable, should_prefer_vertical_overlap_flow
from labelfit.media import resolve_barcode_photo_floors
from labelfit.preview import PreviewSurface, ensure_bounds, resolve_preview_size
from labelfit.types import BoundsIndex, Item, LabelState, PlacementResult, TextItem

SolverPhase = Literal[
    "idle",
    "probing-pattern",
    "applying-fidelity-pass",
    "remeasuring",
    "converged",
    "stalled",
    "iteration-cap-exceeded",
]

BOXED_FORM_REASONS = ("applied-boxed-barcode-form-fidelity", "boxed-barcode-form-fidelity-no-change")


@dataclass
class _SolveState:
    did_mutate: bool = False
    placement_resolved: bool = False
    used_barcode_photo: bool = False
    used_qr_form: bool = False
    qr_form_mutated: bool = False
    used_boxed_form: bool = False
    boxed_form_mutated: bool = False


def resolve_overlaps(index: BoundsIndex, items: Sequence[Item]) -> bool:
    """Push later items off earlier ones, ordered top-to-bottom then left-to-right.

    Every pair is re-checked against the bounds as they move within the scan.
    """
    preview = index.preview
    ordered = sorted(
        ((item, index.get(item)) for item in items if index.get(item) is not None),
        key=lambda entry: (entry[1].y, entry[1].x),
    )
    push_gap = max(2, round_half_up(preview.height * 0.02))
    did_move = False
    for left_index in range(len(ordered)):
        for right_index in range(left_index + 1, len(ordered)):
            left_item, left_bounds = ordered[left_index]
            right_item, right_bounds = ordered[right_index]
            overlap = compute_bounds_overlap(left_bounds, right_bounds)
            if overlap.area <= 0:
                continue
            push_right_x = right_bounds.x + overlap.overlap_x + push_gap
            push_down_y = right_bounds.y + overlap.overlap_y + push_gap
            text_text = isinstance(left_item, TextItem) and isinstance(right_item, TextItem)
            touches_machine = is_machine_readable(left_item) or is_machine_readable(right_item)
            prefer_vertical = should_prefer_vertical_overlap_flow(left_item, right_item, text_text, touches_machine)
            prefer_horizontal = (
                not prefer_vertical
                and preview.width >= preview.height
                and push_right_x + right_bounds.width <= preview.width
            )
            target_x = push_right_x if prefer_horizontal else right_bounds.x
            target_y = right_bounds.y if prefer_horizontal else push_down_y
            did_move = index.shift_clamped(right_item, target_x, target_y) or did_move
    return did_move


def has_overlaps(index: BoundsIndex, items: Sequence[Item]) -> bool:
    measured = [bounds for bounds in (index.get(item) for item in items) if bounds is not None]
    return any(
        compute_bounds_overlap(left, right).area > 0
        for position, left in enumerate(measured)
        for right in measured[position + 1 :]
    )


def clamp_all(index: BoundsIndex, items: Sequence[Item]) -> bool:
    did_move = False
    for item in items:
        bounds = index.get(item)
        if bounds is None:
            continue
        x, y = clamp_target(bounds, index.preview, bounds.x, bounds.y)
        did_move = index.shift_clamped(item, x, y) or did_move
    return did_move


class PlacementSolver:
    """Bounded local search over measured bounds.

    Each iteration snapshots the bounds, tries the active structural pattern
    (barcode photo, QR form, boxed barcode form), and otherwise runs the generic
    marker/overlap/clamp pass. The loop stops when nothing moves or after
    ``solver.max_iterations`` rounds. A generic pass that stops moving while
    items still overlap ends the run as ``stalled`` and unresolved.
    """

    def __init__(self, config: LabelFitConfig | None = None, logger: logging.Logger | None = None) -> None:
        self.config = config or load_config()
        self.logger = logger or logging.getLogger(__name__)
        self.phase: SolverPhase = "idle"
        self.iterations = 0

    def _set_phase(self, phase: SolverPhase) -> None:
        self.phase = phase
        self.logger.debug("solver-phase %s", {"phase": phase, "iteration": self.iterations})

    async def _remeasure(self, surface: PreviewSurface) -> None:
        self._set_phase("remeasuring")
        await surface.remeasure()

    async def solve(self, state: LabelState, surface: PreviewSurface, marker_evidence: bool) -> PlacementResult:
        items = state.items
        self.iterations = 0
        self._set_phase("idle")
        if not items:
            return PlacementResult(False, 0, "skip-empty", False, marker_evidence)

        preview = resolve_preview_size(surface, self.config.preview)
        if not await ensure_bounds(surface, len(items), self.config.solver.bounds_retries):
            return PlacementResult(False, 0, "missing-bounds", False, marker_evidence)

        run = _SolveState()
        final_phase: SolverPhase = "iteration-cap-exceeded"
        for iteration in range(self.config.solver.max_iterations):
            self.iterations = iteration + 1
            measured = surface.measured_bounds()
            if measured is None:
                break
            index = BoundsIndex.snapshot(items, measured, preview)
            self._set_phase("probing-pattern")

            outcome = self._barcode_photo_step(state, index, marker_evidence, run)
            if outcome is None:
                outcome = self._qr_form_step(state, index, marker_evidence, run)
            if outcome is None:
                outcome = self._boxed_form_step(state, index, marker_evidence, run)
            if outcome == "continue":
                await self._remeasure(surface)
                continue
            if outcome == "stop":
                final_phase = "converged"
                break

            if not self._generic_step(index, items):
                run.placement_resolved = not has_overlaps(index, items)
                final_phase = "converged" if run.placement_resolved else "stalled"
                break
            run.did_mutate = True
            await self._remeasure(surface)

        self._set_phase(final_phase)
        return self._result(run, marker_evidence)

    def _barcode_photo_step(
        self, state: LabelState, index: BoundsIndex, marker_evidence: bool, run: _SolveState
    ) -> Optional[str]:
        items = state.items
        if run.used_barcode_photo:
            roles = resolve_barcode_photo_roles(items, index)
        else:
            detection = detect_barcode_photo(items, marker_evidence, index)
            if not detection.matched:
                return None
            roles = detection.roles
        run.used_barcode_photo = True
        self._set_phase("applying-fidelity-pass")
        if apply_barcode_photo_floors(roles, resolve_barcode_photo_floors(state, self.config)):
            run.did_mutate = True
            return "continue"
        result = apply_barcode_photo_pass(roles, index)
        if not result.did_mutate:
            run.placement_resolved = True
            return "stop"
        run.did_mutate = True
        return "continue"

    def _qr_form_step(
        self, state: LabelState, index: BoundsIndex, marker_evidence: bool, run: _SolveState
    ) -> Optional[str]:
        items = state.items
        if run.used_qr_form:
            roles = resolve_qr_form_roles(items, index)
        else:
            detection = detect_qr_form(items, marker_evidence, index)
            if not detection.matched:
                return None
            roles = detection.roles
        run.used_qr_form = True
        self._set_phase("applying-fidelity-pass")
        result = apply_qr_form_pass(roles, index, state, self.config)
        if result.did_mutate:
            run.qr_form_mutated = True
            run.did_mutate = True
            return "continue"
        run.placement_resolved = result.placement_resolved
        return "stop"

    def _boxed_form_step(
        self, state: LabelState, index: BoundsIndex, marker_evidence: bool, run: _SolveState
    ) -> Optional[str]:
        if marker_evidence and not run.used_boxed_form:
            return None
        detection = detect_boxed_barcode(state.items)
        if not detection.matched:
            if run.used_boxed_form:
                run.placement_resolved = True
                return "stop"
            return None
        result = apply_boxed_barcode_pass(detection.roles, state, index, self.config)
        if result.reason not in BOXED_FORM_REASONS:
            if run.used_boxed_form:
                run.placement_resolved = True
                return "stop"
            return None
        run.used_boxed_form = True
        self._set_phase("applying-fidelity-pass")
        if result.did_mutate:
            run.boxed_form_mutated = True
            run.did_mutate = True
            return "continue"
        run.placement_resolved = True
        return "stop"

    def _generic_step(self, index: BoundsIndex, items: Sequence[Item]) -> bool:
        self._set_phase("applying-fidelity-pass")
        pairs: list[MarkerPair] = resolve_marker_text_pairs(items, index)
        moved = enforce_marker_flow_vertical_stack(items, index, pairs)
        moved = align_markers_to_text(pairs, index) or moved
        moved = resolve_overlaps(index, items) or moved
        moved = clamp_all(index, items) or moved
        moved = enforce_marker_left_of_text(pairs, index) or moved
        return moved

    def _result(self, run: _SolveState, marker_evidence: bool) -> PlacementResult:
        did_mutate = run.did_mutate
        if run.used_barcode_photo:
            return PlacementResult(
                did_mutate,
                0.78 if did_mutate else 0.72,
                "applied-barcode-photo-fidelity" if did_mutate else "barcode-photo-fidelity-no-change",
                True,
                marker_evidence,
            )
        if run.used_qr_form and (run.qr_form_mutated or not did_mutate):
            return PlacementResult(
                did_mutate,
                0.75 if did_mutate else 0.70,
                "applied-qr-form-photo-fidelity" if did_mutate else "qr-form-photo-fidelity-no-change",
                run.placement_resolved,
                marker_evidence,
            )
        if run.used_boxed_form and (run.boxed_form_mutated or not did_mutate):
            return PlacementResult(
                did_mutate,
                0.76 if did_mutate else 0.70,
                BOXED_FORM_REASONS[0] if did_mutate else BOXED_FORM_REASONS[1],
                run.placement_resolved,
                marker_evidence,
            )
        if marker_evidence:
            confidence = 0.72 if run.placement_resolved else 0.52
        elif did_mutate:
            confidence = 0.64 if run.placement_resolved else 0.46
        else:
            confidence = 0.18
        return PlacementResult(
            did_mutate,
            confidence,
            "applied-placement-solver" if did_mutate else "placement-no-change",
            run.placement_resolved,
            marker_evidence,
        )


async def solve_placement(
    state: LabelState,
    surface: PreviewSurface,
    marker_evidence: bool = False,
    config: LabelFitConfig | None = None,
    logger: logging.Logger | None = None,
) -> PlacementResult:
    return await PlacementSolver(config, logger).solve(state, surface, marker_evidence)
