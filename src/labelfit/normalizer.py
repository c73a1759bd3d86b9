from __future__ import annotations

import json
import logging
from typing import Callable, Optional

from labelfit.config import LabelFitConfig, load_config
from labelfit.detectors.markers import capture_marker_snapshot
from labelfit.media import clamp_qr_size, prominent_qr_floor
from labelfit.preview import PreviewSurface
from labelfit.rewriter import rewrite_marker_group
from labelfit.solver import BOXED_FORM_REASONS, PlacementSolver
from labelfit.text_lines import find_duplicated_aggregate_text_item, strip_leading_markers_from_text_items
from labelfit.types import LabelState, NormalizationWarning, NormalizeResult, QrItem

WarningSink = Callable[[NormalizationWarning], None]

FIDELITY_REASONS = (
    "applied-barcode-photo-fidelity",
    "barcode-photo-fidelity-no-change",
    "applied-qr-form-photo-fidelity",
    "qr-form-photo-fidelity-no-change",
    *BOXED_FORM_REASONS,
)

_WARNING_TEXT = {
    "W3101_PLACEMENT_APPROXIMATE": (
        "Marker layout placement is approximate.",
        "Check checkbox markers and option rows in the preview.",
    ),
    "W3102_LOW_CONFIDENCE": (
        "Layout normalization confidence is low.",
        "Review the rebuilt label before printing.",
    ),
}


def remove_duplicated_aggregate_text(state: LabelState) -> bool:
    aggregate = find_duplicated_aggregate_text_item(state.items)
    if aggregate is None:
        return False
    remaining = [item for item in state.items if item.id != aggregate.id]
    if len(remaining) == len(state.items):
        return False
    state.replace_items(remaining)
    return True


def apply_qr_prominence_floor(state: LabelState, config: LabelFitConfig) -> bool:
    """Grow every QR to the rebuild floor, clamped to the label maximum."""
    floor = prominent_qr_floor(state, config)
    did_mutate = False
    for item in state.items:
        if not isinstance(item, QrItem):
            continue
        requested = max(float(item.size or 0), float(item.width or 0), float(item.height or 0), floor)
        next_size = clamp_qr_size(state, config, requested)
        if next_size == float(item.size or 0):
            continue
        item.set_size(next_size)
        did_mutate = True
    return did_mutate


class _WarningChannel:
    def __init__(self, sink: Optional[WarningSink]) -> None:
        self.sink = sink
        self.emitted: list[NormalizationWarning] = []
        self._seen: set[str] = set()

    def emit(self, code: str, **params: object) -> None:
        key = f"{code}:{json.dumps(params, sort_keys=True)}"
        if key in self._seen:
            return
        self._seen.add(key)
        message, hint = _WARNING_TEXT[code]
        warning = NormalizationWarning(code, message, hint, dict(params))
        self.emitted.append(warning)
        if self.sink is not None:
            self.sink(warning)


class LayoutNormalizer:
    """Full normalization run over one label state.

    Order: duplicated aggregate text removal, marker prefix cleanup, marker
    group rewrite, placement solver. The result carries the highest confidence
    reached by any step and the reason of the last step that changed the label.
    """

    def __init__(
        self,
        config: LabelFitConfig | None = None,
        logger: logging.Logger | None = None,
        on_warning: Optional[WarningSink] = None,
    ) -> None:
        self.config = config or load_config()
        self.logger = logger or logging.getLogger(__name__)
        self.on_warning = on_warning

    async def post_process_rebuild(self, state: LabelState, surface: PreviewSurface) -> bool:
        """Cleanup for rebuild runs: aggregate duplicate removal and the QR size floor."""
        self.logger.debug("postprocess-start %s", {"itemCountBefore": len(state.items)})
        did_mutate = remove_duplicated_aggregate_text(state)
        did_mutate = apply_qr_prominence_floor(state, self.config) or did_mutate
        if did_mutate:
            await surface.remeasure()
        self.logger.debug("postprocess-finish %s", {"didMutate": did_mutate, "itemCountAfter": len(state.items)})
        return did_mutate

    async def normalize(
        self, state: LabelState, surface: PreviewSurface, force_rebuild: bool = False
    ) -> NormalizeResult:
        if force_rebuild and state.items:
            await self.post_process_rebuild(state, surface)
        if not state.items:
            return NormalizeResult(False, False, 0, "empty-items", False)

        warnings = _WarningChannel(self.on_warning)
        did_mutate = False
        confidence = 0.0
        reason = "no-op"

        if remove_duplicated_aggregate_text(state):
            did_mutate = True
            confidence = max(confidence, 0.32)
            reason = "removed-aggregate-text"

        snapshot = capture_marker_snapshot(state.items)
        cleanup = strip_leading_markers_from_text_items(state.items)
        if cleanup.changed_count > 0:
            did_mutate = True
            confidence = max(confidence, 0.4)
            reason = "normalized-marker-prefixes"
        if did_mutate:
            await surface.remeasure()

        rewrite = await rewrite_marker_group(state, surface, snapshot, self.config, self.logger)
        if rewrite.did_mutate:
            did_mutate = True
            confidence = max(confidence, rewrite.confidence)
            reason = rewrite.reason or reason
            await surface.remeasure()

        marker_evidence = (
            snapshot.has_text_marker or cleanup.removed_marker_count > 0 or rewrite.marker_shape_count > 0
        )
        placement = await PlacementSolver(self.config, self.logger).solve(state, surface, marker_evidence)
        if placement.did_mutate:
            did_mutate = True
            confidence = max(confidence, placement.confidence)
            reason = placement.reason or reason
        elif reason == "no-op" and placement.reason in FIDELITY_REASONS:
            confidence = max(confidence, placement.confidence)
            reason = placement.reason

        if placement.marker_evidence and not placement.placement_resolved:
            warnings.emit("W3101_PLACEMENT_APPROXIMATE")
        if did_mutate and confidence < self.config.solver.low_confidence_threshold:
            warnings.emit("W3102_LOW_CONFIDENCE")

        self.logger.debug(
            "normalize-result %s",
            {
                "didMutate": did_mutate,
                "confidence": confidence,
                "reason": reason,
                "placementResolved": placement.placement_resolved,
                "markerEvidence": placement.marker_evidence,
                "itemCountAfter": len(state.items),
            },
        )
        return NormalizeResult(
            applied=did_mutate,
            did_mutate=did_mutate,
            confidence=round(confidence, 3),
            reason=reason,
            placement_resolved=placement.placement_resolved,
            warnings=warnings.emitted,
        )


async def normalize_layout(
    state: LabelState,
    surface: PreviewSurface,
    config: LabelFitConfig | None = None,
    logger: logging.Logger | None = None,
    on_warning: Optional[WarningSink] = None,
    force_rebuild: bool = False,
) -> NormalizeResult:
    normalizer = LayoutNormalizer(config, logger, on_warning)
    return await normalizer.normalize(state, surface, force_rebuild=force_rebuild)
