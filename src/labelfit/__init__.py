"""labelfit layout reconciliation package."""

from .barcode_template import rebuild_barcode_template
from .codec import decode_state, encode_state, load_state
from .config import LabelFitConfig, load_config
from .detectors.boxed_barcode import apply_boxed_barcode_form
from .errors import LabelFitError
from .normalizer import LayoutNormalizer, normalize_layout
from .preview import EstimatingPreview, PreviewSurface
from .solver import PlacementSolver, solve_placement
from .types import BoundsIndex, LabelState, NormalizeResult

__all__ = [
    "BoundsIndex",
    "EstimatingPreview",
    "LabelFitConfig",
    "LabelFitError",
    "LabelState",
    "LayoutNormalizer",
    "NormalizeResult",
    "PlacementSolver",
    "PreviewSurface",
    "apply_boxed_barcode_form",
    "decode_state",
    "encode_state",
    "load_config",
    "load_state",
    "normalize_layout",
    "rebuild_barcode_template",
    "solve_placement",
]
