"""Pattern detectors and their fidelity passes."""

from .barcode_photo import detect_barcode_photo
from .boxed_barcode import detect_boxed_barcode
from .markers import detect_marker_group
from .qr_form import detect_qr_form

__all__ = ["detect_barcode_photo", "detect_boxed_barcode", "detect_marker_group", "detect_qr_form"]
