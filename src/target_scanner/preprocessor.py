"""Frame preprocessing: grayscale, threshold, morphological close.

Two passes are made over the same parameters:
1. Full frame -- only the external contour count is kept, for diagnostics.
2. ROI -- grayscale, pre-morphology threshold and closed binary images,
   which every later stage works on.

The closing (dilate then erode) is tuned with a wide, short kernel so the
strokes of one word or name-plate fuse into a single solid blob.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import cv2
import numpy as np

from target_scanner.settings import PipelineConfig, Rect

logger = logging.getLogger(__name__)


_THRESHOLD_TYPES: dict[str, int] = {
    "BINARY": cv2.THRESH_BINARY,
    "BINARY_INV": cv2.THRESH_BINARY_INV,
    "TRUNC": cv2.THRESH_TRUNC,
    "TOZERO": cv2.THRESH_TOZERO,
    "TOZERO_INV": cv2.THRESH_TOZERO_INV,
}

_MORPH_SHAPES: dict[str, int] = {
    "RECT": cv2.MORPH_RECT,
    "ELLIPSE": cv2.MORPH_ELLIPSE,
    "CROSS": cv2.MORPH_CROSS,
}


@dataclass
class PreprocessResult:
    full_binary: np.ndarray
    full_contour_count: int
    roi_rect: Rect
    roi_gray: np.ndarray
    roi_threshold: np.ndarray
    roi_binary: np.ndarray

    @property
    def offset(self) -> tuple[int, int]:
        """Frame-absolute origin of the ROI images."""
        return self.roi_rect.x, self.roi_rect.y


def to_gray(frame: np.ndarray) -> np.ndarray:
    """Convert an RGBA (or RGB, or already gray) frame to 8-bit grayscale."""
    if frame.ndim == 2:
        return frame.astype(np.uint8, copy=False)
    channels = frame.shape[2]
    if channels == 4:
        return cv2.cvtColor(frame, cv2.COLOR_RGBA2GRAY)
    if channels == 3:
        return cv2.cvtColor(frame, cv2.COLOR_RGB2GRAY)
    if channels == 1:
        return frame[:, :, 0].astype(np.uint8, copy=False)
    raise ValueError(f"Unsupported frame shape: {frame.shape}")


def apply_threshold(gray: np.ndarray, config: PipelineConfig) -> np.ndarray:
    _, thresh = cv2.threshold(
        gray, config.threshold_value, 255, _THRESHOLD_TYPES[config.threshold_mode]
    )
    return thresh


def make_kernel(config: PipelineConfig) -> np.ndarray:
    kw, kh = config.morph_kernel_size
    return cv2.getStructuringElement(_MORPH_SHAPES[config.morph_shape], (kw, kh))


def morph_close(binary: np.ndarray, kernel: np.ndarray) -> np.ndarray:
    return cv2.morphologyEx(binary, cv2.MORPH_CLOSE, kernel)


def count_external_contours(binary: np.ndarray) -> int:
    contours, _ = cv2.findContours(binary, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    return len(contours)


def clamp_roi(roi: Rect | None, frame_w: int, frame_h: int) -> Rect:
    """Clamp a ROI into the frame; None or zero-sized means the whole frame.

    The clamped rectangle is always at least 1x1 pixel.
    """
    if roi is None or roi.is_empty:
        return Rect(0, 0, frame_w, frame_h)
    x = max(0, min(roi.x, frame_w - 1))
    y = max(0, min(roi.y, frame_h - 1))
    w = max(1, min(roi.width, frame_w - x))
    h = max(1, min(roi.height, frame_h - y))
    return Rect(x, y, w, h)


def preprocess(
    frame: np.ndarray,
    roi: Rect | None,
    config: PipelineConfig,
) -> PreprocessResult:
    """Run grayscale -> threshold -> close on the full frame and on the ROI.

    ``frame`` is never modified; every returned image is a new buffer.
    """
    gray_full = to_gray(frame)
    kernel = make_kernel(config)

    full_binary = morph_close(apply_threshold(gray_full, config), kernel)
    full_count = count_external_contours(full_binary)

    frame_h, frame_w = gray_full.shape[:2]
    rect = clamp_roi(roi, frame_w, frame_h)
    roi_gray = gray_full[rect.y : rect.y + rect.height, rect.x : rect.x + rect.width].copy()

    roi_threshold = apply_threshold(roi_gray, config)
    roi_binary = morph_close(roi_threshold, kernel)

    logger.debug(
        "Preprocessed frame %dx%d, roi=(%d,%d,%d,%d), full-frame contours=%d",
        frame_w, frame_h, rect.x, rect.y, rect.width, rect.height, full_count,
    )

    return PreprocessResult(
        full_binary=full_binary,
        full_contour_count=full_count,
        roi_rect=rect,
        roi_gray=roi_gray,
        roi_threshold=roi_threshold,
        roi_binary=roi_binary,
    )
