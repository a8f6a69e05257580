from __future__ import annotations

import logging
from dataclasses import dataclass, field

import cv2
import numpy as np

from target_scanner.candidates import BBox, Candidate

logger = logging.getLogger(__name__)


@dataclass
class ContourResult:
    candidates: list[Candidate] = field(default_factory=list)
    # Contours found on the closed ROI image.
    after_roi: int = 0
    # Contours found on the pre-morphology threshold image (0 if not tried).
    after_fallback: int = 0
    used_fallback: bool = False


def contours_to_candidates(
    contours: list,
    offset: tuple[int, int] = (0, 0),
) -> list[Candidate]:
    """Measure each contour: bounding rect, shoelace area, moment centroid.

    A zero-area contour (a point or a 1-px line) has no usable centroid, so
    the bbox center is used instead.
    """
    off_x, off_y = offset
    out: list[Candidate] = []
    for cnt in contours:
        x, y, w, h = cv2.boundingRect(cnt)
        area = float(cv2.contourArea(cnt))
        m = cv2.moments(cnt)
        if m["m00"] != 0:
            cx = m["m10"] / m["m00"]
            cy = m["m01"] / m["m00"]
        else:
            cx = x + w / 2
            cy = y + h / 2
        out.append(Candidate(
            bbox=BBox(x + off_x, y + off_y, w, h),
            area=area,
            cx=cx + off_x,
            cy=cy + off_y,
        ))
    return out


def _external_contours(binary: np.ndarray) -> list:
    contours, _ = cv2.findContours(binary, cv2.RETR_EXTERNAL, cv2.CHAIN_APPROX_SIMPLE)
    return list(contours)


def find_candidates(
    roi_binary: np.ndarray,
    roi_threshold: np.ndarray | None = None,
    offset: tuple[int, int] = (0, 0),
) -> ContourResult:
    """Extract external contours from the closed ROI image.

    When the closing leaves nothing (an over-sized kernel can erase thin
    text), the contours are taken from the pre-morphology threshold image
    instead. Nothing on either image is an empty result, not an error.
    """
    contours = _external_contours(roi_binary)
    result = ContourResult(after_roi=len(contours))

    if not contours and roi_threshold is not None:
        contours = _external_contours(roi_threshold)
        result.after_fallback = len(contours)
        result.used_fallback = bool(contours)
        if contours:
            logger.debug(
                "No contours after morphology; fallback found %d on threshold image",
                len(contours),
            )

    result.candidates = contours_to_candidates(contours, offset)
    return result
