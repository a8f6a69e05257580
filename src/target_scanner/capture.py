"""Frame sources for the scanner.

Uses ``mss`` for live screen capture. All frames handed to the pipeline are
RGBA ``uint8`` arrays of shape ``(H, W, 4)``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Protocol

import cv2
import numpy as np
from mss import mss

from target_scanner.exceptions import CaptureError
from target_scanner.settings import Rect

logger = logging.getLogger(__name__)


class Capture(Protocol):
    """Protocol for frame sources."""

    def grab(self, roi: Rect | None = None) -> np.ndarray:
        """Return an RGBA frame; the whole source when ``roi`` is None or empty."""
        ...


def bgra_to_rgba(bgra: np.ndarray) -> np.ndarray:
    return bgra[:, :, [2, 1, 0, 3]].copy()


class ScreenCapture:
    """Grab a monitor (1-based index as in ``mss``; 0 is the virtual screen)."""

    def __init__(self, monitor: int = 1) -> None:
        self._monitor = monitor

    def _geometry(self, sct, roi: Rect | None) -> dict[str, int]:
        try:
            mon = sct.monitors[self._monitor]
        except IndexError as e:
            raise CaptureError("screen", f"monitor {self._monitor} not available") from e
        if roi is None or roi.is_empty:
            return dict(mon)
        return {
            "left": mon["left"] + roi.x,
            "top": mon["top"] + roi.y,
            "width": roi.width,
            "height": roi.height,
        }

    def grab(self, roi: Rect | None = None) -> np.ndarray:
        try:
            with mss() as sct:
                geometry = self._geometry(sct, roi)
                screenshot = sct.grab(geometry)
        except CaptureError:
            raise
        except Exception as e:
            raise CaptureError("screen", str(e)) from e

        # mss returns BGRA
        frame = bgra_to_rgba(np.array(screenshot, dtype=np.uint8))
        logger.debug("Captured screen frame: shape=%s", frame.shape)
        return frame


class ImageFileCapture:
    """Serve a still image from disk, for offline runs and tuning."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def grab(self, roi: Rect | None = None) -> np.ndarray:
        img = cv2.imread(str(self._path), cv2.IMREAD_UNCHANGED)
        if img is None:
            raise CaptureError(str(self._path), "file missing or not a readable image")

        if img.ndim == 2:
            frame = cv2.cvtColor(img, cv2.COLOR_GRAY2RGBA)
        elif img.shape[2] == 3:
            frame = cv2.cvtColor(img, cv2.COLOR_BGR2RGBA)
        else:
            frame = cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)

        if roi is not None and not roi.is_empty:
            frame = frame[roi.y : roi.y + roi.height, roi.x : roi.x + roi.width].copy()
        return frame
