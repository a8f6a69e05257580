"""Tests for capture.py: mss screen grabs and image files."""

from unittest.mock import MagicMock, patch

import cv2
import numpy as np
import pytest

from target_scanner.capture import ImageFileCapture, ScreenCapture, bgra_to_rgba
from target_scanner.exceptions import CaptureError
from target_scanner.settings import Rect


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _fake_bgra_frame(width: int = 64, height: int = 32) -> np.ndarray:
    """BGRA frame with a distinct value per channel, as mss returns."""
    frame = np.zeros((height, width, 4), dtype=np.uint8)
    frame[:, :, 0] = 10   # B
    frame[:, :, 1] = 20   # G
    frame[:, :, 2] = 30   # R
    frame[:, :, 3] = 255  # A
    return frame


def _mock_mss(monitors, grab_result) -> MagicMock:
    sct = MagicMock()
    sct.monitors = monitors
    sct.grab.return_value = grab_result
    factory = MagicMock()
    factory.return_value.__enter__.return_value = sct
    return factory


MONITORS = [
    {"left": 0, "top": 0, "width": 3840, "height": 1080},
    {"left": 1920, "top": 0, "width": 1920, "height": 1080},
]


# ---------------------------------------------------------------------------
# ScreenCapture
# ---------------------------------------------------------------------------

class TestScreenCapture:
    def test_channels_reordered_to_rgba(self) -> None:
        factory = _mock_mss(MONITORS, _fake_bgra_frame())

        with patch("target_scanner.capture.mss", factory):
            frame = ScreenCapture(monitor=1).grab()

        assert frame.shape == (32, 64, 4)
        assert tuple(frame[0, 0]) == (30, 20, 10, 255)

    def test_roi_offsets_by_monitor_origin(self) -> None:
        factory = _mock_mss(MONITORS, _fake_bgra_frame())

        with patch("target_scanner.capture.mss", factory):
            ScreenCapture(monitor=1).grab(Rect(100, 50, 64, 32))

        sct = factory.return_value.__enter__.return_value
        sct.grab.assert_called_once_with(
            {"left": 2020, "top": 50, "width": 64, "height": 32}
        )

    def test_whole_monitor_without_roi(self) -> None:
        factory = _mock_mss(MONITORS, _fake_bgra_frame())

        with patch("target_scanner.capture.mss", factory):
            ScreenCapture(monitor=1).grab()

        sct = factory.return_value.__enter__.return_value
        sct.grab.assert_called_once_with(MONITORS[1])

    def test_missing_monitor_raises_capture_error(self) -> None:
        factory = _mock_mss(MONITORS, _fake_bgra_frame())

        with patch("target_scanner.capture.mss", factory):
            with pytest.raises(CaptureError, match="monitor 5"):
                ScreenCapture(monitor=5).grab()

    def test_backend_failure_wrapped(self) -> None:
        factory = MagicMock(side_effect=OSError("no display"))

        with patch("target_scanner.capture.mss", factory):
            with pytest.raises(CaptureError, match="no display"):
                ScreenCapture().grab()


def test_bgra_to_rgba_returns_copy() -> None:
    bgra = _fake_bgra_frame(4, 2)

    rgba = bgra_to_rgba(bgra)
    rgba[0, 0, 0] = 0

    assert bgra[0, 0, 2] == 30


# ---------------------------------------------------------------------------
# ImageFileCapture
# ---------------------------------------------------------------------------

class TestImageFileCapture:
    def test_reads_png_as_rgba(self, tmp_path) -> None:
        bgr = np.zeros((20, 30, 3), dtype=np.uint8)
        bgr[:, :, 2] = 200  # red in BGR order
        path = tmp_path / "frame.png"
        cv2.imwrite(str(path), bgr)

        frame = ImageFileCapture(path).grab()

        assert frame.shape == (20, 30, 4)
        assert tuple(frame[0, 0]) == (200, 0, 0, 255)

    def test_roi_crops(self, tmp_path) -> None:
        path = tmp_path / "frame.png"
        cv2.imwrite(str(path), np.zeros((20, 30), dtype=np.uint8))

        frame = ImageFileCapture(path).grab(Rect(5, 5, 10, 8))

        assert frame.shape == (8, 10, 4)

    def test_missing_file_raises(self, tmp_path) -> None:
        with pytest.raises(CaptureError):
            ImageFileCapture(tmp_path / "absent.png").grab()
