"""Shared fixtures: synthetic frames and pipeline configs."""

import numpy as np
import pytest

from target_scanner.settings import FlatnessSettings, PipelineConfig


def white_rgba(width: int, height: int) -> np.ndarray:
    """Opaque white RGBA frame, the way the capture layer hands frames over."""
    return np.full((height, width, 4), 255, dtype=np.uint8)


def paint(frame: np.ndarray, x: int, y: int, w: int, h: int, value: int = 0) -> None:
    """Fill a rectangle's RGB channels, leaving alpha opaque."""
    frame[y : y + h, x : x + w, :3] = value


@pytest.fixture
def dark_on_white_config() -> PipelineConfig:
    """Dark text on a light background, with loose geometric bounds."""
    return PipelineConfig(
        threshold_value=128,
        threshold_mode="BINARY_INV",
        morph_kernel_size=(7, 3),
        morph_shape="RECT",
        min_area=1.0,
        max_area=100000.0,
        min_width=1,
        max_width=1000,
        min_height=1,
        max_height=1000,
        flatness=FlatnessSettings(
            std_threshold=1.5, min_flat_ratio=0.6, min_valley_ratio=0.35, min_split_width=30,
        ),
    ).validate()


@pytest.fixture
def staggered_pair_frame() -> np.ndarray:
    """200x50 frame with two dark boxes offset vertically by 12 px.

    The closing fuses them through a short bridge, which gives one blob whose
    top and bottom edges are both two-level steps.
    """
    frame = white_rgba(200, 50)
    paint(frame, 10, 10, 50, 20)
    paint(frame, 65, 22, 55, 20)
    return frame


@pytest.fixture
def blank_frame() -> np.ndarray:
    return white_rgba(200, 50)


@pytest.fixture
def aligned_pair_frame() -> np.ndarray:
    """200x50 frame with two dark boxes on the same rows, 5 px apart."""
    frame = white_rgba(200, 50)
    paint(frame, 10, 10, 50, 20)
    paint(frame, 65, 10, 55, 20)
    return frame
