"""Edge-flatness test and single vertical split for clumped candidates.

A clean single line of text has a nearly straight top or bottom edge once
closed into a blob. Two words fused by the closing usually break both
edges at once (two humps). For such boxes we look for one low-density
column -- a valley between the two glyph clusters -- and cut there.
"""

from __future__ import annotations

import logging
import math
from collections import Counter
from dataclasses import asdict, dataclass, field

import numpy as np

from target_scanner.candidates import BBox, Candidate
from target_scanner.settings import FlatnessSettings

logger = logging.getLogger(__name__)


@dataclass
class EdgeStats:
    std: float
    flat_ratio: float
    mode: int

    def is_flat(self, settings: FlatnessSettings) -> bool:
        return self.flat_ratio >= settings.min_flat_ratio and self.std <= settings.std_threshold


@dataclass
class FlatnessProfile:
    """Per-column measurements of one box in the closed binary image.

    ``top_edge[c]`` is the offset of the first lit pixel from the top of the
    box, ``bottom_edge[c]`` the offset of the first lit pixel from the
    bottom. Columns without any lit pixel get ``height - 1`` for both.
    """

    x: int
    y: int
    width: int
    height: int
    col_counts: list[int] = field(default_factory=list)
    top_edge: list[int] = field(default_factory=list)
    bottom_edge: list[int] = field(default_factory=list)
    top: EdgeStats | None = None
    bottom: EdgeStats | None = None
    split_at: int | None = None

    def is_flat(self, settings: FlatnessSettings) -> bool:
        return bool(
            (self.bottom is not None and self.bottom.is_flat(settings))
            or (self.top is not None and self.top.is_flat(settings))
        )

    def to_dict(self) -> dict:
        return asdict(self)


def edge_stats(values: list[int]) -> EdgeStats:
    """Modal value, share of values within +-1 of it, population std.

    On a tie for the mode the value seen first wins.
    """
    if not values:
        return EdgeStats(std=0.0, flat_ratio=0.0, mode=0)
    mode, _ = Counter(values).most_common(1)[0]
    flat = sum(1 for v in values if abs(v - mode) <= 1)
    return EdgeStats(
        std=float(np.std(values)),
        flat_ratio=flat / len(values),
        mode=int(mode),
    )


def analyze_flatness(binary: np.ndarray, x: int, y: int, w: int, h: int) -> FlatnessProfile:
    """Measure column densities and top/bottom edge profiles of a box.

    Coordinates are relative to ``binary``; the box must already lie inside it.
    """
    patch = binary[y : y + h, x : x + w] > 0
    lit_any = patch.any(axis=0)

    col_counts = patch.sum(axis=0)
    top = np.where(lit_any, patch.argmax(axis=0), h - 1)
    bottom = np.where(lit_any, patch[::-1, :].argmax(axis=0), h - 1)

    top_edge = [int(v) for v in top]
    bottom_edge = [int(v) for v in bottom]
    return FlatnessProfile(
        x=x, y=y, width=w, height=h,
        col_counts=[int(v) for v in col_counts],
        top_edge=top_edge,
        bottom_edge=bottom_edge,
        top=edge_stats(top_edge),
        bottom=edge_stats(bottom_edge),
    )


def find_vertical_valley(col_counts: list[int], max_count: int) -> int:
    """Return the column index of the lowest local minimum <= max_count.

    The first and last columns are never valleys. Returns -1 if none qualifies.
    """
    idx = -1
    best = math.inf
    for i in range(1, len(col_counts) - 1):
        c = col_counts[i]
        if c < best and c <= max_count and c <= col_counts[i - 1] and c <= col_counts[i + 1]:
            best = c
            idx = i
    return idx


def _clamp_box(
    candidate: Candidate,
    shape: tuple[int, ...],
    offset: tuple[int, int],
) -> tuple[int, int, int, int] | None:
    rows, cols = shape[:2]
    b = candidate.bbox
    rx = round(b.x - offset[0])
    ry = round(b.y - offset[1])
    if rx >= cols or ry >= rows or rx + b.width <= 0 or ry + b.height <= 0:
        return None
    xr = max(0, min(cols - 1, rx))
    yr = max(0, min(rows - 1, ry))
    wr = max(1, min(cols - xr, round(b.width)))
    hr = max(1, min(rows - yr, round(b.height)))
    return xr, yr, wr, hr


def split_candidate(candidate: Candidate, cut: int, width: int) -> tuple[Candidate, Candidate]:
    """Cut a candidate vertically ``cut`` pixels from its left edge.

    Area is shared by width ratio and both halves keep the parent centroid.
    """
    b = candidate.bbox
    left_w = cut
    right_w = width - cut
    left = Candidate(
        bbox=BBox(b.x, b.y, left_w, b.height),
        area=candidate.area * (left_w / width),
        cx=candidate.cx,
        cy=candidate.cy,
    )
    right = Candidate(
        bbox=BBox(b.x + left_w, b.y, right_w, b.height),
        area=candidate.area * (right_w / width),
        cx=candidate.cx,
        cy=candidate.cy,
    )
    return left, right


def declump_with_profile(
    candidate: Candidate,
    roi_binary: np.ndarray,
    offset: tuple[int, int],
    settings: FlatnessSettings,
) -> tuple[list[Candidate], FlatnessProfile | None]:
    box = _clamp_box(candidate, roi_binary.shape, offset)
    if box is None:
        return [], None

    xr, yr, wr, hr = box
    profile = analyze_flatness(roi_binary, xr, yr, wr, hr)
    if profile.is_flat(settings):
        return [candidate], profile

    valley = find_vertical_valley(profile.col_counts, math.floor(hr * settings.min_valley_ratio))
    if 0 < valley < wr - 1:
        if valley >= settings.min_split_width and wr - valley >= settings.min_split_width:
            profile.split_at = valley
            return list(split_candidate(candidate, valley, wr)), profile

    return [candidate], profile


def declump(
    candidate: Candidate,
    roi_binary: np.ndarray,
    offset: tuple[int, int],
    settings: FlatnessSettings,
) -> list[Candidate]:
    """Keep a flat candidate, or split a clumped one into two.

    Returns one or two candidates, or none when the box lies completely
    outside ``roi_binary``.
    """
    out, _ = declump_with_profile(candidate, roi_binary, offset, settings)
    return out


def declump_all(
    candidates: list[Candidate],
    roi_binary: np.ndarray,
    offset: tuple[int, int],
    settings: FlatnessSettings,
) -> tuple[list[Candidate], list[FlatnessProfile]]:
    out: list[Candidate] = []
    profiles: list[FlatnessProfile] = []
    for c in candidates:
        parts, profile = declump_with_profile(c, roi_binary, offset, settings)
        out.extend(parts)
        if profile is not None:
            profiles.append(profile)
    splits = sum(1 for p in profiles if p.split_at is not None)
    if splits:
        logger.debug("Flatness split %d of %d candidate(s)", splits, len(candidates))
    return out, profiles
