"""Geometric filter chain.

Each filter is an independent per-candidate predicate, so the order only
matters for attributing rejects in the diagnostics payload:

1. area within [min_area, max_area]
2. bbox width/height within their bounds
3. vertical band on the ROI-relative center y (optional)
4. exclusion zones on the ROI-relative center (optional)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field

from target_scanner.candidates import Candidate
from target_scanner.settings import PipelineConfig, Rect

logger = logging.getLogger(__name__)

Predicate = Callable[[Candidate], bool]


@dataclass
class FilterResult:
    passed: list[Candidate] = field(default_factory=list)
    # Per-stage counts of candidates left after that stage, in chain order.
    counts: dict[str, int] = field(default_factory=dict)
    # Per-stage rejects, in chain order.
    rejected: dict[str, list[Candidate]] = field(default_factory=dict)


def _split(
    candidates: list[Candidate],
    predicate: Predicate,
) -> tuple[list[Candidate], list[Candidate]]:
    passed: list[Candidate] = []
    failed: list[Candidate] = []
    for c in candidates:
        (passed if predicate(c) else failed).append(c)
    return passed, failed


def area_predicate(config: PipelineConfig) -> Predicate:
    return lambda c: config.min_area <= c.area <= config.max_area


def size_predicate(config: PipelineConfig) -> Predicate:
    def check(c: Candidate) -> bool:
        b = c.bbox
        return (
            config.min_width <= b.width <= config.max_width
            and config.min_height <= b.height <= config.max_height
        )
    return check


def band_predicate(config: PipelineConfig, offset: tuple[int, int]) -> Predicate:
    lo, hi = config.y_band
    off_y = offset[1]

    def check(c: Candidate) -> bool:
        center_y = (c.bbox.y - off_y) + c.bbox.height / 2
        return lo <= center_y <= hi
    return check


def exclusion_predicate(
    zones: tuple[Rect, ...] | list[Rect],
    offset: tuple[int, int],
) -> Predicate:
    off_x, off_y = offset

    def check(c: Candidate) -> bool:
        cx = (c.bbox.x - off_x) + c.bbox.width / 2
        cy = (c.bbox.y - off_y) + c.bbox.height / 2
        return not any(z.contains(cx, cy) for z in zones)
    return check


def filter_by_area(
    candidates: list[Candidate],
    config: PipelineConfig,
) -> tuple[list[Candidate], list[Candidate]]:
    return _split(candidates, area_predicate(config))


def filter_by_size(
    candidates: list[Candidate],
    config: PipelineConfig,
) -> tuple[list[Candidate], list[Candidate]]:
    return _split(candidates, size_predicate(config))


def filter_by_band(
    candidates: list[Candidate],
    config: PipelineConfig,
    offset: tuple[int, int] = (0, 0),
) -> tuple[list[Candidate], list[Candidate]]:
    if not config.has_y_band:
        return list(candidates), []
    return _split(candidates, band_predicate(config, offset))


def filter_by_exclusion_zones(
    candidates: list[Candidate],
    zones: tuple[Rect, ...] | list[Rect],
    offset: tuple[int, int] = (0, 0),
) -> tuple[list[Candidate], list[Candidate]]:
    if not zones:
        return list(candidates), []
    return _split(candidates, exclusion_predicate(zones, offset))


def filter_candidates(
    candidates: list[Candidate],
    config: PipelineConfig,
    offset: tuple[int, int] = (0, 0),
) -> FilterResult:
    """Run the four filters in order and keep per-stage rejects."""
    result = FilterResult()
    current = list(candidates)

    stages: list[tuple[str, Callable[[list[Candidate]], tuple[list, list]]]] = [
        ("area", lambda cs: filter_by_area(cs, config)),
        ("size", lambda cs: filter_by_size(cs, config)),
        ("band", lambda cs: filter_by_band(cs, config, offset)),
        ("exclusion", lambda cs: filter_by_exclusion_zones(cs, config.exclusion_zones, offset)),
    ]
    for name, stage in stages:
        current, rejected = stage(current)
        result.counts[name] = len(current)
        result.rejected[name] = rejected
        if rejected:
            logger.debug("Filter %s rejected %d candidate(s)", name, len(rejected))

    result.passed = current
    return result
