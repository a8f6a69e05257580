"""Tests for geometry_filter.py."""

from dataclasses import replace
from typing import get_type_hints

import pytest

from target_scanner.candidates import BBox, Candidate
from target_scanner.geometry_filter import (
    filter_by_area,
    filter_by_band,
    filter_by_exclusion_zones,
    filter_by_size,
    filter_candidates,
)
from target_scanner.settings import PipelineConfig, Rect


def _cand(x: int, y: int, w: int, h: int, area: float | None = None) -> Candidate:
    return Candidate(
        bbox=BBox(x, y, w, h),
        area=float(w * h) if area is None else area,
        cx=x + w / 2,
        cy=y + h / 2,
    )


def _mixed_candidates() -> list[Candidate]:
    return [
        _cand(10, 10, 100, 12),             # passes the defaults
        _cand(10, 40, 100, 12, area=50.0),  # too small an area
        _cand(10, 70, 20, 12),              # too narrow
        _cand(10, 100, 100, 30),            # too tall
        _cand(200, 10, 80, 10),             # passes the defaults
    ]


def test_area_bounds_inclusive() -> None:
    config = PipelineConfig(min_area=100, max_area=200)
    cands = [_cand(0, 0, 10, 10, area=a) for a in (99, 100, 200, 201)]

    passed, failed = filter_by_area(cands, config)

    assert [c.area for c in passed] == [100, 200]
    assert [c.area for c in failed] == [99, 201]


def test_size_bounds_on_both_axes() -> None:
    config = PipelineConfig()
    cands = [_cand(0, 0, 50, 8), _cand(0, 0, 49, 10), _cand(0, 0, 100, 21)]

    passed, failed = filter_by_size(cands, config)

    assert passed == [cands[0]]
    assert failed == cands[1:]


def test_band_uses_roi_relative_center() -> None:
    config = PipelineConfig(y_band_min=0, y_band_max=20)
    # Frame y 110 with ROI origin y 100 -> ROI-relative center 15
    inside = _cand(0, 110, 60, 10)
    outside = _cand(0, 130, 60, 10)

    passed, failed = filter_by_band([inside, outside], config, offset=(0, 100))

    assert passed == [inside]
    assert failed == [outside]


def test_band_disabled_keeps_all() -> None:
    cands = [_cand(0, 5000, 60, 10)]

    passed, failed = filter_by_band(cands, PipelineConfig())

    assert passed == cands
    assert failed == []


def test_exclusion_zone_rejects_contained_centers() -> None:
    zones = (Rect(0, 0, 50, 50),)
    in_zone = _cand(10, 10, 20, 10)     # center (20, 15)
    on_edge = _cand(40, 45, 20, 10)     # center (50, 50), inclusive edge
    clear = _cand(100, 10, 20, 10)

    passed, failed = filter_by_exclusion_zones([in_zone, on_edge, clear], zones)

    assert passed == [clear]
    assert failed == [in_zone, on_edge]


def test_chain_counts_and_rejects() -> None:
    result = filter_candidates(_mixed_candidates(), PipelineConfig())

    assert result.counts == {"area": 4, "size": 2, "band": 2, "exclusion": 2}
    assert len(result.rejected["area"]) == 1
    assert len(result.rejected["size"]) == 2
    assert [c.bbox.x for c in result.passed] == [10, 200]


def test_tightening_never_adds_candidates() -> None:
    loose = PipelineConfig(min_area=0, max_area=1e9, min_width=0, max_width=10_000,
                           min_height=0, max_height=10_000)
    tight = replace(loose, min_width=90)
    cands = _mixed_candidates()

    loose_ids = {id(c) for c in filter_candidates(cands, loose).passed}
    tight_ids = {id(c) for c in filter_candidates(cands, tight).passed}

    assert tight_ids <= loose_ids


def test_result_satisfies_every_bound() -> None:
    config = PipelineConfig(y_band_min=0, y_band_max=60, exclusion_zones=(Rect(190, 0, 100, 30),))

    result = filter_candidates(_mixed_candidates(), config)

    for c in result.passed:
        assert config.min_area <= c.area <= config.max_area
        assert config.min_width <= c.bbox.width <= config.max_width
        assert config.min_height <= c.bbox.height <= config.max_height
        assert 0 <= c.bbox.y + c.bbox.height / 2 <= 60
    assert [c.bbox.x for c in result.passed] == [10]


@pytest.mark.parametrize(
    "func",
    [filter_by_area, filter_by_size, filter_by_band, filter_by_exclusion_zones, filter_candidates],
)
def test_filters_are_annotated(func) -> None:
    hints = get_type_hints(func)

    assert hints["candidates"] == list[Candidate]
    assert "return" in hints
