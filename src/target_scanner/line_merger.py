from __future__ import annotations

import functools
import logging

from target_scanner.candidates import BBox, Candidate

logger = logging.getLogger(__name__)


def _row_order(baseline_delta: float):
    """Sort key: rows further apart than the delta by center y, else by x."""

    def compare(a: Candidate, b: Candidate) -> int:
        ay, by = a.center_y, b.center_y
        if abs(ay - by) > baseline_delta:
            return -1 if ay < by else 1
        return (a.bbox.x > b.bbox.x) - (a.bbox.x < b.bbox.x)

    return functools.cmp_to_key(compare)


def group_into_lines(
    candidates: list[Candidate],
    baseline_delta: float,
) -> list[list[Candidate]]:
    """Group candidates into text lines by vertical center.

    A candidate joins the first line whose running mean center y is within
    ``baseline_delta``; otherwise it starts a new line. Lines are built in
    processing order, so the pre-sort matters.
    """
    ordered = sorted(candidates, key=_row_order(baseline_delta))

    lines: list[list[Candidate]] = []
    line_sums: list[float] = []
    for c in ordered:
        cy = c.center_y
        for i, line in enumerate(lines):
            if abs(cy - line_sums[i] / len(line)) <= baseline_delta:
                line.append(c)
                line_sums[i] += cy
                break
        else:
            lines.append([c])
            line_sums.append(cy)
    return lines


def merge_into(acc: Candidate, seg: Candidate) -> None:
    """Grow ``acc`` to the union of both boxes, sum areas, recenter.

    The new centroid is the union box center, not an area-weighted centroid.
    """
    left = min(acc.bbox.x, seg.bbox.x)
    top = min(acc.bbox.y, seg.bbox.y)
    right = max(acc.bbox.right, seg.bbox.right)
    bottom = max(acc.bbox.bottom, seg.bbox.bottom)
    acc.bbox = BBox(left, top, right - left, bottom - top)
    acc.area += seg.area
    acc.cx = left + acc.bbox.width / 2
    acc.cy = top + acc.bbox.height / 2


def merge_lines(
    candidates: list[Candidate],
    max_gap_px: float,
    baseline_delta_px: float,
) -> list[Candidate]:
    """Merge horizontally adjacent segments of the same text line.

    Within a line (left to right), a segment is folded into the running
    accumulator when its vertical center is within ``baseline_delta_px`` of
    the accumulator's and its gap from the accumulator's right edge lies in
    ``[0, max_gap_px]``. Any other segment closes the accumulator and starts
    a new one. Input candidates are not modified.
    """
    if len(candidates) <= 1:
        return [c.copy() for c in candidates]

    out: list[Candidate] = []
    for line in group_into_lines(candidates, baseline_delta_px):
        line.sort(key=lambda c: c.bbox.x)
        acc: Candidate | None = None
        for seg in line:
            if acc is None:
                acc = seg.copy()
                continue
            gap = seg.bbox.x - acc.bbox.right
            same_line = abs(seg.center_y - acc.center_y) <= baseline_delta_px
            if same_line and 0 <= gap <= max_gap_px:
                merge_into(acc, seg)
            else:
                out.append(acc)
                acc = seg.copy()
        if acc is not None:
            out.append(acc)

    if len(out) != len(candidates):
        logger.debug("Merged %d segment(s) into %d", len(candidates), len(out))
    return out
