"""Scan entry point: capture -> preprocess -> contours -> filters ->
flatness split -> line merge -> optional OCR confirmation.

Stages up to the merge are synchronous numpy/OpenCV work. Only the OCR
confirmation awaits, so a scan costs roughly the image work plus one
recognizer round-trip.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from target_scanner.candidates import Candidate, Target
from target_scanner.capture import Capture
from target_scanner.contour_finder import find_candidates
from target_scanner.debug_service import DebugService
from target_scanner.flatness import FlatnessProfile, declump_all
from target_scanner.geometry_filter import filter_candidates
from target_scanner.line_merger import merge_lines
from target_scanner.ocr_confirmer import ConfirmResult, OcrOutcome, confirm
from target_scanner.preprocessor import PreprocessResult, preprocess
from target_scanner.recognizer import Recognizer
from target_scanner.settings import PipelineConfig, Rect

logger = logging.getLogger(__name__)


def area_stats(values: list[float]) -> dict[str, float]:
    if not values:
        return {"min": 0.0, "avg": 0.0, "max": 0.0}
    return {
        "min": float(min(values)),
        "avg": float(sum(values) / len(values)),
        "max": float(max(values)),
    }


@dataclass
class ScanReport:
    """Diagnostic payload of one scan.

    The schema is a convenience for tuning tools, not a stable contract.
    """

    roi: Rect | None = None
    counts: dict[str, int] = field(default_factory=dict)
    metrics: dict[str, float] = field(default_factory=dict)
    rejected: dict[str, list[Candidate]] = field(default_factory=dict)
    flat_profiles: list[FlatnessProfile] = field(default_factory=list)
    ocr_outcomes: list[OcrOutcome] = field(default_factory=list)
    targets: list[Target] = field(default_factory=list)
    elapsed_ms: int = 0
    config: PipelineConfig | None = None

    def to_dict(self) -> dict[str, Any]:
        roi = None
        if self.roi is not None:
            roi = {"x": self.roi.x, "y": self.roi.y,
                   "width": self.roi.width, "height": self.roi.height}
        thresholds: dict[str, Any] = {}
        if self.config is not None:
            cfg = self.config
            thresholds = {
                "area": {"min": cfg.min_area, "max": cfg.max_area},
                "size": {"minWidth": cfg.min_width, "maxWidth": cfg.max_width,
                         "minHeight": cfg.min_height, "maxHeight": cfg.max_height},
                "yBand": {"min": cfg.y_band_min, "max": cfg.y_band_max},
                "flatness": {
                    "stdThreshold": cfg.flatness.std_threshold,
                    "minFlatRatio": cfg.flatness.min_flat_ratio,
                    "minValleyRatio": cfg.flatness.min_valley_ratio,
                    "minSplitWidth": cfg.flatness.min_split_width,
                },
            }
        return {
            "ts": int(time.time() * 1000),
            "roi": roi,
            "counts": dict(self.counts),
            "metrics": dict(self.metrics),
            "elapsedMs": self.elapsed_ms,
            "targets": [t.to_dict() for t in self.targets],
            "debug": {
                "thresholds": thresholds,
                "rejected": {
                    stage: [c.to_dict() for c in items]
                    for stage, items in self.rejected.items()
                },
                "flatProfiles": [p.to_dict() for p in self.flat_profiles],
                "ocr": [vars(o) for o in self.ocr_outcomes],
            },
        }


@dataclass
class Detection:
    """Result of the synchronous stages for one frame."""

    candidates: list[Candidate]
    preprocessed: PreprocessResult
    report: ScanReport


def detect(frame: np.ndarray, config: PipelineConfig, roi: Rect | None = None) -> Detection:
    """Run preprocessing through line merging on one frame.

    ``roi`` overrides ``config.roi`` when given.
    """
    roi = roi if roi is not None else config.roi
    report = ScanReport(roi=roi, config=config)

    pre = preprocess(frame, roi, config)
    offset = pre.offset
    report.counts["full_frame"] = pre.full_contour_count

    contours = find_candidates(pre.roi_binary, pre.roi_threshold, offset)
    report.counts["after_roi"] = contours.after_roi
    report.counts["after_fallback"] = contours.after_fallback

    filtered = filter_candidates(contours.candidates, config, offset)
    for stage, count in filtered.counts.items():
        report.counts[f"after_{stage}"] = count
    report.rejected = filtered.rejected

    declumped, profiles = declump_all(filtered.passed, pre.roi_binary, offset, config.flatness)
    report.counts["after_flatness"] = len(declumped)
    report.flat_profiles = profiles

    merged = merge_lines(declumped, config.max_word_gap_px, config.max_baseline_delta_px)
    report.counts["after_merge"] = len(merged)

    return Detection(candidates=merged, preprocessed=pre, report=report)


class TargetScanner:
    """Produces targets from the current screen.

    ``config`` is either a PipelineConfig or a zero-argument callable that
    returns one; it is read once at the start of every scan and the snapshot
    is used for the whole scan. The recognizer is injected once and only
    used when the snapshot has OCR enabled.
    """

    def __init__(
        self,
        config: PipelineConfig | Callable[[], PipelineConfig],
        capture: Capture,
        recognizer: Recognizer | None = None,
        debug: DebugService | None = None,
    ) -> None:
        self._config = config
        self._capture = capture
        self._recognizer = recognizer
        self._debug = debug
        self.last_report: ScanReport | None = None
        self._warned_no_recognizer = False

    def _snapshot(self) -> PipelineConfig:
        config = self._config() if callable(self._config) else self._config
        return config.validate()

    def detect(self, frame: np.ndarray, roi: Rect | None = None) -> list[Candidate]:
        """Run the synchronous stages on a caller-supplied frame, no OCR."""
        detection = detect(frame, self._snapshot(), roi)
        self.last_report = detection.report
        return detection.candidates

    async def scan(self, roi: Rect | None = None) -> list[Target]:
        """Capture one frame and return the detected targets.

        Returns an empty list when nothing is found. Raises ``ConfigError``
        for an invalid config and lets capture failures propagate.
        """
        t0 = time.monotonic()
        config = self._snapshot()

        frame = self._capture.grab(None)
        detection = detect(frame, config, roi)
        report = detection.report
        pre = detection.preprocessed

        if config.ocr.enabled and self._recognizer is None and not self._warned_no_recognizer:
            logger.warning("OCR is enabled but no recognizer was provided; targets are not confirmed")
            self._warned_no_recognizer = True

        source = pre.roi_gray if config.ocr.source == "gray" else pre.roi_threshold
        confirmed: ConfirmResult = await confirm(
            detection.candidates, source, pre.offset, config.ocr, self._recognizer,
        )
        targets = confirmed.targets()
        report.counts["after_ocr"] = len(targets)
        report.ocr_outcomes = confirmed.outcomes
        report.targets = targets
        report.metrics = area_stats([t.area for t in targets])
        report.elapsed_ms = int((time.monotonic() - t0) * 1000)
        self.last_report = report

        c, m = report.counts, report.metrics
        logger.info(
            "scan: fullFrame=%d, afterROI=%d, afterFallback=%d, afterArea=%d, "
            "afterSize=%d, afterMerge=%d, afterOcr=%d, area[min/avg/max]=%.0f/%.1f/%.0f, "
            "time=%dms",
            c["full_frame"], c["after_roi"], c["after_fallback"], c["after_area"],
            c["after_size"], c["after_merge"], c["after_ocr"],
            m["min"], m["avg"], m["max"], report.elapsed_ms,
        )

        if self._debug is not None:
            self._debug.save_scan(report, pre.roi_binary)

        return targets
