"""Debug service: per-scan diagnostics saving and pipeline logging.

When ``TS_DEBUG=1`` is set, DebugService creates a session directory under
``logs/debug/`` (relative to the working directory, or ``TS_DEBUG_DIR``) and
records every scan.

Each scan gets its own numbered folder::

    logs/debug/session_YYYYMMDD_HHMMSS/
        pipeline.log
        001/
            bboxes.json       # ScanReport payload: counts, rejects, profiles
            roi_binary.png    # closed ROI image the contours came from
        002/ ...
"""

from __future__ import annotations

import json
import os
from datetime import datetime
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image

if TYPE_CHECKING:
    from target_scanner.scanner import ScanReport

_DEFAULT_ROOT = os.path.join("logs", "debug")


def is_debug_enabled() -> bool:
    return os.environ.get("TS_DEBUG", "0") == "1"


class DebugService:
    def __init__(self, root: str | None = None) -> None:
        root = root or os.environ.get("TS_DEBUG_DIR") or _DEFAULT_ROOT
        ts = datetime.now().strftime("%Y%m%d_%H%M%S")
        self._session_dir = os.path.join(root, f"session_{ts}")
        os.makedirs(self._session_dir, exist_ok=True)

        log_path = os.path.join(self._session_dir, "pipeline.log")
        self._log_file = open(log_path, "w", encoding="utf-8")  # noqa: SIM115
        self._scan_count = 0

        self.log("SESSION", f"started at {ts}")

    @property
    def session_dir(self) -> str:
        return self._session_dir

    # ------------------------------------------------------------------
    # Pipeline logging
    # ------------------------------------------------------------------

    def log(self, tag: str, text: str) -> None:
        ts = datetime.now().strftime("%H:%M:%S.%f")[:-3]
        self._log_file.write(f"{ts}  [{tag}]  {text}\n")
        self._log_file.flush()

    # ------------------------------------------------------------------
    # Scan artifact saving
    # ------------------------------------------------------------------

    def save_scan(self, report: ScanReport, roi_binary: np.ndarray | None = None) -> str:
        self._scan_count += 1
        folder = os.path.join(self._session_dir, f"{self._scan_count:03d}")
        os.makedirs(folder, exist_ok=True)

        with open(os.path.join(folder, "bboxes.json"), "w", encoding="utf-8") as f:
            json.dump(report.to_dict(), f, indent=2)

        if roi_binary is not None and roi_binary.size:
            Image.fromarray(roi_binary).save(os.path.join(folder, "roi_binary.png"))

        counts = ", ".join(f"{k}={v}" for k, v in report.counts.items())
        self.log("SCAN", f"{self._scan_count:03d} {counts} time={report.elapsed_ms}ms")
        return folder

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def shutdown(self) -> None:
        self.log("SESSION", "ended")
        self._log_file.close()
