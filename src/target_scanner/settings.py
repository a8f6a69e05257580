from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any

from target_scanner.exceptions import ConfigError

logger = logging.getLogger(__name__)

THRESHOLD_MODES = ("BINARY", "BINARY_INV", "TRUNC", "TOZERO", "TOZERO_INV")
MORPH_SHAPES = ("RECT", "ELLIPSE", "CROSS")
OCR_SOURCES = ("gray", "binary")

DEFAULT_WHITELIST = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"


@dataclass(frozen=True)
class Rect:
    x: int = 0
    y: int = 0
    width: int = 0
    height: int = 0

    @property
    def is_empty(self) -> bool:
        return self.width <= 0 or self.height <= 0

    def contains(self, px: float, py: float) -> bool:
        """Inclusive point-in-rectangle test."""
        return (
            self.x <= px <= self.x + self.width
            and self.y <= py <= self.y + self.height
        )

    @classmethod
    def from_value(cls, value: Any, name: str = "rect") -> Rect:
        """Build a Rect from a ``{x, y, width, height}`` mapping or a 4-sequence."""
        if isinstance(value, Rect):
            return value
        if isinstance(value, dict):
            try:
                return cls(
                    int(value.get("x", 0)),
                    int(value.get("y", 0)),
                    int(value.get("width", 0)),
                    int(value.get("height", 0)),
                )
            except (TypeError, ValueError) as e:
                raise ConfigError(name, value, f"Expected integer fields: {e}") from e
        if isinstance(value, (list, tuple)) and len(value) == 4:
            try:
                return cls(*(int(v) for v in value))
            except (TypeError, ValueError) as e:
                raise ConfigError(name, value, f"Expected integers: {e}") from e
        raise ConfigError(name, value, "Expected {x, y, width, height} or [x, y, w, h]")


@dataclass(frozen=True)
class FlatnessSettings:
    """Thresholds for the edge-flatness test and the single vertical split."""

    # Standard deviation ceiling of an edge profile for it to count as flat.
    std_threshold: float = 1.5
    # Minimum share of columns within +-1 px of the modal edge offset.
    min_flat_ratio: float = 0.6
    # Valley column must hold at most floor(height * ratio) lit pixels.
    min_valley_ratio: float = 0.35
    # Both halves of a split must be at least this wide.
    min_split_width: int = 30


@dataclass(frozen=True)
class OcrSettings:
    """Recognition confirmation stage settings."""

    enabled: bool = False
    lang: str = "eng"
    # Tesseract page segmentation mode (7 = single text line).
    psm: int = 7
    # 0..100 scale, as reported by Tesseract.
    min_confidence: float = 70.0
    whitelist: str = DEFAULT_WHITELIST
    # Image the crops are cut from: "gray" or "binary".
    source: str = "binary"
    padding: int = 2
    max_per_frame: int = 6
    timeout_ms: int = 1000
    # Path to the tesseract binary; None uses whatever pytesseract finds on PATH.
    tesseract_cmd: str | None = None


@dataclass(frozen=True)
class PipelineConfig:
    """Immutable parameter snapshot for one scan.

    Built once (usually by ``load_config``) and passed down to every stage.
    Nothing in the pipeline re-reads settings mid-scan.
    """

    # -- Binarization --
    threshold_value: int = 200
    threshold_mode: str = "BINARY"

    # -- Morphological close --
    morph_kernel_size: tuple[int, int] = (50, 5)
    morph_shape: str = "RECT"

    # -- Region of interest (None or zero-sized = whole frame) --
    roi: Rect | None = None

    # -- Area / bbox size bounds --
    min_area: float = 100.0
    max_area: float = 10000.0
    min_width: int = 50
    max_width: int = 350
    min_height: int = 8
    max_height: int = 20

    # -- Vertical band on ROI-relative center y (None = unbounded) --
    y_band_min: float | None = None
    y_band_max: float | None = None

    # -- Exclusion zones in ROI coordinates --
    exclusion_zones: tuple[Rect, ...] = ()

    # -- Line merging --
    max_word_gap_px: float = 30.0
    max_baseline_delta_px: float = 6.0

    flatness: FlatnessSettings = field(default_factory=FlatnessSettings)
    ocr: OcrSettings = field(default_factory=OcrSettings)

    @property
    def has_y_band(self) -> bool:
        return self.y_band_min is not None or self.y_band_max is not None

    @property
    def y_band(self) -> tuple[float, float]:
        lo = self.y_band_min if self.y_band_min is not None else -math.inf
        hi = self.y_band_max if self.y_band_max is not None else math.inf
        return lo, hi

    def validate(self) -> PipelineConfig:
        """Check every value and raise ``ConfigError`` on the first bad one.

        Returns self so it can be chained after construction.
        """
        if not 0 <= self.threshold_value <= 255:
            raise ConfigError("threshold_value", self.threshold_value, "Expected 0..255.")
        if self.threshold_mode not in THRESHOLD_MODES:
            raise ConfigError(
                "threshold_mode", self.threshold_mode,
                f"Expected one of {', '.join(THRESHOLD_MODES)}.",
            )
        kw, kh = self.morph_kernel_size
        if kw <= 0 or kh <= 0:
            raise ConfigError(
                "morph_kernel_size", self.morph_kernel_size,
                "Kernel width and height must be positive.",
            )
        if self.morph_shape not in MORPH_SHAPES:
            raise ConfigError(
                "morph_shape", self.morph_shape,
                f"Expected one of {', '.join(MORPH_SHAPES)}.",
            )
        if self.roi is not None and (self.roi.width < 0 or self.roi.height < 0):
            raise ConfigError("roi", self.roi, "ROI width/height must not be negative.")

        for lo_name, hi_name in (
            ("min_area", "max_area"),
            ("min_width", "max_width"),
            ("min_height", "max_height"),
        ):
            lo, hi = getattr(self, lo_name), getattr(self, hi_name)
            if lo < 0:
                raise ConfigError(lo_name, lo, "Must not be negative.")
            if hi < lo:
                raise ConfigError(hi_name, hi, f"Must be >= {lo_name} ({lo}).")

        lo, hi = self.y_band
        if hi < lo:
            raise ConfigError("y_band", (self.y_band_min, self.y_band_max), "max must be >= min.")
        for i, zone in enumerate(self.exclusion_zones):
            if zone.width < 0 or zone.height < 0:
                raise ConfigError(f"exclusion_zones[{i}]", zone, "Negative size.")

        if self.max_word_gap_px < 0:
            raise ConfigError("max_word_gap_px", self.max_word_gap_px, "Must not be negative.")
        if self.max_baseline_delta_px < 0:
            raise ConfigError(
                "max_baseline_delta_px", self.max_baseline_delta_px, "Must not be negative.",
            )

        flat = self.flatness
        if flat.std_threshold < 0:
            raise ConfigError("flatness.std_threshold", flat.std_threshold, "Must not be negative.")
        if not 0 <= flat.min_flat_ratio <= 1:
            raise ConfigError("flatness.min_flat_ratio", flat.min_flat_ratio, "Expected 0..1.")
        if not 0 <= flat.min_valley_ratio <= 1:
            raise ConfigError("flatness.min_valley_ratio", flat.min_valley_ratio, "Expected 0..1.")
        if flat.min_split_width < 1:
            raise ConfigError("flatness.min_split_width", flat.min_split_width, "Must be >= 1.")

        ocr = self.ocr
        if ocr.source not in OCR_SOURCES:
            raise ConfigError("ocr.source", ocr.source, "Expected 'gray' or 'binary'.")
        if ocr.padding < 0:
            raise ConfigError("ocr.padding", ocr.padding, "Must not be negative.")
        if ocr.max_per_frame < 0:
            raise ConfigError("ocr.max_per_frame", ocr.max_per_frame, "Must not be negative.")
        if ocr.timeout_ms <= 0:
            raise ConfigError("ocr.timeout_ms", ocr.timeout_ms, "Must be positive.")
        if not 0 <= ocr.min_confidence <= 100:
            raise ConfigError("ocr.min_confidence", ocr.min_confidence, "Expected 0..100.")
        return self

    def with_roi(self, roi: Rect | None) -> PipelineConfig:
        return replace(self, roi=roi)

    def with_ocr(self, **changes: Any) -> PipelineConfig:
        return replace(self, ocr=replace(self.ocr, **changes))


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

# Settings file keys (camelCase, as written in settings.jsonc) -> field names.
_CV_KEYS: dict[str, str] = {
    "thresholdValue": "threshold_value",
    "thresholdType": "threshold_mode",
    "morphKernelSize": "morph_kernel_size",
    "morphShape": "morph_shape",
    "roi": "roi",
    "minArea": "min_area",
    "maxArea": "max_area",
    "minWidth": "min_width",
    "maxWidth": "max_width",
    "minHeight": "min_height",
    "maxHeight": "max_height",
    "exclusionZones": "exclusion_zones",
    "maxWordGapPx": "max_word_gap_px",
    "maxBaselineDeltaPx": "max_baseline_delta_px",
}

_FLATNESS_KEYS: dict[str, str] = {
    "stdThreshold": "std_threshold",
    "minFlatRatio": "min_flat_ratio",
    "minValleyRatio": "min_valley_ratio",
    "minSplitWidth": "min_split_width",
}

_OCR_KEYS: dict[str, str] = {
    "enabled": "enabled",
    "lang": "lang",
    "psm": "psm",
    "minConfidence": "min_confidence",
    "whitelist": "whitelist",
    "source": "source",
    "padding": "padding",
    "maxPerFrame": "max_per_frame",
    "timeoutMs": "timeout_ms",
    "tesseractPath": "tesseract_cmd",
}

_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT_RE = re.compile(r"(^|[^:\"])//.*$", re.MULTILINE)


def strip_json_comments(text: str) -> str:
    """Remove ``/* ... */`` and ``// ...`` comments from JSONC text.

    A ``//`` preceded by ``:`` or a quote is left alone so URLs and
    Windows-style paths inside strings survive.
    """
    text = _BLOCK_COMMENT_RE.sub("", text)
    return _LINE_COMMENT_RE.sub(lambda m: m.group(1), text)


def normalize_threshold_mode(value: Any) -> str:
    name = str(value).upper()
    if name.startswith("THRESH_"):
        name = name[len("THRESH_"):]
    return name


def normalize_morph_shape(value: Any) -> str:
    name = str(value).upper()
    if name.startswith("MORPH_"):
        name = name[len("MORPH_"):]
    return name


def _rename(block: dict[str, Any], keys: dict[str, str], where: str) -> dict[str, Any]:
    """Translate camelCase or snake_case keys of one block into field names."""
    if not isinstance(block, dict):
        raise ConfigError(where, block, "Expected an object.")
    known = set(keys.values())
    out: dict[str, Any] = {}
    for key, value in block.items():
        if key in keys:
            out[keys[key]] = value
        elif key in known:
            out[key] = value
        else:
            logger.debug("Ignoring unknown %s setting: %s", where, key)
    return out


# Accepted JSON types per nested-block field. bool is never accepted as a number.
_FLATNESS_TYPES: dict[str, tuple[type, ...]] = {
    "std_threshold": (int, float),
    "min_flat_ratio": (int, float),
    "min_valley_ratio": (int, float),
    "min_split_width": (int,),
}

_OCR_TYPES: dict[str, tuple[type, ...]] = {
    "enabled": (bool,),
    "lang": (str,),
    "psm": (int,),
    "min_confidence": (int, float),
    "whitelist": (str,),
    "source": (str,),
    "padding": (int,),
    "max_per_frame": (int,),
    "timeout_ms": (int,),
    "tesseract_cmd": (str, type(None)),
}


def _check_types(
    values: dict[str, Any],
    types: dict[str, tuple[type, ...]],
    where: str,
) -> dict[str, Any]:
    for name, value in values.items():
        allowed = types[name]
        if isinstance(value, bool) and bool not in allowed:
            ok = False
        else:
            ok = isinstance(value, allowed)
        if not ok:
            expected = " or ".join(
                "null" if t is type(None) else t.__name__ for t in allowed
            )
            raise ConfigError(f"{where}.{name}", value, f"Expected {expected}.")
    return values


def _kernel_size(value: Any) -> tuple[int, int]:
    try:
        kw, kh = value
        return int(kw), int(kh)
    except (TypeError, ValueError) as e:
        raise ConfigError("morph_kernel_size", value, "Expected [width, height].") from e


def config_from_dict(data: dict[str, Any]) -> PipelineConfig:
    """Build a validated PipelineConfig from a settings mapping.

    Accepts either a whole settings document (with a ``cv`` block) or the
    ``cv`` block itself. Missing keys keep their defaults; the nested
    ``flatness`` and ``ocr`` blocks are merged key by key, so a partial block
    does not wipe the remaining defaults.
    """
    cv_block = data.get("cv", data)
    if not isinstance(cv_block, dict):
        raise ConfigError("cv", cv_block, "Expected an object.")
    try:
        return _build_config(cv_block)
    except (TypeError, ValueError) as e:
        raise ConfigError("cv", cv_block, f"Malformed value: {e}") from e


def _build_config(cv_block: dict[str, Any]) -> PipelineConfig:
    values = _rename(cv_block, _CV_KEYS, "cv")

    if "threshold_value" in values:
        values["threshold_value"] = int(values["threshold_value"])
    if "threshold_mode" in values:
        values["threshold_mode"] = normalize_threshold_mode(values["threshold_mode"])
    if "morph_kernel_size" in values:
        values["morph_kernel_size"] = _kernel_size(values["morph_kernel_size"])
    if "morph_shape" in values:
        values["morph_shape"] = normalize_morph_shape(values["morph_shape"])
    if values.get("roi") is not None:
        values["roi"] = Rect.from_value(values["roi"], "roi")
    if "exclusion_zones" in values:
        zones = values["exclusion_zones"] or []
        values["exclusion_zones"] = tuple(
            Rect.from_value(z, f"exclusion_zones[{i}]") for i, z in enumerate(zones)
        )

    band = cv_block.get("yBand", cv_block.get("y_band"))
    if isinstance(band, dict):
        if isinstance(band.get("min"), (int, float)):
            values["y_band_min"] = float(band["min"])
        if isinstance(band.get("max"), (int, float)):
            values["y_band_max"] = float(band["max"])

    flat_block = cv_block.get("flatness") or {}
    values["flatness"] = replace(
        FlatnessSettings(),
        **_check_types(
            _rename(flat_block, _FLATNESS_KEYS, "flatness"), _FLATNESS_TYPES, "flatness",
        ),
    )

    ocr_block = cv_block.get("ocr") or {}
    values["ocr"] = replace(
        OcrSettings(),
        **_check_types(_rename(ocr_block, _OCR_KEYS, "ocr"), _OCR_TYPES, "ocr"),
    )

    known = {f.name for f in fields(PipelineConfig)}
    values = {k: v for k, v in values.items() if k in known}
    return PipelineConfig(**values).validate()


def load_config(path: str | Path | None = None) -> PipelineConfig:
    """Load a PipelineConfig from a JSON-with-comments settings file.

    A missing file yields the defaults. A file that exists but cannot be
    parsed is a configuration error.
    """
    if path is None:
        return PipelineConfig().validate()

    path = Path(path)
    if not path.exists():
        logger.info("Settings file %s not found, using defaults", path)
        return PipelineConfig().validate()

    raw = path.read_text(encoding="utf-8")
    try:
        data = json.loads(strip_json_comments(raw))
    except json.JSONDecodeError as e:
        raise ConfigError(str(path), raw[:80], f"Not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(str(path), data, "Expected a JSON object at top level.")

    config = config_from_dict(data)
    logger.info("Loaded settings from %s", path)
    return config
