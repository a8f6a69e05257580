"""Optional recognition confirmation of detected candidates.

Up to ``max_per_frame`` candidates (in input order) are cropped, encoded and
sent to the recognizer concurrently, each under its own timeout. A candidate
is kept when its letters-only text has at least two characters and the
confidence reaches ``min_confidence``. Candidates beyond the cap are kept
without recognition, so a busy frame never loses targets to the cap.

Timeouts and recognizer exceptions only reject the candidate they belong to.
Task cancellation (``asyncio.CancelledError``) is not swallowed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field

import cv2
import numpy as np

from target_scanner.candidates import Candidate, Target
from target_scanner.recognizer import RecognitionResult, Recognizer
from target_scanner.settings import OcrSettings

logger = logging.getLogger(__name__)

MIN_LETTERS = 2

ACCEPTED = "accepted"
REJECTED = "rejected"
TIMEOUT = "timeout"
ERROR = "error"
EMPTY_CROP = "empty_crop"


@dataclass
class OcrOutcome:
    index: int
    status: str
    text: str = ""
    confidence: float = 0.0
    elapsed_ms: int = 0
    error: str = ""


@dataclass
class ConfirmResult:
    # (candidate, recognition) pairs in input order; recognition is None for
    # pass-through (disabled stage or overflow beyond the cap).
    kept: list[tuple[Candidate, RecognitionResult | None]] = field(default_factory=list)
    outcomes: list[OcrOutcome] = field(default_factory=list)
    calls: int = 0
    overflow: int = 0

    @property
    def candidates(self) -> list[Candidate]:
        return [c for c, _ in self.kept]

    def targets(self) -> list[Target]:
        out: list[Target] = []
        for c, rec in self.kept:
            if rec is None:
                out.append(Target.from_candidate(c))
            else:
                out.append(Target.from_candidate(c, rec.text, rec.confidence))
        return out


def letters_only(text: str) -> str:
    return "".join(ch for ch in text if ch.isalpha())


def is_confirmed(result: RecognitionResult, min_confidence: float) -> bool:
    return len(letters_only(result.text)) >= MIN_LETTERS and result.confidence >= min_confidence


def crop_region(
    image: np.ndarray,
    candidate: Candidate,
    offset: tuple[int, int],
    padding: int,
) -> np.ndarray:
    """Cut the candidate box, grown by ``padding`` on every side, from a ROI image.

    The padded box is clamped to the image; the result may be empty when the
    box lies outside it.
    """
    h, w = image.shape[:2]
    b = candidate.bbox
    x1 = max(0, int(round(b.x - offset[0])) - padding)
    y1 = max(0, int(round(b.y - offset[1])) - padding)
    x2 = min(w, int(round(b.x - offset[0] + b.width)) + padding)
    y2 = min(h, int(round(b.y - offset[1] + b.height)) + padding)
    if x2 <= x1 or y2 <= y1:
        return image[0:0, 0:0]
    return image[y1:y2, x1:x2]


def encode_png(crop: np.ndarray) -> bytes:
    ok, buf = cv2.imencode(".png", crop)
    if not ok:
        raise ValueError(f"PNG encoding failed for crop of shape {crop.shape}")
    return buf.tobytes()


async def _recognize_one(
    index: int,
    crop: np.ndarray,
    settings: OcrSettings,
    recognizer: Recognizer,
) -> tuple[OcrOutcome, RecognitionResult | None]:
    if crop.size == 0:
        return OcrOutcome(index, EMPTY_CROP), None

    t0 = time.monotonic()
    try:
        result = await asyncio.wait_for(
            recognizer.recognize(
                encode_png(crop), settings.lang, settings.psm, settings.whitelist,
            ),
            timeout=settings.timeout_ms / 1000,
        )
    except asyncio.TimeoutError:
        elapsed = int((time.monotonic() - t0) * 1000)
        logger.warning("OCR timed out for candidate %d after %dms", index, elapsed)
        return OcrOutcome(index, TIMEOUT, elapsed_ms=elapsed), None
    except Exception as e:
        elapsed = int((time.monotonic() - t0) * 1000)
        logger.warning("OCR failed for candidate %d: %s", index, e)
        return OcrOutcome(index, ERROR, elapsed_ms=elapsed, error=str(e)), None

    elapsed = int((time.monotonic() - t0) * 1000)
    status = ACCEPTED if is_confirmed(result, settings.min_confidence) else REJECTED
    logger.debug(
        "OCR candidate %d (%dms): %r conf=%.0f -> %s",
        index, elapsed, result.text, result.confidence, status,
    )
    outcome = OcrOutcome(index, status, result.text, result.confidence, elapsed)
    return outcome, result


async def confirm(
    candidates: list[Candidate],
    source_image: np.ndarray,
    offset: tuple[int, int],
    settings: OcrSettings,
    recognizer: Recognizer | None,
) -> ConfirmResult:
    """Keep the candidates the recognizer confirms, plus every overflow one.

    ``source_image`` is the ROI grayscale or binary image, picked by the
    caller from ``settings.source``.
    """
    if not settings.enabled or recognizer is None or not candidates:
        return ConfirmResult(kept=[(c, None) for c in candidates])

    cap = settings.max_per_frame
    selected = candidates[:cap]
    overflow = candidates[cap:]

    crops = [crop_region(source_image, c, offset, settings.padding) for c in selected]
    results = await asyncio.gather(*(
        _recognize_one(i, crop, settings, recognizer) for i, crop in enumerate(crops)
    ))

    confirmed = ConfirmResult(calls=sum(1 for crop in crops if crop.size > 0), overflow=len(overflow))
    for candidate, (outcome, rec) in zip(selected, results):
        confirmed.outcomes.append(outcome)
        if outcome.status == ACCEPTED:
            confirmed.kept.append((candidate, rec))
    confirmed.kept.extend((c, None) for c in overflow)

    logger.debug(
        "OCR confirmed %d of %d, %d overflow passed through",
        sum(1 for o in confirmed.outcomes if o.status == ACCEPTED),
        len(selected), len(overflow),
    )
    return confirmed
