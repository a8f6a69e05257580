"""Tests for ocr_confirmer.py with an in-process fake recognizer."""

import asyncio

import numpy as np
import pytest

from target_scanner.candidates import BBox, Candidate
from target_scanner.ocr_confirmer import (
    ACCEPTED,
    EMPTY_CROP,
    ERROR,
    REJECTED,
    TIMEOUT,
    confirm,
    crop_region,
    is_confirmed,
    letters_only,
)
from target_scanner.recognizer import RecognitionResult
from target_scanner.settings import OcrSettings

ENABLED = OcrSettings(enabled=True, timeout_ms=500)


class FakeRecognizer:
    """Answers from a script keyed by call order; tracks concurrency."""

    def __init__(self, answers=None, delay: float = 0.0) -> None:
        self._answers = list(answers or [])
        self._delay = delay
        self.calls = 0
        self.in_flight = 0
        self.peak = 0

    async def recognize(self, image_bytes, lang, psm, whitelist):
        index = self.calls
        self.calls += 1
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            await asyncio.sleep(self._delay)
            answer = self._answers[index] if index < len(self._answers) else ("Name", 90.0)
            if isinstance(answer, Exception):
                raise answer
            if answer == "hang":
                await asyncio.sleep(60)
            text, conf = answer
            return RecognitionResult(text, conf)
        finally:
            self.in_flight -= 1


def _cand(x: int, y: int = 10, w: int = 40, h: int = 12) -> Candidate:
    return Candidate(BBox(x, y, w, h), float(w * h), x + w / 2, y + h / 2)


def _source() -> np.ndarray:
    return np.full((60, 400), 255, dtype=np.uint8)


def _run(candidates, settings=ENABLED, recognizer=None, offset=(0, 0)):
    return asyncio.run(confirm(candidates, _source(), offset, settings, recognizer))


# ---------------------------------------------------------------------------
# Acceptance rule
# ---------------------------------------------------------------------------

def test_letters_only_strips_digits_and_punctuation() -> None:
    assert letters_only("Ab-1 c!") == "Abc"


@pytest.mark.parametrize(
    ("text", "conf", "expected"),
    [
        ("Goblin", 70.0, True),
        ("Goblin", 69.9, False),
        ("A1", 95.0, False),
        ("xy", 95.0, True),
        ("", 99.0, False),
    ],
)
def test_is_confirmed(text: str, conf: float, expected: bool) -> None:
    assert is_confirmed(RecognitionResult(text, conf), 70.0) is expected


# ---------------------------------------------------------------------------
# confirm()
# ---------------------------------------------------------------------------

def test_disabled_passes_everything_through() -> None:
    rec = FakeRecognizer()
    cands = [_cand(10), _cand(100)]

    result = _run(cands, settings=OcrSettings(enabled=False), recognizer=rec)

    assert result.candidates == cands
    assert rec.calls == 0
    assert all(t.text is None for t in result.targets())


def test_missing_recognizer_passes_everything_through() -> None:
    cands = [_cand(10)]

    result = _run(cands, recognizer=None)

    assert result.candidates == cands


def test_cap_limits_calls_and_keeps_overflow() -> None:
    rec = FakeRecognizer(answers=[("no", 10.0)] * 10)
    cands = [_cand(10 + 60 * i) for i in range(5)]
    settings = OcrSettings(enabled=True, max_per_frame=2)

    result = _run(cands, settings=settings, recognizer=rec)

    assert rec.calls == 2
    assert result.calls == 2
    assert result.overflow == 3
    assert result.candidates == cands[2:]


def test_zero_cap_keeps_everything_unrecognized() -> None:
    rec = FakeRecognizer()
    cands = [_cand(10), _cand(100)]

    result = _run(cands, settings=OcrSettings(enabled=True, max_per_frame=0), recognizer=rec)

    assert rec.calls == 0
    assert result.candidates == cands


def test_confidence_gate_and_text_attached() -> None:
    rec = FakeRecognizer(answers=[("Goblin", 88.0), ("Orc", 40.0), ("7", 99.0)])
    cands = [_cand(10), _cand(100), _cand(200)]

    result = _run(cands, recognizer=rec)

    assert result.candidates == [cands[0]]
    (target,) = result.targets()
    assert target.text == "Goblin"
    assert target.confidence == 88.0
    assert [o.status for o in result.outcomes] == [ACCEPTED, REJECTED, REJECTED]


def test_output_order_follows_input_order() -> None:
    rec = FakeRecognizer(answers=[("Aa", 90.0), ("Bb", 90.0), ("Cc", 90.0)])
    cands = [_cand(200), _cand(10), _cand(100)]

    result = _run(cands, recognizer=rec)

    assert result.candidates == cands


def test_calls_run_concurrently() -> None:
    rec = FakeRecognizer(delay=0.05)
    cands = [_cand(10 + 60 * i) for i in range(4)]

    _run(cands, recognizer=rec)

    assert rec.peak == 4


def test_timeout_rejects_only_that_candidate() -> None:
    rec = FakeRecognizer(answers=["hang", ("Elf", 90.0)])
    cands = [_cand(10), _cand(100)]
    settings = OcrSettings(enabled=True, timeout_ms=50)

    result = _run(cands, settings=settings, recognizer=rec)

    assert result.candidates == [cands[1]]
    assert result.outcomes[0].status == TIMEOUT


def test_recognizer_error_rejects_only_that_candidate() -> None:
    rec = FakeRecognizer(answers=[RuntimeError("engine crashed"), ("Elf", 90.0)])
    cands = [_cand(10), _cand(100)]

    result = _run(cands, recognizer=rec)

    assert result.candidates == [cands[1]]
    assert result.outcomes[0].status == ERROR
    assert "engine crashed" in result.outcomes[0].error


def test_box_outside_source_is_empty_crop() -> None:
    rec = FakeRecognizer()
    cands = [_cand(5000, 5000)]

    result = _run(cands, recognizer=rec)

    assert rec.calls == 0
    assert result.candidates == []
    assert result.outcomes[0].status == EMPTY_CROP


def test_cancellation_propagates() -> None:
    rec = FakeRecognizer(answers=["hang"])
    settings = OcrSettings(enabled=True, timeout_ms=10_000)

    async def scenario() -> None:
        task = asyncio.create_task(confirm([_cand(10)], _source(), (0, 0), settings, rec))
        await asyncio.sleep(0.05)
        task.cancel()
        await task

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(scenario())


# ---------------------------------------------------------------------------
# Cropping
# ---------------------------------------------------------------------------

def test_crop_region_pads_and_maps_offset() -> None:
    image = np.zeros((60, 400), dtype=np.uint8)
    cand = _cand(110, 30, 40, 12)

    crop = crop_region(image, cand, offset=(100, 20), padding=2)

    assert crop.shape == (16, 44)


def test_crop_region_clamps_to_image() -> None:
    image = np.zeros((60, 400), dtype=np.uint8)
    cand = _cand(0, 0, 40, 12)

    crop = crop_region(image, cand, offset=(0, 0), padding=5)

    assert crop.shape == (17, 45)
