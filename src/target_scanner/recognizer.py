"""Text recognizer client used by the confirmation stage.

The scanner only depends on the ``Recognizer`` protocol. ``TesseractRecognizer``
is the production implementation: each call runs pytesseract in a worker
thread so several crops can be recognized concurrently, and every crop lives
in a temp file only for the duration of its call.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
import time
from dataclasses import dataclass
from typing import Any, Protocol

import pytesseract

from target_scanner.settings import OcrSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RecognitionResult:
    text: str
    # 0..100, as reported by Tesseract (mean of word confidences).
    confidence: float


class Recognizer(Protocol):
    """Protocol for text recognition backends."""

    async def recognize(
        self,
        image_bytes: bytes,
        lang: str,
        psm: int,
        whitelist: str,
    ) -> RecognitionResult:
        """Recognize the text in one encoded (PNG) crop.

        Must be safe to call concurrently. The caller imposes its own
        timeout; implementations need not enforce one.
        """
        ...


def build_tesseract_config(psm: int, whitelist: str) -> str:
    parts = [f"--psm {psm}", "--oem 1"]
    if whitelist:
        parts.append(f"-c tessedit_char_whitelist={whitelist}")
    return " ".join(parts)


def parse_word_data(data: dict[str, list[Any]]) -> RecognitionResult:
    """Join non-empty words and average their confidences.

    ``data`` is the dict returned by ``pytesseract.image_to_data`` with
    ``Output.DICT``. Rows with blank text (page/block/line levels) or a
    non-numeric confidence are skipped.
    """
    words: list[str] = []
    confs: list[float] = []
    for text, conf in zip(data.get("text", []), data.get("conf", [])):
        text = str(text).strip()
        if not text:
            continue
        try:
            value = float(conf)
        except (TypeError, ValueError):
            continue
        if value != value:  # NaN
            continue
        words.append(text)
        confs.append(value)

    if not confs:
        return RecognitionResult(text=" ".join(words), confidence=0.0)
    return RecognitionResult(text=" ".join(words), confidence=round(sum(confs) / len(confs)))


class TesseractRecognizer:
    """Tesseract CLI via pytesseract.

    Lifecycle: construct once at startup, ``await warm_up()`` to check the
    binary and pay the cold-start cost, pass to the scanner, ``close()`` at
    shutdown.
    """

    def __init__(
        self,
        tesseract_cmd: str | None = None,
        process_timeout_s: float | None = None,
    ) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        # pytesseract kills the child process after this many seconds and the
        # temp crop is removed on that path too; 0 would mean no limit.
        if process_timeout_s is None:
            process_timeout_s = OcrSettings().timeout_ms / 1000
        self._process_timeout_s = process_timeout_s
        self._version: str | None = None
        self._closed = False

    @property
    def version(self) -> str | None:
        return self._version

    async def warm_up(self) -> str:
        """Check the tesseract binary is reachable and return its version.

        Raises ``pytesseract.TesseractNotFoundError`` if it is not installed.
        """
        t0 = time.monotonic()
        version = await asyncio.to_thread(pytesseract.get_tesseract_version)
        self._version = str(version)
        logger.info(
            "Tesseract %s ready (%dms)", self._version, int((time.monotonic() - t0) * 1000),
        )
        return self._version

    async def recognize(
        self,
        image_bytes: bytes,
        lang: str,
        psm: int,
        whitelist: str,
    ) -> RecognitionResult:
        if self._closed:
            raise RuntimeError("Recognizer is closed")
        return await asyncio.to_thread(self._recognize_file, image_bytes, lang, psm, whitelist)

    def _recognize_file(
        self,
        image_bytes: bytes,
        lang: str,
        psm: int,
        whitelist: str,
    ) -> RecognitionResult:
        fd, tmp_file = tempfile.mkstemp(suffix=".png", prefix="ts_crop_")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(image_bytes)
            data = pytesseract.image_to_data(
                tmp_file,
                lang=lang,
                config=build_tesseract_config(psm, whitelist),
                output_type=pytesseract.Output.DICT,
                timeout=self._process_timeout_s,
            )
        finally:
            try:
                os.unlink(tmp_file)
            except OSError:
                pass
        return parse_word_data(data)

    def close(self) -> None:
        self._closed = True
