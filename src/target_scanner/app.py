from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

import pytesseract

from target_scanner.capture import Capture, ImageFileCapture, ScreenCapture
from target_scanner.debug_service import DebugService, is_debug_enabled
from target_scanner.exceptions import CaptureError, ConfigError
from target_scanner.recognizer import TesseractRecognizer
from target_scanner.scanner import TargetScanner
from target_scanner.settings import PipelineConfig, Rect, load_config

logger = logging.getLogger(__name__)


def parse_roi(value: str) -> Rect:
    try:
        x, y, w, h = (int(v) for v in value.split(","))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"expected x,y,width,height, got {value!r}") from e
    return Rect(x, y, w, h)


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="target-scanner",
        description="Detect text-label targets on screen and print them as JSON.",
    )
    p.add_argument(
        "--config",
        type=Path,
        default=Path("settings.jsonc"),
        help="Settings file (JSON with comments). Defaults are used if missing.",
    )
    p.add_argument(
        "--image",
        type=Path,
        default=None,
        help="Scan this image file instead of the screen.",
    )
    p.add_argument(
        "--monitor",
        type=int,
        default=1,
        help="mss monitor index for screen capture (default: 1).",
    )
    p.add_argument(
        "--roi",
        type=parse_roi,
        default=None,
        help="Region of interest as x,y,width,height (overrides the settings file).",
    )
    ocr = p.add_mutually_exclusive_group()
    ocr.add_argument("--ocr", dest="ocr", action="store_true", default=None,
                     help="Enable OCR confirmation.")
    ocr.add_argument("--no-ocr", dest="ocr", action="store_false",
                     help="Disable OCR confirmation.")
    p.add_argument(
        "--count",
        type=int,
        default=1,
        help="Number of scans to run (default: 1).",
    )
    p.add_argument(
        "--interval-ms",
        type=int,
        default=500,
        help="Pause between scans in milliseconds (default: 500).",
    )
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging.")
    return p


class App:
    def __init__(self, args: argparse.Namespace) -> None:
        self._args = args

        config = load_config(args.config)
        if args.roi is not None:
            config = config.with_roi(args.roi)
        if args.ocr is not None:
            config = config.with_ocr(enabled=args.ocr)
        self._config: PipelineConfig = config

        self._debug: DebugService | None = None
        if is_debug_enabled():
            self._debug = DebugService()
            logger.info("Debug session dir: %s", self._debug.session_dir)

        self._capture: Capture = (
            ImageFileCapture(args.image) if args.image else ScreenCapture(args.monitor)
        )

        self._recognizer: TesseractRecognizer | None = None
        if config.ocr.enabled:
            self._recognizer = TesseractRecognizer(
                config.ocr.tesseract_cmd, process_timeout_s=config.ocr.timeout_ms / 1000,
            )

        self._scanner = TargetScanner(
            config, self._capture, self._recognizer, self._debug,
        )

    async def run(self) -> int:
        if self._recognizer is not None:
            await self._recognizer.warm_up()

        try:
            for i in range(self._args.count):
                targets = await self._scanner.scan()
                print(json.dumps([t.to_dict() for t in targets]))
                if i + 1 < self._args.count:
                    await asyncio.sleep(self._args.interval_ms / 1000)
        finally:
            if self._recognizer is not None:
                self._recognizer.close()
            if self._debug:
                self._debug.shutdown()
        return 0


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        stream=sys.stderr,
    )
    try:
        app = App(args)
        return asyncio.run(app.run())
    except (ConfigError, CaptureError, pytesseract.TesseractNotFoundError) as e:
        logger.error("%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
