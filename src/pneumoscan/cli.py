"""Command-line front end: analyze one chest X-ray through the controller."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import TYPE_CHECKING

from pneumoscan.analysis.controller import ControllerEvent, EventKind, Phase
from pneumoscan.analysis.factory import build_backend, build_controller
from pneumoscan.config import LOG_FORMAT, Settings
from pneumoscan.ml.types import ImageSource

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pneumoscan.ml.types import AnalysisResult

logger = logging.getLogger(__name__)


def _report(event: ControllerEvent) -> None:
    if event.kind is EventKind.VALIDATION_FAILED:
        print(f"Rejected: {event.message}", file=sys.stderr)
    elif event.kind is EventKind.NOT_READY:
        print(f"Not ready: {event.message}", file=sys.stderr)
    elif event.state.phase is Phase.ANALYZING:
        print("Analyzing...", file=sys.stderr)


def _print_result(result: AnalysisResult) -> None:
    print("Pneumonia Detected" if result.has_pneumonia else "Normal Chest X-ray")
    print(f"Confidence: {result.confidence}%")
    print(f"Normal: {result.probabilities.normal:.2f}%")
    print(f"Pneumonia: {result.probabilities.pneumonia:.2f}%")


async def _analyze(settings: Settings, source: ImageSource) -> int:
    backend = build_backend(settings)
    controller = build_controller(settings, backend)
    controller.subscribe(_report)

    try:
        try:
            await backend.load()
        except Exception:
            logger.exception("Classifier failed to load")
        await backend.check_health()

        if not controller.select_image(source).ok:
            return 1
        state = await controller.analyze()
    finally:
        await backend.close()

    if state.phase is Phase.RESULT and state.result is not None:
        _print_result(state.result)
        return 0
    if state.phase is Phase.ERROR:
        print(f"Analysis failed: {state.error}", file=sys.stderr)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Classify a chest X-ray as normal or pneumonia.")
    parser.add_argument("image", help="Path to the X-ray image")
    parser.add_argument("--backend", choices=["local", "remote"], help="Inference backend (default: from env)")
    parser.add_argument("--url", help="Service URL for the remote backend")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING, format=LOG_FORMAT)

    overrides: dict[str, object] = {}
    if args.backend:
        overrides["backend"] = args.backend
    if args.url:
        overrides["remote_url"] = args.url
    settings = Settings(**overrides)  # type: ignore[arg-type]

    try:
        source = ImageSource.from_path(args.image)
    except OSError as exc:
        parser.error(f"cannot read {args.image}: {exc}")

    return asyncio.run(_analyze(settings, source))


if __name__ == "__main__":
    sys.exit(main())
