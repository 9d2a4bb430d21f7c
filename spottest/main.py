from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import replace
from pathlib import Path

from spottest.src.reagent_colors.colors import hex_to_rgb
from spottest.src.reagent_colors.config import EngineSettings
from spottest.src.reagent_colors.errors import AnalysisError
from spottest.src.reagent_colors.matching import resolve_choice
from spottest.src.reagent_colors.models import ColorChoice, ColorSource
from spottest.src.reagent_colors.palette import PaletteValidationError, load_palette
from spottest.src.reagent_colors.pipeline import SpotTestPipeline


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spottest",
        description="Extract dominant colors from reagent test photos and match them to a reference palette.",
    )
    parser.add_argument(
        "--verbose", action="store_true", help="Log progress to stderr."
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    analyze = subparsers.add_parser(
        "analyze",
        help="Extract dominant colors from an image and match each one.",
    )
    analyze.add_argument(
        "--image", required=True, help="Path or URL to the test photo."
    )
    _add_palette_arguments(analyze)
    analyze.add_argument(
        "--out",
        default=None,
        help="Optional JSON output path. If omitted, prints JSON to stdout.",
    )
    analyze.add_argument(
        "--overlay-out",
        default=None,
        help="Optional path to save the image with color markers drawn on it.",
    )

    match = subparsers.add_parser(
        "match",
        help="Match a single hex color against the reference palette.",
    )
    match.add_argument("--hex", required=True, help="Color to match, e.g. #800080.")
    _add_palette_arguments(match)

    return parser


def _add_palette_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--palette",
        default=None,
        help="Path to a reference palette (.csv/.json). Defaults to the bundled one.",
    )
    parser.add_argument(
        "--test-id",
        default=None,
        help="Only match against entries of this test, e.g. marquis-test.",
    )
    parser.add_argument(
        "--max-distance",
        type=float,
        default=None,
        help="Maximum RGB distance for an accepted match.",
    )


def _settings_for(args: argparse.Namespace) -> EngineSettings:
    settings = EngineSettings.from_env()
    if args.max_distance is None:
        return settings
    return replace(settings, max_distance=args.max_distance)


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        settings = _settings_for(args)
        if args.command == "analyze":
            pipeline = SpotTestPipeline(settings=settings)
            result = pipeline.run(
                image_path=args.image,
                palette_path=args.palette,
                test_id=args.test_id,
                overlay_out=args.overlay_out,
            )
            payload = json.dumps(result.to_dict(), indent=2)
        elif args.command == "match":
            pipeline = SpotTestPipeline(settings=settings)
            palette, palette_source = load_palette(
                palette_path=args.palette,
                fallback_palette_path=pipeline.fallback_palette_path,
                test_id=args.test_id,
            )
            choice = ColorChoice(
                rgb=hex_to_rgb(args.hex),
                confidence=settings.manual_pick_confidence,
                source=ColorSource.MANUAL_PICK,
            )
            resolved = resolve_choice(
                choice, palette, max_distance=settings.max_distance, test_id=args.test_id
            )
            payload = json.dumps(
                {**resolved.to_dict(), "palette_source": palette_source}, indent=2
            )
        else:
            parser.error("unknown command")
            return
    except (AnalysisError, PaletteValidationError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        sys.exit(1)

    out = getattr(args, "out", None)
    if out:
        output_path = Path(out)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(payload + "\n", encoding="utf-8")
    else:
        print(payload)


if __name__ == "__main__":
    main()
