#!/usr/bin/env python3
"""
Generate a USCIS-style 2x2" (600x600 px) photo with a white background.

Usage:
  uscisphoto --input /path/in.jpg --output /path/out.png
  uscisphoto -i in.jpg -o out.png --force-alternative --tolerance 40
  uscisphoto -i in.jpg -o out.png --no-model --report report.txt

Notes:
- Background removal tries the rembg model first, then a border-colour
  heuristic, then plain resizing. Always verify the final photo yourself.
"""

from __future__ import annotations

import argparse
import sys
from dataclasses import replace
from typing import Optional

from uscisphoto.core.config import ESTIMATORS, PipelineConfig
from uscisphoto.core.log import configure_logging
from uscisphoto.core.models import PhotoUpload
from uscisphoto.pipeline.orchestrator import PhotoPipeline, PipelineState
from uscisphoto.validation.validator import format_report_text


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Generate a 600x600 USCIS-style photo with a white background.")
    p.add_argument("--input", "-i", required=True, help="Path to input image (jpg/png)")
    p.add_argument("--output", "-o", required=True, help="Path to output PNG")
    p.add_argument("--force-alternative", action="store_true", help="Skip the model; start with the heuristic")
    p.add_argument("--no-model", action="store_true", help="Never use the ML model")
    p.add_argument("--tolerance", type=float, default=None, help="Background colour tolerance (25–60)")
    p.add_argument("--estimator", choices=ESTIMATORS, default=None, help="Background colour estimator")
    p.add_argument("--report", help="Also write the validation report to this file")
    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    return p


def build_config(args: argparse.Namespace) -> PipelineConfig:
    config = PipelineConfig.from_env()
    if args.force_alternative:
        config = replace(config, force_alternative_method=True)
    if args.no_model:
        config = replace(config, enable_model=False)

    heuristic = config.heuristic
    if args.tolerance is not None:
        heuristic = replace(heuristic, tolerance=args.tolerance)
    if args.estimator is not None:
        heuristic = replace(heuristic, estimator=args.estimator)
    return replace(config, heuristic=heuristic)


def main(argv: Optional[list[str]] = None) -> int:
    args = _build_arg_parser().parse_args(argv)
    configure_logging("DEBUG" if args.verbose else "INFO")

    try:
        config = build_config(args)
        upload = PhotoUpload.from_path(args.input)
    except (OSError, ValueError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    result = PhotoPipeline(config=config).process_image(upload)
    text = format_report_text(result.report)
    print(text)

    if args.report:
        with open(args.report, "w", encoding="utf-8") as f:
            f.write(text + "\n")

    if result.processed_png is None:
        print(f"ERROR: no image produced ({result.state.value}): {result.error}", file=sys.stderr)
        return 2

    result.save(args.output)
    print(f"Saved: {args.output} (strategy: {result.strategy})")
    return 0 if result.state is PipelineState.DONE else 2


if __name__ == "__main__":
    raise SystemExit(main())
