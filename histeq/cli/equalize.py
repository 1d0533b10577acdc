"""histeq CLI: histogram equalization of an 8-bit greyscale image.

Runs the four-stage equalization pipeline on a GPU (or the host fallback),
prints the intermediate tables with per-kernel timing and writes the result.
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

import numpy as np

from histeq.domain.errors import EqualizationError
from histeq.domain.models import STAGE_ORDER, EqualizationConfig, EqualizationResult, Stage
from histeq.infrastructure.gpu.device import list_platforms
from histeq.infrastructure.loaders.image_loader import load_greyscale, save_greyscale
from histeq.kernel.system.config import APP_CONFIG
from histeq.kernel.system.logging import get_logger, setup_logging
from histeq.services.diagnostics.charts import render_equalization_chart
from histeq.services.equalization.backends import open_backend
from histeq.services.profiling.collector import ProfilingResolution, format_full_profiling

logger = get_logger(__name__)

_TABLES = {
    Stage.BIN_COUNTER: "histogram",
    Stage.PREFIX_ACCUMULATOR: "cumulative",
    Stage.RANGE_MAPPER: "lut",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="histeq",
        description="Histogram equalization of 8-bit greyscale images",
        epilog="Example: histeq -p 0 -d 0 -f test.pgm -o equalized.png",
    )
    parser.add_argument(
        "-p",
        dest="platform_id",
        type=int,
        default=None,
        metavar="ID",
        help="select platform (default: automatic)",
    )
    parser.add_argument(
        "-d",
        dest="device_id",
        type=int,
        default=None,
        metavar="ID",
        help="select device (default: automatic)",
    )
    parser.add_argument(
        "-l",
        dest="list_devices",
        action="store_true",
        default=False,
        help="list all platforms and devices",
    )
    parser.add_argument(
        "-f",
        dest="image_filename",
        default=APP_CONFIG.default_image,
        metavar="PATH",
        help=f"input image file (default: {APP_CONFIG.default_image})",
    )
    parser.add_argument(
        "-o",
        "--output",
        default=None,
        metavar="PATH",
        help="output image file (default: <input>_equalized.png)",
    )
    parser.add_argument(
        "--no-gpu",
        action="store_true",
        default=False,
        help="Disable GPU acceleration, use CPU only",
    )
    parser.add_argument(
        "--plot",
        default=None,
        metavar="PATH",
        help="write a histogram / cumulative / LUT chart (PNG)",
    )
    parser.add_argument(
        "--quiet",
        action="store_true",
        default=False,
        help="do not print the tables and timings",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=False,
        help="debug logging",
    )
    return parser


def default_output_path(image_filename: str) -> str:
    stem = os.path.splitext(image_filename)[0]
    return f"{stem}_equalized.png"


def format_table(values: np.ndarray) -> str:
    return "[" + ", ".join(str(int(v)) for v in values) + "]"


def print_report(result: EqualizationResult) -> None:
    """Tables and timings in pipeline order."""
    for stage in STAGE_ORDER:
        print()
        table = _TABLES.get(stage)
        if table is not None:
            print(f"{stage.label} = {format_table(getattr(result, table))}")
        sample = next((s for s in result.profile if s.stage == stage), None)
        if sample is None:
            continue
        print(f"{stage.label} kernel execution time [ns]: {sample.exec_ns}")
        print(format_full_profiling(sample, ProfilingResolution.US))


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point. Returns 0 on success, 1 on failure."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(logging.DEBUG if args.verbose else APP_CONFIG.log_level)

    if args.list_devices:
        try:
            print(list_platforms())
        except EqualizationError as e:
            print(f"ERROR: {e.kind}: {e}", file=sys.stderr)

    try:
        image = load_greyscale(args.image_filename)
    except (OSError, EqualizationError) as e:
        kind = getattr(e, "kind", type(e).__name__)
        print(f"ERROR: {kind}: {e}", file=sys.stderr)
        return 1

    config = EqualizationConfig(verify_results=APP_CONFIG.verify_results)
    use_gpu = APP_CONFIG.use_gpu and not args.no_gpu
    if not use_gpu and (args.platform_id is not None or args.device_id is not None):
        logger.warning("GPU disabled, ignoring the -p/-d device selection")

    try:
        with open_backend(use_gpu, args.platform_id, args.device_id) as backend:
            print(f"Running on {backend.name}")
            result = backend.pipeline(config).run(image)
    except EqualizationError as e:
        print(f"ERROR: {e.kind}: {e}", file=sys.stderr)
        return 1

    if not args.quiet:
        print_report(result)

    output_path = args.output or default_output_path(args.image_filename)
    try:
        save_greyscale(result.output, output_path)
        if args.plot:
            render_equalization_chart(result, args.plot)
    except (OSError, ValueError) as e:
        print(f"ERROR: {type(e).__name__}: {e}", file=sys.stderr)
        return 1

    print(f"Output written to {output_path}")
    return 0


def cli_entry() -> None:
    """Console script entry point."""
    sys.exit(main())


if __name__ == "__main__":
    sys.exit(main())
