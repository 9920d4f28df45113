#!/usr/bin/env python3
"""Script to compare image codecs on a set of images.

Encodes, decodes and measures every image with every requested codec
configuration, recording each finished task in a progress file so that an
interrupted comparison resumes where it stopped when run again with the
same arguments. Aggregated results are written as one JSON file per codec
configuration.

Usage:
    python3 scripts/run_comparison.py --codec webp 420 4 --codec jpegxl 444 7 \\
        --lossy --quality 50:90 --metric_binary_folder third_party \\
        --progress_file progress.csv --results_folder results -- images/
    python3 scripts/run_comparison.py --codec avif 444 6 --lossless \\
        --threads 7 --progress_file progress.csv -- images/
    python3 scripts/run_comparison.py --config comparison.json -- images/
"""

import argparse
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

# Add project root to path for local imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from codec_compare.analysis import results_to_dataframe, summarize  # noqa: E402
from codec_compare.base import (  # noqa: E402
    codec_from_name,
    codec_has_effort,
    subsampling_from_string,
)
from codec_compare.errors import CompareError  # noqa: E402
from codec_compare.framework import (  # noqa: E402
    ComparisonSettings,
    compare,
    expand_codec_settings,
    parse_qualities,
)
from codec_compare.task import CodecSettings  # noqa: E402


def get_all_files_in(path: Path) -> list[str]:
    """Return ``path`` itself, or every file below it if it is a directory."""
    if path.is_dir():
        return [str(p) for p in sorted(path.rglob("*")) if p.is_file()]
    return [str(path)]


def parse_codec_args(
    codec_args: list[list[str]],
    lossless: bool,
    allowed_qualities: set[int] | None,
) -> list[CodecSettings]:
    """Turn ``--codec NAME SUBSAMPLING [EFFORT]`` occurrences into codec settings.

    Raises:
        ValueError: If a codec, subsampling or effort is invalid or missing
    """
    codec_settings = []
    for values in codec_args:
        if len(values) not in (2, 3):
            msg = f"--codec expects NAME SUBSAMPLING [EFFORT], got {' '.join(values)}"
            raise ValueError(msg)
        codec = codec_from_name(values[0])
        chroma_subsampling = subsampling_from_string(values[1])
        if len(values) == 3:
            effort = int(values[2])
        elif codec_has_effort(codec):
            msg = f'Missing {{effort}} for codec "{values[0]}"'
            raise ValueError(msg)
        else:
            effort = 0
        codec_settings.extend(
            expand_codec_settings(codec, chroma_subsampling, effort, lossless, allowed_qualities)
        )
    return codec_settings


def settings_overrides(args: argparse.Namespace) -> dict[str, Any]:
    """Return the run settings explicitly given on the command line."""
    overrides: dict[str, Any] = {}
    if args.repeat is not None:
        overrides["num_repetitions"] = args.repeat
    if args.threads is not None:
        overrides["num_extra_threads"] = args.threads
    if args.deterministic:
        overrides["random_order"] = False
    if args.recompute_distortion:
        overrides["discard_distortion_values"] = True
    if args.quiet:
        overrides["quiet"] = True
    if args.metric_binary_folder is not None:
        overrides["metric_binary_folder_path"] = args.metric_binary_folder
    if args.encoded_folder is not None:
        overrides["encoded_folder_path"] = args.encoded_folder
    return overrides


def main() -> int:
    """Main entry point for the codec comparison script.

    Returns:
        Exit code (0 for success, 1 for failure)
    """
    parser = argparse.ArgumentParser(
        description="Compare image codecs by encoding, decoding and measuring images.",
    )
    parser.add_argument(
        "images",
        nargs="*",
        type=Path,
        help="Image files or directories (searched recursively)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help=(
            "JSON comparison config, instead of --codec/--lossy/--lossless/--quality; "
            "other options given on the command line override its values"
        ),
    )
    parser.add_argument(
        "--codec",
        nargs="+",
        action="append",
        default=[],
        metavar="ARG",
        help="NAME SUBSAMPLING [EFFORT], e.g. 'webp 420 4' or 'jpegturbo 444' (repeatable)",
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--lossy", action="store_true", help="Evaluate lossy qualities")
    mode.add_argument("--lossless", action="store_true", help="Evaluate lossless encoding")
    parser.add_argument(
        "--quality",
        "--qualities",
        dest="quality",
        help="Single lossy quality or MIN:MAX range (implies --lossy)",
    )
    parser.add_argument(
        "--repeat",
        type=int,
        help="Extra encodings of each image, for timing accuracy (default: 0)",
    )
    parser.add_argument(
        "--recompute_distortion",
        action="store_true",
        help="Discard distortion values of the progress file and recompute them",
    )
    parser.add_argument(
        "--threads",
        type=int,
        help="Extra worker threads on top of the main thread (default: 0)",
    )
    parser.add_argument(
        "--deterministic",
        action="store_true",
        help="Run tasks in the given order instead of a random one",
    )
    parser.add_argument("--quiet", action="store_true", help="Only print errors and results")
    parser.add_argument(
        "--metric_binary_folder",
        help="Folder containing libjxl/ and dssim/ metric binaries (required for lossy)",
    )
    parser.add_argument(
        "--encoded_folder",
        help="Folder where encoded images are kept (default: not kept)",
    )
    parser.add_argument(
        "--progress_file",
        default="",
        help="File recording finished tasks, used to resume interrupted runs",
    )
    parser.add_argument(
        "--results_folder",
        default="",
        help="Folder receiving one JSON result file per codec configuration",
    )
    parser.add_argument(
        "--summary",
        action="store_true",
        help="Print average measurements per codec configuration",
    )

    args = parser.parse_args()

    image_paths: list[str] = []
    for path in args.images:
        image_paths.extend(get_all_files_in(path))

    try:
        if args.config is not None:
            if args.codec or args.lossy or args.lossless or args.quality is not None:
                print("Error: --config replaces --codec/--lossy/--lossless/--quality")
                return 1
            settings = ComparisonSettings.from_file(args.config)
            settings = replace(settings, **settings_overrides(args))
        else:
            lossy = args.lossy or args.quality is not None
            if lossy == args.lossless:
                print("Error: There must be --lossy/--quality or --lossless but not both")
                return 1
            if lossy and not args.metric_binary_folder:
                print("Error: Missing --metric_binary_folder for lossy evaluations")
                return 1
            allowed_qualities = parse_qualities(args.quality) if lossy else None
            settings = ComparisonSettings(
                codec_settings=tuple(
                    parse_codec_args(args.codec, args.lossless, allowed_qualities)
                ),
                quiet=False,
            )
            settings = replace(settings, **settings_overrides(args))
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}")
        return 1

    try:
        results = compare(image_paths, settings, args.progress_file, args.results_folder)
    except CompareError as e:
        print(f"Error: {e}")
        return 1

    if args.summary:
        print()
        print(summarize(results_to_dataframe(results)).to_string())
    return 0


if __name__ == "__main__":
    sys.exit(main())
