"""JSON result files, one per (codec, chroma subsampling, effort) group.

Each file lists constants shared by the whole batch, a description of every
per-image field and one row of values per aggregated task. Paths are stored
relative to the common parent folder of the batch, which is kept in the
constants as a ``${original_name}`` / ``${encoded_name}`` template.
"""

import json
import os
from datetime import datetime
from pathlib import Path
from typing import Any

from codec_compare.base import (
    Codec,
    DistortionMetric,
    codec_has_effort,
    codec_name,
    codec_pretty_name,
    is_supported_by_browsers,
    subsampling_to_string,
)
from codec_compare.encoder import codec_version
from codec_compare.errors import InternalConsistencyError
from codec_compare.task import CodecSettings, TaskOutput

_TIMING_WARNING = "Warning: Timings are environment-dependent and inaccurate."
_METRIC_WARNING = (
    "Warning: There is no scientific consensus on which objective distortion metric to use."
)

METRIC_DESCRIPTIONS: dict[DistortionMetric, str] = {
    DistortionMetric.PSNR: (
        "Distortion metric Peak Signal-to-Noise Ratio. "
        "See https://en.wikipedia.org/wiki/Peak_signal-to-noise_ratio."
    ),
    DistortionMetric.SSIM: (
        "Distortion metric Structural Similarity Index Measure, in dB. "
        "See https://en.wikipedia.org/wiki/Structural_similarity."
    ),
    DistortionMetric.DSSIM: (
        "Distortion metric Structural Dissimilarity (kornelski implementation). "
        "See https://en.wikipedia.org/wiki/Structural_similarity_index_measure"
        "#Structural_Dissimilarity."
    ),
    DistortionMetric.BUTTERAUGLI: (
        "Distortion metric Butteraugli (libjxl implementation). "
        "See https://en.wikipedia.org/wiki/Guetzli#Butteraugli."
    ),
    DistortionMetric.SSIMULACRA: (
        "Distortion metric SSIMULACRA (libjxl implementation). "
        "See https://en.wikipedia.org/wiki/Structural_similarity#SSIMULACRA."
    ),
    DistortionMetric.SSIMULACRA2: (
        "Distortion metric SSIMULACRA2 (libjxl implementation). "
        "See https://en.wikipedia.org/wiki/Structural_similarity#SSIMULACRA."
    ),
    DistortionMetric.P3NORM: (
        "Distortion metric P3-norm (libjxl implementation). "
        "See https://en.wikipedia.org/wiki/Norm_(mathematics)#p-norm."
    ),
}


def results_file_name(settings: CodecSettings) -> str:
    """Return ``<codec>_<subsampling>_<effort>.json``.

    JPEG XL efforts below 10 are zero-padded so that files sort by effort.
    """
    effort = str(settings.effort)
    if settings.codec == Codec.JPEGXL and settings.effort < 10:
        effort = "0" + effort
    return (
        f"{codec_name(settings.codec)}_"
        f"{subsampling_to_string(settings.chroma_subsampling)}_{effort}.json"
    )


def _common_parent(paths: list[str]) -> str:
    """Deepest folder containing every path, or an empty string."""
    parents = [os.path.dirname(path) for path in paths]
    if not parents or any(not parent for parent in parents):
        return ""
    try:
        return os.path.commonpath(parents)
    except ValueError:
        # Mix of absolute and relative paths.
        return ""


def _relative_to(path: str, parent: str) -> str:
    return os.path.relpath(path, parent) if parent else path


def _parent_template(parent: str, variable: str) -> str:
    """Keep only the last folder of the common parent as root."""
    name = os.path.basename(parent)
    return f"{name}/{variable}" if name else variable


def _encoding_command(settings: CodecSettings) -> str:
    cmd = (
        f"python scripts/run_comparison.py --codec {codec_name(settings.codec)} "
        f"{subsampling_to_string(settings.chroma_subsampling)}"
    )
    if codec_has_effort(settings.codec):
        cmd += f" {settings.effort}"
    if settings.lossless:
        cmd += " --lossless"
    else:
        cmd += " --lossy --quality ${quality} --metric_binary_folder third_party/"
    return cmd + " -- ${original_name}"


def tasks_to_json(
    tasks: list[TaskOutput],
    version: str | None = None,
    timestamp: str | None = None,
) -> dict[str, Any]:
    """Build the JSON document of one aggregated group.

    Args:
        tasks: Aggregated outputs sharing codec, chroma subsampling and effort
        version: Codec version, queried from the encoder tool by default
        timestamp: Generation time, now by default

    Raises:
        InternalConsistencyError: If tasks do not share the same configuration
    """
    if not tasks:
        msg = "Cannot describe an empty batch"
        raise InternalConsistencyError(msg)
    settings = tasks[0].task_input.codec_settings
    for task in tasks:
        if task.task_input.codec_settings.without_quality() != settings.without_quality():
            msg = f"Codec settings do not match: {task.serialize()}"
            raise InternalConsistencyError(msg)

    lossless = all(task.task_input.codec_settings.lossless for task in tasks)
    has_encoded_path = all(task.task_input.encoded_path for task in tasks)
    has_decoded_path = has_encoded_path and not is_supported_by_browsers(settings.codec)

    image_parent = _common_parent([task.task_input.image_path for task in tasks])
    encoded_parent = (
        _common_parent([task.task_input.encoded_path for task in tasks])
        if has_encoded_path
        else ""
    )
    if version is None:
        version = codec_version(settings.codec) or "unknown"
    if timestamp is None:
        timestamp = datetime.now().strftime("%Y-%m-%dT%H:%M:%S")

    constant_descriptions = [
        {"name": "Name of this batch"},
        {"codec": "Name of the codec used to generate this data"},
        {"version": "Version of the codec used to generate this data"},
        {"time": "Timestamp of when this data was generated"},
        {"original_path": "Path to the original image"},
        {"encoding_cmd": "The command used to encode the original image"},
    ]
    constant_values = [
        codec_pretty_name(
            settings.codec, settings.lossless, settings.chroma_subsampling, settings.effort
        ),
        codec_name(settings.codec),
        f"{version}_{subsampling_to_string(settings.chroma_subsampling)}",
        timestamp,
        _parent_template(image_parent, "${original_name}"),
        _encoding_command(settings),
    ]
    if has_encoded_path:
        constant_descriptions.append({"encoded_path": "Path to the encoded image"})
        constant_values.append(_parent_template(encoded_parent, "${encoded_name}"))
    if has_decoded_path:
        constant_descriptions.append({"decoded_path": "Path to the decoded image"})
        constant_values.append(_parent_template(encoded_parent, "${encoded_name}.png"))

    field_descriptions = [
        {"original_name": "Original image file name"},
        {"width": "Pixel columns in the image that was encoded"},
        {"height": "Pixel rows in the image that was encoded"},
        {"depth": "Bit depth of the image that was encoded"},
        {"frame_count": "Number of frames in the image that was encoded"},
    ]
    if not lossless:
        field_descriptions.append(
            {"chroma_subsampling": "Compression chroma subsampling parameter"}
        )
    field_descriptions.append({"effort": "Compression effort parameter"})
    if not lossless:
        field_descriptions.append({"quality": "Compression quality parameter"})
    if has_encoded_path:
        field_descriptions.append({"encoded_name": "Name of the encoded image"})
    field_descriptions.extend(
        [
            {"encoded_size": "Size of the encoded image file in bytes"},
            {"encoding_time": f"Encoding duration in seconds. {_TIMING_WARNING}"},
            {"decoding_time": f"Decoding duration in seconds. {_TIMING_WARNING}"},
            {
                "dec_time_no_col_conv": (
                    "Decoding duration in seconds without color conversion. "
                    "Warning: Only different from regular decoding for codecs "
                    "without built-in conversion."
                )
            },
        ]
    )
    if not lossless:
        for metric in DistortionMetric:
            field_descriptions.append(
                {metric.name.lower(): f"{METRIC_DESCRIPTIONS[metric]} {_METRIC_WARNING}"}
            )

    field_values = []
    for task in tasks:
        task_settings = task.task_input.codec_settings
        row: list[Any] = [
            _relative_to(task.task_input.image_path, image_parent),
            task.image_width,
            task.image_height,
            task.bit_depth,
            task.num_frames,
        ]
        if not lossless:
            row.append(subsampling_to_string(task_settings.chroma_subsampling))
        row.append(task_settings.effort)
        if not lossless:
            row.append(task_settings.quality)
        if has_encoded_path:
            row.append(_relative_to(task.task_input.encoded_path, encoded_parent))
        row.extend(
            [
                task.encoded_size,
                task.encoding_duration,
                task.decoding_duration,
                task.decoding_duration - task.decoding_color_conversion_duration,
            ]
        )
        if not lossless:
            row.extend(task.distortions)
        field_values.append(row)

    return {
        "constant_descriptions": constant_descriptions,
        "constant_values": constant_values,
        "field_descriptions": field_descriptions,
        "field_values": field_values,
    }


def write_results(
    results: list[list[TaskOutput]], results_folder_path: str | Path
) -> list[Path]:
    """Write one JSON file per aggregated group.

    Returns:
        Paths of the written files
    """
    folder = Path(results_folder_path)
    folder.mkdir(parents=True, exist_ok=True)
    written = []
    for tasks in results:
        if not tasks:
            continue
        path = folder / results_file_name(tasks[0].task_input.codec_settings)
        with open(path, "w") as f:
            json.dump(tasks_to_json(tasks), f, indent=2)
        written.append(path)
    return written
