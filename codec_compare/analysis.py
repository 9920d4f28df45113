"""Tabular view of aggregated comparison results.

Flattens the aggregated task outputs into a pandas DataFrame and computes
per-configuration averages, for quick inspection after a run.
"""

import numpy as np
import pandas as pd

from codec_compare.base import (
    DISTORTION_METRIC_NAMES,
    DistortionMetric,
    codec_name,
    subsampling_to_string,
)
from codec_compare.task import TaskOutput

GROUP_COLUMNS = ["codec", "subsampling", "effort", "quality"]


def results_to_dataframe(results: list[list[TaskOutput]]) -> pd.DataFrame:
    """Create a DataFrame with one row per aggregated task output.

    Args:
        results: Output of :func:`~codec_compare.framework.compare`

    Returns:
        DataFrame with settings, measurements, derived bits per pixel and one
        column per distortion metric
    """
    rows = []
    for group in results:
        for task in group:
            settings = task.task_input.codec_settings
            row = {
                "codec": codec_name(settings.codec),
                "subsampling": subsampling_to_string(settings.chroma_subsampling),
                "effort": settings.effort,
                "quality": settings.quality,
                "image": task.task_input.image_path,
                "width": task.image_width,
                "height": task.image_height,
                "num_frames": task.num_frames,
                "bit_depth": task.bit_depth,
                "encoded_size": task.encoded_size,
                "encoding_time": task.encoding_duration,
                "decoding_time": task.decoding_duration,
                "dec_time_no_col_conv": (
                    task.decoding_duration - task.decoding_color_conversion_duration
                ),
            }
            for metric in DistortionMetric:
                row[DISTORTION_METRIC_NAMES[metric]] = task.distortions[metric]
            rows.append(row)

    columns = [
        *GROUP_COLUMNS,
        "image",
        "width",
        "height",
        "num_frames",
        "bit_depth",
        "encoded_size",
        "encoding_time",
        "decoding_time",
        "dec_time_no_col_conv",
        *DISTORTION_METRIC_NAMES.values(),
    ]
    df = pd.DataFrame(rows, columns=columns)
    if df.empty:
        df["bits_per_pixel"] = pd.Series(dtype=float)
        return df

    pixels = df["width"] * df["height"] * df["num_frames"]
    df["bits_per_pixel"] = np.where(pixels > 0, df["encoded_size"] * 8 / pixels, np.nan)
    # Unavailable external metrics are stored as -1.
    for name in DISTORTION_METRIC_NAMES.values():
        df[name] = df[name].where(df[name] >= 0)
    return df


def summarize(df: pd.DataFrame) -> pd.DataFrame:
    """Average every measurement per (codec, subsampling, effort, quality).

    Returns:
        DataFrame indexed by the configuration, with an ``images`` count column
    """
    value_columns = [
        "bits_per_pixel",
        "encoding_time",
        "decoding_time",
        *DISTORTION_METRIC_NAMES.values(),
    ]
    grouped = df.groupby(GROUP_COLUMNS)
    summary = grouped[value_columns].mean()
    summary.insert(0, "images", grouped["image"].count())
    return summary
