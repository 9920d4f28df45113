"""Grouping and averaging of task outputs."""

from dataclasses import replace

from codec_compare.base import NO_DISTORTION
from codec_compare.errors import InternalConsistencyError
from codec_compare.task import TaskOutput

DISTORTION_TOLERANCE = 0.001


def same_distortion(a: float, b: float) -> bool:
    """Whether two distortion scores stand for the same amount of loss."""
    if a >= NO_DISTORTION:
        return b >= NO_DISTORTION
    if b >= NO_DISTORTION:
        return False
    return abs(a - b) < DISTORTION_TOLERANCE


def are_repetitions(a: TaskOutput, b: TaskOutput) -> bool:
    """Whether two outputs only differ by their timings."""
    return (
        a.task_input == b.task_input
        and a.image_width == b.image_width
        and a.image_height == b.image_height
        and a.num_frames == b.num_frames
        and a.encoded_size == b.encoded_size
        and len(a.distortions) == len(b.distortions)
        and all(same_distortion(x, y) for x, y in zip(a.distortions, b.distortions))
    )


def aggregate_by_image_and_quality(results: list[TaskOutput]) -> list[TaskOutput]:
    """Merge repetitions of the same image and quality into averaged outputs.

    All results are expected to share codec, chroma subsampling and effort.

    Returns:
        One output per (image path, quality), sorted by image path then quality

    Raises:
        InternalConsistencyError: If repetitions differ in anything but timings
    """
    merged: dict[tuple[str, int], tuple[TaskOutput, list[TaskOutput]]] = {}
    for result in results:
        key = (result.task_input.image_path, result.task_input.codec_settings.quality)
        if key not in merged:
            merged[key] = (result, [result])
            continue
        first, repetitions = merged[key]
        if not are_repetitions(first, result):
            msg = f"{first.serialize()} != {result.serialize()}"
            raise InternalConsistencyError(msg)
        repetitions.append(result)

    aggregated = []
    for key in sorted(merged):
        first, repetitions = merged[key]
        count = len(repetitions)
        aggregated.append(
            replace(
                first,
                encoding_duration=sum(r.encoding_duration for r in repetitions) / count,
                decoding_duration=sum(r.decoding_duration for r in repetitions) / count,
                decoding_color_conversion_duration=sum(
                    r.decoding_color_conversion_duration for r in repetitions
                )
                / count,
            )
        )
    return aggregated


def split_by_codec_settings_and_aggregate(
    results: list[TaskOutput],
) -> list[list[TaskOutput]]:
    """Group outputs by (codec, chroma subsampling, effort) and aggregate each group.

    Several qualities share a group because they are reported together.

    Args:
        results: Outputs of all completed tasks, previous runs included

    Returns:
        One list per group, groups ordered by codec, subsampling then effort

    Raises:
        InternalConsistencyError: If repetitions of a task are inconsistent
    """
    groups: dict[tuple, list[TaskOutput]] = {}
    for result in results:
        key = result.task_input.codec_settings.without_quality()
        groups.setdefault(key, []).append(result)
    return [aggregate_by_image_and_quality(groups[key]) for key in sorted(groups)]
