"""Task model, planning and completed-task line format.

A task is one (codec settings, image) pair to encode, decode and measure.
``TaskInput`` describes it, ``TaskOutput`` records what was measured.
Both are immutable; the dataclass equality and ordering of ``TaskInput`` is
the task identity used for reconciliation, aggregation and deduplication.
"""

from dataclasses import dataclass, field
from pathlib import Path

from codec_compare.base import (
    MAX_EFFORT,
    NO_DISTORTION,
    NUM_DISTORTION_METRICS,
    QUALITY_LOSSLESS,
    Codec,
    DistortionMetric,
    Subsampling,
    codec_extension,
    codec_from_name,
    codec_name,
    subsampling_from_string,
    subsampling_to_string,
)
from codec_compare.errors import CompletedTaskLogError, InvalidConfigurationError
from codec_compare.serialization import escape, split, unescape

# Number of serialized fields before the distortion values.
NUM_NON_DISTORTION_FIELDS = 13


@dataclass(frozen=True, order=True)
class CodecSettings:
    """One codec configuration to evaluate.

    Ordered lexicographically over (codec, chroma_subsampling, effort, quality).
    """

    codec: Codec
    chroma_subsampling: Subsampling = Subsampling.DEFAULT
    effort: int = 0
    quality: int = QUALITY_LOSSLESS

    @property
    def lossless(self) -> bool:
        return self.quality == QUALITY_LOSSLESS

    def without_quality(self) -> tuple[Codec, Subsampling, int]:
        """Key shared by all qualities of the same configuration."""
        return (self.codec, self.chroma_subsampling, self.effort)


@dataclass(frozen=True, order=True)
class TaskInput:
    """Identity of a task.

    The encoded path takes part in equality and ordering: a task planned
    with another encoded folder is a different task.
    """

    codec_settings: CodecSettings
    image_path: str
    encoded_path: str = ""


@dataclass(frozen=True)
class TaskOutput:
    """Measurements of one successfully executed task.

    Durations are in seconds. ``distortions`` holds one value per
    :class:`~codec_compare.base.DistortionMetric`. ``bit_depth`` is not
    stored in the completed-task log.
    """

    task_input: TaskInput
    image_width: int
    image_height: int
    num_frames: int
    encoded_size: int
    encoding_duration: float
    decoding_duration: float
    decoding_color_conversion_duration: float = 0.0
    distortions: tuple[float, ...] = field(
        default=(NO_DISTORTION,) * NUM_DISTORTION_METRICS
    )
    # Not part of the log line: entries reloaded from the log report 8 bits,
    # so the depth of 16-bit sources is only exact for tasks run this session.
    bit_depth: int = 8

    def distortion(self, metric: DistortionMetric) -> float:
        return self.distortions[metric]

    def serialize(self) -> str:
        """Return the completed-task log line describing this output."""
        settings = self.task_input.codec_settings
        fields = [
            escape(codec_name(settings.codec)),
            subsampling_to_string(settings.chroma_subsampling),
            str(settings.effort),
            str(settings.quality),
            escape(self.task_input.image_path),
            str(self.image_width),
            str(self.image_height),
            str(self.num_frames),
            escape(self.task_input.encoded_path),
            str(self.encoded_size),
            repr(self.encoding_duration),
            repr(self.decoding_duration),
            repr(self.decoding_color_conversion_duration),
        ]
        if not settings.lossless:
            fields.extend(repr(float(value)) for value in self.distortions)
        return ", ".join(fields)

    @classmethod
    def unserialize(cls, line: str) -> "TaskOutput":
        """Parse a completed-task log line, distortion values included.

        Raises:
            CompletedTaskLogError: If the line is malformed or out of range
        """
        return _parse_line(line, discard_distortion_values=False)

    @classmethod
    def unserialize_no_distortion(cls, line: str) -> "TaskOutput":
        """Parse a log line ignoring any distortion values.

        Distortions of the returned output are all zero, to be recomputed.

        Raises:
            CompletedTaskLogError: If the line is malformed or out of range
        """
        return _parse_line(line, discard_distortion_values=True)


def _parse_line(line: str, discard_distortion_values: bool) -> TaskOutput:
    tokens = split(line)
    num_expected = NUM_NON_DISTORTION_FIELDS + NUM_DISTORTION_METRICS
    if discard_distortion_values:
        if len(tokens) < NUM_NON_DISTORTION_FIELDS:
            msg = f"Expected at least {NUM_NON_DISTORTION_FIELDS} fields in: {line}"
            raise CompletedTaskLogError(msg)
    elif len(tokens) != NUM_NON_DISTORTION_FIELDS and len(tokens) != num_expected:
        msg = (
            f"Expected {num_expected} fields but got {len(tokens)} in: {line}\n"
            "Distortion values may be missing, try the flag --recompute_distortion"
        )
        raise CompletedTaskLogError(msg)

    try:
        codec = codec_from_name(unescape(tokens[0]))
        chroma_subsampling = subsampling_from_string(tokens[1])
        effort = int(tokens[2])
        quality = int(tokens[3])
        image_path = unescape(tokens[4])
        width, height, num_frames = int(tokens[5]), int(tokens[6]), int(tokens[7])
        encoded_path = unescape(tokens[8])
        encoded_size = int(tokens[9])
        encoding_duration = float(tokens[10])
        decoding_duration = float(tokens[11])
        color_conversion_duration = float(tokens[12])
        if discard_distortion_values:
            distortions = (0.0,) * NUM_DISTORTION_METRICS
        elif len(tokens) == NUM_NON_DISTORTION_FIELDS:
            distortions = (NO_DISTORTION,) * NUM_DISTORTION_METRICS
        else:
            distortions = tuple(float(token) for token in tokens[13:])
    except ValueError as e:
        msg = f"Cannot parse {line}: {e}"
        raise CompletedTaskLogError(msg) from e

    problems = []
    if effort < 0 or effort > MAX_EFFORT:
        problems.append(f"unknown effort {effort}")
    if quality != QUALITY_LOSSLESS and not 0 <= quality <= 100:
        problems.append(f"unknown quality {quality}")
    if width <= 0 or height <= 0 or num_frames <= 0:
        problems.append("empty image")
    if encoded_size <= 0:
        problems.append("empty encoded file")
    if encoding_duration <= 0 or decoding_duration <= 0:
        problems.append("null duration")
    if color_conversion_duration < 0:
        problems.append("negative color conversion duration")
    for metric in DistortionMetric:
        if metric in (DistortionMetric.BUTTERAUGLI, DistortionMetric.SSIMULACRA2):
            continue
        if distortions[metric] > NO_DISTORTION:
            problems.append(f"{metric.name.lower()} out of range")
    if problems:
        msg = f"Invalid line ({', '.join(problems)}): {line}"
        raise CompletedTaskLogError(msg)

    settings = CodecSettings(codec, chroma_subsampling, effort, quality)
    return TaskOutput(
        task_input=TaskInput(settings, image_path, encoded_path),
        image_width=width,
        image_height=height,
        num_frames=num_frames,
        encoded_size=encoded_size,
        encoding_duration=encoding_duration,
        decoding_duration=decoding_duration,
        decoding_color_conversion_duration=color_conversion_duration,
        distortions=distortions,
    )


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------


def get_encoded_file_path(
    codec_settings: CodecSettings, image_path: str, encoded_folder_path: str
) -> str:
    """Return where the bitstream of a task is stored.

    The file name is derived from the image name and the codec settings only,
    so the same logical task always maps to the same path, e.g.
    ``folder/kodim01.420e6q075.avif``. Returns an empty string when no folder
    is configured.
    """
    if not encoded_folder_path:
        return ""
    settings = codec_settings
    if settings.lossless and settings.chroma_subsampling == Subsampling.YUV444:
        subsampling = ""
    else:
        subsampling = subsampling_to_string(settings.chroma_subsampling)
    quality = "lossless" if settings.lossless else f"q{settings.quality:03d}"
    suffix = f".{subsampling}e{settings.effort}{quality}.{codec_extension(settings.codec)}"
    return str(Path(encoded_folder_path) / (Path(image_path).stem + suffix))


def plan_tasks(
    image_paths: list[str],
    codec_settings: list[CodecSettings],
    num_repetitions: int = 0,
    encoded_folder_path: str = "",
) -> list[TaskInput]:
    """Enumerate every task of a run.

    Codec settings vary slowest, then images, then repetitions.

    Args:
        image_paths: Source images
        codec_settings: Configurations to evaluate
        num_repetitions: Extra runs of each (settings, image) pair
        encoded_folder_path: Where bitstreams are saved, or empty

    Returns:
        ``len(codec_settings) * len(image_paths) * (num_repetitions + 1)`` tasks

    Raises:
        InvalidConfigurationError: If there is no image or no codec settings
    """
    if not image_paths:
        msg = "No specified input image file path"
        raise InvalidConfigurationError(msg)
    if not codec_settings:
        msg = "No specified codec"
        raise InvalidConfigurationError(msg)
    if num_repetitions < 0:
        msg = f"Invalid number of repetitions: {num_repetitions}"
        raise InvalidConfigurationError(msg)

    tasks = []
    for settings in codec_settings:
        for image_path in image_paths:
            encoded_path = get_encoded_file_path(settings, image_path, encoded_folder_path)
            task = TaskInput(settings, image_path, encoded_path)
            tasks.extend([task] * (num_repetitions + 1))
    return tasks
