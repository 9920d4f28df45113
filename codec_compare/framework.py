"""Comparison run orchestration.

Plans every (codec settings, image) task, skips the ones already recorded in
the completed-task log, runs the others on a pool of worker threads while
appending each success to the log, then aggregates old and new results per
codec configuration and optionally writes them as JSON files.

Resuming an interrupted run is a matter of calling :func:`compare` again with
the same arguments.
"""

import json
import random
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any

from codec_compare.aggregate import split_by_codec_settings_and_aggregate
from codec_compare.base import (
    MAX_EFFORT,
    MAX_NUM_FAILURES,
    QUALITY_LOSSLESS,
    Codec,
    DistortionMetric,
    EncodeMode,
    Subsampling,
    codec_from_name,
    codec_has_effort,
    codec_name,
    lossy_qualities,
    subsampling_from_string,
    subsampling_to_string,
)
from codec_compare.codec_task import encode_decode
from codec_compare.errors import (
    InvalidConfigurationError,
    RunSummaryError,
    TaskFailure,
)
from codec_compare.progress_log import (
    CompletedTaskLog,
    backup_completed_tasks,
    load_completed_tasks,
    rewrite_completed_tasks,
)
from codec_compare.reconcile import remove_completed_tasks
from codec_compare.result_json import write_results
from codec_compare.task import CodecSettings, TaskInput, TaskOutput, plan_tasks
from codec_compare.worker import Worker, WorkerPool

RunTask = Callable[[TaskInput, int, EncodeMode], TaskOutput]
"""Executes one task on a worker thread, or raises :class:`TaskFailure`."""

PROGRESS_INTERVAL_SECONDS = 30.0

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _format_duration(seconds: float) -> str:
    """Format seconds as ``1h 02m 03s`` / ``5m 03s`` / ``12.345s``."""
    if seconds < 0:
        return "—"
    h = int(seconds // 3600)
    m = int((seconds % 3600) // 60)
    s = int(seconds % 60)
    if h > 0:
        return f"{h}h {m:02d}m {s:02d}s"
    if m > 0:
        return f"{m}m {s:02d}s"
    return f"{seconds:.3f}s"


def describe_task(task_input: TaskInput) -> str:
    """One-line description of a task for diagnostics."""
    settings = task_input.codec_settings
    quality = "lossless" if settings.lossless else f"quality {settings.quality}"
    return (
        f"{task_input.image_path} with {codec_name(settings.codec)} "
        f"({subsampling_to_string(settings.chroma_subsampling)}, "
        f"effort {settings.effort}, {quality})"
    )


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


def parse_qualities(quality: Any) -> set[int] | None:
    """Parse a quality specification into a set of allowed values.

    Supports:
    - ``"lossy"`` or ``None``: every lossy quality of the codec → ``None``
    - Single integer: ``75`` → ``{75}``
    - Explicit list: ``[60, 75, 90]``
    - Range object: ``{"start": 30, "stop": 90, "step": 10}`` (stop included)
    - Range string: ``"30:90"`` (both bounds included)

    Raises:
        InvalidConfigurationError: If the specification cannot be parsed
    """
    if quality is None or quality == "lossy":
        return None
    if isinstance(quality, bool):
        msg = f"Invalid quality specification: {quality}"
        raise InvalidConfigurationError(msg)
    if isinstance(quality, int):
        return {quality}
    if isinstance(quality, list):
        try:
            return {int(q) for q in quality}
        except (TypeError, ValueError) as e:
            msg = f"Invalid quality specification: {quality}"
            raise InvalidConfigurationError(msg) from e
    if isinstance(quality, dict):
        try:
            return set(range(quality["start"], quality["stop"] + 1, quality.get("step", 1)))
        except (KeyError, TypeError, ValueError) as e:
            msg = f"Invalid quality specification: {quality}"
            raise InvalidConfigurationError(msg) from e
    if isinstance(quality, str):
        try:
            if ":" in quality:
                low, high = quality.split(":", 1)
                return set(range(int(low), int(high) + 1))
            return {int(quality)}
        except ValueError as e:
            msg = f"Invalid quality specification: {quality}"
            raise InvalidConfigurationError(msg) from e
    msg = f"Invalid quality specification: {quality}"
    raise InvalidConfigurationError(msg)


def expand_codec_settings(
    codec: Codec,
    chroma_subsampling: Subsampling,
    effort: int,
    lossless: bool,
    allowed_qualities: set[int] | None = None,
) -> list[CodecSettings]:
    """List the codec settings of one (codec, subsampling, effort) configuration.

    Lossless configurations yield a single setting. Lossy ones yield one
    setting per quality supported by the codec, restricted to
    ``allowed_qualities`` when given.

    Raises:
        InvalidConfigurationError: If the effort is out of range or the codec
            cannot encode lossily
    """
    if not 0 <= effort <= MAX_EFFORT:
        msg = f"Invalid effort {effort} for {codec_name(codec)}"
        raise InvalidConfigurationError(msg)
    if not codec_has_effort(codec):
        effort = 0
    if lossless:
        return [CodecSettings(codec, chroma_subsampling, effort, QUALITY_LOSSLESS)]

    qualities = lossy_qualities(codec)
    if not qualities:
        msg = f"{codec_name(codec)} does not support lossy encoding"
        raise InvalidConfigurationError(msg)
    return [
        CodecSettings(codec, chroma_subsampling, effort, quality)
        for quality in qualities
        if allowed_qualities is None or quality in allowed_qualities
    ]


def _parse_codec_entry(data: dict[str, Any], lossless: bool) -> list[CodecSettings]:
    try:
        codec = codec_from_name(data["codec"])
        chroma_subsampling = subsampling_from_string(str(data.get("subsampling", "default")))
    except KeyError as e:
        msg = f"Codec entry must have a 'codec' field: {data}"
        raise InvalidConfigurationError(msg) from e
    except ValueError as e:
        raise InvalidConfigurationError(str(e)) from e

    quality = data.get("quality")
    entry_lossless = quality == "lossless" or (quality is None and lossless)
    return expand_codec_settings(
        codec,
        chroma_subsampling,
        int(data.get("effort", 0)),
        entry_lossless,
        None if entry_lossless else parse_qualities(quality),
    )


@dataclass(frozen=True)
class ComparisonSettings:
    """Settings of a comparison run, fixed for its whole duration."""

    codec_settings: tuple[CodecSettings, ...] = ()
    num_repetitions: int = 0
    num_extra_threads: int = 0
    random_order: bool = True
    discard_distortion_values: bool = False
    quiet: bool = True
    metric_binary_folder_path: str = ""
    encoded_folder_path: str = ""

    @classmethod
    def from_file(cls, config_path: Path) -> "ComparisonSettings":
        """Load comparison settings from a JSON file.

        Raises:
            FileNotFoundError: If config file does not exist
            InvalidConfigurationError: If config file has invalid content
        """
        if not config_path.exists():
            msg = f"Comparison config not found: {config_path}"
            raise FileNotFoundError(msg)

        with open(config_path) as f:
            data = json.load(f)

        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ComparisonSettings":
        """Create ComparisonSettings from a dictionary.

        Example::

            {
              "codecs": [
                {"codec": "webp", "subsampling": "420", "effort": 4, "quality": "50:90"},
                {"codec": "jpegxl", "effort": 7, "quality": "lossless"}
              ],
              "lossless": false,
              "repeat": 2,
              "threads": 3,
              "random_order": true,
              "metric_binary_folder": "third_party",
              "encoded_folder": "encoded"
            }

        Raises:
            InvalidConfigurationError: If required fields are missing or invalid
        """
        if "codecs" not in data or not data["codecs"]:
            msg = "Comparison config must have a non-empty 'codecs' field"
            raise InvalidConfigurationError(msg)

        lossless = bool(data.get("lossless", False))
        codec_settings: list[CodecSettings] = []
        for entry in data["codecs"]:
            codec_settings.extend(_parse_codec_entry(entry, lossless))

        num_repetitions = int(data.get("repeat", 0))
        num_extra_threads = int(data.get("threads", 0))
        if num_repetitions < 0 or num_extra_threads < 0:
            msg = "'repeat' and 'threads' cannot be negative"
            raise InvalidConfigurationError(msg)

        return cls(
            codec_settings=tuple(codec_settings),
            num_repetitions=num_repetitions,
            num_extra_threads=num_extra_threads,
            random_order=bool(data.get("random_order", True)),
            discard_distortion_values=bool(data.get("recompute_distortion", False)),
            quiet=bool(data.get("quiet", True)),
            metric_binary_folder_path=data.get("metric_binary_folder", ""),
            encoded_folder_path=data.get("encoded_folder", ""),
        )


def default_run_task(settings: ComparisonSettings) -> RunTask:
    """Bind the command-line codec backend to the run settings."""

    def run_task(task_input: TaskInput, thread_id: int, encode_mode: EncodeMode) -> TaskOutput:
        return encode_decode(
            task_input, settings.metric_binary_folder_path, thread_id, encode_mode, settings.quiet
        )

    return run_task


# ---------------------------------------------------------------------------
# Workers
# ---------------------------------------------------------------------------


@dataclass
class WorkerContext:
    """State shared by all task workers, guarded by the pool lock."""

    remaining_tasks: list[TaskInput] = field(default_factory=list)
    completed_tasks: list[TaskOutput] = field(default_factory=list)
    load_encoded_from_disk: bool = False
    written_files: set[str] = field(default_factory=set)
    log: CompletedTaskLog | None = None
    num_tasks: int = 0
    num_failures: int = 0
    first_failure: TaskFailure | None = None
    quiet: bool = True
    num_completed_tasks_since_start: int = 0
    start_time: float = field(default_factory=time.monotonic)
    last_progress_time: float = field(default_factory=time.monotonic)


class TaskWorker(Worker[WorkerContext]):
    """Pulls tasks from a :class:`WorkerContext` and runs them with ``run_task``."""

    def __init__(self, worker_id: int, run_task: RunTask) -> None:
        super().__init__(worker_id)
        self._run_task = run_task
        self._task_input: TaskInput | None = None
        self._encode_mode = EncodeMode.ENCODE
        self._output: TaskOutput | None = None
        self._serialized_output = ""
        self._failure: TaskFailure | None = None

    def assign_task(self, context: WorkerContext) -> bool:
        if not context.remaining_tasks:
            return False
        task_input = context.remaining_tasks.pop()
        if context.load_encoded_from_disk:
            self._encode_mode = EncodeMode.LOAD_FROM_DISK
        elif task_input.encoded_path and task_input.encoded_path not in context.written_files:
            # Only the first task with a given encoded path writes it.
            context.written_files.add(task_input.encoded_path)
            self._encode_mode = EncodeMode.ENCODE_AND_SAVE
        else:
            self._encode_mode = EncodeMode.ENCODE
        self._task_input = task_input
        return True

    def do_task(self) -> None:
        self._output = None
        self._failure = None
        try:
            self._output = self._run_task(self._task_input, self.worker_id, self._encode_mode)
            self._serialized_output = self._output.serialize()
        except TaskFailure as e:
            self._failure = e

    def end_task(self, context: WorkerContext) -> None:
        if self._failure is None:
            if context.log is not None:
                context.log.append_line(self._serialized_output)
            context.completed_tasks.append(self._output)
            context.num_completed_tasks_since_start += 1
        else:
            if context.first_failure is None:
                context.first_failure = self._failure
            context.num_tasks -= 1
            context.num_failures += 1
            if context.num_failures > MAX_NUM_FAILURES:
                # Stop scheduling, a systematic problem is likely.
                context.remaining_tasks.clear()
            elif not context.quiet:
                print(
                    f"Failure: {describe_task(self._task_input)}: {self._failure}",
                    file=sys.stderr,
                )
        self._serialized_output = ""

        if not context.quiet:
            _print_progress(context)


def _print_progress(context: WorkerContext) -> None:
    now = time.monotonic()
    if now - context.last_progress_time <= PROGRESS_INTERVAL_SECONDS:
        return
    context.last_progress_time = now
    elapsed = now - context.start_time
    num_in_flight = (
        context.num_tasks - len(context.completed_tasks) - len(context.remaining_tasks)
    )
    # Tasks of other workers are assumed half done.
    done = context.num_completed_tasks_since_start + num_in_flight * 0.5
    left = len(context.remaining_tasks) + num_in_flight * 0.5
    hours_left = elapsed / 3600 / done * left if done > 0 else float("inf")
    print(
        f"{len(context.completed_tasks) + num_in_flight // 2}/{context.num_tasks} "
        f"({_format_duration(elapsed)} elapsed, ~{hours_left:.2f} hours left)"
    )


def _run_pool(context: WorkerContext, num_workers: int, run_task: RunTask) -> None:
    pool = WorkerPool(num_workers, lambda worker_id: TaskWorker(worker_id, run_task))
    pool.run(context)


# ---------------------------------------------------------------------------
# Run stages
# ---------------------------------------------------------------------------


def load_tasks(settings: ComparisonSettings, completed_tasks_file_path: str) -> list[TaskOutput]:
    """Load the completed-task log according to the settings."""
    return load_completed_tasks(
        completed_tasks_file_path,
        discard_distortion_values=settings.discard_distortion_values,
        quiet=settings.quiet,
    )


def compute_distortion_in_completed_tasks(
    settings: ComparisonSettings,
    completed_tasks: list[TaskOutput],
    run_task: RunTask,
) -> list[TaskOutput]:
    """Recompute the distortions of completed tasks from their saved bitstreams.

    Each encoded file is decoded and measured once. Timings of the completed
    tasks are kept.

    Returns:
        The completed tasks with new distortion values

    Raises:
        InvalidConfigurationError: If a task has no encoded file path
        RunSummaryError: If a distortion could not be recomputed
    """
    if not settings.quiet:
        print("Discarding read distortion values and recomputing them")

    context = WorkerContext(load_encoded_from_disk=True, quiet=settings.quiet)
    encoded_paths: set[str] = set()
    for task in completed_tasks:
        encoded_path = task.task_input.encoded_path
        if not encoded_path:
            msg = f"Cannot recompute distortion without encoded file: {task.serialize()}"
            raise InvalidConfigurationError(msg)
        if encoded_path not in encoded_paths:
            encoded_paths.add(encoded_path)
            context.remaining_tasks.append(task.task_input)
    context.num_tasks = len(context.remaining_tasks)

    _run_pool(context, 1 + settings.num_extra_threads, run_task)
    if len(context.completed_tasks) != context.num_tasks or context.first_failure is not None:
        msg = (
            f"Recomputed {len(context.completed_tasks)} distortions out of "
            f"{len(encoded_paths)} encoded files"
        )
        raise RunSummaryError(msg, context.first_failure) from context.first_failure

    distortions: dict[str, tuple[float, ...]] = {}
    for result in context.completed_tasks:
        encoded_path = result.task_input.encoded_path
        if encoded_path in distortions:
            msg = f"Distortion of {encoded_path} was computed twice"
            raise RunSummaryError(msg)
        distortions[encoded_path] = result.distortions

    if not settings.quiet:
        print("Done recomputing distortion values")
    return [
        replace(task, distortions=distortions[task.task_input.encoded_path])
        for task in completed_tasks
    ]


def shuffle_remaining_tasks(
    settings: ComparisonSettings,
    remaining_tasks: list[TaskInput],
    rng: random.Random | None = None,
) -> None:
    """Order remaining tasks in place for execution.

    Tasks are taken from the back of the list, so the deterministic order is
    the reverse of the given one.
    """
    if settings.random_order:
        # Uniform order gives timings as fair as possible.
        (rng or random.Random()).shuffle(remaining_tasks)
    else:
        remaining_tasks.reverse()


def _print_single_result(task: TaskOutput) -> None:
    task_input = task.task_input
    settings = task_input.codec_settings
    print()
    print("Input settings")
    print(f"  Codec:              {codec_name(settings.codec)}")
    print(f"  Chroma subsampling: {subsampling_to_string(settings.chroma_subsampling)}")
    print(f"  Effort:             {settings.effort}")
    print(f"  Quality:            {settings.quality}")
    print(f"  Original file path: {task_input.image_path}")
    print(
        f"  Image dimensions:   {task.image_width}x{task.image_height} "
        f"({task.num_frames} {task.bit_depth}-bit frames)"
    )
    print(f"  Encoded file path:  {task_input.encoded_path}")
    print("Output stats")
    print(f"  Encoded size:       {task.encoded_size}")
    print(f"  Encoding duration:  {_format_duration(task.encoding_duration)}")
    print(f"  Decoding duration:  {_format_duration(task.decoding_duration)}")
    print(
        "  Color conversion duration (if available): "
        f"{_format_duration(task.decoding_color_conversion_duration)}"
    )
    width = max(len(metric.name) for metric in DistortionMetric)
    for metric in DistortionMetric:
        print(f"  Distortion ({metric.name.lower():<{width}}): {task.distortions[metric]}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def compare(
    image_paths: list[str],
    settings: ComparisonSettings,
    completed_tasks_file_path: str = "",
    results_folder_path: str = "",
    run_task: RunTask | None = None,
) -> list[list[TaskOutput]]:
    """Run or resume a comparison.

    Args:
        image_paths: Source images
        settings: Run settings
        completed_tasks_file_path: Completed-task log, read then appended to;
            empty to keep results in memory only
        results_folder_path: Folder receiving one JSON file per codec
            configuration; empty to skip writing
        run_task: Task body, the command-line codec backend by default

    Returns:
        Aggregated outputs, one list per (codec, subsampling, effort)

    Raises:
        InvalidConfigurationError: If there is nothing to compare
        CompletedTaskLogError: If the completed-task log cannot be parsed
        ConfigurationDriftError: If the log does not match the planned tasks
        RunSummaryError: If more than 32 tasks failed, or every task of this
            run failed
        InternalConsistencyError: If repetitions of a task do not match
    """
    if run_task is None:
        run_task = default_run_task(settings)

    planned_tasks = plan_tasks(
        image_paths,
        list(settings.codec_settings),
        settings.num_repetitions,
        settings.encoded_folder_path,
    )
    completed_tasks = load_tasks(settings, completed_tasks_file_path)
    if settings.discard_distortion_values and completed_tasks_file_path:
        if Path(completed_tasks_file_path).exists():
            completed_tasks = compute_distortion_in_completed_tasks(
                settings, completed_tasks, run_task
            )
            backup_completed_tasks(completed_tasks_file_path)
            rewrite_completed_tasks(completed_tasks_file_path, completed_tasks)

    remaining_tasks = remove_completed_tasks(
        completed_tasks, planned_tasks, completed_tasks_file_path
    )
    shuffle_remaining_tasks(settings, remaining_tasks)

    context = WorkerContext(
        remaining_tasks=remaining_tasks,
        completed_tasks=completed_tasks,
        num_tasks=len(completed_tasks) + len(remaining_tasks),
        quiet=settings.quiet,
    )
    if not settings.quiet:
        print(f"Starting {len(remaining_tasks)} tasks")

    start = time.monotonic()
    if completed_tasks_file_path:
        with CompletedTaskLog(completed_tasks_file_path) as log:
            context.log = log
            _run_pool(context, 1 + settings.num_extra_threads, run_task)
        context.log = None
    else:
        _run_pool(context, 1 + settings.num_extra_threads, run_task)

    if context.num_failures > MAX_NUM_FAILURES or context.num_completed_tasks_since_start == 0:
        if context.first_failure is not None:
            msg = (
                f"{context.num_failures} tasks failed, "
                f"{context.num_completed_tasks_since_start} succeeded. "
                f"First failure: {context.first_failure}"
            )
            raise RunSummaryError(msg, context.first_failure) from context.first_failure

    results = split_by_codec_settings_and_aggregate(context.completed_tasks)
    single_result = len(results) == 1 and len(results[0]) == 1

    if results_folder_path:
        write_results(results, results_folder_path)
    elif not single_result:
        print("Warning: no JSON results folder path specified")

    if not settings.quiet:
        print(f"Took {_format_duration(time.monotonic() - start)}")
        if context.num_failures > 0:
            print(f" /!\\ Warning: {context.num_failures} failures")

    if single_result:
        _print_single_result(results[0][0])
    return results

