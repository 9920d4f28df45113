"""Shared test fixtures and helpers.

Provides common fixtures used across multiple test modules to eliminate
duplication. Each test module can still define its own specialised
fixtures when needed.
"""

import shutil
import threading
from collections.abc import Callable
from pathlib import Path

import pytest
from PIL import Image

from codec_compare.base import (
    NO_DISTORTION,
    NUM_DISTORTION_METRICS,
    QUALITY_LOSSLESS,
    Codec,
    EncodeMode,
    Subsampling,
)
from codec_compare.errors import TaskFailure
from codec_compare.task import CodecSettings, TaskInput, TaskOutput

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def tool_available(name: str) -> bool:
    """Check whether a CLI tool is available on PATH."""
    return shutil.which(name) is not None


def create_test_image(
    path: Path,
    size: tuple[int, int] = (64, 64),
    mode: str = "RGB",
    color: tuple[int, ...] = (128, 128, 128),
) -> Path:
    """Create a small test image and return its path."""
    img = Image.new(mode, size, color=color)
    path.parent.mkdir(parents=True, exist_ok=True)
    img.save(path)
    return path


LOSSY_DISTORTIONS = (38.5, 17.25, 0.0125, 1.75, 0.0375, 81.5, 0.875)


def make_output(
    task_input: TaskInput,
    *,
    encoded_size: int | None = None,
    encoding_duration: float = 0.5,
    decoding_duration: float = 0.25,
    color_conversion_duration: float = 0.125,
    distortions: tuple[float, ...] | None = None,
) -> TaskOutput:
    """Build a task output that passes completed-task log validation.

    The encoded size and distortions only depend on the task input, so
    repetitions of a task are consistent with each other.
    """
    settings = task_input.codec_settings
    if encoded_size is None:
        encoded_size = 1000 + 10 * len(task_input.image_path) + max(settings.quality, 0)
    if distortions is None:
        distortions = (
            (NO_DISTORTION,) * NUM_DISTORTION_METRICS if settings.lossless else LOSSY_DISTORTIONS
        )
    return TaskOutput(
        task_input=task_input,
        image_width=64,
        image_height=48,
        num_frames=1,
        encoded_size=encoded_size,
        encoding_duration=encoding_duration,
        decoding_duration=decoding_duration,
        decoding_color_conversion_duration=color_conversion_duration,
        distortions=distortions,
    )


class FakeRunTask:
    """Task body recording its calls instead of running codecs.

    Tasks whose image path is in ``failing_images`` raise :class:`TaskFailure`.
    """

    def __init__(
        self,
        failing_images: set[str] | None = None,
        distortions: tuple[float, ...] | None = None,
    ) -> None:
        self.failing_images = failing_images or set()
        self.distortions = distortions
        self.calls: list[tuple[TaskInput, int, EncodeMode]] = []
        self._lock = threading.Lock()

    def __call__(
        self, task_input: TaskInput, thread_id: int, encode_mode: EncodeMode
    ) -> TaskOutput:
        with self._lock:
            self.calls.append((task_input, thread_id, encode_mode))
        if task_input.image_path in self.failing_images:
            msg = f"Cannot encode {task_input.image_path}"
            raise TaskFailure(msg)
        distortions = None if task_input.codec_settings.lossless else self.distortions
        return make_output(task_input, distortions=distortions)

    @property
    def executed_inputs(self) -> list[TaskInput]:
        return [call[0] for call in self.calls]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def webp_lossless() -> CodecSettings:
    """WebP lossless, effort 6."""
    return CodecSettings(Codec.WEBP, Subsampling.YUV444, 6, QUALITY_LOSSLESS)


@pytest.fixture
def webp_lossy() -> CodecSettings:
    """WebP 4:2:0, effort 4, quality 75."""
    return CodecSettings(Codec.WEBP, Subsampling.YUV420, 4, 75)


@pytest.fixture
def fake_run_task() -> Callable[..., FakeRunTask]:
    """Factory of :class:`FakeRunTask` instances."""
    return FakeRunTask


@pytest.fixture
def sample_image(tmp_path: Path) -> Path:
    """A 64x48 RGB gradient PNG."""
    img = Image.new("RGB", (64, 48))
    img.putdata([(x * 4, y * 5, (x + y) * 2) for y in range(48) for x in range(64)])
    path = tmp_path / "images" / "gradient.png"
    path.parent.mkdir(parents=True, exist_ok=True)
    img.save(path)
    return path
