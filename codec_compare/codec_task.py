"""Default task body: encode, decode and measure one image."""

import tempfile
import time
from pathlib import Path

from PIL import Image

from codec_compare.base import EncodeMode, is_supported_by_browsers
from codec_compare.distortion import compute_distortions, load_pixels
from codec_compare.encoder import ImageEncoder
from codec_compare.errors import TaskFailure
from codec_compare.task import TaskInput, TaskOutput

_SIXTEEN_BIT_MODES = ("I;16", "I;16B", "I;16L", "I;16N", "I")


def read_image_info(image_path: Path) -> tuple[int, int, int, int]:
    """Return (width, height, frame count, bit depth) of an image.

    Raises:
        TaskFailure: If the image cannot be read
    """
    try:
        with Image.open(image_path) as img:
            num_frames = getattr(img, "n_frames", 1)
            bit_depth = 16 if img.mode in _SIXTEEN_BIT_MODES else 8
            return img.width, img.height, num_frames, bit_depth
    except OSError as e:
        msg = f"Cannot read {image_path}: {e}"
        raise TaskFailure(msg) from e


def _save_file(data: bytes, path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    except OSError as e:
        msg = f"Cannot save {path}: {e}"
        raise TaskFailure(msg) from e


def encode_decode(
    task_input: TaskInput,
    metric_binary_folder_path: str,
    thread_id: int,
    encode_mode: EncodeMode,
    quiet: bool = True,
) -> TaskOutput:
    """Run one task with the command-line codec backend.

    Args:
        task_input: Image and codec settings
        metric_binary_folder_path: Folder of the external metric binaries
        thread_id: Identifier of the calling worker, unique among running ones
        encode_mode: Encode, encode and save to ``task_input.encoded_path``,
            or reuse the bitstream previously saved there
        quiet: Do not print per-task details

    Returns:
        Measurements of the task

    Raises:
        TaskFailure: If any step fails
    """
    settings = task_input.codec_settings
    image_path = Path(task_input.image_path)
    width, height, num_frames, bit_depth = read_image_info(image_path)

    with tempfile.TemporaryDirectory(prefix=f"codec_compare_{thread_id}_") as tmpdir:
        encoder = ImageEncoder(Path(tmpdir))

        start = time.monotonic()
        if encode_mode == EncodeMode.LOAD_FROM_DISK:
            try:
                encoded = Path(task_input.encoded_path).read_bytes()
            except OSError as e:
                msg = f"Cannot load {task_input.encoded_path}: {e}"
                raise TaskFailure(msg) from e
        else:
            encoded = encoder.encode(image_path, settings)
        encoding_duration = time.monotonic() - start
        if not encoded:
            msg = f"Empty bitstream for {image_path}"
            raise TaskFailure(msg)

        if encode_mode == EncodeMode.ENCODE_AND_SAVE:
            _save_file(encoded, Path(task_input.encoded_path))

        try:
            reference = load_pixels(image_path)
        except OSError as e:
            msg = f"Cannot read {image_path}: {e}"
            raise TaskFailure(msg) from e
        start = time.monotonic()
        decoded_path = encoder.decode(encoded, settings.codec)
        conversion_start = time.monotonic()
        try:
            decoded = load_pixels(decoded_path, with_alpha=reference.shape[2] == 4)
        except OSError as e:
            msg = f"Cannot read decoded image of {image_path}: {e}"
            raise TaskFailure(msg) from e
        end = time.monotonic()

        if encode_mode == EncodeMode.ENCODE_AND_SAVE and not is_supported_by_browsers(
            settings.codec
        ):
            # Keep a displayable copy next to the bitstream.
            png_path = Path(task_input.encoded_path + ".png")
            try:
                png_path.parent.mkdir(parents=True, exist_ok=True)
                Image.fromarray(decoded).save(png_path, format="PNG")
            except OSError as e:
                msg = f"Cannot save {png_path}: {e}"
                raise TaskFailure(msg) from e

        distortions = compute_distortions(
            reference,
            decoded,
            lossless=settings.lossless,
            quality=settings.quality,
            metric_binary_folder_path=metric_binary_folder_path,
            work_dir=Path(tmpdir),
        )

    output = TaskOutput(
        task_input=task_input,
        image_width=width,
        image_height=height,
        num_frames=num_frames,
        encoded_size=len(encoded),
        encoding_duration=encoding_duration,
        decoding_duration=end - start,
        decoding_color_conversion_duration=end - conversion_start,
        distortions=distortions,
        bit_depth=bit_depth,
    )
    if not quiet:
        print(f"  {image_path.name}: {len(encoded)} bytes, {distortions[0]:.2f} dB")
    return output
