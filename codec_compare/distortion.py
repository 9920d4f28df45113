"""Distortion measurement between an original image and its decoded version.

PSNR and SSIM are computed with numpy. The other metrics come from external
binaries expected under a metric binary folder::

    <folder>/libjxl/build/tools/butteraugli_main   (Butteraugli and 3-norm)
    <folder>/libjxl/build/tools/ssimulacra_main
    <folder>/libjxl/build/tools/ssimulacra2
    <folder>/dssim/target/release/dssim

When no folder is given, these metrics are reported as -1.
"""

import math
import subprocess
from pathlib import Path

import numpy as np
from PIL import Image

from codec_compare.base import (
    NO_DISTORTION,
    NUM_DISTORTION_METRICS,
    DistortionMetric,
)
from codec_compare.errors import TaskFailure

MISSING_METRIC = -1.0

_SSIM_WINDOW = 8
_P3NORM_TOKEN = "3-norm:"


# ---------------------------------------------------------------------------
# Pixels
# ---------------------------------------------------------------------------


def load_pixels(image_path: Path, with_alpha: bool | None = None) -> np.ndarray:
    """Load the first frame of an image as an 8-bit RGB or RGBA array.

    Args:
        image_path: Image file readable by Pillow
        with_alpha: Force the presence (True) or absence (False) of an alpha
            channel; by default it is kept only if the image has one

    Returns:
        Array of shape (height, width, 3 or 4) and dtype uint8
    """
    with Image.open(image_path) as img:
        img.seek(0)
        if with_alpha is None:
            with_alpha = "A" in img.getbands() or "transparency" in img.info
        return np.asarray(img.convert("RGBA" if with_alpha else "RGB"))


def save_pixels(pixels: np.ndarray, output_path: Path) -> None:
    """Write an RGB or RGBA array as a PNG file."""
    Image.fromarray(pixels).save(output_path, format="PNG")


def pixel_equality(reference: np.ndarray, decoded: np.ndarray) -> bool:
    """Whether two images have exactly the same pixels."""
    return reference.shape == decoded.shape and bool(np.array_equal(reference, decoded))


# ---------------------------------------------------------------------------
# In-process metrics
# ---------------------------------------------------------------------------


def compute_psnr(reference: np.ndarray, decoded: np.ndarray) -> float:
    """Peak signal-to-noise ratio in dB over all channels, capped at 99."""
    diff = reference.astype(np.float64) - decoded.astype(np.float64)
    mse = float(np.mean(diff * diff))
    if mse == 0:
        return NO_DISTORTION
    return min(NO_DISTORTION, 10 * math.log10(255.0 * 255.0 / mse))


def _luma(pixels: np.ndarray) -> np.ndarray:
    rgb = pixels[..., :3].astype(np.float64)
    return 0.299 * rgb[..., 0] + 0.587 * rgb[..., 1] + 0.114 * rgb[..., 2]


def _window_means(arr: np.ndarray, size: int) -> np.ndarray:
    """Mean of every ``size`` x ``size`` window, using an integral image."""
    h, w = arr.shape
    padded = np.zeros((h + 1, w + 1), dtype=np.float64)
    padded[1:, 1:] = np.cumsum(np.cumsum(arr, axis=0), axis=1)
    sums = (
        padded[size:, size:]
        - padded[:-size, size:]
        - padded[size:, :-size]
        + padded[:-size, :-size]
    )
    return sums / (size * size)


def compute_ssim(reference: np.ndarray, decoded: np.ndarray) -> float:
    """Structural similarity of the luma planes, in dB, capped at 99.

    The mean SSIM over all 8x8 windows is converted with ``-10 * log10(1 - ssim)``
    so that, like PSNR, higher is better and identical images score 99.
    """
    x = _luma(reference)
    y = _luma(decoded)
    size = min(_SSIM_WINDOW, x.shape[0], x.shape[1])
    c1 = (0.01 * 255) ** 2
    c2 = (0.03 * 255) ** 2

    mu_x = _window_means(x, size)
    mu_y = _window_means(y, size)
    var_x = _window_means(x * x, size) - mu_x * mu_x
    var_y = _window_means(y * y, size) - mu_y * mu_y
    cov = _window_means(x * y, size) - mu_x * mu_y

    ssim_map = ((2 * mu_x * mu_y + c1) * (2 * cov + c2)) / (
        (mu_x * mu_x + mu_y * mu_y + c1) * (var_x + var_y + c2)
    )
    ssim = float(np.mean(ssim_map))
    if ssim >= 1:
        return NO_DISTORTION
    return min(NO_DISTORTION, -10 * math.log10(1 - ssim))


# ---------------------------------------------------------------------------
# External metrics
# ---------------------------------------------------------------------------


def _run_metric_binary(binary_path: Path, reference_path: Path, decoded_path: Path) -> str:
    cmd = [str(binary_path), str(reference_path), str(decoded_path)]
    try:
        result = subprocess.run(
            cmd, capture_output=True, check=True, text=True, errors="replace"
        )
    except FileNotFoundError as e:
        msg = f"Metric binary not found: {binary_path}"
        raise TaskFailure(msg) from e
    except subprocess.CalledProcessError as e:
        msg = f"{binary_path.name} failed on {reference_path}: {e.stderr or e}"
        raise TaskFailure(msg) from e
    except OSError as e:
        msg = f"Cannot run {binary_path}: {e}"
        raise TaskFailure(msg) from e
    return result.stdout


def _parse_float(text: str, binary_name: str) -> float:
    try:
        return float(text.strip())
    except ValueError as e:
        msg = f"Unexpected output from {binary_name}: {text!r}"
        raise TaskFailure(msg) from e


def parse_butteraugli_output(output: str) -> tuple[float, float]:
    """Extract (Butteraugli, 3-norm) from the output of ``butteraugli_main``.

    Raises:
        TaskFailure: If the 3-norm token is missing or values are not numbers
    """
    if _P3NORM_TOKEN not in output:
        msg = f'"{_P3NORM_TOKEN}" token not found in "{output}"'
        raise TaskFailure(msg)
    before, after = output.split(_P3NORM_TOKEN, 1)
    return (
        _parse_float(before, "butteraugli_main"),
        _parse_float(after, "butteraugli_main"),
    )


def parse_dssim_output(output: str) -> float:
    """Extract the score from ``dssim`` output (``<score>\\t<path>``)."""
    return _parse_float(output.split("\t")[0], "dssim")


def measure_external_metrics(
    reference_path: Path, decoded_path: Path, metric_binary_folder_path: str
) -> dict[DistortionMetric, float]:
    """Run the external metric binaries on two PNG files.

    Returns:
        DSSIM, Butteraugli, SSIMULACRA, SSIMULACRA 2 and 3-norm values, all
        -1 when no metric binary folder is configured

    Raises:
        TaskFailure: If a binary is missing, fails or prints garbage
    """
    external = (
        DistortionMetric.DSSIM,
        DistortionMetric.BUTTERAUGLI,
        DistortionMetric.SSIMULACRA,
        DistortionMetric.SSIMULACRA2,
        DistortionMetric.P3NORM,
    )
    if not metric_binary_folder_path:
        return dict.fromkeys(external, MISSING_METRIC)

    folder = Path(metric_binary_folder_path)
    libjxl_tools = folder / "libjxl" / "build" / "tools"

    butteraugli, p3norm = parse_butteraugli_output(
        _run_metric_binary(libjxl_tools / "butteraugli_main", reference_path, decoded_path)
    )
    ssimulacra = _parse_float(
        _run_metric_binary(libjxl_tools / "ssimulacra_main", reference_path, decoded_path),
        "ssimulacra_main",
    )
    ssimulacra2 = _parse_float(
        _run_metric_binary(libjxl_tools / "ssimulacra2", reference_path, decoded_path),
        "ssimulacra2",
    )
    dssim = parse_dssim_output(
        _run_metric_binary(
            folder / "dssim" / "target" / "release" / "dssim", reference_path, decoded_path
        )
    )
    return {
        DistortionMetric.DSSIM: dssim,
        DistortionMetric.BUTTERAUGLI: butteraugli,
        DistortionMetric.SSIMULACRA: ssimulacra,
        DistortionMetric.SSIMULACRA2: ssimulacra2,
        DistortionMetric.P3NORM: p3norm,
    }


# ---------------------------------------------------------------------------
# All metrics
# ---------------------------------------------------------------------------


def compute_distortions(
    reference: np.ndarray,
    decoded: np.ndarray,
    lossless: bool,
    quality: int,
    metric_binary_folder_path: str,
    work_dir: Path,
) -> tuple[float, ...]:
    """Compute every distortion metric for one decoded image.

    Identical pixels score :data:`~codec_compare.base.NO_DISTORTION` for
    every metric without running anything.

    Args:
        reference: Original pixels
        decoded: Decoded pixels, same shape as ``reference``
        lossless: Whether the pixels are expected to be identical
        quality: Lossy quality, used to detect broken decodings
        metric_binary_folder_path: Folder of the external metric binaries
        work_dir: Folder where temporary PNG files can be written

    Returns:
        One value per :class:`~codec_compare.base.DistortionMetric`

    Raises:
        TaskFailure: If dimensions differ, a lossless decoding is not exact,
            a lossy decoding is garbage, or an external metric fails
    """
    if reference.shape != decoded.shape:
        msg = f"Decoded image is {decoded.shape}, expected {reference.shape}"
        raise TaskFailure(msg)

    if pixel_equality(reference, decoded):
        return (NO_DISTORTION,) * NUM_DISTORTION_METRICS

    psnr = compute_psnr(reference, decoded)
    if lossless:
        msg = f"Image was encoded or decoded with loss ({psnr:.2f} dB PSNR)"
        raise TaskFailure(msg)
    if psnr < (10 if quality > 90 else 2):
        msg = f"Image was badly encoded or decoded at quality {quality} ({psnr:.2f} dB PSNR)"
        raise TaskFailure(msg)

    distortions = {
        DistortionMetric.PSNR: psnr,
        DistortionMetric.SSIM: compute_ssim(reference, decoded),
    }
    reference_path = work_dir / "reference.png"
    decoded_path = work_dir / "decoded.png"
    if metric_binary_folder_path:
        try:
            save_pixels(reference, reference_path)
            save_pixels(decoded, decoded_path)
        except OSError as e:
            msg = f"Cannot write metric inputs to {work_dir}: {e}"
            raise TaskFailure(msg) from e
    distortions.update(
        measure_external_metrics(reference_path, decoded_path, metric_binary_folder_path)
    )
    return tuple(distortions[metric] for metric in DistortionMetric)
