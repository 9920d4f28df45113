"""Command-line codec backend.

Images are encoded and decoded with the reference tools of each codec
(cwebp/dwebp, cjxl/djxl, avifenc/avifdec, cjpeg/djpeg, cjpegli/djpegli).

All commands force single-threaded mode so that parallelism is handled at
the task level (one worker thread per task).
"""

import io
import re
import subprocess
from pathlib import Path

from PIL import Image

from codec_compare.base import Codec, Subsampling, codec_extension, codec_name
from codec_compare.errors import TaskFailure
from codec_compare.task import CodecSettings

# Encoder and decoder binaries of each supported codec.
CODEC_TOOLS: dict[Codec, tuple[str, str]] = {
    Codec.WEBP: ("cwebp", "dwebp"),
    Codec.JPEGXL: ("cjxl", "djxl"),
    Codec.AVIF: ("avifenc", "avifdec"),
    Codec.JPEGTURBO: ("cjpeg", "djpeg"),
    Codec.JPEGLI: ("cjpegli", "djpegli"),
}

_VERSION_PATTERNS: dict[Codec, tuple[list[str], str]] = {
    # cwebp: "1.5.0"
    Codec.WEBP: (["cwebp", "-version"], r"(\d+\.\d+\.\d+)"),
    # cjxl: "JPEG XL encoder v0.10.2"
    Codec.JPEGXL: (["cjxl", "--version"], r"v?(\d+\.\d+\.\d+)"),
    # avifenc: "avifenc version: 1.0.3"
    Codec.AVIF: (["avifenc", "--version"], r"version:\s*(\d+\.\d+\.\d+)"),
    # libjpeg-turbo: "libjpeg-turbo version 2.1.5"
    Codec.JPEGTURBO: (["cjpeg", "-version"], r"version\s+(\d+\.\d+\.\d+)"),
    Codec.JPEGLI: (["cjpegli", "--version"], r"(\d+\.\d+\.\d+)"),
}


def is_codec_supported(codec: Codec) -> bool:
    """Whether this backend can encode and decode the codec."""
    return codec in CODEC_TOOLS


def codec_version(codec: Codec) -> str | None:
    """Get the version string of the encoder tool of a codec.

    Returns:
        Version string, "unknown" if the tool prints none, or None if the
        tool cannot be run
    """
    if codec not in _VERSION_PATTERNS:
        return None
    cmd, pattern = _VERSION_PATTERNS[codec]
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=5)
    except (subprocess.TimeoutExpired, FileNotFoundError):
        return None
    match = re.search(pattern, result.stdout + result.stderr, re.IGNORECASE)
    if match:
        return match.group(1)
    return "unknown"


def _check_settings(settings: CodecSettings) -> None:
    codec = settings.codec
    if not is_codec_supported(codec):
        msg = f"{codec_name(codec)} is not supported by the command-line backend"
        raise TaskFailure(msg)
    if settings.lossless and codec in (Codec.JPEGTURBO, Codec.JPEGLI):
        msg = f"{codec_name(codec)} cannot encode losslessly"
        raise TaskFailure(msg)
    if codec == Codec.WEBP and not settings.lossless:
        if settings.chroma_subsampling == Subsampling.YUV444:
            msg = "Lossy WebP only supports 4:2:0 chroma subsampling"
            raise TaskFailure(msg)
    if codec == Codec.JPEGXL and settings.chroma_subsampling == Subsampling.YUV420:
        msg = "JPEG XL does not support 4:2:0 chroma subsampling of pixels"
        raise TaskFailure(msg)


def encode_command(settings: CodecSettings, input_path: Path, output_path: Path) -> list[str]:
    """Return the command line encoding ``input_path`` into ``output_path``.

    For JPEG turbo the input is read from stdin as PPM and the bitstream is
    written to stdout.
    """
    _check_settings(settings)
    codec = settings.codec
    quality = str(settings.quality)
    effort = str(settings.effort)
    subsampling = settings.chroma_subsampling

    if codec == Codec.WEBP:
        if settings.lossless:
            cmd = ["cwebp", "-lossless", "-z", effort]
        else:
            cmd = ["cwebp", "-q", quality, "-m", effort]
        return [*cmd, str(input_path), "-o", str(output_path)]

    if codec == Codec.JPEGXL:
        cmd = ["cjxl", str(input_path), str(output_path), "-e", effort, "--num_threads=1"]
        if settings.lossless:
            return [*cmd, "-d", "0"]
        return [*cmd, "-q", quality]

    if codec == Codec.AVIF:
        cmd = ["avifenc", "-j", "1", "-s", effort]
        if settings.lossless:
            cmd.append("--lossless")
        else:
            cmd.extend(["-q", quality])
            if subsampling != Subsampling.DEFAULT:
                cmd.extend(["-y", "444" if subsampling == Subsampling.YUV444 else "420"])
        return [*cmd, str(input_path), str(output_path)]

    if codec == Codec.JPEGTURBO:
        cmd = ["cjpeg", "-quality", quality]
        if subsampling != Subsampling.DEFAULT:
            cmd.extend(["-sample", "1x1" if subsampling == Subsampling.YUV444 else "2x2"])
        return cmd

    cmd = ["cjpegli", str(input_path), str(output_path), "-q", quality]
    if subsampling != Subsampling.DEFAULT:
        token = "444" if subsampling == Subsampling.YUV444 else "420"
        cmd.append(f"--chroma_subsampling={token}")
    return cmd


def decode_command(codec: Codec, input_path: Path, output_path: Path) -> list[str]:
    """Return the command line decoding ``input_path`` into ``output_path``."""
    if codec == Codec.WEBP:
        return ["dwebp", str(input_path), "-o", str(output_path)]
    if codec == Codec.JPEGXL:
        return ["djxl", str(input_path), str(output_path), "--num_threads=1"]
    if codec == Codec.AVIF:
        return ["avifdec", "-j", "1", str(input_path), str(output_path)]
    if codec == Codec.JPEGTURBO:
        return ["djpeg", "-outfile", str(output_path), str(input_path)]
    if codec == Codec.JPEGLI:
        return ["djpegli", str(input_path), str(output_path)]
    msg = f"{codec_name(codec)} is not supported by the command-line backend"
    raise TaskFailure(msg)


def _failure_message(e: subprocess.CalledProcessError) -> str:
    if e.stderr:
        return e.stderr.decode(errors="replace").strip() or str(e)
    return str(e)


class ImageEncoder:
    """Encodes and decodes images inside a working directory."""

    def __init__(self, work_dir: Path) -> None:
        """Initialize the encoder.

        Args:
            work_dir: Directory for intermediate files, usually temporary
        """
        self.work_dir = work_dir
        self.work_dir.mkdir(parents=True, exist_ok=True)

    def encode(self, input_path: Path, settings: CodecSettings) -> bytes:
        """Encode an image and return the bitstream.

        Raises:
            TaskFailure: If the settings are unsupported or the encoder fails
        """
        output_path = self.work_dir / f"bitstream.{codec_extension(settings.codec)}"
        cmd = encode_command(settings, input_path, output_path)
        # cjpeg reads PPM/BMP/Targa only, so convert in memory and pipe.
        ppm = self._to_ppm_bytes(input_path) if settings.codec == Codec.JPEGTURBO else None
        try:
            if ppm is not None:
                result = subprocess.run(cmd, input=ppm, capture_output=True, check=True)
                return result.stdout
            subprocess.run(cmd, capture_output=True, check=True)
        except FileNotFoundError as e:
            msg = f"Encoder not found: {cmd[0]}"
            raise TaskFailure(msg) from e
        except subprocess.CalledProcessError as e:
            msg = f"{cmd[0]} failed on {input_path}: {_failure_message(e)}"
            raise TaskFailure(msg) from e
        except OSError as e:
            msg = f"Cannot run {cmd[0]}: {e}"
            raise TaskFailure(msg) from e
        try:
            return output_path.read_bytes()
        except OSError as e:
            msg = f"{cmd[0]} produced no bitstream for {input_path}: {e}"
            raise TaskFailure(msg) from e

    def decode(self, encoded: bytes, codec: Codec) -> Path:
        """Decode a bitstream into an image file readable by Pillow.

        Returns:
            Path of the decoded PNG (or PPM for JPEG turbo)

        Raises:
            TaskFailure: If the decoder is missing or fails
        """
        input_path = self.work_dir / f"received.{codec_extension(codec)}"
        try:
            input_path.write_bytes(encoded)
        except OSError as e:
            msg = f"Cannot write {input_path}: {e}"
            raise TaskFailure(msg) from e
        suffix = "ppm" if codec == Codec.JPEGTURBO else "png"
        output_path = self.work_dir / f"output.{suffix}"
        cmd = decode_command(codec, input_path, output_path)
        try:
            subprocess.run(cmd, capture_output=True, check=True)
        except FileNotFoundError as e:
            msg = f"Decoder not found: {cmd[0]}"
            raise TaskFailure(msg) from e
        except subprocess.CalledProcessError as e:
            msg = f"{cmd[0]} failed: {_failure_message(e)}"
            raise TaskFailure(msg) from e
        except OSError as e:
            msg = f"Cannot run {cmd[0]}: {e}"
            raise TaskFailure(msg) from e
        return output_path

    @staticmethod
    def _to_ppm_bytes(input_path: Path) -> bytes:
        """Convert an image to PPM bytes in memory.

        Raises:
            TaskFailure: If the image cannot be read
        """
        buf = io.BytesIO()
        try:
            with Image.open(input_path) as img:
                img.convert("RGB").save(buf, format="PPM")
        except OSError as e:
            msg = f"Cannot convert {input_path} to PPM: {e}"
            raise TaskFailure(msg) from e
        return buf.getvalue()
