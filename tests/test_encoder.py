"""Tests for the command-line codec backend."""

from pathlib import Path

import pytest
from conftest import tool_available

from codec_compare.base import QUALITY_LOSSLESS, Codec, EncodeMode, Subsampling
from codec_compare.codec_task import encode_decode, read_image_info
from codec_compare.encoder import (
    ImageEncoder,
    decode_command,
    encode_command,
    is_codec_supported,
)
from codec_compare.errors import TaskFailure
from codec_compare.task import CodecSettings, TaskInput

IN = Path("in.png")
OUT = Path("out.bin")


def test_encoder_initialization(tmp_path: Path) -> None:
    """Test ImageEncoder initialization."""
    encoder = ImageEncoder(tmp_path / "work")
    assert encoder.work_dir.exists()


class TestEncodeCommand:
    """Tests for encoder command lines."""

    def test_webp_lossy(self) -> None:
        settings = CodecSettings(Codec.WEBP, Subsampling.YUV420, 4, 75)
        assert encode_command(settings, IN, OUT) == [
            "cwebp",
            "-q",
            "75",
            "-m",
            "4",
            "in.png",
            "-o",
            "out.bin",
        ]

    def test_webp_lossless(self) -> None:
        settings = CodecSettings(Codec.WEBP, Subsampling.YUV444, 9, QUALITY_LOSSLESS)
        assert encode_command(settings, IN, OUT)[:4] == ["cwebp", "-lossless", "-z", "9"]

    def test_jpegxl_is_single_threaded(self) -> None:
        settings = CodecSettings(Codec.JPEGXL, Subsampling.DEFAULT, 7, QUALITY_LOSSLESS)
        cmd = encode_command(settings, IN, OUT)
        assert "--num_threads=1" in cmd
        assert cmd[-2:] == ["-d", "0"]

    def test_avif_subsampling(self) -> None:
        settings = CodecSettings(Codec.AVIF, Subsampling.YUV444, 6, 60)
        cmd = encode_command(settings, IN, OUT)
        assert cmd[:5] == ["avifenc", "-j", "1", "-s", "6"]
        assert ["-q", "60", "-y", "444"] == cmd[5:9]

    def test_jpegturbo_uses_pipes(self) -> None:
        settings = CodecSettings(Codec.JPEGTURBO, Subsampling.YUV420, 0, 80)
        assert encode_command(settings, IN, OUT) == ["cjpeg", "-quality", "80", "-sample", "2x2"]

    def test_jpegli_subsampling(self) -> None:
        settings = CodecSettings(Codec.JPEGLI, Subsampling.YUV444, 0, 90)
        assert encode_command(settings, IN, OUT)[-1] == "--chroma_subsampling=444"

    @pytest.mark.parametrize(
        "settings",
        [
            CodecSettings(Codec.WEBP2, Subsampling.DEFAULT, 5, 50),
            CodecSettings(Codec.JPEGTURBO, Subsampling.DEFAULT, 0, QUALITY_LOSSLESS),
            CodecSettings(Codec.WEBP, Subsampling.YUV444, 4, 50),
            CodecSettings(Codec.JPEGXL, Subsampling.YUV420, 7, 50),
        ],
    )
    def test_unsupported(self, settings: CodecSettings) -> None:
        with pytest.raises(TaskFailure):
            encode_command(settings, IN, OUT)


class TestDecodeCommand:
    """Tests for decoder command lines."""

    def test_webp(self) -> None:
        assert decode_command(Codec.WEBP, IN, OUT) == ["dwebp", "in.png", "-o", "out.bin"]

    def test_jpegturbo(self) -> None:
        assert decode_command(Codec.JPEGTURBO, IN, OUT)[:3] == ["djpeg", "-outfile", "out.bin"]

    def test_unsupported(self) -> None:
        assert not is_codec_supported(Codec.BASIS)
        with pytest.raises(TaskFailure, match="not supported"):
            decode_command(Codec.BASIS, IN, OUT)


class TestReadImageInfo:
    """Tests for reading source image properties."""

    def test_png(self, sample_image: Path) -> None:
        assert read_image_info(sample_image) == (64, 48, 1, 8)

    def test_unreadable(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.png"
        path.write_bytes(b"not an image")
        with pytest.raises(TaskFailure, match="Cannot read"):
            read_image_info(path)


class TestEncodeDecode:
    """Tests running real codec binaries."""

    @pytest.mark.skipif(
        not (tool_available("cwebp") and tool_available("dwebp")),
        reason="cwebp/dwebp not available",
    )
    def test_webp_lossless(self, tmp_path: Path, sample_image: Path) -> None:
        settings = CodecSettings(Codec.WEBP, Subsampling.YUV444, 4, QUALITY_LOSSLESS)
        encoded_path = tmp_path / "enc" / "gradient.e4lossless.webp"
        task_input = TaskInput(settings, str(sample_image), str(encoded_path))
        output = encode_decode(task_input, "", 0, EncodeMode.ENCODE_AND_SAVE)
        assert output.encoded_size == encoded_path.stat().st_size
        assert (output.image_width, output.image_height) == (64, 48)
        assert output.distortions[0] == 99.0
        assert output.encoding_duration > 0

        reloaded = encode_decode(task_input, "", 0, EncodeMode.LOAD_FROM_DISK)
        assert reloaded.encoded_size == output.encoded_size

    @pytest.mark.skipif(
        not (tool_available("cwebp") and tool_available("dwebp")),
        reason="cwebp/dwebp not available",
    )
    def test_webp_lossy(self, sample_image: Path) -> None:
        settings = CodecSettings(Codec.WEBP, Subsampling.YUV420, 4, 75)
        output = encode_decode(TaskInput(settings, str(sample_image)), "", 1, EncodeMode.ENCODE)
        assert 20 < output.distortions[0] <= 99.0
        assert output.distortions[2] == -1.0

    @pytest.mark.skipif(
        not (tool_available("cjpeg") and tool_available("djpeg")),
        reason="cjpeg/djpeg not available",
    )
    def test_jpegturbo_lossy(self, sample_image: Path) -> None:
        settings = CodecSettings(Codec.JPEGTURBO, Subsampling.YUV420, 0, 90)
        output = encode_decode(TaskInput(settings, str(sample_image)), "", 0, EncodeMode.ENCODE)
        assert output.encoded_size > 0
        assert output.distortions[0] > 20

    def test_missing_encoded_file(self, tmp_path: Path, sample_image: Path) -> None:
        settings = CodecSettings(Codec.WEBP, Subsampling.YUV420, 4, 75)
        task_input = TaskInput(settings, str(sample_image), str(tmp_path / "missing.webp"))
        with pytest.raises(TaskFailure, match="Cannot load"):
            encode_decode(task_input, "", 0, EncodeMode.LOAD_FROM_DISK)

    def test_unwritable_encoded_folder(
        self, tmp_path: Path, sample_image: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(ImageEncoder, "encode", lambda self, path, settings: b"bitstream")
        blocker = tmp_path / "blocker"
        blocker.write_text("")
        settings = CodecSettings(Codec.WEBP, Subsampling.YUV444, 4, QUALITY_LOSSLESS)
        task_input = TaskInput(settings, str(sample_image), str(blocker / "a.webp"))
        with pytest.raises(TaskFailure, match="Cannot save"):
            encode_decode(task_input, "", 0, EncodeMode.ENCODE_AND_SAVE)

    def test_unreadable_source_for_pipe(self, tmp_path: Path) -> None:
        path = tmp_path / "broken.png"
        path.write_bytes(b"not an image")
        settings = CodecSettings(Codec.JPEGTURBO, Subsampling.YUV420, 0, 80)
        with pytest.raises(TaskFailure, match="Cannot convert"):
            ImageEncoder(tmp_path / "work").encode(path, settings)
