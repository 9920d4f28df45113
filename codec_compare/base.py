"""Shared constants and codec descriptions.

Everything that identifies a codec configuration lives here: the codec and
chroma subsampling enumerations, the lossless quality sentinel, the list of
distortion metrics and the per-codec tables (names, file extensions, quality
ranges and human readable names).
"""

from enum import Enum, IntEnum

QUALITY_LOSSLESS = -1
"""Quality value standing for lossless encoding."""

NO_DISTORTION = 99.0
"""Distortion score reported when the decoded image matches the original."""

MAX_NUM_FAILURES = 32
"""Number of failed tasks after which a run stops scheduling new tasks."""

MAX_EFFORT = 10


class Codec(IntEnum):
    """Codecs known to the comparison framework, in grouping order."""

    WEBP = 0
    WEBP2 = 1
    JPEGXL = 2
    AVIF = 3
    AVIF_EXP = 4
    AVIF_AVM = 5
    COMBINATION = 6
    JPEGTURBO = 7
    JPEGLI = 8
    JPEGSIMPLE = 9
    JPEGMOZ = 10
    JP2 = 11
    FFV1 = 12
    BASIS = 13


class Subsampling(IntEnum):
    """Chroma subsampling modes."""

    DEFAULT = 0
    YUV444 = 1
    YUV420 = 2


class DistortionMetric(IntEnum):
    """Distortion metrics, in the order they are stored and serialized."""

    PSNR = 0
    SSIM = 1
    DSSIM = 2
    BUTTERAUGLI = 3
    SSIMULACRA = 4
    SSIMULACRA2 = 5
    P3NORM = 6


NUM_DISTORTION_METRICS = len(DistortionMetric)


class EncodeMode(Enum):
    """How a task obtains its encoded bitstream."""

    ENCODE = "encode"
    ENCODE_AND_SAVE = "encode_and_save"
    LOAD_FROM_DISK = "load_from_disk"


# ---------------------------------------------------------------------------
# Codec tables
# ---------------------------------------------------------------------------

_CODEC_NAMES: dict[Codec, str] = {
    Codec.WEBP: "webp",
    Codec.WEBP2: "webp2",
    Codec.JPEGXL: "jpegxl",
    Codec.AVIF: "avif",
    Codec.AVIF_EXP: "avifexp",
    Codec.AVIF_AVM: "avifavm",
    Codec.COMBINATION: "combination",
    Codec.JPEGTURBO: "jpegturbo",
    Codec.JPEGLI: "jpegli",
    Codec.JPEGSIMPLE: "jpegsimple",
    Codec.JPEGMOZ: "jpegmoz",
    Codec.JP2: "jp2",
    Codec.FFV1: "ffv1",
    Codec.BASIS: "basis",
}

_CODEC_ALIASES: dict[str, Codec] = {
    "wp2": Codec.WEBP2,
    "jxl": Codec.JPEGXL,
    "turbojpeg": Codec.JPEGTURBO,
    "simplejpeg": Codec.JPEGSIMPLE,
    "sjpeg": Codec.JPEGSIMPLE,
    "mozjpeg": Codec.JPEGMOZ,
    "jpeg2000": Codec.JP2,
    "openjpeg": Codec.JP2,
}

_CODEC_EXTENSIONS: dict[Codec, str] = {
    Codec.WEBP: "webp",
    Codec.WEBP2: "wp2",
    Codec.JPEGXL: "jxl",
    Codec.AVIF: "avif",
    Codec.AVIF_EXP: "hmg",
    Codec.AVIF_AVM: "avmf",
    Codec.COMBINATION: "comb",
    Codec.JPEGTURBO: "turbo.jpg",
    Codec.JPEGLI: "li.jpg",
    Codec.JPEGSIMPLE: "s.jpg",
    Codec.JPEGMOZ: "moz.jpg",
    Codec.JP2: "jp2",
    Codec.FFV1: "ffv1",
    Codec.BASIS: "basis",
}

_BROWSER_CODECS = frozenset(
    {
        Codec.WEBP,
        Codec.AVIF,
        Codec.JPEGTURBO,
        Codec.JPEGLI,
        Codec.JPEGSIMPLE,
        Codec.JPEGMOZ,
    }
)

_AVIF_CODECS = frozenset({Codec.AVIF, Codec.AVIF_EXP, Codec.AVIF_AVM})


def codec_name(codec: Codec) -> str:
    """Return the canonical name of a codec, as written in progress files."""
    return _CODEC_NAMES[codec]


def codec_from_name(name: str) -> Codec:
    """Parse a codec name or one of its aliases.

    Args:
        name: Canonical codec name ("webp", "jpegxl", ...) or alias ("jxl", ...)

    Returns:
        The matching codec

    Raises:
        ValueError: If the name is unknown
    """
    lowered = name.strip().lower()
    for codec, canonical in _CODEC_NAMES.items():
        if canonical == lowered:
            return codec
    if lowered in _CODEC_ALIASES:
        return _CODEC_ALIASES[lowered]
    msg = f"Unknown codec: {name!r}"
    raise ValueError(msg)


def codec_extension(codec: Codec) -> str:
    """Return the file extension used for bitstreams of a codec."""
    return _CODEC_EXTENSIONS[codec]


def is_supported_by_browsers(codec: Codec) -> bool:
    """Whether encoded files of this codec can be displayed by web browsers."""
    return codec in _BROWSER_CODECS


def lossy_qualities(codec: Codec) -> list[int]:
    """Return the lossy quality values meaningful for a codec, ascending.

    AVIF maps 64 quantizer steps onto the 0..100 scale. FFV1 is lossless only
    and returns an empty list.
    """
    if codec in _AVIF_CODECS:
        return sorted(((63 - i) * 100 + 31) // 63 for i in range(64))
    if codec == Codec.JPEGXL:
        return list(range(100))
    if codec == Codec.WEBP2:
        return list(range(96))
    if codec == Codec.COMBINATION:
        return list(range(5, 96))
    if codec == Codec.FFV1:
        return []
    return list(range(101))


def codec_pretty_name(
    codec: Codec, lossless: bool, chroma_subsampling: Subsampling, effort: int
) -> str:
    """Return a human readable description of a codec configuration.

    Examples: "WebP m4 4:2:0", "JPEG XL e7", "AVIF s6 4:4:4".
    """
    if codec == Codec.WEBP:
        name = f"WebP z{effort}" if lossless else f"WebP m{effort}"
    elif codec == Codec.WEBP2:
        name = f"WebP2 e{effort}"
    elif codec == Codec.JPEGXL:
        name = f"JPEG XL e{effort}"
    elif codec == Codec.AVIF:
        name = f"AVIF s{effort}"
    elif codec == Codec.AVIF_EXP:
        name = f"AVIF exp s{effort}"
    elif codec == Codec.AVIF_AVM:
        name = f"AVIF AVM s{effort}"
    elif codec == Codec.COMBINATION:
        name = f"Combination e{effort}"
    elif codec == Codec.JPEGTURBO:
        name = "TurboJPEG"
    elif codec == Codec.JPEGLI:
        name = "JPEGli"
    elif codec == Codec.JPEGSIMPLE:
        name = f"SimpleJPEG m{effort}"
    elif codec == Codec.JPEGMOZ:
        name = "MozJPEG"
    elif codec == Codec.JP2:
        name = "OpenJPEG"
    elif codec == Codec.FFV1:
        name = "FFV1"
    else:
        name = f"Basis e{effort}"

    if lossless and chroma_subsampling in (Subsampling.DEFAULT, Subsampling.YUV444):
        return name
    if chroma_subsampling == Subsampling.YUV444:
        return f"{name} 4:4:4"
    if chroma_subsampling == Subsampling.YUV420:
        return f"{name} 4:2:0"
    return name


# ---------------------------------------------------------------------------
# Subsampling tokens
# ---------------------------------------------------------------------------

_SUBSAMPLING_TOKENS: dict[Subsampling, str] = {
    Subsampling.DEFAULT: "default",
    Subsampling.YUV444: "444",
    Subsampling.YUV420: "420",
}


def subsampling_to_string(chroma_subsampling: Subsampling) -> str:
    """Return the token used for a subsampling mode in files and paths."""
    return _SUBSAMPLING_TOKENS[chroma_subsampling]


def subsampling_from_string(token: str) -> Subsampling:
    """Parse a subsampling token ("default", "444" or "420").

    Raises:
        ValueError: If the token is unknown
    """
    for chroma_subsampling, known in _SUBSAMPLING_TOKENS.items():
        if known == token:
            return chroma_subsampling
    msg = f"Unknown chroma subsampling: {token!r}"
    raise ValueError(msg)


DISTORTION_METRIC_NAMES: dict[DistortionMetric, str] = {
    DistortionMetric.PSNR: "psnr",
    DistortionMetric.SSIM: "ssim",
    DistortionMetric.DSSIM: "dssim",
    DistortionMetric.BUTTERAUGLI: "butteraugli",
    DistortionMetric.SSIMULACRA: "ssimulacra",
    DistortionMetric.SSIMULACRA2: "ssimulacra2",
    DistortionMetric.P3NORM: "p3norm",
}

_CODECS_WITHOUT_EFFORT = frozenset(
    {Codec.JPEGTURBO, Codec.JPEGLI, Codec.JPEGMOZ, Codec.JP2, Codec.FFV1}
)


def codec_has_effort(codec: Codec) -> bool:
    """Whether the codec exposes an effort (speed) setting."""
    return codec not in _CODECS_WITHOUT_EFFORT
