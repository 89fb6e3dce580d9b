"""
Output Encoding

Decodes one (already masked) image, auto-orients it, applies the resize
plan, optionally flattens a solid background once more, and serializes it
to the requested output format at the quality mapped from the batch's
compression level.
"""

import io
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple, Union

from PIL import Image, ImageOps

from src.core.config import settings as app_settings
from src.core.exceptions import DecodeError, EncodeError
from src.core.logging import get_logger
from src.engines.imaging.background import WHITE, flatten, parse_fill_color
from src.engines.imaging.geometry import apply_resize_plan
from src.engines.imaging.schemas import (
    BackgroundSettings,
    CompressionSettings,
    ImageBlob,
    OutputFormat,
    ResizePlan,
)

logger = get_logger(__name__)


# =============================================================================
# Compression Level -> Quality
# =============================================================================

COMPRESSION_QUALITY: Dict[str, int] = {
    "low": 40,
    "medium": 70,
    "high": 90,
}
DEFAULT_QUALITY = 70


def map_compression_to_quality(level: Optional[str]) -> int:
    return COMPRESSION_QUALITY.get(level, DEFAULT_QUALITY)


# =============================================================================
# Format Table
# =============================================================================

@dataclass(frozen=True)
class EncoderProfile:
    pil_format: str
    supports_alpha: bool
    uses_quality: bool
    options: Dict[str, Any] = field(default_factory=dict)


ENCODER_PROFILES: Dict[OutputFormat, EncoderProfile] = {
    OutputFormat.JPG: EncoderProfile("JPEG", supports_alpha=False, uses_quality=True, options={"optimize": True}),
    OutputFormat.PNG: EncoderProfile("PNG", supports_alpha=True, uses_quality=False),
    OutputFormat.WEBP: EncoderProfile("WEBP", supports_alpha=True, uses_quality=True),
    OutputFormat.AVIF: EncoderProfile("AVIF", supports_alpha=True, uses_quality=True),
}

# "original" and anything unrecognized land here
FALLBACK_FORMAT = OutputFormat.JPG

# Source codecs "original" can keep when PRESERVE_ORIGINAL_FORMAT is on
SOURCE_FORMATS: Dict[str, OutputFormat] = {
    "JPEG": OutputFormat.JPG,
    "MPO": OutputFormat.JPG,
    "PNG": OutputFormat.PNG,
    "WEBP": OutputFormat.WEBP,
    "AVIF": OutputFormat.AVIF,
}

_unmapped = set(OutputFormat) - set(ENCODER_PROFILES) - {OutputFormat.ORIGINAL}
if _unmapped:
    raise RuntimeError(f"No encoder profile for output formats: {sorted(f.value for f in _unmapped)}")


def select_output_format(
    output_format: Union[OutputFormat, str],
    source_format: Optional[str] = None,
    preserve_original: Optional[bool] = None
) -> OutputFormat:
    """
    Concrete format an image is written in.

    Every OutputFormat member is handled explicitly; "original" re-encodes
    as JPEG unless preserving the source codec is switched on and the source
    codec is one we can write.
    """
    try:
        fmt = OutputFormat(output_format)
    except ValueError:
        logger.warning("unknown_output_format", output_format=str(output_format), fallback=FALLBACK_FORMAT.value)
        return FALLBACK_FORMAT

    if fmt == OutputFormat.ORIGINAL:
        if preserve_original is None:
            preserve_original = app_settings.PRESERVE_ORIGINAL_FORMAT
        if preserve_original and source_format in SOURCE_FORMATS:
            return SOURCE_FORMATS[source_format]
        return FALLBACK_FORMAT

    return fmt


def build_save_options(fmt: OutputFormat, quality: int) -> Tuple[str, Dict[str, Any]]:
    """Pillow format name and save() keyword arguments for a concrete format."""
    profile = ENCODER_PROFILES[fmt]
    options = dict(profile.options)
    if profile.uses_quality:
        options["quality"] = quality
    if fmt == OutputFormat.PNG:
        options["compress_level"] = app_settings.PNG_COMPRESS_LEVEL
    return profile.pil_format, options


# =============================================================================
# Decode / Encode
# =============================================================================

def has_alpha(image: Image.Image) -> bool:
    return image.mode in ("RGBA", "LA", "PA") or (
        image.mode == "P" and "transparency" in image.info
    )


def _prepare_mode(image: Image.Image, profile: EncoderProfile) -> Image.Image:
    if has_alpha(image):
        if profile.supports_alpha:
            return image if image.mode == "RGBA" else image.convert("RGBA")
        return flatten(image, WHITE)
    return image if image.mode == "RGB" else image.convert("RGB")


def detect_source_format(image: ImageBlob) -> Optional[str]:
    """Pillow format name from the header of an upload, or None if unreadable."""
    try:
        with Image.open(io.BytesIO(image.data)) as header:
            return header.format
    except (OSError, ValueError, SyntaxError):
        return None


def decode_image(image: ImageBlob) -> Image.Image:
    """Fully decode a blob, raising DecodeError for anything Pillow can't read."""
    try:
        decoded = Image.open(io.BytesIO(image.data))
        decoded.load()
    except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
        raise DecodeError(
            f"Cannot decode {image.filename!r}: {e}",
            filename=image.filename
        )
    return decoded


def encode_image(
    image: ImageBlob,
    plan: Optional[ResizePlan],
    output_format: Union[OutputFormat, str],
    compression: CompressionSettings,
    background: BackgroundSettings,
    source_format: Optional[str] = None
) -> bytes:
    """
    Produce the final bytes for one image.

    Steps, in order: auto-orient, resize, solid flatten, quality mapping,
    encode.

    ``source_format`` is the codec of the upload before masking; "original"
    resolves against it, since a masked blob is always PNG.

    Raises:
        DecodeError: the input bytes are not an image
        EncodeError: the decoded image could not be written in the target format
    """
    source = decode_image(image)
    target = select_output_format(output_format, source_format or source.format)

    try:
        working = ImageOps.exif_transpose(source)
        working = apply_resize_plan(working, plan)

        # Resize padding can reintroduce alpha
        if background.is_solid:
            working = flatten(working, parse_fill_color(background.color))

        quality = map_compression_to_quality(compression.level)
        pil_format, options = build_save_options(target, quality)
        working = _prepare_mode(working, ENCODER_PROFILES[target])

        buffer = io.BytesIO()
        working.save(buffer, format=pil_format, **options)

    except (OSError, ValueError, KeyError) as e:
        raise EncodeError(
            f"Cannot encode {image.filename!r} as {target.value}: {e}",
            filename=image.filename,
            output_format=target.value
        )

    return buffer.getvalue()
