"""
Background Removal / Replacement

Deterministic brightness heuristic, not segmentation: pixels whose plain
mean of R, G and B reaches the threshold become fully transparent, all
others fully opaque. Works best on white or very light studio backdrops.

The removal algorithm is a BackgroundStrategy so a different masker can be
plugged in without touching the pipeline.
"""

import io
from abc import ABC, abstractmethod
from typing import Optional

import numpy as np
from PIL import Image, ImageColor, ImageOps

from src.core.config import settings as app_settings
from src.core.exceptions import MaskingAnomaly
from src.core.logging import get_logger
from src.engines.imaging.schemas import (
    BackgroundMode,
    BackgroundSettings,
    ImageBlob,
    RGBA,
)

logger = get_logger(__name__)

DEFAULT_FILL_COLOR = "#ffffff"
WHITE: RGBA = (255, 255, 255, 255)
TRANSPARENT: RGBA = (0, 0, 0, 0)


# =============================================================================
# Colour Helpers
# =============================================================================

def parse_fill_color(color: Optional[str]) -> RGBA:
    """
    Resolve a user supplied colour to an opaque RGBA tuple.

    Empty values fall back to white. Anything Pillow can't parse also falls
    back to white, with a warning.
    """
    value = (color or "").strip() or DEFAULT_FILL_COLOR
    try:
        r, g, b = ImageColor.getrgb(value)[:3]
    except ValueError:
        logger.warning("invalid_fill_color", color=color, fallback=DEFAULT_FILL_COLOR)
        return WHITE
    return (r, g, b, 255)


def flatten(image: Image.Image, fill: RGBA) -> Image.Image:
    """Composite an image over an opaque canvas and drop the alpha channel."""
    rgba = image.convert("RGBA")
    canvas = Image.new("RGBA", rgba.size, fill)
    return Image.alpha_composite(canvas, rgba).convert("RGB")


# =============================================================================
# Strategies
# =============================================================================

class BackgroundStrategy(ABC):
    """Turns an owned RGBA pixel buffer into a masked one."""

    name: str = "base"
    is_noop: bool = False

    @abstractmethod
    def mask(self, pixels: np.ndarray) -> np.ndarray:
        """
        Rewrite the alpha channel of ``pixels``.

        The caller hands over exclusive ownership of ``pixels``; the
        strategy may write into it and must return the masked buffer.
        """


class NoBackgroundStrategy(BackgroundStrategy):
    name = "none"
    is_noop = True

    def mask(self, pixels: np.ndarray) -> np.ndarray:
        return pixels


class LumaThresholdStrategy(BackgroundStrategy):
    """Hard binary mask on the unweighted mean of the colour channels."""

    name = "luma_threshold"

    def __init__(self, threshold: int = 240):
        self.threshold = threshold

    def mask(self, pixels: np.ndarray) -> np.ndarray:
        if pixels.ndim != 3 or pixels.shape[2] != 4:
            channels = pixels.shape[2] if pixels.ndim == 3 else 1
            raise MaskingAnomaly(channels=channels)

        # mean(R, G, B) >= t  <=>  R + G + B >= 3t, kept in integers
        rgb_sum = pixels[..., :3].sum(axis=2, dtype=np.uint16)
        is_background = rgb_sum >= 3 * self.threshold
        pixels[..., 3] = np.where(is_background, 0, 255).astype(np.uint8)
        return pixels


def strategy_for(
    settings: BackgroundSettings,
    threshold: Optional[int] = None
) -> BackgroundStrategy:
    """Pick the strategy for a batch's background settings."""
    if not settings.is_active:
        return NoBackgroundStrategy()
    if threshold is None:
        threshold = app_settings.LUMA_THRESHOLD
    return LumaThresholdStrategy(threshold)


# =============================================================================
# Stage Entry Point
# =============================================================================

def _decode_rgba(data: bytes) -> np.ndarray:
    """Decode to an upright RGBA pixel array the caller owns."""
    with Image.open(io.BytesIO(data)) as source:
        # the PNG written after masking carries no EXIF orientation
        upright = ImageOps.exif_transpose(source)
        return np.array(upright.convert("RGBA"), dtype=np.uint8)


def apply_background_removal(
    image: ImageBlob,
    settings: BackgroundSettings,
    strategy: Optional[BackgroundStrategy] = None
) -> ImageBlob:
    """
    Remove or replace the background of one image.

    Never raises: when the stage is disabled, when the pixel layout has no
    alpha channel, or when decoding/encoding fails, the input blob is
    returned unchanged.

    Args:
        image: Input image
        settings: Background settings of the batch
        strategy: Override for the masking strategy (defaults to strategy_for)

    Returns:
        A PNG blob (masked, or flattened for solid mode), or ``image`` itself
    """
    strategy = strategy or strategy_for(settings)
    if strategy.is_noop:
        return image

    try:
        pixels = _decode_rgba(image.data)
        masked = Image.fromarray(strategy.mask(pixels))

        if settings.mode == BackgroundMode.SOLID:
            masked = flatten(masked, parse_fill_color(settings.color))

        buffer = io.BytesIO()
        masked.save(buffer, format="PNG")

    except MaskingAnomaly as e:
        logger.warning(
            "background_masking_skipped",
            filename=image.filename,
            reason=e.message,
            channels=e.details.get("channels")
        )
        return image

    except Exception as e:
        logger.error(
            "background_removal_failed",
            filename=image.filename,
            error=str(e),
            error_type=type(e).__name__
        )
        return image

    logger.debug(
        "background_removed",
        filename=image.filename,
        strategy=strategy.name,
        mode=settings.mode.value
    )
    return image.with_data(buffer.getvalue(), mime_type="image/png")
