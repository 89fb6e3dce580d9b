"""
Resize Geometry

Turns the batch's resize settings into a ResizePlan and applies a plan to a
decoded image.

- fit   -> contain: scale into the box, center, pad with the canvas fill
- exact -> cover:   scale to fill the box, center-crop the overflow
"""

from typing import Dict, Optional, Tuple

from PIL import Image, ImageOps

from src.engines.imaging.background import TRANSPARENT, WHITE, parse_fill_color
from src.engines.imaging.schemas import (
    BackgroundSettings,
    FitPolicy,
    ResizeMode,
    ResizePlan,
    ResizePreset,
    ResizeSettings,
    RGBA,
)

PRESET_DIMENSIONS: Dict[ResizePreset, Tuple[int, int]] = {
    ResizePreset.SQUARE: (1000, 1000),
    ResizePreset.FOUR_FIVE: (1200, 1500),
    ResizePreset.THREE_FOUR: (1200, 1600),
    ResizePreset.LANDSCAPE: (1920, 1080),
}

RESAMPLE = Image.Resampling.LANCZOS


def get_preset_dimensions(preset: ResizePreset) -> Optional[Tuple[int, int]]:
    return PRESET_DIMENSIONS.get(preset)


def resolve_canvas_fill(background: BackgroundSettings) -> RGBA:
    """
    Fill for the padded area of a contain resize.

    Solid background -> its colour; transparent background -> transparent
    canvas; otherwise opaque white.
    """
    if background.is_solid:
        return parse_fill_color(background.color)
    if background.is_transparent:
        return TRANSPARENT
    return WHITE


def resolve_resize_plan(
    resize: ResizeSettings,
    background: BackgroundSettings
) -> Optional[ResizePlan]:
    """
    Resolve resize settings to a concrete plan.

    Returns None when no resize was requested (no preset and neither
    width nor height), in which case the original dimensions pass through.
    """
    # 0 counts as "not set", same as null
    width = resize.width or None
    height = resize.height or None

    if not resize.use_preset and width is None and height is None:
        return None

    if resize.use_preset:
        dimensions = get_preset_dimensions(resize.preset)
        if dimensions:
            width, height = dimensions

    if resize.mode == ResizeMode.FIT:
        return ResizePlan(
            width=width,
            height=height,
            fit=FitPolicy.CONTAIN,
            background=resolve_canvas_fill(background)
        )

    return ResizePlan(width=width, height=height, fit=FitPolicy.COVER)


def target_size(plan: ResizePlan, source_size: Tuple[int, int]) -> Optional[Tuple[int, int]]:
    """
    Box size for a plan, deriving a missing side from the source aspect ratio.

    Returns None when the plan has neither width nor height.
    """
    src_w, src_h = source_size
    width, height = plan.width, plan.height

    if width is None and height is None:
        return None
    if width is None:
        width = max(1, round(height * src_w / src_h))
    elif height is None:
        height = max(1, round(width * src_h / src_w))
    return width, height


def apply_resize_plan(image: Image.Image, plan: Optional[ResizePlan]) -> Image.Image:
    """Apply a resize plan; a None plan (or an empty one) returns ``image`` as-is."""
    if plan is None:
        return image

    size = target_size(plan, image.size)
    if size is None:
        return image

    if plan.fit == FitPolicy.COVER:
        return ImageOps.fit(image, size, method=RESAMPLE, centering=(0.5, 0.5))

    fill = plan.background or WHITE
    scaled = ImageOps.contain(image, size, method=RESAMPLE)
    if scaled.size == size and fill[3] == 255 and scaled.mode == "RGB":
        return scaled

    canvas = Image.new("RGBA", size, fill)
    layer = scaled.convert("RGBA")
    offset = ((size[0] - layer.width) // 2, (size[1] - layer.height) // 2)
    canvas.alpha_composite(layer, dest=offset)
    return canvas
