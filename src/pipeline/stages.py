"""
Pipeline Stage Implementations

Each stage wraps one imaging engine call with latency metrics and
structured logging, and returns its output together with a metadata dict
describing what happened.
"""

from typing import Any, Dict, Optional, Tuple
from datetime import datetime

from src.core.logging import get_logger, with_logging
from src.core.metrics import track_stage_latency
from src.engines.imaging.background import apply_background_removal
from src.engines.imaging.encoder import encode_image
from src.engines.imaging.geometry import resolve_resize_plan
from src.engines.imaging.naming import build_output_filename
from src.engines.imaging.schemas import (
    ImageBlob,
    ProcessingSettings,
    ResizePlan,
)

logger = get_logger(__name__)


def _elapsed_ms(start_time: datetime) -> int:
    return int((datetime.utcnow() - start_time).total_seconds() * 1000)


# =============================================================================
# Stage 1: Background Removal
# =============================================================================

@with_logging("mask")
def process_mask_stage(
    image: ImageBlob,
    settings: ProcessingSettings
) -> Tuple[ImageBlob, Dict[str, Any]]:
    """
    Remove or replace the background.

    Returns:
        Tuple of (masked_blob, metadata). ``applied`` is False when the
        stage passed the input through untouched.
    """
    start_time = datetime.utcnow()

    with track_stage_latency("mask"):
        output = apply_background_removal(image, settings.background)

    metadata = {
        "stage": "mask",
        "applied": output is not image,
        "input_size": len(image.data),
        "output_size": len(output.data),
        "duration_ms": _elapsed_ms(start_time),
    }
    return output, metadata


# =============================================================================
# Stage 2: Geometry
# =============================================================================

@with_logging("resolve")
def process_resolve_stage(settings: ProcessingSettings) -> Tuple[Optional[ResizePlan], Dict[str, Any]]:
    """Resolve the resize plan (None means original dimensions)."""
    plan = resolve_resize_plan(settings.resize, settings.background)

    metadata = {
        "stage": "resolve",
        "resize": plan is not None,
        "target": (plan.width, plan.height) if plan else None,
        "fit": plan.fit.value if plan else None,
    }
    return plan, metadata


# =============================================================================
# Stage 3: Encoding
# =============================================================================

@with_logging("encode")
def process_encode_stage(
    image: ImageBlob,
    plan: Optional[ResizePlan],
    settings: ProcessingSettings,
    source_format: Optional[str] = None
) -> Tuple[bytes, Dict[str, Any]]:
    """
    Resize and encode to the batch's output format.

    Raises:
        DecodeError / EncodeError from the encoder; the orchestrator skips
        the item.
    """
    start_time = datetime.utcnow()

    with track_stage_latency("encode"):
        output_bytes = encode_image(
            image,
            plan,
            settings.output_format,
            settings.compression,
            settings.background,
            source_format=source_format
        )

    metadata = {
        "stage": "encode",
        "output_format": settings.output_format.value,
        "source_format": source_format,
        "compression": settings.compression.level,
        "input_size": len(image.data),
        "output_size": len(output_bytes),
        "duration_ms": _elapsed_ms(start_time),
    }
    return output_bytes, metadata


# =============================================================================
# Stage 4: Naming
# =============================================================================

def process_naming_stage(image: ImageBlob, settings: ProcessingSettings) -> str:
    naming = settings.file_naming
    return build_output_filename(
        image.filename,
        naming.suffix,
        settings.output_format,
        naming.to_lowercase,
        naming.replace_spaces
    )
