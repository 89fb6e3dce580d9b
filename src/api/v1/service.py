"""
Service Endpoints

GET /api/v1/metrics      - Prometheus exposition
GET /api/v1/capabilities - what the running build can decode and encode
"""

from fastapi import APIRouter, Response
from PIL import features

from src.core.config import settings
from src.core.metrics import get_metrics, get_metrics_content_type
from src.engines.imaging.encoder import COMPRESSION_QUALITY, ENCODER_PROFILES
from src.engines.imaging.geometry import PRESET_DIMENSIONS
from src.engines.imaging.schemas import OutputFormat

router = APIRouter()


@router.get("/metrics")
async def metrics():
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )


@router.get("/capabilities")
async def capabilities():
    """
    Options a client may put in a settings document, plus upload limits.

    AVIF output needs a Pillow build with libavif; the flag lets a UI hide
    the option instead of getting JPEG back.
    """
    return {
        "output_formats": [fmt.value for fmt in OutputFormat],
        "encoders": {
            fmt.value: profile.pil_format for fmt, profile in ENCODER_PROFILES.items()
        },
        "presets": {
            preset.value: {"width": width, "height": height}
            for preset, (width, height) in PRESET_DIMENSIONS.items()
        },
        "compression_levels": COMPRESSION_QUALITY,
        "supported_mime_types": settings.SUPPORTED_MIME_TYPES,
        "limits": {
            "max_files": settings.MAX_FILES,
            "max_total_bytes": settings.MAX_TOTAL_BYTES,
        },
        "codecs": {
            "avif": bool(features.check("avif")),
            "heif": True,
            "webp": bool(features.check("webp")),
        },
    }
