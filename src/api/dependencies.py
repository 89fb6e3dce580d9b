"""
FastAPI Dependencies

Shared objects injected into route handlers. Tests override these through
``app.dependency_overrides``.
"""

from functools import lru_cache

from src.core.config import settings
from src.pipeline.batch import BatchProcessor


@lru_cache()
def get_batch_processor() -> BatchProcessor:
    """Batch processor configured from application settings."""
    return BatchProcessor(
        max_workers=settings.BATCH_MAX_WORKERS,
        archive_filename=settings.ARCHIVE_FILENAME
    )
