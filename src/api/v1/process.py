"""
Process Endpoint - Batch Image Transformation

POST /api/v1/process - multipart upload of one or more images plus a JSON
settings document. Returns the processed image directly when exactly one
image succeeds, otherwise a ZIP archive of all processed images.

Upload limits and the MIME allow-list are enforced here; the pipeline
itself trusts its input.
"""

import re
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response
from pydantic import ValidationError as PydanticValidationError

from src.api.dependencies import get_batch_processor
from src.core.config import settings as app_settings
from src.core.exceptions import ValidationError
from src.core.logging import get_logger
from src.engines.imaging.schemas import ImageBlob, ProcessingSettings, SingleResult
from src.pipeline.batch import BatchProcessor

logger = get_logger(__name__)
router = APIRouter()

_NON_PRINTABLE_ASCII = re.compile(r"[^\x20-\x7E]")
_HEADER_UNSAFE = re.compile(r'["\\]')


def normalize_filename(name: str) -> str:
    """ASCII-only filename that is safe inside a quoted Content-Disposition value."""
    cleaned = _HEADER_UNSAFE.sub("_", _NON_PRINTABLE_ASCII.sub("_", name))
    return cleaned or "file"


def parse_settings(settings_json: Optional[str]) -> ProcessingSettings:
    if not settings_json:
        raise ValidationError("Missing settings")
    try:
        return ProcessingSettings.model_validate_json(settings_json)
    except PydanticValidationError as e:
        raise ValidationError(
            "Invalid settings",
            details={"errors": e.errors(include_url=False, include_context=False)}
        )


async def read_uploads(files: List[UploadFile]) -> List[ImageBlob]:
    """Read uploads in order, enforcing count, cumulative size and MIME type."""
    if not files:
        raise ValidationError("No files uploaded")

    if len(files) > app_settings.MAX_FILES:
        raise ValidationError(
            f"Too many files. Maximum is {app_settings.MAX_FILES}.",
            details={"file_count": len(files)}
        )

    blobs: List[ImageBlob] = []
    total_bytes = 0

    for upload in files:
        data = await upload.read()
        total_bytes += len(data)
        if total_bytes > app_settings.MAX_TOTAL_BYTES:
            raise ValidationError(
                f"Total size exceeds {app_settings.MAX_TOTAL_BYTES // (1024 * 1024)} MB"
            )

        content_type = upload.content_type or ""
        if content_type not in app_settings.SUPPORTED_MIME_TYPES:
            raise ValidationError(
                f"Unsupported file type: {content_type or 'unknown'}",
                details={"filename": upload.filename}
            )

        blobs.append(ImageBlob(
            data=data,
            filename=upload.filename or "file",
            mime_type=content_type
        ))

    return blobs


@router.post("")
async def process_images(
    files: Optional[List[UploadFile]] = File(None),
    settings: Optional[str] = Form(None),
    processor: BatchProcessor = Depends(get_batch_processor)
):
    """
    Process uploaded images with one settings document.

    Form fields:
    - settings: JSON ProcessingSettings (camelCase or snake_case keys)
    - files: one or more images
    """
    processing_settings = parse_settings(settings)
    images = await read_uploads(files or [])

    logger.info(
        "process_request_received",
        file_count=len(images),
        total_bytes=sum(len(image.data) for image in images),
        output_format=processing_settings.output_format.value
    )

    # CPU-bound; keep it off the event loop
    result = await run_in_threadpool(processor.run, images, processing_settings)

    if isinstance(result, SingleResult):
        media_type = "application/octet-stream"
    else:
        media_type = "application/zip"

    return Response(
        content=result.data,
        media_type=media_type,
        headers={
            "Content-Disposition": f'attachment; filename="{normalize_filename(result.filename)}"',
            "X-Skipped-Count": str(len(result.skipped)),
        }
    )
