"""
Global Exception Handling

Exception taxonomy for the image pipeline plus FastAPI handlers that turn
them into structured JSON responses.

Inside a batch, DecodeError and EncodeError only ever skip the failing item;
MaskingAnomaly never leaves the background stage. Only ValidationError is
meant to reach an HTTP client.
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.core.logging import get_logger, batch_id_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class ImageryBaseException(Exception):
    """Base exception for the batch image service."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        batch_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.batch_id = batch_id or batch_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(ImageryBaseException):
    """Raised when an upload is rejected at the transport boundary."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=400, **kwargs)


class DecodeError(ImageryBaseException):
    """Raised when input bytes cannot be parsed as an image."""

    def __init__(self, message: str, filename: Optional[str] = None, **kwargs):
        super().__init__(message, code=422, stage="decode", **kwargs)
        self.details["filename"] = filename


class EncodeError(ImageryBaseException):
    """Raised when a decoded image cannot be serialized to the requested format."""

    def __init__(
        self,
        message: str,
        filename: Optional[str] = None,
        output_format: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, code=500, stage="encode", **kwargs)
        self.details["filename"] = filename
        self.details["output_format"] = output_format


class MaskingAnomaly(ImageryBaseException):
    """Raised when the decoded pixel layout has no alpha channel to write."""

    def __init__(self, channels: int, **kwargs):
        super().__init__(
            f"Expected 4 channels for masking, got {channels}",
            code=500,
            stage="mask",
            **kwargs
        )
        self.details["channels"] = channels


# =============================================================================
# Exception Handlers
# =============================================================================

def _error_body(exc: ImageryBaseException) -> Dict[str, Any]:
    return {
        "error": exc.message,
        "batch_id": exc.batch_id or batch_id_var.get(),
        "code": exc.code,
        "stage": exc.stage,
        "details": exc.details,
        "timestamp": datetime.utcnow().isoformat() + "Z"
    }


def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(ImageryBaseException)
    async def imagery_exception_handler(request: Request, exc: ImageryBaseException):
        logger.warning(
            "imagery_exception",
            error=exc.message,
            code=exc.code,
            stage=exc.stage,
            details=exc.details,
            path=str(request.url.path)
        )

        return JSONResponse(
            status_code=exc.code,
            content=_error_body(exc)
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "batch_id": batch_id_var.get(),
                "code": 500,
                "timestamp": datetime.utcnow().isoformat() + "Z"
            }
        )
