"""
Structured Logging Configuration with structlog

Outputs JSON logs (or coloured console logs in development).
Entries emitted while a batch runs carry batch_id, and per-image entries
also carry the stage and the source filename, including entries logged
from pool threads.
"""

import sys
import time
import logging
import structlog
from typing import Optional, Any, Dict
from datetime import datetime
from contextvars import ContextVar
from functools import wraps

batch_id_var: ContextVar[Optional[str]] = ContextVar("batch_id", default=None)
stage_var: ContextVar[Optional[str]] = ContextVar("stage", default=None)
filename_var: ContextVar[Optional[str]] = ContextVar("filename", default=None)

_CONTEXT_FIELDS = (
    ("batch_id", batch_id_var),
    ("stage", stage_var),
    ("filename", filename_var),
)

_app_version = "unknown"


def add_app_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add version and the current batch context to every entry."""
    event_dict["version"] = _app_version

    # explicit keyword arguments win over the context
    for key, var in _CONTEXT_FIELDS:
        value = var.get()
        if value:
            event_dict.setdefault(key, value)

    return event_dict


def add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    event_dict["timestamp"] = datetime.utcnow().isoformat() + "Z"
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    json_format: bool = True,
    version: Optional[str] = None
):
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, output JSON; if False, output colored console logs
        version: Stamped on every entry
    """
    global _app_version
    if version:
        _app_version = version

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Pillow logs every plugin it probes at DEBUG
    logging.getLogger("PIL").setLevel(logging.WARNING)
    logging.getLogger("multipart").setLevel(logging.WARNING)

    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            add_timestamp,
            add_app_context,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.UnicodeDecoder(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


class LogContext:
    """
    Binds batch/stage/filename context for the duration of a block.

    Usage:
        with LogContext(batch_id="abc123", stage="batch"):
            with LogContext(filename="shoe.jpg"):
                logger.info("item_processed")
    """

    def __init__(
        self,
        batch_id: Optional[str] = None,
        stage: Optional[str] = None,
        filename: Optional[str] = None
    ):
        self._values = (
            (batch_id_var, batch_id),
            (stage_var, stage),
            (filename_var, filename),
        )
        self._tokens = []

    def __enter__(self):
        self._tokens = [var.set(value) for var, value in self._values if value]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for token in reversed(self._tokens):
            token.var.reset(token)
        self._tokens = []
        return False


def with_logging(stage: str):
    """
    Decorator that logs start/finish/failure of a pipeline stage.

    The stage name is bound for the duration of the call and restored
    afterwards. Failures are logged at warning level and re-raised; the
    orchestrator decides whether the item is skipped.

    Usage:
        @with_logging("encode")
        def process_encode_stage(image, plan, settings):
            ...
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            token = stage_var.set(stage)
            logger.debug("stage_started")
            start = time.perf_counter()

            try:
                result = func(*args, **kwargs)
                logger.debug("stage_completed", duration_ms=int((time.perf_counter() - start) * 1000))
                return result
            except Exception as e:
                logger.warning(
                    "stage_failed",
                    duration_ms=int((time.perf_counter() - start) * 1000),
                    error=str(e),
                    error_type=type(e).__name__
                )
                raise
            finally:
                stage_var.reset(token)

        return wrapper

    return decorator
