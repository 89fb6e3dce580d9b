"""
Product Image Batch Service - Main Application

Wires the batch pipeline behind FastAPI:
- POST /api/v1/process takes a settings document plus files
- structlog for request and batch logging
- Prometheus metrics labelled by route
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from PIL import features

from src.core.config import settings
from src.core.logging import setup_logging, get_logger
from src.core.exceptions import register_exception_handlers
from src.core.metrics import set_app_info, http_requests_total, http_request_duration_seconds
from src.api.v1 import api_v1_router


setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.LOG_FORMAT_JSON,
    version=settings.APP_VERSION
)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    avif_available = bool(features.check("avif"))
    logger.info(
        "application_starting",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        max_files=settings.MAX_FILES,
        max_total_bytes=settings.MAX_TOTAL_BYTES,
        batch_max_workers=settings.BATCH_MAX_WORKERS,
        preserve_original_format=settings.PRESERVE_ORIGINAL_FORMAT,
        avif_available=avif_available
    )
    if not avif_available:
        logger.warning("avif_codec_missing", detail="avif requests will fail per item and be skipped")

    set_app_info(
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
        avif=avif_available
    )

    yield

    logger.info("application_shutdown_complete")


app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Batch transformation of product images:

    - **Background**: luma-threshold removal, transparent or solid fill
    - **Resize**: presets or custom size, fit (pad) or exact (crop)
    - **Encode**: JPG / PNG / WebP / AVIF at low / medium / high quality
    - **Naming**: suffix, lowercase and hyphenated filenames
    - **Output**: the image itself, or a ZIP when several images succeed
    """,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in settings.CORS_ORIGINS.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    # browsers only let scripts read these when listed
    expose_headers=["Content-Disposition", "X-Skipped-Count"],
)


def _route_label(request: Request) -> str:
    """Route template of the matched endpoint, so unknown paths share one label."""
    route = request.scope.get("route")
    return getattr(route, "path", "unmatched")


@app.middleware("http")
async def observe_requests(request: Request, call_next):
    start_time = time.perf_counter()
    response = await call_next(request)
    duration = time.perf_counter() - start_time

    endpoint = _route_label(request)
    http_request_duration_seconds.labels(
        method=request.method,
        endpoint=endpoint
    ).observe(duration)
    http_requests_total.labels(
        method=request.method,
        endpoint=endpoint,
        status=response.status_code
    ).inc()

    response.headers["X-Process-Time"] = f"{duration:.4f}"
    return response


register_exception_handlers(app)
app.include_router(api_v1_router)


@app.get("/", tags=["root"])
async def root():
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "docs": "/api/docs",
        "process": "/api/v1/process",
        "capabilities": "/api/v1/capabilities",
        "metrics": "/api/v1/metrics"
    }


@app.get("/health", tags=["health"])
async def health():
    return {
        "status": "healthy",
        "version": settings.APP_VERSION
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "src.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
