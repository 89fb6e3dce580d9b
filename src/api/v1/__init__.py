"""
API v1 Router Module

- POST /api/v1/process      - batch image transformation
- GET  /api/v1/metrics      - Prometheus metrics
- GET  /api/v1/capabilities - formats, presets and limits
"""

from fastapi import APIRouter

from src.api.v1.process import router as process_router
from src.api.v1.service import router as service_router

api_v1_router = APIRouter(prefix="/api/v1")

api_v1_router.include_router(process_router, prefix="/process", tags=["process"])
api_v1_router.include_router(service_router, tags=["service"])
