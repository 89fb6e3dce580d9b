"""
Application Configuration

Centralized settings management using Pydantic Settings.
Supports environment variables and .env files.
"""

from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # ==========================================================================
    # App Settings
    # ==========================================================================
    APP_NAME: str = "Product Image Batch Service"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = "development"  # development, staging, PROD
    DEBUG: bool = True

    # ==========================================================================
    # Upload Limits (enforced at the HTTP boundary only)
    # ==========================================================================
    MAX_FILES: int = 200
    MAX_TOTAL_BYTES: int = 1000 * 1024 * 1024  # 1000 MB
    SUPPORTED_MIME_TYPES: List[str] = [
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/webp",
        "image/gif",
        "image/tiff",
        "image/heic",
        "image/heif",
    ]

    # ==========================================================================
    # Pipeline Settings
    # ==========================================================================
    # Mean of R, G, B at or above this value is treated as background
    LUMA_THRESHOLD: int = 240

    # 1 = strictly sequential, >1 = bounded thread pool per batch
    BATCH_MAX_WORKERS: int = 4

    ARCHIVE_FILENAME: str = "processed_images.zip"
    PNG_COMPRESS_LEVEL: int = 9

    # When False, the "original" output format re-encodes as JPEG
    PRESERVE_ORIGINAL_FORMAT: bool = False

    # ==========================================================================
    # Logging Settings
    # ==========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT_JSON: bool = True  # JSON for production, console for development

    # ==========================================================================
    # CORS Settings
    # ==========================================================================
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173,http://localhost:8000"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


# Global settings instance
settings = Settings()
