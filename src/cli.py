#!/usr/bin/env python3
"""
Batch Processing from the Command Line

Runs the same pipeline as POST /api/v1/process over a directory of images
and writes the single result or the ZIP archive to an output directory.

Usage:
    python -m src.cli ./photos -o ./out --settings settings.json
    python -m src.cli ./photos -o ./out --format webp --compression high --preset square
"""

import sys
import argparse
import mimetypes
from pathlib import Path
from typing import List, Optional

from src.core.config import settings as app_settings
from src.core.logging import setup_logging, get_logger
from src.engines.imaging.schemas import ImageBlob, ProcessingSettings, SingleResult
from src.pipeline.batch import run_batch

logger = get_logger(__name__)

IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".gif", ".tif", ".tiff", ".heic", ".heif"}


def collect_images(input_dir: Path) -> List[ImageBlob]:
    """Read every image file of a directory, sorted by name."""
    blobs = []
    for path in sorted(input_dir.iterdir()):
        if not path.is_file() or path.suffix.lower() not in IMAGE_EXTENSIONS:
            continue
        mime_type, _ = mimetypes.guess_type(path.name)
        blobs.append(ImageBlob(
            data=path.read_bytes(),
            filename=path.name,
            mime_type=mime_type or "application/octet-stream"
        ))
    return blobs


def build_settings(args: argparse.Namespace) -> ProcessingSettings:
    """Settings file first, then command-line overrides."""
    document = {}
    if args.settings:
        document = ProcessingSettings.model_validate_json(
            Path(args.settings).read_text(encoding="utf-8")
        ).model_dump(by_alias=True)

    if args.format:
        document["outputFormat"] = args.format
    if args.compression:
        document["compression"] = {"level": args.compression}
    if args.preset:
        document["resize"] = {**document.get("resize", {}), "usePreset": True, "preset": args.preset}
    if args.mode:
        document["resize"] = {**document.get("resize", {}), "mode": args.mode}
    if args.background:
        document["background"] = {
            "enabled": args.background != "none",
            "mode": args.background,
            "color": args.color,
        }
    if args.suffix is not None:
        document["fileNaming"] = {**document.get("fileNaming", {}), "suffix": args.suffix}

    return ProcessingSettings.model_validate(document)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Batch-transform product images (background, resize, re-encode, rename)"
    )
    parser.add_argument("input_dir", type=Path, help="Directory with source images")
    parser.add_argument("-o", "--output-dir", type=Path, default=Path("./output"))
    parser.add_argument("--settings", help="JSON settings document (same shape as the API)")
    parser.add_argument("--format", choices=["jpg", "png", "webp", "avif", "original"])
    parser.add_argument("--compression", choices=["low", "medium", "high"])
    parser.add_argument("--preset", choices=["square", "fourFive", "threeFour", "landscape"])
    parser.add_argument("--mode", choices=["fit", "exact"])
    parser.add_argument("--background", choices=["none", "transparent", "solid"])
    parser.add_argument("--color", default="#ffffff", help="Fill colour for --background solid")
    parser.add_argument("--suffix")
    parser.add_argument("--zip", action="store_true", help="Always write an archive")
    parser.add_argument("--workers", type=int, default=app_settings.BATCH_MAX_WORKERS)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    setup_logging(log_level=app_settings.LOG_LEVEL, json_format=False, version=app_settings.APP_VERSION)

    if not args.input_dir.is_dir():
        logger.error("input_dir_missing", input_dir=str(args.input_dir))
        return 2

    images = collect_images(args.input_dir)
    if not images:
        logger.error("no_images_found", input_dir=str(args.input_dir))
        return 1

    result = run_batch(
        images,
        build_settings(args),
        force_archive=args.zip,
        max_workers=args.workers
    )

    args.output_dir.mkdir(parents=True, exist_ok=True)
    destination = args.output_dir / result.filename
    destination.write_bytes(result.data)

    logger.info(
        "output_written",
        path=str(destination),
        result="single" if isinstance(result, SingleResult) else "archive",
        skipped=list(result.skipped)
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
