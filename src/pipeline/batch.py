"""
Batch Orchestration

Runs every image of a batch through mask -> resolve -> encode -> name,
skips the ones that fail, and packages the survivors:

- exactly one success      -> SingleResult (no archive overhead)
- zero or several successes -> ArchiveResult (ZIP, source order)

A batch never raises because of a bad image; at worst it returns an empty
archive. Callers that care about partial failures look at ``skipped``.
"""

import io
import time
import uuid
import zipfile
import contextvars
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Sequence, Tuple

from src.core.config import settings as app_settings
from src.core.exceptions import ImageryBaseException
from src.core.logging import get_logger, LogContext
from src.core.metrics import record_batch, record_image_outcome
from src.engines.imaging.encoder import detect_source_format
from src.engines.imaging.schemas import (
    ArchiveResult,
    BatchResult,
    ImageBlob,
    ProcessedFile,
    ProcessingSettings,
    SingleResult,
)
from src.pipeline.stages import (
    process_encode_stage,
    process_mask_stage,
    process_naming_stage,
    process_resolve_stage,
)

logger = get_logger(__name__)


def process_single_image(image: ImageBlob, settings: ProcessingSettings) -> ProcessedFile:
    """
    Run one image through the whole pipeline.

    Raises:
        DecodeError, EncodeError: the image can't be processed
    """
    # "original" follows the upload's codec, not the masked PNG
    source_format = detect_source_format(image)

    masked, mask_meta = process_mask_stage(image, settings)
    plan, plan_meta = process_resolve_stage(settings)
    output_bytes, encode_meta = process_encode_stage(masked, plan, settings, source_format)
    output_name = process_naming_stage(image, settings)

    logger.info(
        "item_processed",
        filename=image.filename,
        output_name=output_name,
        background_applied=mask_meta["applied"],
        target=plan_meta["target"],
        output_size=encode_meta["output_size"],
        encode_ms=encode_meta["duration_ms"]
    )
    return ProcessedFile(name=output_name, data=output_bytes)


def build_archive(files: Sequence[ProcessedFile]) -> Tuple[bytes, Tuple[str, ...]]:
    """
    Bundle processed files into a flat ZIP archive.

    Entries keep source order. A later file with an already used name
    replaces the earlier content in place.

    Returns:
        Tuple of (zip_bytes, entry_names)
    """
    entries: Dict[str, bytes] = {}
    for processed in files:
        if processed.name in entries:
            logger.warning("archive_entry_overwritten", entry_name=processed.name)
        entries[processed.name] = processed.data

    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
        for name, data in entries.items():
            archive.writestr(name, data)

    return buffer.getvalue(), tuple(entries)


class BatchProcessor:
    """
    Processes one batch of uploads with immutable settings.

    Items share no state, so with ``max_workers > 1`` they run on a bounded
    thread pool; results are still collected in source order.
    """

    def __init__(
        self,
        max_workers: Optional[int] = None,
        archive_filename: Optional[str] = None
    ):
        self.max_workers = max(1, max_workers or app_settings.BATCH_MAX_WORKERS)
        self.archive_filename = archive_filename or app_settings.ARCHIVE_FILENAME

    def _process_or_skip(
        self,
        image: ImageBlob,
        settings: ProcessingSettings
    ) -> Optional[ProcessedFile]:
        output_format = settings.output_format.value
        try:
            with LogContext(filename=image.filename):
                processed = process_single_image(image, settings)
        except ImageryBaseException as e:
            logger.warning(
                "item_skipped",
                filename=image.filename,
                error=e.message,
                error_stage=e.stage,
                error_type=type(e).__name__
            )
            record_image_outcome("skipped", output_format)
            return None
        except Exception as e:
            logger.error(
                "item_skipped",
                filename=image.filename,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True
            )
            record_image_outcome("skipped", output_format)
            return None

        record_image_outcome("processed", output_format)
        return processed

    def _process_all(
        self,
        images: Sequence[ImageBlob],
        settings: ProcessingSettings
    ) -> List[Optional[ProcessedFile]]:
        workers = min(self.max_workers, len(images))
        if workers <= 1:
            return [self._process_or_skip(image, settings) for image in images]

        # Each task runs in its own copy of the caller's context so worker
        # threads log with the batch_id
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="batch") as executor:
            futures = [
                executor.submit(contextvars.copy_context().run, self._process_or_skip, image, settings)
                for image in images
            ]
            return [future.result() for future in futures]

    def run(
        self,
        images: Sequence[ImageBlob],
        settings: ProcessingSettings,
        force_archive: bool = False
    ) -> BatchResult:
        """
        Process a batch.

        Args:
            images: Uploads in source order
            settings: Settings applied to every image
            force_archive: Return an archive even for a single success

        Returns:
            SingleResult or ArchiveResult
        """
        batch_id = str(uuid.uuid4())

        with LogContext(batch_id=batch_id, stage="batch"):
            start_time = time.time()
            logger.info(
                "batch_started",
                image_count=len(images),
                output_format=settings.output_format.value,
                max_workers=self.max_workers,
                force_archive=force_archive
            )

            outcomes = self._process_all(images, settings)
            processed = [item for item in outcomes if item is not None]
            skipped = tuple(
                image.filename for image, item in zip(images, outcomes) if item is None
            )

            result: BatchResult
            if len(processed) == 1 and not force_archive:
                result = SingleResult(
                    filename=processed[0].name,
                    data=processed[0].data,
                    skipped=skipped
                )
            else:
                archive_bytes, entry_names = build_archive(processed)
                result = ArchiveResult(
                    data=archive_bytes,
                    filename=self.archive_filename,
                    entry_names=entry_names,
                    skipped=skipped
                )

            duration = time.time() - start_time
            record_batch(result.kind, len(images), duration)
            logger.info(
                "batch_completed",
                result=result.kind,
                processed=len(processed),
                skipped=len(skipped),
                output_size=len(result.data),
                duration_ms=int(duration * 1000)
            )

        return result


def run_batch(
    images: Sequence[ImageBlob],
    settings: ProcessingSettings,
    *,
    force_archive: bool = False,
    max_workers: Optional[int] = None
) -> BatchResult:
    """Process a batch with a one-off BatchProcessor."""
    return BatchProcessor(max_workers=max_workers).run(images, settings, force_archive=force_archive)
