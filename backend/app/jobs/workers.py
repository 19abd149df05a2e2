from __future__ import annotations

import asyncio
import logging
import os
import socket
from uuid import UUID, uuid4

from PIL import Image, UnidentifiedImageError
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.errors import ProcessingError, StorageError
from app.jobs.queue import ProcessingQueue
from app.models.photo import Photo
from app.services.analysis import AnalysisClient
from app.services.catalog import CatalogStore
from app.services.metadata import MetadataExtractor
from app.services.storage import StorageGateway, StoredObject
from app.services.thumbnail import generate_preview, generate_thumbnail

logger = logging.getLogger(__name__)

_ERROR_BACKOFF_SECONDS = 30
_CODEC_ERRORS = (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError, ValueError)


def default_worker_id(prefix: str = settings.WORKER_ID) -> str:
    return f"{prefix}-{socket.gethostname()}-{os.getpid()}-{uuid4().hex[:6]}"


class ProcessingWorker:
    """Advances ``processing`` records to ``completed`` or ``failed``.

    Records are claimed with a lease; a worker that dies mid-record simply lets the
    lease expire and another claim picks the record up again. Variant names are
    deterministic per photo so a repeated run overwrites its own output.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        storage: StorageGateway,
        queue: ProcessingQueue,
        analysis: AnalysisClient | None = None,
        extractor: MetadataExtractor | None = None,
        worker_id: str | None = None,
        batch_size: int = settings.PROCESSING_BATCH_SIZE,
        lease_seconds: int = settings.PROCESSING_LEASE_SECONDS,
        poll_seconds: float = settings.PROCESSING_POLL_SECONDS,
    ) -> None:
        self.catalog = catalog
        self.storage = storage
        self.queue = queue
        self.analysis = analysis or AnalysisClient(settings.AI_SERVICE_URL)
        self.extractor = extractor or MetadataExtractor()
        self.worker_id = worker_id or default_worker_id()
        self.batch_size = batch_size
        self.lease_seconds = lease_seconds
        self.poll_seconds = poll_seconds

    async def run_forever(self) -> None:
        logger.info("processing worker started worker_id=%s", self.worker_id)
        while True:
            try:
                processed = await self.run_once()
            except SQLAlchemyError:
                logger.exception("processing batch failed; backing off")
                await asyncio.sleep(_ERROR_BACKOFF_SECONDS)
                continue

            if processed:
                continue
            if self.queue.enabled:
                await asyncio.to_thread(self.queue.pop, max(1, int(self.poll_seconds)))
            else:
                await asyncio.sleep(self.poll_seconds)

    async def run_once(self) -> int:
        photos = await self.catalog.claim_for_processing(self.worker_id, self.batch_size, self.lease_seconds)
        for photo in photos:
            try:
                await self.process(photo)
            except SQLAlchemyError:
                raise
            except Exception as exc:
                logger.exception("processing crashed photo_id=%s", photo.id)
                await self._fail(photo.id, f"Unexpected processing error: {exc.__class__.__name__}")
        if photos:
            logger.info("processing batch done worker_id=%s count=%s", self.worker_id, len(photos))
        return len(photos)

    async def process(self, photo: Photo) -> bool:
        try:
            variants, analysis = await self._render(photo)
        except (ProcessingError, StorageError) as exc:
            return await self._fail(photo.id, str(exc))
        except _CODEC_ERRORS as exc:
            logger.exception("processing codec error photo_id=%s", photo.id)
            return await self._fail(photo.id, f"Image could not be processed: {exc.__class__.__name__}")

        completed = await self.catalog.complete_processing(photo.id, self.worker_id, variants, analysis)
        if completed:
            logger.info("processing completed photo_id=%s", photo.id)
        else:
            logger.warning("processing lease lost photo_id=%s worker_id=%s", photo.id, self.worker_id)
        return completed

    async def _render(self, photo: Photo) -> tuple[dict[str, StoredObject], dict]:
        container = photo.storage_container
        original_path = (photo.storage_paths or {}).get("original")
        if not original_path:
            raise ProcessingError("Record has no original variant.")

        original = await self.storage.fetch(original_path, container)
        if original is None:
            raise ProcessingError("Original file is missing from storage.")

        thumbnail_bytes = await asyncio.to_thread(generate_thumbnail, original)
        preview_bytes = await asyncio.to_thread(generate_preview, original)

        variants = {}
        for variant, data in (("thumbnail", thumbnail_bytes), ("preview", preview_bytes)):
            variants[variant] = await self.storage.store(
                data,
                f"{photo.owner_id}/{photo.id}/{variant}.jpg",
                container,
                content_type="image/jpeg",
            )
        await self.catalog.renew_lease(photo.id, self.worker_id, self.lease_seconds)

        quality = self.extractor.analyze_quality(photo.width, photo.height)
        analysis = await self.analysis.analyze(preview_bytes, quality)
        return variants, analysis

    async def _fail(self, photo_id: UUID, message: str) -> bool:
        logger.warning("processing failed photo_id=%s error=%s", photo_id, message)
        failed = await self.catalog.fail_processing(photo_id, self.worker_id, message)
        if not failed:
            logger.warning("processing lease lost photo_id=%s worker_id=%s", photo_id, self.worker_id)
        return False


async def requeue_stalled_photos(catalog: CatalogStore, queue: ProcessingQueue) -> int:
    stalled = await catalog.find_stalled()
    for photo in stalled:
        logger.warning(
            "processing stalled photo_id=%s lease_owner=%s attempts=%s",
            photo.id,
            photo.lease_owner,
            photo.processing_attempts,
        )
        await asyncio.to_thread(queue.push, str(photo.id))
    return len(stalled)
