from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.errors import ProcessingError, StorageError, ValidationError
from app.models.photo import Photo
from app.services.catalog import CatalogStore
from app.services.files import sanitize_filename, unique_storage_name
from app.services.metadata import MetadataExtractor
from app.services.processing import ProcessingStateMachine
from app.services.storage import StorageGateway
from app.services.validator import IncomingFile, UploadValidator, validate_notes, validate_tags

logger = logging.getLogger(__name__)


@dataclass
class UploadOptions:
    tags: list[str] = field(default_factory=list)
    notes: str | None = None
    is_private: bool = False


@dataclass
class ItemError:
    filename: str
    message: str
    field: str | None = None
    retryable: bool = False

    def to_dict(self) -> dict:
        return {
            "filename": self.filename,
            "field": self.field,
            "message": self.message,
            "retryable": self.retryable,
        }


@dataclass
class BatchOutcome:
    photos: list[Photo] = field(default_factory=list)
    errors: list[ItemError] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.photos)

    @property
    def failed_count(self) -> int:
        return len(self.errors)

    @property
    def is_partial(self) -> bool:
        return bool(self.photos) and bool(self.errors)


class IngestionOrchestrator:
    """Turns an uploaded batch into catalog records.

    Per file: validate, extract metadata, store the original, create the record
    as ``uploaded`` and flip it to ``processing``. Per-file failures are collected
    into the outcome; only batch-level validation and datastore faults raise.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        storage: StorageGateway,
        state_machine: ProcessingStateMachine,
        validator: UploadValidator | None = None,
        extractor: MetadataExtractor | None = None,
        container: str = settings.STORAGE_CONTAINER,
    ) -> None:
        self.catalog = catalog
        self.storage = storage
        self.state_machine = state_machine
        self.validator = validator or UploadValidator()
        self.extractor = extractor or MetadataExtractor()
        self.container = container

    async def ingest_batch(
        self,
        files: list[IncomingFile],
        owner_id: UUID,
        options: UploadOptions | None = None,
    ) -> BatchOutcome:
        options = options or UploadOptions()
        tags = validate_tags(options.tags)
        notes = validate_notes(options.notes)
        checks = self.validator.validate_batch(files)

        outcome = BatchOutcome()
        for check in checks:
            if not check.is_valid:
                outcome.errors.append(
                    ItemError(
                        filename=check.file.filename,
                        field=check.error.field,
                        message=check.error.message,
                    )
                )
                continue

            try:
                photo = await self.ingest_file(check.file, owner_id, tags, notes, options.is_private)
            except ValidationError as exc:
                outcome.errors.append(
                    ItemError(filename=check.file.filename, field=exc.field, message=exc.message)
                )
                continue
            except StorageError as exc:
                logger.warning("upload storage failed filename=%s error=%s", check.file.filename, exc)
                outcome.errors.append(
                    ItemError(
                        filename=check.file.filename,
                        message=str(exc),
                        retryable=exc.retryable,
                    )
                )
                continue
            outcome.photos.append(photo)

        logger.info(
            "upload batch owner_id=%s uploaded=%s failed=%s",
            owner_id,
            outcome.success_count,
            outcome.failed_count,
        )
        return outcome

    async def ingest_file(
        self,
        file: IncomingFile,
        owner_id: UUID,
        tags: list[str],
        notes: str | None,
        is_private: bool,
    ) -> Photo:
        try:
            metadata = await asyncio.to_thread(self.extractor.extract, file.data)
        except ProcessingError as exc:
            raise ValidationError(str(exc), field="file", filename=file.filename) from exc

        stored = await self.storage.store(
            file.data,
            f"{owner_id}/{unique_storage_name(file.filename)}",
            self.container,
            content_type=file.content_type,
        )

        photo = Photo(
            id=uuid4(),
            owner_id=owner_id,
            original_filename=file.filename,
            sanitized_filename=sanitize_filename(file.filename),
            file_size_bytes=file.size,
            mime_type=(file.content_type or "").split(";")[0].strip().lower(),
            storage_provider=self.storage.provider,
            storage_container=self.container,
            storage_paths={"original": stored.path},
            storage_urls={"original": stored.url},
            exif=metadata.exif,
            user_notes=notes,
            is_private=is_private,
            **metadata.as_image_data(),
        )

        try:
            photo = await self.catalog.create(photo, tags)
        except SQLAlchemyError:
            if not await self.storage.delete(stored.path, self.container):
                logger.warning("orphaned upload path=%s", stored.path)
            raise

        await self.state_machine.start_processing(photo.id)
        return await self.catalog.get_by_id(photo.id) or photo
