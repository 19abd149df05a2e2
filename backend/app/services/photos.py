from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from uuid import UUID

from app.core.errors import PhotoNotFoundError, ProcessingError, ValidationError
from app.models.photo import Photo
from app.services.catalog import CatalogStore, replace_tags, set_variant
from app.services.storage import StorageGateway
from app.services.thumbnail import ENHANCEMENT_TYPES, apply_enhancement
from app.services.validator import validate_notes, validate_tags

logger = logging.getLogger(__name__)

_UNSET = object()


@dataclass
class PhotoChanges:
    tags: list[str] | None = None
    notes: object = _UNSET
    is_favorite: bool | None = None
    is_private: bool | None = None


class PhotoEditor:
    """Owner-initiated edits to a single record."""

    def __init__(self, catalog: CatalogStore, storage: StorageGateway) -> None:
        self.catalog = catalog
        self.storage = storage

    async def get(self, photo_id: UUID, owner_id: UUID) -> Photo:
        photo = await self.catalog.get_owned(photo_id, owner_id)
        if photo is None:
            raise PhotoNotFoundError(photo_id)
        return photo

    async def update(self, photo_id: UUID, owner_id: UUID, changes: PhotoChanges) -> Photo:
        tags = validate_tags(changes.tags) if changes.tags is not None else None
        notes = validate_notes(changes.notes) if changes.notes is not _UNSET else _UNSET

        def _apply(photo: Photo) -> None:
            if tags is not None:
                replace_tags(photo, tags)
            if notes is not _UNSET:
                photo.user_notes = notes
            if changes.is_favorite is not None:
                photo.is_favorite = changes.is_favorite
            if changes.is_private is not None:
                photo.is_private = changes.is_private

        photo = await self.catalog.mutate_owned(photo_id, owner_id, _apply)
        if photo is None:
            raise PhotoNotFoundError(photo_id)
        return photo

    async def soft_delete(self, photo_id: UUID, owner_id: UUID) -> None:
        def _mark_deleted(photo: Photo) -> None:
            photo.is_deleted = True

        if await self.catalog.mutate_owned(photo_id, owner_id, _mark_deleted) is None:
            raise PhotoNotFoundError(photo_id)
        logger.info("photo soft deleted photo_id=%s owner_id=%s", photo_id, owner_id)

    async def enhance(self, photo_id: UUID, owner_id: UUID, enhancement_type: str) -> Photo:
        enhancement_type = (enhancement_type or "").strip().lower()
        if enhancement_type not in ENHANCEMENT_TYPES:
            raise ValidationError(
                f"Enhancement type must be one of: {', '.join(ENHANCEMENT_TYPES)}.",
                field="enhancement_type",
            )

        photo = await self.get(photo_id, owner_id)
        original_path = (photo.storage_paths or {}).get("original")
        original = await self.storage.fetch(original_path, photo.storage_container) if original_path else None
        if original is None:
            raise ProcessingError("Original file is missing from storage.")

        try:
            enhanced = await asyncio.to_thread(apply_enhancement, original, enhancement_type)
        except (OSError, ValueError) as exc:
            raise ProcessingError("Original file could not be decoded for enhancement.") from exc
        variant = f"enhanced_{enhancement_type}"
        stored = await self.storage.store(
            enhanced,
            f"{photo.owner_id}/{photo.id}/{variant}.jpg",
            photo.storage_container,
            content_type="image/jpeg",
        )

        updated = await self.catalog.mutate_owned(
            photo_id, owner_id, lambda record: set_variant(record, variant, stored)
        )
        if updated is None:
            raise PhotoNotFoundError(photo_id)
        logger.info("photo enhanced photo_id=%s variant=%s", photo_id, variant)
        return updated
