from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Annotated, Iterable, Literal, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter, field_validator
from pydantic import ValidationError as PayloadError

from app.core.errors import UnsupportedOperationError, ValidationError
from app.models.photo import Photo
from app.services.catalog import CatalogStore, add_tags
from app.services.validator import validate_tags

logger = logging.getLogger(__name__)


class AddTags(BaseModel):
    type: Literal["addTags"] = "addTags"
    tags: list[str]

    @field_validator("tags")
    @classmethod
    def _normalize(cls, value: list[str]) -> list[str]:
        try:
            tags = validate_tags(value)
        except ValidationError as exc:
            raise ValueError(exc.message) from exc
        if not tags:
            raise ValueError("At least one tag is required.")
        return tags

    def apply(self, photo: Photo) -> None:
        add_tags(photo, self.tags)


class SetPrivacy(BaseModel):
    type: Literal["setPrivacy"] = "setPrivacy"
    is_private: bool

    def apply(self, photo: Photo) -> None:
        photo.is_private = self.is_private


class SetFavorite(BaseModel):
    type: Literal["setFavorite"] = "setFavorite"
    is_favorite: bool

    def apply(self, photo: Photo) -> None:
        photo.is_favorite = self.is_favorite


class Delete(BaseModel):
    type: Literal["delete"] = "delete"

    def apply(self, photo: Photo) -> None:
        photo.is_deleted = True


BulkOperation = Annotated[Union[AddTags, SetPrivacy, SetFavorite, Delete], Field(discriminator="type")]
_operation_adapter = TypeAdapter(BulkOperation)


def parse_operation(payload: dict) -> BulkOperation:
    try:
        return _operation_adapter.validate_python(payload)
    except PayloadError as exc:
        raise UnsupportedOperationError(
            f"Invalid bulk operation: {exc.errors()[0].get('msg', 'invalid payload')}",
            field="operation",
        ) from exc


def _parse_ids(photo_ids: Iterable[str | UUID]) -> list[UUID]:
    parsed: list[UUID] = []
    for raw in photo_ids:
        try:
            photo_id = raw if isinstance(raw, UUID) else UUID(str(raw))
        except ValueError:
            continue
        if photo_id not in parsed:
            parsed.append(photo_id)
    return parsed


@dataclass
class BulkResult:
    operation: str
    requested_count: int
    modified_count: int
    modified_ids: list[UUID] = field(default_factory=list)


class BulkMutator:
    def __init__(self, catalog: CatalogStore) -> None:
        self.catalog = catalog

    async def apply(
        self,
        photo_ids: Iterable[str | UUID],
        operation: BulkOperation | dict,
        owner_id: UUID,
    ) -> BulkResult:
        if isinstance(operation, dict):
            operation = parse_operation(operation)
        if not isinstance(operation, (AddTags, SetPrivacy, SetFavorite, Delete)):
            raise UnsupportedOperationError("Unsupported bulk operation.", field="operation")

        requested = list(photo_ids)
        modified: list[UUID] = []
        # One single-record update per id; a crash mid-batch leaves earlier updates in place.
        for photo_id in _parse_ids(requested):
            photo = await self.catalog.mutate_owned(photo_id, owner_id, operation.apply)
            if photo is not None:
                modified.append(photo_id)

        logger.info(
            "bulk operation=%s owner_id=%s requested=%s modified=%s",
            operation.type,
            owner_id,
            len(requested),
            len(modified),
        )
        return BulkResult(
            operation=operation.type,
            requested_count=len(requested),
            modified_count=len(modified),
            modified_ids=modified,
        )
