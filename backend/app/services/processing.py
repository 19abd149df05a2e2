from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from uuid import UUID

from app.core.errors import InvalidTransitionError, PhotoNotFoundError, ValidationError
from app.jobs.queue import ProcessingQueue
from app.models.photo import Photo, ProcessingStatus
from app.services.catalog import CatalogStore

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[ProcessingStatus, frozenset[ProcessingStatus]] = {
    ProcessingStatus.UPLOADED: frozenset({ProcessingStatus.PROCESSING}),
    ProcessingStatus.PROCESSING: frozenset({ProcessingStatus.COMPLETED, ProcessingStatus.FAILED}),
    ProcessingStatus.FAILED: frozenset({ProcessingStatus.PROCESSING}),
    ProcessingStatus.COMPLETED: frozenset(),
}

# Coarse UI hint only.
PROGRESS_BY_STATUS = {
    ProcessingStatus.UPLOADED: 10.0,
    ProcessingStatus.PROCESSING: 50.0,
    ProcessingStatus.COMPLETED: 100.0,
    ProcessingStatus.FAILED: 0.0,
}

STATUS_REPORT_LIMIT = 100


def can_transition(current: ProcessingStatus, target: ProcessingStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def sources_for(target: ProcessingStatus) -> list[ProcessingStatus]:
    return [status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets]


def progress_for(status: str | ProcessingStatus) -> float:
    try:
        return PROGRESS_BY_STATUS[ProcessingStatus(status)]
    except ValueError:
        return 0.0


def completed_steps(photo: Photo) -> list[str]:
    steps = ["upload"]
    if photo.width and photo.height:
        steps.append("metadata")
    if photo.thumbnail_generated:
        steps.append("thumbnail")
    if photo.ai_analysis is not None:
        steps.append("analysis")
    return steps


@dataclass
class ProcessingStatusEntry:
    photo_id: UUID
    filename: str
    status: str
    progress: float
    completed_steps: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    attempts: int = 0
    last_updated: datetime | None = None


class ProcessingStateMachine:
    """Owns the per-record status lifecycle.

    Transitions are conditional single-row updates, so a stale caller can never
    move a record backwards. The worker side of the lifecycle (claim, complete,
    fail) lives in ``app.jobs.workers`` and goes through the same table.
    """

    def __init__(self, catalog: CatalogStore, queue: ProcessingQueue | None = None) -> None:
        self.catalog = catalog
        self.queue = queue

    async def transition(
        self,
        photo_id: UUID,
        target: ProcessingStatus,
        owner_id: UUID | None = None,
        sources: list[ProcessingStatus] | None = None,
        **values,
    ) -> None:
        moved = await self.catalog.transition_status(
            photo_id, sources or sources_for(target), target, owner_id=owner_id, **values
        )
        if moved:
            logger.info("processing transition photo_id=%s status=%s", photo_id, target.value)
            return

        photo = await (
            self.catalog.get_owned(photo_id, owner_id) if owner_id else self.catalog.get_by_id(photo_id)
        )
        if photo is None:
            raise PhotoNotFoundError(photo_id)
        raise InvalidTransitionError(photo.processing_status, target.value)

    async def start_processing(self, photo_id: UUID) -> None:
        await self.transition(photo_id, ProcessingStatus.PROCESSING)
        if self.queue is not None:
            await asyncio.to_thread(self.queue.push, str(photo_id))

    async def retry(self, photo_id: UUID, owner_id: UUID) -> Photo:
        await self.transition(
            photo_id,
            ProcessingStatus.PROCESSING,
            owner_id=owner_id,
            sources=[ProcessingStatus.FAILED],
            lease_owner=None,
            lease_expires_at=None,
        )
        if self.queue is not None:
            await asyncio.to_thread(self.queue.push, str(photo_id))
        photo = await self.catalog.get_owned(photo_id, owner_id)
        if photo is None:
            raise PhotoNotFoundError(photo_id)
        return photo

    async def status_report(self, owner_id: UUID, status: str | None = "processing") -> list[ProcessingStatusEntry]:
        if status is not None:
            try:
                status = ProcessingStatus(status.lower()).value
            except ValueError as exc:
                raise ValidationError(f"Unknown processing status: {status}.", field="status") from exc

        photos = await self.catalog.list_by_status(owner_id, status, limit=STATUS_REPORT_LIMIT)
        return [
            ProcessingStatusEntry(
                photo_id=photo.id,
                filename=photo.original_filename,
                status=photo.processing_status,
                progress=progress_for(photo.processing_status),
                completed_steps=completed_steps(photo),
                errors=list(photo.processing_errors or []),
                attempts=photo.processing_attempts,
                last_updated=photo.updated_at,
            )
            for photo in photos
        ]
