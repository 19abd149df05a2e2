from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterable
from uuid import UUID

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.config import settings
from app.models.photo import Photo, PhotoPrintRecord, PhotoTag, ProcessingStatus
from app.services.storage import StoredObject

logger = logging.getLogger(__name__)

CLAIMABLE_STATUSES = (ProcessingStatus.UPLOADED.value, ProcessingStatus.PROCESSING.value)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def owned_active(owner_id: UUID) -> list:
    """Base predicate shared by every owner-facing read and write."""
    return [Photo.owner_id == owner_id, Photo.is_deleted.is_(False)]


def replace_tags(photo: Photo, tags: Iterable[str]) -> None:
    wanted = list(dict.fromkeys(tags))
    photo.tag_links = [link for link in photo.tag_links if link.name in wanted]
    existing = {link.name for link in photo.tag_links}
    for name in wanted:
        if name not in existing:
            photo.tag_links.append(PhotoTag(name=name))


def add_tags(photo: Photo, tags: Iterable[str]) -> None:
    existing = {link.name for link in photo.tag_links}
    for name in dict.fromkeys(tags):
        if name not in existing:
            photo.tag_links.append(PhotoTag(name=name))
            existing.add(name)


def set_variant(photo: Photo, variant: str, stored: StoredObject) -> None:
    # JSON columns only persist on reassignment.
    photo.storage_paths = {**(photo.storage_paths or {}), variant: stored.path}
    photo.storage_urls = {**(photo.storage_urls or {}), variant: stored.url}


class CatalogStore:
    """Persistence for photo records.

    Every public method runs in its own session and commits once, so a single
    record update is all-or-nothing. Nothing here spans several records in one
    logical operation except batch reads and lease claims.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    def session(self) -> AsyncSession:
        return self._sessionmaker()

    async def _load(self, session: AsyncSession, *criteria, for_update: bool = False) -> Photo | None:
        query = select(Photo).where(*criteria)
        if for_update:
            query = query.with_for_update()
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def create(self, photo: Photo, tags: Iterable[str] = ()) -> Photo:
        now = _utcnow()
        photo.uploaded_at = photo.uploaded_at or now
        photo.created_at = photo.created_at or now
        photo.updated_at = now
        photo.processing_status = ProcessingStatus.UPLOADED.value
        photo.processing_errors = []
        photo.tag_links = [PhotoTag(name=name) for name in dict.fromkeys(tags)]
        photo.print_history = []

        async with self._sessionmaker() as session:
            session.add(photo)
            await session.commit()

        logger.info("catalog record created photo_id=%s owner_id=%s", photo.id, photo.owner_id)
        return photo

    async def get_by_id(self, photo_id: UUID) -> Photo | None:
        async with self._sessionmaker() as session:
            return await self._load(session, Photo.id == photo_id)

    async def get_owned(self, photo_id: UUID, owner_id: UUID) -> Photo | None:
        async with self._sessionmaker() as session:
            return await self._load(session, Photo.id == photo_id, *owned_active(owner_id))

    async def mutate_owned(
        self,
        photo_id: UUID,
        owner_id: UUID,
        mutate: Callable[[Photo], None],
    ) -> Photo | None:
        async with self._sessionmaker() as session:
            photo = await self._load(session, Photo.id == photo_id, *owned_active(owner_id), for_update=True)
            if photo is None:
                return None
            mutate(photo)
            photo.updated_at = _utcnow()
            await session.commit()
            return photo

    async def fetch_page(self, filters: list, order_by: list, offset: int, limit: int) -> tuple[list[Photo], int]:
        async with self._sessionmaker() as session:
            total = (
                await session.execute(select(func.count()).select_from(Photo).where(*filters))
            ).scalar_one()
            result = await session.execute(
                select(Photo).where(*filters).order_by(*order_by).offset(offset).limit(limit)
            )
            return list(result.scalars().all()), int(total)

    async def list_by_status(self, owner_id: UUID, status: str | None, limit: int = 100) -> list[Photo]:
        criteria = owned_active(owner_id)
        if status:
            criteria.append(Photo.processing_status == status)
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(Photo).where(*criteria).order_by(Photo.uploaded_at.asc(), Photo.id.asc()).limit(limit)
            )
            return list(result.scalars().all())

    async def list_print_eligible(self, owner_id: UUID, min_width: int, min_height: int) -> list[Photo]:
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(Photo)
                .where(
                    *owned_active(owner_id),
                    Photo.processing_status == ProcessingStatus.COMPLETED.value,
                    Photo.width >= min_width,
                    Photo.height >= min_height,
                )
                .order_by(Photo.uploaded_at.desc(), Photo.id.desc())
            )
            return list(result.scalars().all())

    async def transition_status(
        self,
        photo_id: UUID,
        sources: Iterable[ProcessingStatus],
        target: ProcessingStatus,
        owner_id: UUID | None = None,
        **values,
    ) -> bool:
        criteria = [
            Photo.id == photo_id,
            Photo.processing_status.in_([status.value for status in sources]),
        ]
        if owner_id is not None:
            criteria.extend(owned_active(owner_id))

        async with self._sessionmaker() as session:
            result = await session.execute(
                update(Photo)
                .where(*criteria)
                .values(processing_status=target.value, updated_at=_utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return result.rowcount == 1

    async def claim_for_processing(self, worker_id: str, limit: int, lease_seconds: int) -> list[Photo]:
        now = _utcnow()
        eligible = [
            Photo.is_deleted.is_(False),
            Photo.processing_status.in_(CLAIMABLE_STATUSES),
            or_(Photo.lease_expires_at.is_(None), Photo.lease_expires_at < now),
        ]

        async with self._sessionmaker() as session:
            candidates = (
                await session.execute(
                    select(Photo.id)
                    .where(*eligible)
                    .order_by(Photo.uploaded_at.asc(), Photo.id.asc())
                    .limit(limit)
                )
            ).scalars().all()

            claimed: list[UUID] = []
            for photo_id in candidates:
                result = await session.execute(
                    update(Photo)
                    .where(Photo.id == photo_id, *eligible)
                    .values(
                        processing_status=ProcessingStatus.PROCESSING.value,
                        lease_owner=worker_id,
                        lease_expires_at=now + timedelta(seconds=lease_seconds),
                        processing_attempts=Photo.processing_attempts + 1,
                        updated_at=now,
                    )
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    claimed.append(photo_id)
            await session.commit()

            if not claimed:
                return []
            result = await session.execute(
                select(Photo)
                .where(Photo.id.in_(claimed))
                .order_by(Photo.uploaded_at.asc(), Photo.id.asc())
            )
            return list(result.scalars().all())

    async def renew_lease(self, photo_id: UUID, worker_id: str, lease_seconds: int) -> bool:
        now = _utcnow()
        async with self._sessionmaker() as session:
            result = await session.execute(
                update(Photo)
                .where(
                    Photo.id == photo_id,
                    Photo.lease_owner == worker_id,
                    Photo.processing_status == ProcessingStatus.PROCESSING.value,
                )
                .values(lease_expires_at=now + timedelta(seconds=lease_seconds), updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
        return result.rowcount == 1

    async def complete_processing(
        self,
        photo_id: UUID,
        worker_id: str,
        variants: dict[str, StoredObject],
        analysis: dict | None,
    ) -> bool:
        async with self._sessionmaker() as session:
            photo = await self._load(session, Photo.id == photo_id, for_update=True)
            if (
                photo is None
                or photo.lease_owner != worker_id
                or photo.processing_status != ProcessingStatus.PROCESSING.value
            ):
                return False

            now = _utcnow()
            for variant, stored in variants.items():
                set_variant(photo, variant, stored)
            photo.thumbnail_generated = "thumbnail" in photo.storage_paths
            photo.ai_analysis = analysis
            if analysis is not None:
                photo.quality_score = analysis.get("quality_score")
                photo.ai_enhancement_available = bool(analysis.get("enhancement_recommended"))
            photo.processing_status = ProcessingStatus.COMPLETED.value
            photo.processed_at = now
            photo.lease_owner = None
            photo.lease_expires_at = None
            photo.updated_at = now
            await session.commit()
        return True

    async def fail_processing(self, photo_id: UUID, worker_id: str, message: str) -> bool:
        async with self._sessionmaker() as session:
            photo = await self._load(session, Photo.id == photo_id, for_update=True)
            if (
                photo is None
                or photo.lease_owner != worker_id
                or photo.processing_status != ProcessingStatus.PROCESSING.value
            ):
                return False

            photo.processing_errors = [*(photo.processing_errors or []), message]
            photo.processing_status = ProcessingStatus.FAILED.value
            photo.lease_owner = None
            photo.lease_expires_at = None
            photo.updated_at = _utcnow()
            await session.commit()
        return True

    async def find_stalled(
        self,
        limit: int = 100,
        unclaimed_minutes: int = settings.STALLED_SWEEP_MINUTES,
    ) -> list[Photo]:
        now = _utcnow()
        idle_since = now - timedelta(minutes=unclaimed_minutes)
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(Photo)
                .where(
                    Photo.is_deleted.is_(False),
                    Photo.processing_status == ProcessingStatus.PROCESSING.value,
                    or_(
                        and_(Photo.lease_expires_at.is_(None), Photo.updated_at < idle_since),
                        and_(Photo.lease_owner.is_not(None), Photo.lease_expires_at < now),
                    ),
                )
                .order_by(Photo.uploaded_at.asc(), Photo.id.asc())
                .limit(limit)
            )
            return list(result.scalars().all())

    async def append_print_record(
        self,
        photo_id: UUID,
        order_id: str,
        size: str,
        quantity: int,
        printed_at: datetime | None = None,
    ) -> PhotoPrintRecord | None:
        async with self._sessionmaker() as session:
            photo = await self._load(session, Photo.id == photo_id, for_update=True)
            if photo is None:
                return None
            record = PhotoPrintRecord(
                photo_id=photo.id,
                order_id=order_id,
                size=size,
                quantity=quantity,
                printed_at=printed_at or _utcnow(),
            )
            session.add(record)
            photo.updated_at = _utcnow()
            await session.commit()
            return record

    async def get_print_history(self, photo_id: UUID) -> list[PhotoPrintRecord]:
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(PhotoPrintRecord)
                .where(PhotoPrintRecord.photo_id == photo_id)
                .order_by(PhotoPrintRecord.printed_at.asc(), PhotoPrintRecord.id.asc())
            )
            return list(result.scalars().all())
