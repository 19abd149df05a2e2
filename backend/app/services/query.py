from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy import exists, func, or_, select

from app.core.errors import ValidationError
from app.models.photo import Photo, PhotoPrintRecord, PhotoTag, ProcessingStatus
from app.services.catalog import CatalogStore, owned_active
from app.services.validator import MAX_SEARCH_LENGTH, normalize_tags

T = TypeVar("T")

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
SORT_FIELDS = ("uploadDate", "filename", "fileSize", "printCount", "processingStatus")
SORT_ALIASES = {
    "uploaddate": "uploadDate",
    "uploadedat": "uploadDate",
    "uploaded": "uploadDate",
    "filename": "filename",
    "filesize": "fileSize",
    "printcount": "printCount",
    "processingstatus": "processingStatus",
}
SORT_ORDERS = ("asc", "desc")


@dataclass
class GalleryQuery:
    owner_id: UUID
    search: str | None = None
    tags: list[str] = field(default_factory=list)
    date_from: date | datetime | None = None
    date_to: date | datetime | None = None
    sort_by: str = "uploadDate"
    sort_order: str = "desc"
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    is_favorite: bool | None = None
    processing_status: str | None = None

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.page_size


@dataclass
class PagedResult(Generic[T]):
    items: list[T]
    total_count: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total_count / self.page_size) if self.page_size else 0

    @property
    def has_previous_page(self) -> bool:
        return self.page > 1

    @property
    def has_next_page(self) -> bool:
        return self.page < self.total_pages


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


def _start_of_day(value: date | datetime) -> datetime:
    if isinstance(value, datetime):
        return _as_utc(value)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _after_end_of_day(value: date | datetime) -> datetime:
    day = value.date() if isinstance(value, datetime) else value
    return datetime.combine(day + timedelta(days=1), time.min, tzinfo=timezone.utc)


def normalize_query(query: GalleryQuery) -> GalleryQuery:
    if query.page < 1:
        raise ValidationError("Page must be 1 or greater.", field="page")
    if query.page_size < 1 or query.page_size > MAX_PAGE_SIZE:
        raise ValidationError(f"Page size must be between 1 and {MAX_PAGE_SIZE}.", field="page_size")

    sort_by = SORT_ALIASES.get((query.sort_by or "uploadDate").replace("_", "").lower())
    if sort_by is None:
        raise ValidationError(
            f"Sort field must be one of: {', '.join(SORT_FIELDS)}.", field="sort_by"
        )
    sort_order = (query.sort_order or "desc").lower()
    if sort_order not in SORT_ORDERS:
        raise ValidationError("Sort order must be 'asc' or 'desc'.", field="sort_order")

    search = (query.search or "").strip() or None
    if search and len(search) > MAX_SEARCH_LENGTH:
        raise ValidationError(
            f"Search term cannot exceed {MAX_SEARCH_LENGTH} characters.", field="search"
        )

    if query.date_from and query.date_to and _start_of_day(query.date_from) >= _after_end_of_day(query.date_to):
        raise ValidationError("date_from must not be after date_to.", field="date_from")

    statuses = {status.value for status in ProcessingStatus}
    status = query.processing_status.lower() if query.processing_status else None
    if status and status not in statuses:
        raise ValidationError(f"Unknown processing status: {query.processing_status}.", field="processing_status")

    return GalleryQuery(
        owner_id=query.owner_id,
        search=search,
        tags=normalize_tags(query.tags),
        date_from=query.date_from,
        date_to=query.date_to,
        sort_by=sort_by,
        sort_order=sort_order,
        page=query.page,
        page_size=query.page_size,
        is_favorite=query.is_favorite,
        processing_status=status,
    )


def build_gallery_filters(query: GalleryQuery) -> list:
    filters = owned_active(query.owner_id)

    if query.search:
        pattern = f"%{_escape_like(query.search)}%"
        filters.append(
            or_(
                Photo.original_filename.ilike(pattern, escape="\\"),
                Photo.user_notes.ilike(pattern, escape="\\"),
                exists().where(PhotoTag.photo_id == Photo.id, PhotoTag.name == query.search.lower()),
            )
        )

    for tag in query.tags:
        filters.append(exists().where(PhotoTag.photo_id == Photo.id, PhotoTag.name == tag))

    if query.date_from:
        filters.append(Photo.uploaded_at >= _start_of_day(query.date_from))
    if query.date_to:
        filters.append(Photo.uploaded_at < _after_end_of_day(query.date_to))

    if query.is_favorite is not None:
        filters.append(Photo.is_favorite.is_(query.is_favorite))
    if query.processing_status:
        filters.append(Photo.processing_status == query.processing_status)

    return filters


def _print_count_column():
    return (
        select(func.count(PhotoPrintRecord.id))
        .where(PhotoPrintRecord.photo_id == Photo.id)
        .correlate(Photo)
        .scalar_subquery()
    )


def build_gallery_ordering(query: GalleryQuery) -> list:
    columns = {
        "uploadDate": Photo.uploaded_at,
        "filename": Photo.original_filename,
        "fileSize": Photo.file_size_bytes,
        "printCount": _print_count_column(),
        "processingStatus": Photo.processing_status,
    }
    column = columns[query.sort_by]
    if query.sort_order == "asc":
        return [column.asc(), Photo.id.asc()]
    return [column.desc(), Photo.id.desc()]


class QueryEngine:
    def __init__(self, catalog: CatalogStore) -> None:
        self.catalog = catalog

    async def list_gallery(self, query: GalleryQuery) -> PagedResult[Photo]:
        query = normalize_query(query)
        items, total = await self.catalog.fetch_page(
            build_gallery_filters(query),
            build_gallery_ordering(query),
            offset=query.skip,
            limit=query.page_size,
        )
        return PagedResult(items=items, total_count=total, page=query.page, page_size=query.page_size)
