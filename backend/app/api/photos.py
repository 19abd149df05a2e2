from datetime import date
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Path, Query, Request, UploadFile
from pydantic import BaseModel

from app.api.deps import (
    get_bulk_mutator,
    get_download_issuer,
    get_ingestion,
    get_photo_editor,
    get_print_resolver,
    get_query_engine,
    get_state_machine,
)
from app.api.serializers import serialize_photo, serialize_photo_summary
from app.core.config import settings
from app.core.rate_limit import limiter
from app.core.security import require_owner_id
from app.services.bulk import BulkMutator, parse_operation
from app.services.downloads import DownloadLinkIssuer
from app.services.ingestion import IngestionOrchestrator, UploadOptions
from app.services.photos import PhotoChanges, PhotoEditor
from app.services.print_sizes import PrintSuitabilityResolver
from app.services.processing import ProcessingStateMachine
from app.services.query import GalleryQuery, QueryEngine
from app.services.validator import IncomingFile, normalize_tags

router = APIRouter(prefix="/photos", tags=["photos"])


class PhotoUpdatePayload(BaseModel):
    tags: list[str] | None = None
    notes: str | None = None
    is_favorite: bool | None = None
    is_private: bool | None = None


class BulkActionPayload(BaseModel):
    photo_ids: list[str]
    operation: dict


class EnhancePayload(BaseModel):
    enhancement_type: str = "auto"


@router.post("/upload")
@limiter.limit(settings.UPLOAD_RATE_LIMIT)
async def upload_photos(
    request: Request,
    files: list[UploadFile] = File(...),
    tags: str | None = Form(default=None),
    notes: str | None = Form(default=None),
    is_private: bool = Form(default=False),
    owner_id: UUID = Depends(require_owner_id),
    ingestion: IngestionOrchestrator = Depends(get_ingestion),
):
    if not files:
        raise HTTPException(status_code=400, detail="No files provided.")
    if len(files) > ingestion.validator.max_files:
        # Reject before reading any file body.
        raise HTTPException(
            status_code=400,
            detail=f"Maximum {ingestion.validator.max_files} files allowed per upload.",
        )

    incoming = []
    for file in files:
        incoming.append(
            IncomingFile(
                filename=file.filename or "upload",
                content_type=file.content_type,
                data=await file.read(),
            )
        )

    outcome = await ingestion.ingest_batch(
        incoming,
        owner_id,
        UploadOptions(tags=normalize_tags(tags), notes=notes, is_private=is_private),
    )
    return {
        "uploaded": outcome.success_count,
        "failed": outcome.failed_count,
        "photos": [serialize_photo_summary(photo) for photo in outcome.photos],
        "errors": [error.to_dict() for error in outcome.errors],
    }


@router.get("")
async def list_photos(
    search: str | None = Query(default=None),
    tags: str | None = Query(default=None),
    date_from: date | None = Query(default=None),
    date_to: date | None = Query(default=None),
    sort_by: str = Query(default="uploadDate"),
    sort_order: str = Query(default="desc"),
    page: int = Query(default=1),
    page_size: int = Query(default=20),
    is_favorite: bool | None = Query(default=None),
    processing_status: str | None = Query(default=None),
    owner_id: UUID = Depends(require_owner_id),
    query_engine: QueryEngine = Depends(get_query_engine),
):
    result = await query_engine.list_gallery(
        GalleryQuery(
            owner_id=owner_id,
            search=search,
            tags=normalize_tags(tags),
            date_from=date_from,
            date_to=date_to,
            sort_by=sort_by,
            sort_order=sort_order,
            page=page,
            page_size=page_size,
            is_favorite=is_favorite,
            processing_status=processing_status,
        )
    )
    return {
        "items": [serialize_photo_summary(photo) for photo in result.items],
        "total_count": result.total_count,
        "page": result.page,
        "page_size": result.page_size,
        "total_pages": result.total_pages,
        "has_previous_page": result.has_previous_page,
        "has_next_page": result.has_next_page,
    }


@router.get("/processing-status")
async def processing_status(
    status: str | None = Query(default="processing"),
    owner_id: UUID = Depends(require_owner_id),
    state_machine: ProcessingStateMachine = Depends(get_state_machine),
):
    entries = await state_machine.status_report(owner_id, status)
    return [
        {
            "photo_id": str(entry.photo_id),
            "filename": entry.filename,
            "status": entry.status,
            "progress": entry.progress,
            "completed_steps": entry.completed_steps,
            "errors": entry.errors,
            "attempts": entry.attempts,
            "last_updated": entry.last_updated.isoformat() if entry.last_updated else None,
        }
        for entry in entries
    ]


@router.get("/print-size/{print_size}")
async def photos_for_print_size(
    print_size: str = Path(...),
    owner_id: UUID = Depends(require_owner_id),
    resolver: PrintSuitabilityResolver = Depends(get_print_resolver),
):
    photos = await resolver.eligible_photos(owner_id, print_size)
    return [serialize_photo_summary(photo) for photo in photos]


@router.post("/bulk")
async def bulk_action(
    payload: BulkActionPayload,
    owner_id: UUID = Depends(require_owner_id),
    mutator: BulkMutator = Depends(get_bulk_mutator),
):
    if not payload.photo_ids:
        raise HTTPException(status_code=400, detail="No photo ids provided.")

    operation = parse_operation(payload.operation)
    result = await mutator.apply(payload.photo_ids, operation, owner_id)
    return {
        "operation": result.operation,
        "requested": result.requested_count,
        "modified": result.modified_count,
        "photo_ids": [str(photo_id) for photo_id in result.modified_ids],
    }


@router.get("/{photo_id}")
async def get_photo(
    photo_id: UUID = Path(...),
    owner_id: UUID = Depends(require_owner_id),
    editor: PhotoEditor = Depends(get_photo_editor),
):
    return serialize_photo(await editor.get(photo_id, owner_id))


@router.patch("/{photo_id}")
async def update_photo(
    payload: PhotoUpdatePayload,
    photo_id: UUID = Path(...),
    owner_id: UUID = Depends(require_owner_id),
    editor: PhotoEditor = Depends(get_photo_editor),
):
    changes = PhotoChanges(
        tags=payload.tags,
        is_favorite=payload.is_favorite,
        is_private=payload.is_private,
    )
    if "notes" in payload.model_fields_set:
        changes.notes = payload.notes
    return serialize_photo(await editor.update(photo_id, owner_id, changes))


@router.delete("/{photo_id}")
async def delete_photo(
    photo_id: UUID = Path(...),
    owner_id: UUID = Depends(require_owner_id),
    editor: PhotoEditor = Depends(get_photo_editor),
):
    await editor.soft_delete(photo_id, owner_id)
    return {"deleted": True, "id": str(photo_id)}


@router.post("/{photo_id}/download")
async def download_link(
    photo_id: UUID = Path(...),
    owner_id: UUID = Depends(require_owner_id),
    issuer: DownloadLinkIssuer = Depends(get_download_issuer),
):
    link = await issuer.issue(photo_id, owner_id)
    if link is None:
        raise HTTPException(status_code=404, detail="Photo not found")
    return {
        "photo_id": str(link.photo_id),
        "download_url": link.url,
        "expires_at": link.expires_at.isoformat(),
        "filename": link.filename,
        "file_size_bytes": link.file_size_bytes,
    }


@router.post("/{photo_id}/retry")
async def retry_processing(
    photo_id: UUID = Path(...),
    owner_id: UUID = Depends(require_owner_id),
    state_machine: ProcessingStateMachine = Depends(get_state_machine),
):
    photo = await state_machine.retry(photo_id, owner_id)
    return serialize_photo_summary(photo)


@router.post("/{photo_id}/enhance")
async def enhance_photo(
    payload: EnhancePayload,
    photo_id: UUID = Path(...),
    owner_id: UUID = Depends(require_owner_id),
    editor: PhotoEditor = Depends(get_photo_editor),
):
    photo = await editor.enhance(photo_id, owner_id, payload.enhancement_type)
    return serialize_photo(photo)
