from __future__ import annotations

from datetime import datetime

from app.models.photo import Photo, PhotoPrintRecord
from app.services.processing import progress_for


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def serialize_print_record(record: PhotoPrintRecord) -> dict:
    return {
        "order_id": record.order_id,
        "printed_at": _iso(record.printed_at),
        "size": record.size,
        "quantity": record.quantity,
    }


def serialize_photo_summary(photo: Photo) -> dict:
    urls = photo.storage_urls or {}
    return {
        "id": str(photo.id),
        "filename": photo.original_filename,
        "file_size_bytes": photo.file_size_bytes,
        "mime_type": photo.mime_type,
        "uploaded_at": _iso(photo.uploaded_at),
        "thumbnail_url": urls.get("thumbnail"),
        "preview_url": urls.get("preview"),
        "width": photo.width,
        "height": photo.height,
        "orientation": photo.orientation,
        "processing_status": photo.processing_status,
        "tags": photo.tags,
        "is_favorite": photo.is_favorite,
        "is_private": photo.is_private,
        "print_count": photo.print_count,
    }


def serialize_photo(photo: Photo) -> dict:
    return {
        "id": str(photo.id),
        "owner_id": str(photo.owner_id),
        "file_info": {
            "original_filename": photo.original_filename,
            "sanitized_filename": photo.sanitized_filename,
            "file_size_bytes": photo.file_size_bytes,
            "mime_type": photo.mime_type,
            "uploaded_at": _iso(photo.uploaded_at),
        },
        "storage": {
            "provider": photo.storage_provider,
            "container": photo.storage_container,
            "variants": {
                name: {"path": path, "url": (photo.storage_urls or {}).get(name)}
                for name, path in (photo.storage_paths or {}).items()
            },
        },
        "image_data": {
            "width": photo.width,
            "height": photo.height,
            "orientation": photo.orientation,
            "aspect_ratio": photo.aspect_ratio,
            "dpi": photo.dpi,
            "color_space": photo.color_space,
            "has_transparency": photo.has_transparency,
        },
        "exif": photo.exif,
        "processing": {
            "status": photo.processing_status,
            "progress": progress_for(photo.processing_status),
            "thumbnail_generated": photo.thumbnail_generated,
            "ai_enhancement_available": photo.ai_enhancement_available,
            "errors": list(photo.processing_errors or []),
            "processed_at": _iso(photo.processed_at),
            "attempts": photo.processing_attempts,
        },
        "tags": photo.tags,
        "user_notes": photo.user_notes,
        "ai_analysis": photo.ai_analysis,
        "flags": {
            "is_deleted": photo.is_deleted,
            "is_favorite": photo.is_favorite,
            "is_private": photo.is_private,
            "reported_content": photo.reported_content,
        },
        "print_history": [serialize_print_record(record) for record in photo.print_history],
        "metadata": {
            "schema_version": photo.schema_version,
            "created_at": _iso(photo.created_at),
            "updated_at": _iso(photo.updated_at),
        },
    }
