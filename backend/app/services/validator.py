from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from app.core.config import settings
from app.core.errors import ValidationError

logger = logging.getLogger(__name__)

JPEG_MAGIC = b"\xFF\xD8\xFF"
PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
TIFF_LE_MAGIC = b"II*\x00"
TIFF_BE_MAGIC = b"MM\x00*"
GIF87A = b"GIF87a"
GIF89A = b"GIF89a"
WEBP_RIFF = b"RIFF"
WEBP_TYPE = b"WEBP"

MAX_TAGS = 10
MIN_TAG_LENGTH = 2
MAX_TAG_LENGTH = 30
MAX_NOTES_LENGTH = 1000
MAX_SEARCH_LENGTH = 100
_TAG_PATTERN = re.compile(r"^[A-Za-z0-9\s_-]+$")


@dataclass
class IncomingFile:
    filename: str
    content_type: str | None
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class FileCheck:
    file: IncomingFile
    error: ValidationError | None = None

    @property
    def is_valid(self) -> bool:
        return self.error is None


def detect_image_signature(file_bytes: bytes) -> str | None:
    if file_bytes.startswith(JPEG_MAGIC):
        return "image/jpeg"
    if file_bytes.startswith(PNG_MAGIC):
        return "image/png"
    if file_bytes.startswith(TIFF_LE_MAGIC) or file_bytes.startswith(TIFF_BE_MAGIC):
        return "image/tiff"
    if file_bytes.startswith(GIF87A) or file_bytes.startswith(GIF89A):
        return "image/gif"
    if len(file_bytes) >= 12 and file_bytes[:4] == WEBP_RIFF and file_bytes[8:12] == WEBP_TYPE:
        return "image/webp"
    return None


def normalize_tags(raw_tags: str | list[str] | None) -> list[str]:
    if raw_tags is None:
        return []
    if isinstance(raw_tags, str):
        raw_tags = raw_tags.split(",")

    normalized: list[str] = []
    for tag in raw_tags:
        value = (tag or "").strip().lower()
        if value and value not in normalized:
            normalized.append(value)
    return normalized


def validate_tags(raw_tags: str | list[str] | None, field: str = "tags") -> list[str]:
    tags = normalize_tags(raw_tags)
    if len(tags) > MAX_TAGS:
        raise ValidationError(f"Maximum {MAX_TAGS} tags allowed.", field=field)
    for tag in tags:
        if len(tag) < MIN_TAG_LENGTH or len(tag) > MAX_TAG_LENGTH:
            raise ValidationError(
                f"Tag '{tag}' must be between {MIN_TAG_LENGTH} and {MAX_TAG_LENGTH} characters.",
                field=field,
            )
        if not _TAG_PATTERN.match(tag):
            raise ValidationError(
                f"Tag '{tag}' may only contain letters, numbers, spaces, hyphens and underscores.",
                field=field,
            )
    return tags


def validate_notes(notes: str | None, field: str = "notes") -> str | None:
    if notes is None:
        return None
    notes = notes.strip()
    if len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError(f"Notes cannot exceed {MAX_NOTES_LENGTH} characters.", field=field)
    return notes or None


class UploadValidator:
    """Intake checks for an upload batch.

    Batch-level problems (empty batch, too many files, oversized request) raise
    ``ValidationError`` before anything is stored. Per-file problems are returned
    alongside the file so the remaining files can still be ingested.
    """

    def __init__(
        self,
        max_files: int = settings.MAX_FILES_PER_UPLOAD,
        max_file_bytes: int = settings.MAX_FILE_SIZE_BYTES,
        max_request_bytes: int = settings.MAX_REQUEST_BYTES,
        allowed_mime_types: list[str] | None = None,
    ) -> None:
        self.max_files = max_files
        self.max_file_bytes = max_file_bytes
        self.max_request_bytes = max_request_bytes
        self.allowed_mime_types = {
            mime.lower() for mime in (allowed_mime_types or settings.ALLOWED_MIME_TYPES)
        }

    def validate_batch(self, files: list[IncomingFile]) -> list[FileCheck]:
        if not files:
            raise ValidationError("No files provided.", field="files")
        if len(files) > self.max_files:
            raise ValidationError(
                f"Maximum {self.max_files} files allowed per upload, received {len(files)}.",
                field="files",
            )
        total_bytes = sum(file.size for file in files)
        if total_bytes > self.max_request_bytes:
            raise ValidationError(
                f"Upload exceeds the maximum request size of {self.max_request_bytes} bytes.",
                field="files",
            )

        checks = []
        for index, file in enumerate(files):
            error = self.check_file(file, field=f"files[{index}]")
            if error is not None:
                logger.warning(
                    "upload validation failed filename=%s reason=%s", file.filename, error.message
                )
            checks.append(FileCheck(file=file, error=error))
        return checks

    def check_file(self, file: IncomingFile, field: str = "file") -> ValidationError | None:
        filename = file.filename
        if file.size == 0:
            return ValidationError("File is empty.", field=field, filename=filename)
        if file.size > self.max_file_bytes:
            return ValidationError(
                f"File exceeds the maximum size of {self.max_file_bytes} bytes.",
                field=field,
                filename=filename,
            )

        declared = (file.content_type or "").split(";")[0].strip().lower()
        if declared not in self.allowed_mime_types:
            return ValidationError(
                f"File type {declared or 'unknown'} is not allowed.",
                field=field,
                filename=filename,
            )

        if detect_image_signature(file.data) is None:
            return ValidationError(
                "File content does not match a supported image format.",
                field=field,
                filename=filename,
            )
        return None
