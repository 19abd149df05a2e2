from __future__ import annotations


class PhotoPipelineError(Exception):
    """Base class for failures raised by the ingestion and catalog pipeline."""


class ValidationError(PhotoPipelineError):
    def __init__(self, message: str, field: str | None = None, filename: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.filename = filename

    def to_dict(self) -> dict:
        return {"field": self.field, "filename": self.filename, "message": self.message}


class UnsupportedOperationError(ValidationError):
    pass


class PhotoNotFoundError(PhotoPipelineError):
    """Missing and foreign records are reported identically."""

    def __init__(self, photo_id=None) -> None:
        super().__init__("Photo not found")
        self.photo_id = photo_id


class StorageError(PhotoPipelineError):
    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class ProcessingError(PhotoPipelineError):
    pass


class InvalidTransitionError(PhotoPipelineError):
    def __init__(self, current: str | None, target: str) -> None:
        super().__init__(f"Cannot transition from {current} to {target}")
        self.current = current
        self.target = target
