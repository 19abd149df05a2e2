from app.models.photo import Photo, PhotoPrintRecord, PhotoTag, ProcessingStatus

__all__ = [
    "Photo",
    "PhotoTag",
    "PhotoPrintRecord",
    "ProcessingStatus",
]
