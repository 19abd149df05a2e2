import enum
import uuid

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.core.database import Base

SCHEMA_VERSION = 1


class ProcessingStatus(str, enum.Enum):
    UPLOADED = "uploaded"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Photo(Base):
    __tablename__ = "photos"
    __table_args__ = (
        Index("ix_photos_owner_deleted_uploaded", "owner_id", "is_deleted", "uploaded_at"),
        Index("ix_photos_processing_status", "processing_status"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    owner_id = Column(Uuid, nullable=False)

    original_filename = Column(String, nullable=False)
    sanitized_filename = Column(String, nullable=False)
    file_size_bytes = Column(BigInteger, nullable=False)
    mime_type = Column(String, nullable=False)
    uploaded_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    storage_provider = Column(String, nullable=False)
    storage_container = Column(String, nullable=False)
    storage_paths = Column(JSON, nullable=False, default=dict)
    storage_urls = Column(JSON, nullable=False, default=dict)

    width = Column(Integer, nullable=False, default=0)
    height = Column(Integer, nullable=False, default=0)
    orientation = Column(String, nullable=False, default="square")
    aspect_ratio = Column(String, nullable=False, default="1:1")
    dpi = Column(Integer, nullable=False, default=72)
    color_space = Column(String, nullable=False, default="sRGB")
    has_transparency = Column(Boolean, nullable=False, default=False)

    exif = Column(JSON, nullable=True)

    processing_status = Column(String, nullable=False, default=ProcessingStatus.UPLOADED.value)
    thumbnail_generated = Column(Boolean, nullable=False, default=False)
    ai_enhancement_available = Column(Boolean, nullable=False, default=False)
    processing_errors = Column(JSON, nullable=False, default=list)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    processing_attempts = Column(Integer, nullable=False, default=0)
    lease_owner = Column(String, nullable=True)
    lease_expires_at = Column(DateTime(timezone=True), nullable=True)

    user_notes = Column(Text, nullable=True)
    ai_analysis = Column(JSON, nullable=True)
    quality_score = Column(Float, nullable=True)

    is_deleted = Column(Boolean, nullable=False, default=False)
    is_favorite = Column(Boolean, nullable=False, default=False)
    is_private = Column(Boolean, nullable=False, default=False)
    reported_content = Column(Boolean, nullable=False, default=False)

    schema_version = Column(Integer, nullable=False, default=SCHEMA_VERSION)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    tag_links = relationship(
        "PhotoTag",
        back_populates="photo",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    print_history = relationship(
        "PhotoPrintRecord",
        back_populates="photo",
        order_by="PhotoPrintRecord.printed_at",
        lazy="selectin",
    )

    @property
    def tags(self) -> list[str]:
        return sorted(link.name for link in self.tag_links)

    @property
    def print_count(self) -> int:
        return len(self.print_history)


class PhotoTag(Base):
    __tablename__ = "photo_tags"

    photo_id = Column(Uuid, ForeignKey("photos.id", ondelete="CASCADE"), primary_key=True)
    name = Column(Text, primary_key=True, index=True)

    photo = relationship("Photo", back_populates="tag_links")


class PhotoPrintRecord(Base):
    __tablename__ = "photo_print_records"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    photo_id = Column(Uuid, ForeignKey("photos.id"), nullable=False, index=True)
    order_id = Column(String, nullable=False)
    printed_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    size = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)

    photo = relationship("Photo", back_populates="print_history")
