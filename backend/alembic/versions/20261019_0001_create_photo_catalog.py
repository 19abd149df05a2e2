"""create photo catalog tables

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "photos",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("owner_id", sa.Uuid(), nullable=False),
        sa.Column("original_filename", sa.String(), nullable=False),
        sa.Column("sanitized_filename", sa.String(), nullable=False),
        sa.Column("file_size_bytes", sa.BigInteger(), nullable=False),
        sa.Column("mime_type", sa.String(), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("storage_provider", sa.String(), nullable=False),
        sa.Column("storage_container", sa.String(), nullable=False),
        sa.Column("storage_paths", sa.JSON(), nullable=False),
        sa.Column("storage_urls", sa.JSON(), nullable=False),
        sa.Column("width", sa.Integer(), nullable=False),
        sa.Column("height", sa.Integer(), nullable=False),
        sa.Column("orientation", sa.String(), nullable=False),
        sa.Column("aspect_ratio", sa.String(), nullable=False),
        sa.Column("dpi", sa.Integer(), nullable=False),
        sa.Column("color_space", sa.String(), nullable=False),
        sa.Column("has_transparency", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("exif", sa.JSON(), nullable=True),
        sa.Column("processing_status", sa.String(), server_default="uploaded", nullable=False),
        sa.Column("thumbnail_generated", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("ai_enhancement_available", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("processing_errors", sa.JSON(), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processing_attempts", sa.Integer(), server_default="0", nullable=False),
        sa.Column("lease_owner", sa.String(), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("user_notes", sa.Text(), nullable=True),
        sa.Column("ai_analysis", sa.JSON(), nullable=True),
        sa.Column("quality_score", sa.Float(), nullable=True),
        sa.Column("is_deleted", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("is_favorite", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("is_private", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("reported_content", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("schema_version", sa.Integer(), server_default="1", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
    )
    op.create_index("ix_photos_owner_deleted_uploaded", "photos", ["owner_id", "is_deleted", "uploaded_at"])
    op.create_index("ix_photos_processing_status", "photos", ["processing_status"])

    op.create_table(
        "photo_tags",
        sa.Column("photo_id", sa.Uuid(), sa.ForeignKey("photos.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("name", sa.Text(), primary_key=True),
    )
    op.create_index("ix_photo_tags_name", "photo_tags", ["name"])

    op.create_table(
        "photo_print_records",
        sa.Column("id", sa.Uuid(), primary_key=True, nullable=False),
        sa.Column("photo_id", sa.Uuid(), sa.ForeignKey("photos.id"), nullable=False),
        sa.Column("order_id", sa.String(), nullable=False),
        sa.Column("printed_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("size", sa.String(), nullable=False),
        sa.Column("quantity", sa.Integer(), server_default="1", nullable=False),
    )
    op.create_index("ix_photo_print_records_photo_id", "photo_print_records", ["photo_id"])


def downgrade() -> None:
    op.drop_index("ix_photo_print_records_photo_id", table_name="photo_print_records")
    op.drop_table("photo_print_records")
    op.drop_index("ix_photo_tags_name", table_name="photo_tags")
    op.drop_table("photo_tags")
    op.drop_index("ix_photos_processing_status", table_name="photos")
    op.drop_index("ix_photos_owner_deleted_uploaded", table_name="photos")
    op.drop_table("photos")
