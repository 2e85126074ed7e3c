"""Initial schema (users, image reference tables, duplicate scans and files, audit_events).

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.Text(), nullable=False),
        sa.Column("role", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )
    op.create_table(
        "image_data",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("uuid", sa.String(36), nullable=False),
        sa.Column("file_name", sa.String(256), nullable=False),
        sa.Column("file_url", sa.String(512), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("visible", sa.Boolean(), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_image_data_uuid", "image_data", ["uuid"])
    op.create_index("ix_image_data_file_name", "image_data", ["file_name"])
    op.create_table(
        "custom_img_data",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("uuid", sa.String(36), nullable=False),
        sa.Column("file_name", sa.String(256), nullable=False),
        sa.Column("file_url", sa.String(512), nullable=False),
        sa.Column("name", sa.String(256), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_custom_img_data_uuid", "custom_img_data", ["uuid"])
    op.create_index("ix_custom_img_data_file_name", "custom_img_data", ["file_name"])
    op.create_table(
        "galleries",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("slug", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )
    op.create_table(
        "gallery_images",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("gallery_id", sa.Uuid(), nullable=False),
        sa.Column("uuid", sa.String(36), nullable=False),
        sa.Column("file_name", sa.String(256), nullable=False),
        sa.Column("file_url", sa.String(512), nullable=False),
        sa.Column("name", sa.String(256), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["gallery_id"], ["galleries.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_gallery_images_uuid", "gallery_images", ["uuid"])
    op.create_index("ix_gallery_images_file_name", "gallery_images", ["file_name"])
    op.create_table(
        "duplicate_scans",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("buckets", sa.JSON(), nullable=False),
        sa.Column("total_objects", sa.Integer(), nullable=False),
        sa.Column("hashed_objects", sa.Integer(), nullable=False),
        sa.Column("duplicate_groups", sa.Integer(), nullable=False),
        sa.Column("duplicate_files", sa.Integer(), nullable=False),
        sa.Column("wasted_bytes", sa.BigInteger(), nullable=False),
        sa.Column("skipped", sa.JSON(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("triggered_by_user_id", sa.Uuid(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["triggered_by_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_table(
        "duplicate_files",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("scan_id", sa.Integer(), nullable=False),
        sa.Column("file_hash", sa.String(64), nullable=False),
        sa.Column("file_name", sa.String(256), nullable=False),
        sa.Column("bucket_name", sa.String(256), nullable=False),
        sa.Column("object_key", sa.String(1024), nullable=False),
        sa.Column("file_size", sa.BigInteger(), nullable=False),
        sa.Column("last_modified", sa.DateTime(timezone=True), nullable=True),
        sa.Column("db_reference", sa.String(100), nullable=True),
        sa.Column("db_uuid", sa.String(36), nullable=True),
        sa.ForeignKeyConstraint(["scan_id"], ["duplicate_scans.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_duplicate_files_scan_hash", "duplicate_files", ["scan_id", "file_hash"])
    op.create_index("ix_duplicate_files_hash", "duplicate_files", ["file_hash"])
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=True),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("event_data", sa.JSON(), nullable=True),
        sa.Column("ip", sa.Text(), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_events_type_created", "audit_events", ["event_type", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_audit_events_type_created", table_name="audit_events")
    op.drop_table("audit_events")
    op.drop_index("ix_duplicate_files_hash", table_name="duplicate_files")
    op.drop_index("ix_duplicate_files_scan_hash", table_name="duplicate_files")
    op.drop_table("duplicate_files")
    op.drop_table("duplicate_scans")
    op.drop_index("ix_gallery_images_file_name", table_name="gallery_images")
    op.drop_index("ix_gallery_images_uuid", table_name="gallery_images")
    op.drop_table("gallery_images")
    op.drop_table("galleries")
    op.drop_index("ix_custom_img_data_file_name", table_name="custom_img_data")
    op.drop_index("ix_custom_img_data_uuid", table_name="custom_img_data")
    op.drop_table("custom_img_data")
    op.drop_index("ix_image_data_file_name", table_name="image_data")
    op.drop_index("ix_image_data_uuid", table_name="image_data")
    op.drop_table("image_data")
    op.drop_table("users")
