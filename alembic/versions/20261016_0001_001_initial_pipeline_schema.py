"""001 initial pipeline schema

Revision ID: 001_initial_pipeline
Revises:
Create Date: 2026-10-16

Creates channels, autopilot_configs, video_projects (with the claim lease
columns and claim index), pipeline_items, notifications and merge_jobs.
"""

from typing import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial_pipeline"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

project_status = postgresql.ENUM(
    "draft", "production", "ready", "published", "failed", name="projectstatus", create_type=False
)
pipeline_stage = postgresql.ENUM(
    "scripting",
    "audio",
    "visuals",
    "thumbnail",
    "merging",
    "review",
    "ready",
    name="pipelinestage",
    create_type=False,
)
approval_workflow = postgresql.ENUM(
    "auto-publish", "review-before-publish", "manual", name="approvalworkflow", create_type=False
)
notification_kind = postgresql.ENUM(
    "error", "success", "approval_needed", "published", "info", name="notificationkind", create_type=False
)
merge_job_status = postgresql.ENUM(
    "pending", "processing", "completed", "failed", name="mergejobstatus", create_type=False
)

ENUMS = (project_status, pipeline_stage, approval_workflow, notification_kind, merge_job_status)


def _uuid_pk() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True)


def _channel_fk(index: bool = False) -> sa.Column:
    return sa.Column(
        "channel_id",
        postgresql.UUID(as_uuid=True),
        sa.ForeignKey("channels.id", ondelete="CASCADE"),
        nullable=False,
        index=index,
    )


def upgrade() -> None:
    """Create enum types and all pipeline tables."""
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "channels",
        _uuid_pk(),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("niche", sa.String(200), nullable=False, server_default=""),
        sa.Column("style_memory", sa.JSON(), nullable=True),
        sa.Column("default_prompt_enhancers", sa.Text(), nullable=True),
        sa.Column("youtube_access_token_encrypted", sa.LargeBinary(), nullable=True),
        sa.Column("youtube_refresh_token_encrypted", sa.LargeBinary(), nullable=True),
        sa.Column("youtube_token_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "autopilot_configs",
        _uuid_pk(),
        sa.Column(
            "channel_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("channels.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "approval_workflow",
            approval_workflow,
            nullable=False,
            server_default="review-before-publish",
        ),
    )

    op.create_table(
        "video_projects",
        _uuid_pk(),
        _channel_fk(),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("status", project_status, nullable=False, server_default="production"),
        sa.Column("pipeline_stage", pipeline_stage, nullable=False, server_default="scripting"),
        sa.Column("scenes", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("script", sa.Text(), nullable=True),
        sa.Column("audio_master_ref", sa.Text(), nullable=True),
        sa.Column("video_ref", sa.Text(), nullable=True),
        sa.Column("thumbnail_ref", sa.Text(), nullable=True),
        sa.Column("merge_instructions", sa.JSON(), nullable=True),
        sa.Column("logs", sa.JSON(), nullable=False, server_default="[]"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("notified_condition", sa.String(100), nullable=True),
        sa.Column("claim_token", sa.String(64), nullable=True),
        sa.Column("claimed_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_video_projects_status", "video_projects", ["status"])
    op.create_index("ix_video_projects_pipeline_stage", "video_projects", ["pipeline_stage"])
    op.create_index(
        "ix_video_projects_claim", "video_projects", ["status", "pipeline_stage", "created_at"]
    )

    op.create_table(
        "pipeline_items",
        _uuid_pk(),
        _channel_fk(),
        sa.Column(
            "project_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("video_projects.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("stage", sa.String(30), nullable=False, server_default="scripting"),
        sa.Column("approved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "notifications",
        _uuid_pk(),
        _channel_fk(index=True),
        sa.Column("kind", notification_kind, nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column("metadata", sa.JSON(), nullable=False, server_default="{}"),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "merge_jobs",
        _uuid_pk(),
        sa.Column(
            "project_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("video_projects.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        _channel_fk(),
        sa.Column("manifest", sa.JSON(), nullable=False),
        sa.Column("status", merge_job_status, nullable=False, server_default="pending"),
        sa.Column("output_ref", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )


def downgrade() -> None:
    """Drop all pipeline tables and enum types."""
    op.drop_table("merge_jobs")
    op.drop_table("notifications")
    op.drop_table("pipeline_items")
    op.drop_index("ix_video_projects_claim", table_name="video_projects")
    op.drop_index("ix_video_projects_pipeline_stage", table_name="video_projects")
    op.drop_index("ix_video_projects_status", table_name="video_projects")
    op.drop_table("video_projects")
    op.drop_table("autopilot_configs")
    op.drop_table("channels")

    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
