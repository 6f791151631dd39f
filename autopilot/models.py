"""SQLAlchemy 2.0 ORM models.

This module contains all SQLAlchemy models for the autopilot pipeline.
All models use the Mapped[type] annotation pattern required by SQLAlchemy 2.0.

Encrypted Fields Pattern:
    YouTube OAuth tokens are stored encrypted using Fernet symmetric
    encryption. Encrypted columns follow the naming convention
    `{field}_encrypted` and use LargeBinary type since Fernet outputs bytes.

    NEVER expose encrypted fields in __repr__ or log statements.

Scene Storage:
    Scenes are stored as a JSON array on the project row and are read and
    written wholesale per invocation. Use autopilot.schemas.scene.Scene to
    validate and serialize them.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship, validates

from autopilot.exceptions import InvalidStageTransitionError


def utcnow() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round trip)."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ProjectStatus(enum.Enum):
    """Coarse project lifecycle.

    draft → production → ready → published, or failed once a stage has
    exhausted its retries. Only `production` projects are claimable.
    """

    DRAFT = "draft"
    PRODUCTION = "production"
    READY = "ready"
    PUBLISHED = "published"
    FAILED = "failed"


class PipelineStage(enum.Enum):
    """Fixed, ordered pipeline stages.

    Pipeline Flow:
        scripting → audio → visuals → thumbnail → merging → review → ready

    `ready` is terminal for the engine; publishing happens elsewhere.
    """

    SCRIPTING = "scripting"
    AUDIO = "audio"
    VISUALS = "visuals"
    THUMBNAIL = "thumbnail"
    MERGING = "merging"
    REVIEW = "review"
    READY = "ready"

    @property
    def position(self) -> int:
        """Index of this stage in STAGE_ORDER."""
        return STAGE_ORDER.index(self)

    def next_stage(self) -> "PipelineStage":
        """Return the stage that follows this one.

        Raises:
            ValueError: If called on the terminal stage.
        """
        if self is PipelineStage.READY:
            raise ValueError("ready is the terminal pipeline stage")
        return STAGE_ORDER[self.position + 1]


STAGE_ORDER: list[PipelineStage] = [
    PipelineStage.SCRIPTING,
    PipelineStage.AUDIO,
    PipelineStage.VISUALS,
    PipelineStage.THUMBNAIL,
    PipelineStage.MERGING,
    PipelineStage.REVIEW,
    PipelineStage.READY,
]

# Stages the engine still has work for (claimable when status=production)
ACTIVE_STAGES = [stage for stage in STAGE_ORDER if stage is not PipelineStage.READY]


class ApprovalWorkflow(enum.Enum):
    """Per-channel approval policy consulted by the review stage.

    MANUAL behaves like REVIEW_BEFORE_PUBLISH for the engine: the project is
    held at review until a human sets PipelineItem.approved.
    """

    AUTO_PUBLISH = "auto-publish"
    REVIEW_BEFORE_PUBLISH = "review-before-publish"
    MANUAL = "manual"


class NotificationKind(enum.Enum):
    """Notification categories shown to operators."""

    ERROR = "error"
    SUCCESS = "success"
    APPROVAL_NEEDED = "approval_needed"
    PUBLISHED = "published"
    INFO = "info"


class MergeJobStatus(enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


def _enum_column(enum_cls: type[enum.Enum], name: str) -> Enum:
    # values_callable stores enum.value (lowercase) rather than enum.name
    return Enum(
        enum_cls,
        native_enum=True,
        name=name,
        values_callable=lambda x: [e.value for e in x],
    )


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Channel(Base):
    """A YouTube channel that owns projects.

    Attributes:
        id: UUID primary key.
        name: Display name.
        niche: Content niche used in script and thumbnail prompts.
        style_memory: Learned style keywords (JSON list of strings).
        default_prompt_enhancers: Suffix appended to every visual prompt.
        youtube_access_token_encrypted: Fernet-encrypted OAuth access token.
        youtube_refresh_token_encrypted: Fernet-encrypted OAuth refresh token.
        youtube_token_expires_at: Expiry of the current access token.
    """

    __tablename__ = "channels"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    niche: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    style_memory: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)
    default_prompt_enhancers: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Use CredentialService for encrypt/decrypt operations
    youtube_access_token_encrypted: Mapped[bytes | None] = mapped_column(
        LargeBinary,
        nullable=True,
    )
    youtube_refresh_token_encrypted: Mapped[bytes | None] = mapped_column(
        LargeBinary,
        nullable=True,
    )
    youtube_token_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )

    projects: Mapped[list["Project"]] = relationship("Project", back_populates="channel")
    autopilot_config: Mapped["AutopilotConfig | None"] = relationship(
        "AutopilotConfig", back_populates="channel", uselist=False
    )

    def __repr__(self) -> str:
        """Return string representation (never includes token columns)."""
        token_info = "set" if self.youtube_refresh_token_encrypted else "not_set"
        return f"<Channel(name={self.name!r}, niche={self.niche!r}, youtube_token={token_info})>"


class AutopilotConfig(Base):
    """Per-channel autopilot settings."""

    __tablename__ = "autopilot_configs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    channel_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("channels.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    approval_workflow: Mapped[ApprovalWorkflow] = mapped_column(
        _enum_column(ApprovalWorkflow, "approvalworkflow"),
        nullable=False,
        default=ApprovalWorkflow.REVIEW_BEFORE_PUBLISH,
    )

    channel: Mapped["Channel"] = relationship("Channel", back_populates="autopilot_config")


class Project(Base):
    """One unit of pipeline work (a single video).

    Lifecycle:
        Created by content ideation at stage=scripting, status=production.
        Mutated only by the pipeline engine, one stage delta per invocation.
        Ends at status=ready (engine terminal), published, or failed.

    Claim Lease:
        claim_token/claimed_until implement the single-flight claim. A project
        is claimable when claimed_until is NULL or in the past. Both the claim
        and the persist are conditional UPDATE statements (see ProjectClaimer).

    Attributes:
        scenes: JSON array of Scene records (see autopilot.schemas.scene).
        logs: Append-only list of "[ts] [stage] message" audit lines.
        last_error: Most recent stage failure; cleared on successful advance.
        retry_count: Consecutive failed invocations at the current stage.
        notified_condition: Key of the last notification emitted, used to
            send each approval/error notification once per condition.
    """

    __tablename__ = "video_projects"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    channel_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("channels.id", ondelete="CASCADE"),
        nullable=False,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[ProjectStatus] = mapped_column(
        _enum_column(ProjectStatus, "projectstatus"),
        nullable=False,
        default=ProjectStatus.PRODUCTION,
        index=True,
    )
    pipeline_stage: Mapped[PipelineStage] = mapped_column(
        _enum_column(PipelineStage, "pipelinestage"),
        nullable=False,
        default=PipelineStage.SCRIPTING,
        index=True,
    )

    scenes: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    script: Mapped[str | None] = mapped_column(Text, nullable=True)
    audio_master_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    video_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    thumbnail_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    merge_instructions: Mapped[dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    logs: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    notified_condition: Mapped[str | None] = mapped_column(String(100), nullable=True)

    claim_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    claimed_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    channel: Mapped["Channel"] = relationship("Channel", back_populates="projects")

    # Claim query filters on (status, pipeline_stage) and orders by created_at
    __table_args__ = (
        Index("ix_video_projects_claim", "status", "pipeline_stage", "created_at"),
    )

    @validates("pipeline_stage")
    def validate_stage_change(self, key: str, value: PipelineStage) -> PipelineStage:
        """Reject backwards stage moves.

        Raises:
            InvalidStageTransitionError: If value precedes the current stage.
        """
        if self.pipeline_stage is None:
            return value

        if value.position < self.pipeline_stage.position:
            raise InvalidStageTransitionError(
                f"Invalid transition: {self.pipeline_stage.value} → {value.value}",
                from_stage=self.pipeline_stage,
                to_stage=value,
            )
        return value

    def __repr__(self) -> str:
        return (
            f"<Project(id={self.id!s:.8}, title={self.title!r}, "
            f"status={self.status.value!r}, stage={self.pipeline_stage.value!r})>"
        )


class PipelineItem(Base):
    """Operator-facing tracking record mirroring a project's stage.

    `approved` is set by a human reviewer out-of-band and read by the review
    stage.
    """

    __tablename__ = "pipeline_items"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    channel_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("channels.id", ondelete="CASCADE"),
        nullable=False,
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("video_projects.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    stage: Mapped[str] = mapped_column(String(30), nullable=False, default="scripting")
    approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )


class Notification(Base):
    """Operator notification (errors, approvals, completions)."""

    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    channel_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("channels.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    kind: Mapped[NotificationKind] = mapped_column(
        _enum_column(NotificationKind, "notificationkind"),
        nullable=False,
    )
    message: Mapped[str] = mapped_column(Text, nullable=False)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    def __repr__(self) -> str:
        return f"<Notification(kind={self.kind.value!r}, message={self.message[:40]!r})>"


class MergeJob(Base):
    """Merge manifest handed to the external media merger (one per project)."""

    __tablename__ = "merge_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    project_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("video_projects.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    channel_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("channels.id", ondelete="CASCADE"),
        nullable=False,
    )
    manifest: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    status: Mapped[MergeJobStatus] = mapped_column(
        _enum_column(MergeJobStatus, "mergejobstatus"),
        nullable=False,
        default=MergeJobStatus.PENDING,
    )
    output_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
    )
