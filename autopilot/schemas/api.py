"""Response bodies for the operator API."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, computed_field

from autopilot.models import PipelineStage, ProjectStatus


class ProjectSummary(BaseModel):
    """Dashboard view of one project."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    channel_id: UUID
    title: str
    status: ProjectStatus
    pipeline_stage: PipelineStage
    scenes: list[dict] = Field(default_factory=list, exclude=True)
    last_error: str | None = None
    retry_count: int = 0
    thumbnail_ref: str | None = None
    video_ref: str | None = None
    created_at: datetime
    updated_at: datetime

    @computed_field  # type: ignore[prop-decorator]
    @property
    def scene_count(self) -> int:
        return len(self.scenes)


class ProjectDetail(ProjectSummary):
    script: str | None = None
    audio_master_ref: str | None = None
    merge_instructions: dict | None = None
    logs: list[str] = Field(default_factory=list)


class ApprovalResponse(BaseModel):
    project_id: str
    stage: PipelineStage
    approved: bool
    already_approved: bool


class TokenRefreshResponse(BaseModel):
    channel_id: str
    valid: bool = True
