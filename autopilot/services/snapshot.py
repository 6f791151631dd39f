"""Immutable project snapshot in, partial update out.

Stage processors never touch the ORM. The engine loads a ProjectSnapshot,
hands it to a processor, and receives a StageDelta describing the changes:
column updates, new log lines, at most one stage advance, and an optional
merge manifest. The engine then persists the delta in one conditional UPDATE.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from autopilot.models import ApprovalWorkflow, PipelineStage, ProjectStatus
from autopilot.schemas.scene import Scene
from autopilot.services.ports import ChannelProfile


@dataclass(frozen=True)
class ProjectSnapshot:
    """Read-only view of a claimed project and what its stage needs."""

    id: str
    title: str
    status: ProjectStatus
    stage: PipelineStage
    channel: ChannelProfile
    scenes: list[Scene] = field(default_factory=list)
    script: str | None = None
    audio_master_ref: str | None = None
    video_ref: str | None = None
    thumbnail_ref: str | None = None
    merge_instructions: dict[str, Any] | None = None
    logs: list[str] = field(default_factory=list)
    last_error: str | None = None
    retry_count: int = 0
    notified_condition: str | None = None
    approval_workflow: ApprovalWorkflow = ApprovalWorkflow.REVIEW_BEFORE_PUBLISH
    approved: bool = False
    created_at: datetime | None = None


def format_log_line(timestamp: datetime, stage: PipelineStage, message: str) -> str:
    """Render one project log entry: "[2026-01-05T10:00:00+00:00] [audio] message"."""
    return f"[{timestamp.isoformat()}] [{stage.value}] {message}"


@dataclass
class StageDelta:
    """Changes one processor run wants persisted.

    Attributes:
        updates: Column name → new value, for video_projects columns only.
        log_lines: Fully formatted entries appended to project.logs.
        new_stage: Next stage if the processor advanced, else None.
        new_status: New project status (ready on completion, failed on
            escalation), else None.
        merge_manifest: Manifest to upsert into merge_jobs.
    """

    updates: dict[str, Any] = field(default_factory=dict)
    log_lines: list[str] = field(default_factory=list)
    new_stage: PipelineStage | None = None
    new_status: ProjectStatus | None = None
    merge_manifest: dict[str, Any] | None = None

    @property
    def is_empty(self) -> bool:
        return not (
            self.updates
            or self.log_lines
            or self.new_stage
            or self.new_status
            or self.merge_manifest is not None
        )

    def field_value(self, snapshot: ProjectSnapshot, name: str) -> Any:
        """Value of `name` after this delta, falling back to the snapshot."""
        if name in self.updates:
            return self.updates[name]
        return getattr(snapshot, name)
