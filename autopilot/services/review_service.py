"""Human review decisions for projects held at the review stage.

The engine never approves anything itself. A reviewer approves a project
out-of-band (dashboard or API), which sets PipelineItem.approved; the next
invocation that claims the project sees the flag and advances it to ready.

Approving ahead of time is allowed: the flag is simply read when the project
reaches review.
"""

import uuid
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from autopilot.models import PipelineItem, PipelineStage, Project, ProjectStatus, utcnow
from autopilot.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class ApprovalResult:
    project_id: str
    stage: PipelineStage
    approved: bool
    already_approved: bool


async def approve_project(db: AsyncSession, project_id: uuid.UUID) -> ApprovalResult:
    """Mark a project approved for publishing.

    Args:
        db: Session; the caller commits.
        project_id: Project to approve.

    Raises:
        LookupError: Project does not exist.
        ValueError: Project already failed or finished.
    """
    project = await db.get(Project, project_id)
    if project is None:
        raise LookupError(f"Project not found: {project_id}")
    if project.status in (ProjectStatus.FAILED, ProjectStatus.PUBLISHED):
        raise ValueError(f"Cannot approve a project with status {project.status.value}")

    item = await db.scalar(select(PipelineItem).where(PipelineItem.project_id == project_id))
    already = bool(item and item.approved)
    if item is None:
        item = PipelineItem(
            project_id=project.id,
            channel_id=project.channel_id,
            stage=project.pipeline_stage.value,
            started_at=utcnow(),
        )
        db.add(item)
    item.approved = True
    await db.flush()

    log.info(
        "project_approved",
        project_id=str(project_id),
        stage=project.pipeline_stage.value,
        already_approved=already,
    )
    return ApprovalResult(
        project_id=str(project.id),
        stage=project.pipeline_stage,
        approved=True,
        already_approved=already,
    )
