"""Load claimed projects and persist stage deltas.

apply_delta() is the only write the engine makes to a project after
claiming it. It runs in one transaction:

1. a single conditional UPDATE of video_projects, guarded by the claim token
   and the stage the delta was computed from, which also clears the lease
2. upsert of merge_jobs when the delta carries a manifest
3. mirror of stage/last_error onto the operator's pipeline_items row

If the guarded UPDATE matches no row, the lease was lost (expired and taken
over); the transaction is rolled back and ClaimLostError is raised, so a
stale delta can never overwrite newer progress.
"""

import uuid
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from autopilot.exceptions import ClaimLostError, InvalidStageTransitionError
from autopilot.models import (
    ApprovalWorkflow,
    Channel,
    MergeJob,
    MergeJobStatus,
    PipelineItem,
    PipelineStage,
    Project,
    ProjectStatus,
    as_utc,
    utcnow,
)
from autopilot.schemas.scene import load_scenes
from autopilot.services.claimer import ProjectClaim
from autopilot.services.ports import ChannelProfile
from autopilot.services.snapshot import ProjectSnapshot, StageDelta
from autopilot.utils.logging import get_logger

log = get_logger(__name__)

# Columns a StageDelta may update directly
WRITABLE_COLUMNS = frozenset(
    {
        "scenes",
        "script",
        "audio_master_ref",
        "video_ref",
        "thumbnail_ref",
        "merge_instructions",
        "last_error",
        "retry_count",
        "notified_condition",
    }
)


def check_transition(current: PipelineStage, target: PipelineStage) -> None:
    """Allow only staying put or advancing exactly one stage.

    Raises:
        InvalidStageTransitionError: Backwards move or skipped stage.
    """
    if target.position < current.position or target.position > current.position + 1:
        raise InvalidStageTransitionError(
            f"Invalid transition: {current.value} → {target.value}",
            from_stage=current,
            to_stage=target,
        )


def channel_profile(channel: Channel) -> ChannelProfile:
    return ChannelProfile(
        id=str(channel.id),
        name=channel.name,
        niche=channel.niche or "",
        style_memory=list(channel.style_memory or []),
        prompt_enhancers=channel.default_prompt_enhancers or "",
    )


class ProjectStore:
    """Snapshot loading and delta persistence for claimed projects."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def load_snapshot(self, project_id: uuid.UUID) -> ProjectSnapshot:
        """Read a project, its channel policy and approval flag.

        Raises:
            LookupError: If the project row no longer exists.
        """
        async with self.session_factory() as session:
            project = await session.scalar(
                select(Project)
                .where(Project.id == project_id)
                .options(selectinload(Project.channel).selectinload(Channel.autopilot_config))
            )
            if project is None:
                raise LookupError(f"Project not found: {project_id}")

            approved = await session.scalar(
                select(PipelineItem.approved).where(PipelineItem.project_id == project_id)
            )

        config = project.channel.autopilot_config
        workflow = config.approval_workflow if config else ApprovalWorkflow.REVIEW_BEFORE_PUBLISH

        return ProjectSnapshot(
            id=str(project.id),
            title=project.title,
            status=project.status,
            stage=project.pipeline_stage,
            channel=channel_profile(project.channel),
            scenes=load_scenes(project.scenes),
            script=project.script,
            audio_master_ref=project.audio_master_ref,
            video_ref=project.video_ref,
            thumbnail_ref=project.thumbnail_ref,
            merge_instructions=project.merge_instructions,
            logs=list(project.logs or []),
            last_error=project.last_error,
            retry_count=project.retry_count or 0,
            notified_condition=project.notified_condition,
            approval_workflow=workflow,
            approved=bool(approved),
            created_at=as_utc(project.created_at),
        )

    def _project_values(self, snapshot: ProjectSnapshot, delta: StageDelta) -> dict[str, Any]:
        unknown = set(delta.updates) - WRITABLE_COLUMNS
        if unknown:
            raise ValueError(f"StageDelta updates unknown columns: {sorted(unknown)}")

        values: dict[str, Any] = {}
        if delta.new_stage is not None:
            check_transition(snapshot.stage, delta.new_stage)
            # A fresh stage starts with a clean failure record
            values.update(
                pipeline_stage=delta.new_stage,
                last_error=None,
                retry_count=0,
                notified_condition=None,
            )
        values.update(delta.updates)
        if delta.new_status is not None:
            values["status"] = delta.new_status
        if delta.log_lines:
            values["logs"] = [*snapshot.logs, *delta.log_lines]

        values.update(claim_token=None, claimed_until=None, updated_at=utcnow())
        return values

    async def apply_delta(self, claim: ProjectClaim, snapshot: ProjectSnapshot, delta: StageDelta) -> None:
        """Persist `delta` and release the claim in one transaction.

        Raises:
            ClaimLostError: The lease is no longer held by `claim`.
            InvalidStageTransitionError: The delta would regress or skip a stage.
        """
        values = self._project_values(snapshot, delta)

        async with self.session_factory() as session, session.begin():
            updated = await session.scalar(
                update(Project)
                .where(
                    Project.id == claim.project_id,
                    Project.claim_token == claim.token,
                    Project.pipeline_stage == snapshot.stage,
                )
                .values(**values)
                .returning(Project.channel_id)
                .execution_options(synchronize_session=False)
            )
            if updated is None:
                raise ClaimLostError(snapshot.id)

            channel_id = updated
            if delta.merge_manifest is not None:
                await self._upsert_merge_job(session, claim.project_id, channel_id, delta.merge_manifest)
            await self._sync_pipeline_item(session, claim.project_id, channel_id, snapshot, delta, values)

        log.info(
            "delta_persisted",
            project_id=snapshot.id,
            stage=snapshot.stage.value,
            new_stage=delta.new_stage.value if delta.new_stage else None,
            new_status=delta.new_status.value if delta.new_status else None,
            log_lines=len(delta.log_lines),
        )

    async def _upsert_merge_job(
        self,
        session: AsyncSession,
        project_id: uuid.UUID,
        channel_id: uuid.UUID,
        manifest: dict[str, Any],
    ) -> None:
        # Row is locked by the project UPDATE above, so select-then-write is safe here
        job = await session.scalar(select(MergeJob).where(MergeJob.project_id == project_id))
        if job is None:
            session.add(
                MergeJob(
                    project_id=project_id,
                    channel_id=channel_id,
                    manifest=manifest,
                    status=MergeJobStatus.PENDING,
                )
            )
            return
        job.manifest = manifest
        job.status = MergeJobStatus.PENDING
        job.output_ref = None

    async def _sync_pipeline_item(
        self,
        session: AsyncSession,
        project_id: uuid.UUID,
        channel_id: uuid.UUID,
        snapshot: ProjectSnapshot,
        delta: StageDelta,
        values: dict[str, Any],
    ) -> None:
        item = await session.scalar(select(PipelineItem).where(PipelineItem.project_id == project_id))
        if item is None:
            item = PipelineItem(
                project_id=project_id,
                channel_id=channel_id,
                stage=snapshot.stage.value,
                approved=False,
                started_at=utcnow(),
            )
            session.add(item)

        stage = delta.new_stage or snapshot.stage
        item.stage = stage.value
        if "last_error" in values:
            item.last_error = values["last_error"]
        if delta.new_status in (ProjectStatus.READY, ProjectStatus.FAILED):
            item.completed_at = utcnow()
