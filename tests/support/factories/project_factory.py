"""Project, channel and scene factories.

Snapshot helpers build pure in-memory inputs for processor tests; the async
helpers insert rows for claimer, store and engine tests.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autopilot.models import (
    ApprovalWorkflow,
    AutopilotConfig,
    Channel,
    PipelineItem,
    PipelineStage,
    Project,
    ProjectStatus,
)
from autopilot.schemas.scene import Scene, SceneWork, SubState, dump_scenes
from autopilot.services.ports import ChannelProfile
from autopilot.services.snapshot import ProjectSnapshot

BASE_TIME = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)


def make_scene(
    index: int = 0,
    audio: SubState = SubState.PENDING,
    video: SubState = SubState.PENDING,
    audio_retries: int = 0,
    video_retries: int = 0,
) -> Scene:
    """Scene with optional finished or failed tracks."""

    def work(state: SubState, retries: int, ref: str) -> SceneWork:
        return SceneWork(
            sub_state=state,
            retry_count=retries,
            ref=ref if state is SubState.DONE else None,
        )

    return Scene(
        timestamp=f"0:{index * 8:02d}-0:{index * 8 + 8:02d}",
        visual_prompt=f"Visual {index + 1}",
        narration_text=f"Narration {index + 1}",
        audio=work(audio, audio_retries, f"audio://existing-{index + 1}"),
        video=work(video, video_retries, f"video://existing-{index + 1}"),
    )


def make_scenes(count: int, **kwargs) -> list[Scene]:
    return [make_scene(i, **kwargs) for i in range(count)]


def make_channel_profile(**overrides) -> ChannelProfile:
    defaults: dict[str, Any] = {
        "id": str(uuid.UUID(int=1)),
        "name": "Deep Space Daily",
        "niche": "astronomy",
        "style_memory": ["Cinematic", "Awe-inspiring"],
        "prompt_enhancers": "8k, volumetric light",
    }
    defaults.update(overrides)
    return ChannelProfile(**defaults)


def make_snapshot(stage: PipelineStage = PipelineStage.SCRIPTING, **overrides) -> ProjectSnapshot:
    defaults: dict[str, Any] = {
        "id": str(uuid.UUID(int=42)),
        "title": "Why Pluto Lost Its Planet Status",
        "status": ProjectStatus.PRODUCTION,
        "stage": stage,
        "channel": make_channel_profile(),
    }
    defaults.update(overrides)
    return ProjectSnapshot(**defaults)


async def create_channel(
    session_factory: async_sessionmaker[AsyncSession],
    approval_workflow: ApprovalWorkflow | None = ApprovalWorkflow.REVIEW_BEFORE_PUBLISH,
    **overrides,
) -> Channel:
    """Insert a channel (and its autopilot config unless workflow is None)."""
    defaults: dict[str, Any] = {
        "name": "Deep Space Daily",
        "niche": "astronomy",
        "style_memory": ["Cinematic"],
        "default_prompt_enhancers": "8k",
    }
    defaults.update(overrides)
    channel = Channel(**defaults)

    async with session_factory() as session, session.begin():
        session.add(channel)
        await session.flush()
        if approval_workflow is not None:
            session.add(AutopilotConfig(channel_id=channel.id, approval_workflow=approval_workflow))
    return channel


async def create_project(
    session_factory: async_sessionmaker[AsyncSession],
    channel: Channel,
    stage: PipelineStage = PipelineStage.SCRIPTING,
    status: ProjectStatus = ProjectStatus.PRODUCTION,
    created_offset_minutes: int = 0,
    scenes: list[Scene] | None = None,
    **overrides,
) -> Project:
    """Insert a project; `created_offset_minutes` orders projects for FIFO tests."""
    project = Project(
        channel_id=channel.id,
        title=overrides.pop("title", f"Project {uuid.uuid4().hex[:6]}"),
        status=status,
        pipeline_stage=stage,
        scenes=dump_scenes(scenes or []),
        logs=overrides.pop("logs", []),
        created_at=BASE_TIME + timedelta(minutes=created_offset_minutes),
        **overrides,
    )
    async with session_factory() as session, session.begin():
        session.add(project)
    return project


async def approve_in_db(session_factory: async_sessionmaker[AsyncSession], project: Project) -> None:
    async with session_factory() as session, session.begin():
        session.add(
            PipelineItem(
                project_id=project.id,
                channel_id=project.channel_id,
                stage=project.pipeline_stage.value,
                approved=True,
            )
        )


async def reload_project(session_factory: async_sessionmaker[AsyncSession], project_id: uuid.UUID) -> Project:
    async with session_factory() as session:
        project = await session.get(Project, project_id)
        assert project is not None
        return project
