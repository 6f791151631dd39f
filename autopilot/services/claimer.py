"""Atomic project claiming (single-flight lease).

Overlapping invocations must never advance the same project at once, or two
of them could both bump a scene's retry_count from the same stale read. The
claim is therefore a single conditional UPDATE, never a read followed by a
write:

    UPDATE video_projects
       SET claim_token = :token, claimed_until = :now + ttl
     WHERE id = (SELECT id FROM video_projects
                  WHERE status = 'production'
                    AND pipeline_stage IN (<active stages>)
                    AND (claimed_until IS NULL OR claimed_until < :now)
                  ORDER BY <held at review>, created_at
                  LIMIT 1
                  FOR UPDATE SKIP LOCKED)
       AND (claimed_until IS NULL OR claimed_until < :now)
    RETURNING id

Projects already held at review (approval requested, still unapproved) sort
after every other eligible project, so one waiting for a human cannot starve
younger work. They are still claimed whenever nothing else is eligible, which
is how an approval is picked up. Among the rest the order is oldest first.

On PostgreSQL, SKIP LOCKED lets a concurrent claimer move on to the next
project instead of blocking. The outer lease predicate is re-checked so a
row claimed between subquery and update is never taken twice.

A claim is released by the persist that ends the invocation (see
ProjectStore.apply_delta) or explicitly via release(). If the invocation
crashes, the lease simply expires after CLAIM_TTL_SECONDS.
"""

import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import and_, case, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autopilot.models import ACTIVE_STAGES, PipelineStage, Project, ProjectStatus, utcnow
from autopilot.services.stage_processors import APPROVAL_CONDITION
from autopilot.utils.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class ProjectClaim:
    """Handle proving this invocation holds a project's lease."""

    project_id: uuid.UUID
    token: str
    claimed_until: datetime


def _lease_available(now: datetime):
    return or_(Project.claimed_until.is_(None), Project.claimed_until < now)


def _held_at_review():
    held = and_(
        Project.pipeline_stage == PipelineStage.REVIEW,
        Project.notified_condition == APPROVAL_CONDITION,
    )
    return case((held, 1), else_=0)


class ProjectClaimer:
    """Claim the oldest eligible project, or nothing.

    Args:
        session_factory: Async session factory bound to the pipeline database.
        claim_ttl_seconds: Lease length.
        clock: UTC clock (patched in tests to simulate lease expiry).
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        claim_ttl_seconds: int,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.claim_ttl = timedelta(seconds=claim_ttl_seconds)
        self.clock = clock

    async def claim_next(self) -> ProjectClaim | None:
        """Atomically claim the oldest claimable project.

        Returns:
            ProjectClaim, or None when no project is eligible (not an error).
        """
        now = self.clock()
        token = uuid.uuid4().hex
        claimed_until = now + self.claim_ttl

        oldest_eligible = (
            select(Project.id)
            .where(
                Project.status == ProjectStatus.PRODUCTION,
                Project.pipeline_stage.in_(ACTIVE_STAGES),
                _lease_available(now),
            )
            .order_by(_held_at_review(), Project.created_at.asc(), Project.id.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )
        stmt = (
            update(Project)
            .where(Project.id == oldest_eligible, _lease_available(now))
            .values(claim_token=token, claimed_until=claimed_until)
            .returning(Project.id)
            .execution_options(synchronize_session=False)
        )

        async with self.session_factory() as session, session.begin():
            result = await session.execute(stmt)
            project_id = result.scalar_one_or_none()

        if project_id is None:
            log.info("no_claimable_project")
            return None

        log.info("project_claimed", project_id=str(project_id), claimed_until=claimed_until.isoformat())
        return ProjectClaim(project_id=project_id, token=token, claimed_until=claimed_until)

    async def release(self, claim: ProjectClaim) -> bool:
        """Clear the lease if this claim still holds it.

        Returns:
            False if the lease had already expired and been taken over.
        """
        stmt = (
            update(Project)
            .where(Project.id == claim.project_id, Project.claim_token == claim.token)
            .values(claim_token=None, claimed_until=None)
            .returning(Project.id)
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session, session.begin():
            result = await session.execute(stmt)
            released = result.scalar_one_or_none() is not None

        if not released:
            log.warning("claim_already_lost", project_id=str(claim.project_id))
        return released
