"""Tests for atomic project claiming.

Tests cover:
    - oldest production project is claimed first (FIFO on created_at)
    - a held lease excludes the project from later claims
    - an expired lease can be taken over
    - non-production and ready projects are never claimed
    - release() only clears a lease the caller still holds
    - projects already waiting for approval yield to other eligible work
    - concurrent claimers on separate connections never share a project
"""

import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio

from autopilot.database import create_test_engine
from autopilot.models import Base, PipelineStage, ProjectStatus
from autopilot.services.claimer import ProjectClaimer
from autopilot.services.stage_processors import APPROVAL_CONDITION
from tests.support.factories import BASE_TIME, create_channel, create_project, reload_project


class MovableClock:
    def __init__(self, now=BASE_TIME):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock() -> MovableClock:
    return MovableClock()


@pytest.fixture
def claimer(session_factory, clock) -> ProjectClaimer:
    return ProjectClaimer(session_factory, claim_ttl_seconds=120, clock=clock)


class TestClaimNext:
    @pytest.mark.asyncio
    async def test_no_projects_returns_none(self, claimer):
        assert await claimer.claim_next() is None

    @pytest.mark.asyncio
    async def test_claims_oldest_project_first(self, session_factory, claimer):
        channel = await create_channel(session_factory)
        newer = await create_project(session_factory, channel, created_offset_minutes=10)
        older = await create_project(session_factory, channel, created_offset_minutes=0)

        first = await claimer.claim_next()
        second = await claimer.claim_next()

        assert first.project_id == older.id
        assert second.project_id == newer.id

    @pytest.mark.asyncio
    async def test_claim_sets_lease_on_row(self, session_factory, claimer, clock):
        channel = await create_channel(session_factory)
        project = await create_project(session_factory, channel)

        claim = await claimer.claim_next()

        row = await reload_project(session_factory, project.id)
        assert row.claim_token == claim.token
        assert claim.claimed_until == clock.now + timedelta(seconds=120)

    @pytest.mark.asyncio
    async def test_claimed_project_is_not_claimed_twice(self, session_factory, claimer):
        channel = await create_channel(session_factory)
        await create_project(session_factory, channel)

        first = await claimer.claim_next()
        second = await claimer.claim_next()

        assert first is not None
        assert second is None

    @pytest.mark.asyncio
    async def test_expired_lease_can_be_reclaimed(self, session_factory, claimer, clock):
        channel = await create_channel(session_factory)
        project = await create_project(session_factory, channel)

        stale = await claimer.claim_next()
        clock.now = BASE_TIME + timedelta(seconds=121)
        fresh = await claimer.claim_next()

        assert fresh.project_id == project.id
        assert fresh.token != stale.token

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status,stage",
        [
            (ProjectStatus.DRAFT, PipelineStage.SCRIPTING),
            (ProjectStatus.FAILED, PipelineStage.AUDIO),
            (ProjectStatus.READY, PipelineStage.READY),
            (ProjectStatus.PRODUCTION, PipelineStage.READY),
        ],
    )
    async def test_ineligible_projects_are_skipped(self, session_factory, claimer, status, stage):
        channel = await create_channel(session_factory)
        await create_project(session_factory, channel, stage=stage, status=status)

        assert await claimer.claim_next() is None


class TestReviewHoldOrdering:
    @pytest.mark.asyncio
    async def test_held_review_project_yields_to_younger_work(self, session_factory, claimer):
        channel = await create_channel(session_factory)
        await create_project(
            session_factory,
            channel,
            stage=PipelineStage.REVIEW,
            notified_condition=APPROVAL_CONDITION,
        )
        younger = await create_project(
            session_factory, channel, stage=PipelineStage.AUDIO, created_offset_minutes=30
        )

        claim = await claimer.claim_next()

        assert claim.project_id == younger.id

    @pytest.mark.asyncio
    async def test_held_review_project_claimed_when_nothing_else_is_eligible(self, session_factory, claimer):
        channel = await create_channel(session_factory)
        held = await create_project(
            session_factory,
            channel,
            stage=PipelineStage.REVIEW,
            notified_condition=APPROVAL_CONDITION,
        )

        claim = await claimer.claim_next()

        assert claim.project_id == held.id

    @pytest.mark.asyncio
    async def test_first_entry_into_review_keeps_fifo_order(self, session_factory, claimer):
        channel = await create_channel(session_factory)
        entering = await create_project(session_factory, channel, stage=PipelineStage.REVIEW)
        await create_project(session_factory, channel, stage=PipelineStage.AUDIO, created_offset_minutes=30)

        claim = await claimer.claim_next()

        assert claim.project_id == entering.id


class TestRelease:
    @pytest.mark.asyncio
    async def test_release_clears_lease(self, session_factory, claimer):
        channel = await create_channel(session_factory)
        project = await create_project(session_factory, channel)
        claim = await claimer.claim_next()

        assert await claimer.release(claim) is True

        row = await reload_project(session_factory, project.id)
        assert row.claim_token is None
        assert row.claimed_until is None
        assert (await claimer.claim_next()).project_id == project.id

    @pytest.mark.asyncio
    async def test_release_after_takeover_is_refused(self, session_factory, claimer, clock):
        channel = await create_channel(session_factory)
        project = await create_project(session_factory, channel)
        stale = await claimer.claim_next()
        clock.now = BASE_TIME + timedelta(minutes=5)
        fresh = await claimer.claim_next()

        assert await claimer.release(stale) is False

        row = await reload_project(session_factory, project.id)
        assert row.claim_token == fresh.token


@pytest_asyncio.fixture
async def separate_connections(tmp_path):
    """Session factories on independent engines over one file-backed database.

    Unlike the shared in-memory fixture, each factory has its own connection,
    so concurrent claims contend at the database the way separate worker
    processes do.
    """
    url = f"sqlite+aiosqlite:///{tmp_path / 'claims.db'}"
    engines, factories = [], []
    for _ in range(5):
        engine, factory = create_test_engine(url)
        engines.append(engine)
        factories.append(factory)

    async with engines[0].begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield factories

    for engine in engines:
        await engine.dispose()


class TestConcurrentClaims:
    @pytest.mark.asyncio
    async def test_concurrent_claimers_get_distinct_projects(self, separate_connections, clock):
        seed = separate_connections[0]
        channel = await create_channel(seed)
        for offset in range(3):
            await create_project(seed, channel, created_offset_minutes=offset)
        claimers = [
            ProjectClaimer(factory, claim_ttl_seconds=120, clock=clock) for factory in separate_connections
        ]

        claims = await asyncio.gather(*(c.claim_next() for c in claimers))

        claimed_ids = [claim.project_id for claim in claims if claim is not None]
        assert len(claimed_ids) == 3
        assert len(set(claimed_ids)) == 3
        assert claims.count(None) == 2

    @pytest.mark.asyncio
    async def test_single_project_is_claimed_exactly_once(self, separate_connections, clock):
        seed = separate_connections[0]
        channel = await create_channel(seed)
        project = await create_project(seed, channel)
        claimers = [
            ProjectClaimer(factory, claim_ttl_seconds=120, clock=clock) for factory in separate_connections
        ]

        claims = await asyncio.gather(*(c.claim_next() for c in claimers))

        winners = [claim for claim in claims if claim is not None]
        assert len(winners) == 1
        assert winners[0].project_id == project.id
        row = await reload_project(seed, project.id)
        assert row.claim_token == winners[0].token
