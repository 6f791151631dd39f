"""Pipeline engine: advance exactly one project by at most one stage.

One call to run_once() is one invocation:

    claim → load snapshot → run the stage's processor → persist delta
    (or just release the claim when there is nothing to write) → outcome

Guarantees:
    - at most one project per invocation
    - at most one stage transition per invocation, never backwards
    - the whole invocation, retries and backoff included, fits in
      INVOCATION_BUDGET_SECONDS

Error Handling:
    Failures before a project is claimed (database unreachable) propagate to
    the caller. Once a project is claimed, run_once() never raises: stage
    failures are already recorded in the delta by the processor, and anything
    else (lost claim, unexpected bug) releases the claim where possible and
    is returned as an error outcome.

Usage:
    engine = PipelineEngine(session_factory, ports, settings)
    outcome = await engine.run_once()
"""

import asyncio
import time
import uuid
from collections.abc import Awaitable, Callable
from datetime import datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autopilot.config import PipelineSettings
from autopilot.exceptions import ClaimLostError
from autopilot.models import utcnow
from autopilot.schemas.outcome import InvocationOutcome, OutcomeKind
from autopilot.services.claimer import ProjectClaim, ProjectClaimer
from autopilot.services.ports import CapabilityPorts
from autopilot.services.project_store import ProjectStore
from autopilot.services.retry import InvocationBudget, RetryController
from autopilot.services.scene_tracker import SceneTracker
from autopilot.services.snapshot import ProjectSnapshot
from autopilot.services.stage_processors import STAGE_PROCESSORS, StageContext, StageProcessor
from autopilot.utils.logging import get_logger

log = get_logger(__name__)


class PipelineEngine:
    """Wires claimer, store and stage processors for one-step invocations.

    Args:
        session_factory: Storage handle (injected; never a module global).
        ports: Capability ports for the processors.
        settings: Pipeline tuning values.
        processors: Stage → processor map (defaults to STAGE_PROCESSORS).
        clock: UTC wall clock for leases and log timestamps.
        monotonic: Monotonic clock for the invocation budget.
        sleep: Backoff sleep used by the Retry Controller.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ports: CapabilityPorts,
        settings: PipelineSettings,
        *,
        processors: dict | None = None,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.ports = ports
        self.settings = settings
        self.processors = processors or STAGE_PROCESSORS
        self.clock = clock
        self.monotonic = monotonic
        self.sleep = sleep
        self.claimer = ProjectClaimer(
            session_factory, claim_ttl_seconds=settings.claim_ttl_seconds, clock=clock
        )
        self.store = ProjectStore(session_factory)

    def _context(self, budget: InvocationBudget) -> StageContext:
        retry = RetryController(budget, jitter=self.settings.retry_jitter_seconds, sleep=self.sleep)
        tracker = SceneTracker(
            retry,
            max_retries=self.settings.max_scene_retries,
            attempts_per_scene=self.settings.retry_max_attempts,
            base_delay=self.settings.retry_base_delay_seconds,
        )
        return StageContext(
            ports=self.ports,
            settings=self.settings,
            retry=retry,
            scene_tracker=tracker,
            clock=self.clock,
        )

    async def run_once(self) -> InvocationOutcome:
        """Run one invocation.

        Returns:
            no_op when nothing is claimable, processed with the before/after
            stage, or error if something failed after claiming.

        Raises:
            Exception: Storage failures before a project is claimed.
        """
        budget = InvocationBudget(self.settings.invocation_budget_seconds, clock=self.monotonic)
        structlog.contextvars.bind_contextvars(invocation_id=uuid.uuid4().hex[:12])
        try:
            claim = await self.claimer.claim_next()
            if claim is None:
                return InvocationOutcome.no_op()
            return await self._process_claimed(claim, budget)
        finally:
            structlog.contextvars.unbind_contextvars("invocation_id", "project_id")

    async def _process_claimed(self, claim: ProjectClaim, budget: InvocationBudget) -> InvocationOutcome:
        structlog.contextvars.bind_contextvars(project_id=str(claim.project_id))
        snapshot: ProjectSnapshot | None = None
        try:
            snapshot = await self.store.load_snapshot(claim.project_id)
            processor: StageProcessor = self.processors[snapshot.stage]

            log.info("stage_started", stage=snapshot.stage.value, title=snapshot.title)
            delta = await processor.process(snapshot, self._context(budget))

            if delta.is_empty:
                await self.claimer.release(claim)
            else:
                await self.store.apply_delta(claim, snapshot, delta)

            new_stage = delta.new_stage or snapshot.stage
            log.info(
                "stage_finished",
                stage=snapshot.stage.value,
                new_stage=new_stage.value,
                remaining_budget=round(budget.remaining(), 2),
            )
            return InvocationOutcome(
                kind=OutcomeKind.PROCESSED,
                project_id=snapshot.id,
                title=snapshot.title,
                previous_stage=snapshot.stage.value,
                new_stage=new_stage.value,
            )
        except ClaimLostError as e:
            log.warning("claim_lost_before_persist", error=str(e))
            return self._error_outcome(claim, snapshot, e)
        except Exception as e:
            log.exception("invocation_failed_after_claim", error=str(e))
            await self._release_quietly(claim)
            return self._error_outcome(claim, snapshot, e)

    async def _release_quietly(self, claim: ProjectClaim) -> None:
        try:
            await self.claimer.release(claim)
        except Exception as e:
            # Lease still expires after CLAIM_TTL_SECONDS
            log.error("claim_release_failed", project_id=str(claim.project_id), error=str(e))

    @staticmethod
    def _error_outcome(
        claim: ProjectClaim, snapshot: ProjectSnapshot | None, error: Exception
    ) -> InvocationOutcome:
        outcome = InvocationOutcome.failed(error)
        outcome.project_id = str(claim.project_id)
        if snapshot is not None:
            outcome.title = snapshot.title
            outcome.previous_stage = snapshot.stage.value
            outcome.new_stage = snapshot.stage.value
        return outcome
