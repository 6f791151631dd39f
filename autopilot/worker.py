"""One pipeline invocation from the command line.

Meant to be run on a fixed schedule (cron, Railway cron service, etc.):

    python -m autopilot.worker

Each run claims at most one project, advances it by at most one stage, prints
the InvocationOutcome as one JSON line on stdout, and exits:

    0   no_op or processed
    1   error (configuration missing, database unreachable, or a failure
        after claiming)

No state survives between runs; overlapping runs are safe because claiming
is atomic.
"""

import asyncio
import sys

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autopilot import database
from autopilot.config import load_pipeline_settings
from autopilot.schemas.outcome import InvocationOutcome, OutcomeKind
from autopilot.services.generation import build_capability_ports
from autopilot.services.pipeline_engine import PipelineEngine
from autopilot.utils.logging import configure_logging, get_logger

log = get_logger(__name__)


async def run_invocation(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> InvocationOutcome:
    """Build the engine from configuration and run it once.

    Configuration is validated before anything is claimed.

    Raises:
        ConfigurationError: Missing provider key or invalid settings.
        RuntimeError: DATABASE_URL not configured.
    """
    settings = load_pipeline_settings()
    factory = session_factory or database.require_session_factory()
    bundle = build_capability_ports(factory)
    try:
        engine = PipelineEngine(factory, bundle.ports, settings)
        return await engine.run_once()
    finally:
        await bundle.close()


async def _main() -> InvocationOutcome:
    try:
        return await run_invocation()
    except Exception as e:
        log.exception("invocation_failed", error=str(e))
        return InvocationOutcome.failed(e)
    finally:
        await database.dispose_engine()


def main() -> int:
    configure_logging()
    outcome = asyncio.run(_main())
    log.info("invocation_complete", kind=outcome.kind.value, project_id=outcome.project_id)
    print(outcome.model_dump_json())
    return 1 if outcome.kind is OutcomeKind.ERROR else 0


if __name__ == "__main__":
    sys.exit(main())
