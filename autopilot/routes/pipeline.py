"""Pipeline trigger route.

- POST /api/v1/pipeline/run - run one invocation (same as `python -m autopilot.worker`)

Intended for HTTP schedulers (cron services that can only call URLs). When
PIPELINE_TRIGGER_SECRET is set, callers must send
`Authorization: Bearer <secret>`.
"""

import hmac
from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Depends, Header, HTTPException, status
from fastapi.responses import JSONResponse

from autopilot.config import get_pipeline_trigger_secret
from autopilot.schemas.outcome import InvocationOutcome, OutcomeKind
from autopilot.utils.logging import get_logger
from autopilot.worker import run_invocation

log = get_logger(__name__)
router = APIRouter(prefix="/api/v1/pipeline", tags=["pipeline"])

InvocationRunner = Callable[[], Awaitable[InvocationOutcome]]


def get_invocation_runner() -> InvocationRunner:
    """Dependency returning the invocation callable (overridden in tests)."""
    return run_invocation


def verify_trigger_secret(authorization: str | None = Header(default=None)) -> None:
    secret = get_pipeline_trigger_secret()
    if secret is None:
        return

    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization, expected):
        log.warning("pipeline_trigger_unauthorized")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid trigger token")


@router.post("/run", dependencies=[Depends(verify_trigger_secret)])
async def run_pipeline(runner: InvocationRunner = Depends(get_invocation_runner)) -> JSONResponse:
    """Advance at most one project by at most one stage.

    Returns:
        200 with the outcome (no_op or processed)
        500 with the outcome when the invocation ended in an error
    """
    try:
        outcome = await runner()
    except Exception as e:
        log.exception("pipeline_trigger_failed", error=str(e))
        outcome = InvocationOutcome.failed(e)

    code = status.HTTP_500_INTERNAL_SERVER_ERROR if outcome.kind is OutcomeKind.ERROR else status.HTTP_200_OK
    return JSONResponse(status_code=code, content=outcome.model_dump(mode="json"))
