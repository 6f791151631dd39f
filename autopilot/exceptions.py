"""Shared exceptions for the autopilot pipeline.

This module contains exception classes used across the engine, the stage
processors and the provider clients, so services never import each other
just to catch an error.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from autopilot.models import PipelineStage


class ConfigurationError(Exception):
    """Raised when required configuration is missing.

    Indicates a problem that prevents any generation from proceeding (e.g. no
    GEMINI_API_KEY, or YouTube OAuth client credentials not set). Raised
    before a project is claimed, so no project state is touched.
    """

    pass


class InvalidStageTransitionError(Exception):
    """Raised when a project's pipeline_stage would move backwards.

    The stage order is fixed (scripting → audio → visuals → thumbnail →
    merging → review → ready). Staying at the same stage or advancing is
    allowed; regressing is only possible through an external reset.

    Attributes:
        from_stage: The stage before the attempted transition.
        to_stage: The stage that was attempted.
    """

    def __init__(self, message: str, from_stage: PipelineStage, to_stage: PipelineStage):
        self.from_stage = from_stage
        self.to_stage = to_stage
        super().__init__(message)

    def __str__(self) -> str:
        base_message = super().__str__()
        return f"{base_message} (from={self.from_stage.value}, to={self.to_stage.value})"


class ScriptParseError(Exception):
    """Raised when the script generation response does not match the schema.

    Treated as a transient failure: the Retry Controller retries the whole
    scripting call.
    """

    pass


class BudgetExhaustedError(Exception):
    """Raised when the invocation's remaining time cannot cover more work."""

    pass


class OperationFailedError(Exception):
    """Terminal failure of an operation run through the Retry Controller.

    Attributes:
        attempts: Number of attempts actually made (>= 1).
        last_error: Exception raised by the final attempt.
        abandoned: True when attempts stopped early because the invocation
            budget ran out, rather than because max_attempts was reached.
    """

    def __init__(self, last_error: BaseException, attempts: int, abandoned: bool = False):
        self.last_error = last_error
        self.attempts = attempts
        self.abandoned = abandoned
        super().__init__(f"{type(last_error).__name__}: {last_error}")


class ClaimLostError(Exception):
    """Raised when persisting a delta finds the project lease no longer held."""

    def __init__(self, project_id: str):
        self.project_id = project_id
        super().__init__(f"Claim on project {project_id} was lost before persist")


class GenerationAPIError(Exception):
    """Raised for non-retriable provider errors (400, 401, 403, 404).

    Attributes:
        status_code: HTTP status returned by the provider.
        response_body: First 500 characters of the response body.
    """

    def __init__(self, message: str, status_code: int, response_body: str = ""):
        self.status_code = status_code
        self.response_body = response_body[:500]
        super().__init__(f"{message} - Status: {status_code}")
