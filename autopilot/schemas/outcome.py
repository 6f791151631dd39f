"""Invocation outcome returned by the pipeline engine.

Serialized as the JSON body of POST /api/v1/pipeline/run and printed by
`python -m autopilot.worker`.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from autopilot.models import utcnow


class OutcomeKind(str, Enum):
    NO_OP = "no_op"
    PROCESSED = "processed"
    ERROR = "error"


class InvocationOutcome(BaseModel):
    """Result of one engine invocation.

    Examples:
        {"kind": "no_op", ...}
        {"kind": "processed", "project_id": "...", "previous_stage": "audio",
         "new_stage": "audio", ...}
        {"kind": "error", "error": "DATABASE_URL environment variable is required", ...}
    """

    model_config = ConfigDict(from_attributes=True)

    kind: OutcomeKind
    project_id: str | None = None
    title: str | None = None
    previous_stage: str | None = None
    new_stage: str | None = None
    error: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)

    @classmethod
    def no_op(cls) -> "InvocationOutcome":
        return cls(kind=OutcomeKind.NO_OP)

    @classmethod
    def failed(cls, error: BaseException) -> "InvocationOutcome":
        return cls(kind=OutcomeKind.ERROR, error=f"{type(error).__name__}: {error}")

    @property
    def advanced(self) -> bool:
        return self.kind is OutcomeKind.PROCESSED and self.previous_stage != self.new_stage
