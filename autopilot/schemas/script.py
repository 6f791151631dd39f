"""Strict schema for the script generation response.

The script model is asked to return JSON of the form:

    {
        "script": "Full voiceover script...",
        "scenes": [
            {"timestamp": "0:00-0:08", "visual": "...", "audio": "...", "script": "..."}
        ]
    }

Any deviation (missing field, empty scene list, non-JSON text) raises
ScriptParseError, which the scripting stage treats as a retryable failure.
"""

import re

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from autopilot.exceptions import ScriptParseError
from autopilot.schemas.scene import Scene

_FENCE_PATTERN = re.compile(r"^```(?:json)?\s*|\s*```$")
_OBJECT_PATTERN = re.compile(r"\{[\s\S]*\}")


class ScenePlan(BaseModel):
    """One scene as returned by the script model."""

    model_config = ConfigDict(extra="ignore")

    timestamp: str = ""
    visual: str = Field(..., min_length=1)
    audio: str = ""
    script: str = Field(..., min_length=1)

    def to_scene(self) -> Scene:
        """Create a fresh Scene with both tracks pending."""
        return Scene(
            timestamp=self.timestamp,
            visual_prompt=self.visual,
            narration_text=self.script,
            audio_cue=self.audio,
        )


class ScriptPlan(BaseModel):
    """Full script generation response."""

    model_config = ConfigDict(extra="ignore")

    script: str = Field(..., min_length=1)
    scenes: list[ScenePlan] = Field(..., min_length=1)


def parse_script_plan(text: str) -> ScriptPlan:
    """Parse model output into a ScriptPlan.

    Strips markdown code fences and surrounding prose, then validates the
    first JSON object found.

    Raises:
        ScriptParseError: If no JSON object is present or it fails validation.
    """
    cleaned = _FENCE_PATTERN.sub("", (text or "").strip())
    match = _OBJECT_PATTERN.search(cleaned)
    if not match:
        raise ScriptParseError("Failed to parse script generation response: no JSON object")

    try:
        return ScriptPlan.model_validate_json(match.group(0))
    except ValidationError as e:
        raise ScriptParseError(
            f"Script generation response failed validation: {e.error_count()} error(s)"
        ) from e
