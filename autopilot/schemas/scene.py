"""Pydantic schemas for per-scene pipeline state.

Scenes live in the `video_projects.scenes` JSON column. Each scene carries two
independent work tracks, one for narration audio and one for video, so that
finishing a scene's audio does not mark its video as done and retry counts
never need resetting between stages.

JSON shape (one array element):
    {
        "timestamp": "0:00-0:08",
        "visual_prompt": "...",
        "narration_text": "...",
        "audio_cue": "ambient electronic music builds",
        "audio": {"sub_state": "done", "retry_count": 0, "ref": "...", "error": null},
        "video": {"sub_state": "pending", "retry_count": 0, "ref": null, "error": null}
    }
"""

import enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SubState(str, enum.Enum):
    """Progress of one scene track."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    FAILED = "failed"


class SceneTrack(str, enum.Enum):
    """Which artifact a scene operation produces."""

    AUDIO = "audio"
    VIDEO = "video"


class SceneWork(BaseModel):
    """Sub-state of one operation (audio or video) on one scene.

    Invariants:
        - once sub_state is DONE, ref is never overwritten
        - retry_count only grows; at the configured cap the track is
          permanently excluded from further attempts
    """

    model_config = ConfigDict(use_enum_values=False)

    sub_state: SubState = SubState.PENDING
    retry_count: int = Field(default=0, ge=0)
    ref: str | None = None
    error: str | None = None

    @property
    def is_done(self) -> bool:
        return self.sub_state is SubState.DONE and self.ref is not None

    def is_terminal(self, max_retries: int) -> bool:
        """Done, or out of retries."""
        return self.is_done or self.retry_count >= max_retries


class Scene(BaseModel):
    """One short sub-unit of audio/video work inside a project.

    visual_prompt and narration_text are set by the scripting stage and are
    never modified afterwards.
    """

    timestamp: str = ""
    visual_prompt: str
    narration_text: str
    audio_cue: str = ""
    audio: SceneWork = Field(default_factory=SceneWork)
    video: SceneWork = Field(default_factory=SceneWork)

    def work(self, track: SceneTrack) -> SceneWork:
        """Return the work record for a track."""
        return self.audio if track is SceneTrack.AUDIO else self.video

    @property
    def audio_ref(self) -> str | None:
        return self.audio.ref

    @property
    def video_ref(self) -> str | None:
        return self.video.ref


def load_scenes(raw: list[dict[str, Any]] | None) -> list[Scene]:
    """Validate a JSON scene array from the database."""
    return [Scene.model_validate(item) for item in raw or []]


def dump_scenes(scenes: list[Scene]) -> list[dict[str, Any]]:
    """Serialize scenes for the JSON column."""
    return [scene.model_dump(mode="json") for scene in scenes]
