"""Merge manifest schema.

The merging stage does no media processing. It records, for the external
merger, which artifacts make up the final video. The manifest contains no
wall-clock values so the same scene list always yields the same manifest.
"""

from typing import Any

from pydantic import BaseModel, Field

from autopilot.schemas.scene import Scene

MANIFEST_VERSION = "1.0"


class ManifestScene(BaseModel):
    index: int
    timestamp: str
    video_ref: str | None = None
    audio_ref: str | None = None


class OutputFormat(BaseModel):
    resolution: str = "1080p"
    codec: str = "h264"
    container: str = "mp4"


class MergeManifest(BaseModel):
    version: str = MANIFEST_VERSION
    project_id: str
    title: str
    scenes: list[ManifestScene]
    output_format: OutputFormat = Field(default_factory=OutputFormat)


def build_manifest(project_id: str, title: str, scenes: list[Scene]) -> dict[str, Any]:
    """Build the manifest dict for a project's scenes, in scene order."""
    manifest = MergeManifest(
        project_id=project_id,
        title=title,
        scenes=[
            ManifestScene(
                index=index,
                timestamp=scene.timestamp,
                video_ref=scene.video_ref,
                audio_ref=scene.audio_ref,
            )
            for index, scene in enumerate(scenes)
        ],
    )
    return manifest.model_dump(mode="json")
