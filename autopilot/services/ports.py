"""Capability ports consumed by the stage processors.

Each port is a request → result boundary around one external collaborator.
The engine receives a CapabilityPorts bundle at construction; it never builds
provider clients itself. Production implementations live in
autopilot.services.generation, autopilot.services.notification_service and
autopilot.services.credential_service; tests pass in-memory fakes.
"""

from dataclasses import dataclass, field
from typing import Any, Protocol

from autopilot.models import NotificationKind
from autopilot.schemas.scene import Scene


@dataclass(frozen=True)
class ChannelProfile:
    """Channel attributes the generation prompts depend on."""

    id: str
    name: str
    niche: str
    style_memory: list[str] = field(default_factory=list)
    prompt_enhancers: str = ""


@dataclass
class GeneratedScript:
    script: str
    scenes: list[Scene]


class ScriptGenerator(Protocol):
    async def generate_script(self, channel: ChannelProfile, title: str) -> GeneratedScript:
        """Return the narration script and the initial (pending) scenes."""
        ...


class VoiceSynthesizer(Protocol):
    async def synthesize_voice(self, text: str) -> str:
        """Return a reference to the narration audio for `text`."""
        ...


class VideoSynthesizer(Protocol):
    async def synthesize_video(self, prompt: str, aspect_ratio: str) -> str:
        """Return a reference to a finished video clip (may poll a job)."""
        ...


class ThumbnailSynthesizer(Protocol):
    async def synthesize_thumbnail(self, title: str, niche: str, style: str) -> str:
        """Return a reference to a thumbnail image."""
        ...


class Notifier(Protocol):
    async def emit(
        self,
        channel_id: str,
        kind: NotificationKind,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Fire-and-forget; implementations must not raise."""
        ...


class CredentialRefresher(Protocol):
    async def refresh_access_token(self, channel_id: str) -> str:
        """Return a valid access token, refreshing only when near expiry."""
        ...


@dataclass
class CapabilityPorts:
    """Everything a stage processor may call out to."""

    scripts: ScriptGenerator
    voice: VoiceSynthesizer
    video: VideoSynthesizer
    thumbnails: ThumbnailSynthesizer
    notifier: Notifier
    credentials: CredentialRefresher | None = None
