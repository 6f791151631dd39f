"""In-memory capability ports for engine and processor tests.

Each fake records its calls and can be told to fail a number of times, or
always, for specific inputs. Failures raise ProviderUnavailable, which the
Retry Controller treats as transient.
"""

from typing import Any

from autopilot.models import NotificationKind
from autopilot.schemas.scene import Scene
from autopilot.services.ports import CapabilityPorts, ChannelProfile, GeneratedScript


class ProviderUnavailable(Exception):
    """Transient provider failure (stands in for a 503 or timeout)."""


class FlakyMixin:
    def __init__(self, fail_times: int = 0, always_fail: set[str] | None = None):
        self.fail_times = fail_times
        self.always_fail = always_fail or set()
        self.calls: list[Any] = []

    def _maybe_fail(self, key: str) -> None:
        if key in self.always_fail:
            raise ProviderUnavailable(f"provider down for {key!r}")
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ProviderUnavailable("provider temporarily unavailable")


class FakeScriptGenerator(FlakyMixin):
    def __init__(self, scene_count: int = 5, script: str = "Full narration script", **kwargs):
        super().__init__(**kwargs)
        self.scene_count = scene_count
        self.script = script

    async def generate_script(self, channel: ChannelProfile, title: str) -> GeneratedScript:
        self.calls.append((channel, title))
        self._maybe_fail(title)
        scenes = [
            Scene(
                timestamp=f"0:{i * 8:02d}-0:{i * 8 + 8:02d}",
                visual_prompt=f"Visual {i + 1}",
                narration_text=f"Narration {i + 1}",
            )
            for i in range(self.scene_count)
        ]
        return GeneratedScript(script=self.script, scenes=scenes)


class FakeVoice(FlakyMixin):
    async def synthesize_voice(self, text: str) -> str:
        self.calls.append(text)
        self._maybe_fail(text)
        return f"audio://{text.replace(' ', '-').lower()}"


class FakeVideo(FlakyMixin):
    async def synthesize_video(self, prompt: str, aspect_ratio: str) -> str:
        self.calls.append((prompt, aspect_ratio))
        self._maybe_fail(prompt)
        return f"video://{len(self.calls)}"


class FakeThumbnails(FlakyMixin):
    async def synthesize_thumbnail(self, title: str, niche: str, style: str) -> str:
        self.calls.append((title, niche, style))
        self._maybe_fail(title)
        return "thumb://1"


class RecordingNotifier:
    def __init__(self):
        self.events: list[tuple[str, NotificationKind, str, dict[str, Any]]] = []

    async def emit(
        self,
        channel_id: str,
        kind: NotificationKind,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.events.append((channel_id, kind, message, metadata or {}))

    def kinds(self) -> list[NotificationKind]:
        return [event[1] for event in self.events]


class SleepRecorder:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeClock:
    """Monotonic clock that only moves when told to (or on every sleep)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_ports(
    scripts: FakeScriptGenerator | None = None,
    voice: FakeVoice | None = None,
    video: FakeVideo | None = None,
    thumbnails: FakeThumbnails | None = None,
    notifier: RecordingNotifier | None = None,
) -> CapabilityPorts:
    return CapabilityPorts(
        scripts=scripts or FakeScriptGenerator(),
        voice=voice or FakeVoice(),
        video=video or FakeVideo(),
        thumbnails=thumbnails or FakeThumbnails(),
        notifier=notifier or RecordingNotifier(),
    )
