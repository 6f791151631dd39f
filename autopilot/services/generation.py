"""Gemini-backed capability ports and the per-invocation port bundle.

GeminiCapabilities implements the script, voice, video and thumbnail ports on
top of GeminiClient. Binary results (narration audio, thumbnail images) are
written to the ArtifactStore and the stored path is returned as the ref;
video refs are the provider's download URI.

build_capability_ports() is the composition root used by the worker and the
API: it reads configuration, fails fast with ConfigurationError when the
provider key is missing (before anything is claimed), and returns the ports
plus a close() callback for the HTTP clients it opened.
"""

import io
import wave
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autopilot.clients.gemini import GeminiClient
from autopilot.clients.google_oauth import GoogleOAuthClient
from autopilot.config import (
    get_discord_webhook_url,
    get_gemini_api_key,
    get_workspace_root,
    get_youtube_oauth_client,
)
from autopilot.exceptions import ConfigurationError
from autopilot.schemas.script import parse_script_plan
from autopilot.services.credential_service import CredentialService
from autopilot.services.notification_service import NotificationService
from autopilot.services.ports import CapabilityPorts, ChannelProfile, GeneratedScript
from autopilot.utils.filesystem import AUDIO_KIND, THUMBNAIL_KIND, ArtifactStore
from autopilot.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_STYLE = "Cinematic, Professional"
DEFAULT_ENHANCERS = "8k, photorealistic, cinematic lighting"

# Gemini TTS returns 16-bit little-endian PCM, mono, 24 kHz
TTS_SAMPLE_RATE = 24000
TTS_SAMPLE_WIDTH = 2
TTS_CHANNELS = 1

SCRIPT_PROMPT = """Create a compelling 5-scene video plan for a "{niche}" YouTube video titled "{title}".

Channel Style: {style}
Visual Enhancers: {enhancers}

Requirements:
- Each scene should be 6-10 seconds
- Visual prompts must be highly detailed for AI video generation
- Include specific camera movements, lighting, and atmosphere
- Script should be engaging and match the visual pacing

Return ONLY valid JSON in this exact format:
{{
    "script": "Full voiceover script for the entire video...",
    "scenes": [
        {{
            "timestamp": "0:00-0:08",
            "visual": "Detailed visual prompt describing the scene with camera movement, lighting, atmosphere...",
            "audio": "ambient electronic music builds",
            "script": "Voiceover text for this specific scene..."
        }}
    ]
}}"""

THUMBNAIL_PROMPT = (
    'Create a compelling YouTube thumbnail for a video titled "{title}". '
    "Style: {style}. Niche: {niche}. "
    "Requirements: High contrast, rule of thirds, emotional impact, 4K quality. "
    "Do NOT include any text - the thumbnail should be purely visual."
)


def build_script_prompt(channel: ChannelProfile, title: str) -> str:
    return SCRIPT_PROMPT.format(
        niche=channel.niche,
        title=title,
        style=", ".join(channel.style_memory) or DEFAULT_STYLE,
        enhancers=channel.prompt_enhancers or DEFAULT_ENHANCERS,
    )


def pcm_to_wav(pcm: bytes) -> bytes:
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(TTS_CHANNELS)
        wav.setsampwidth(TTS_SAMPLE_WIDTH)
        wav.setframerate(TTS_SAMPLE_RATE)
        wav.writeframes(pcm)
    return buffer.getvalue()


class GeminiCapabilities:
    """Script, voice, video and thumbnail ports backed by one GeminiClient."""

    def __init__(self, client: GeminiClient, store: ArtifactStore):
        self.client = client
        self.store = store

    async def generate_script(self, channel: ChannelProfile, title: str) -> GeneratedScript:
        text = await self.client.generate_text(build_script_prompt(channel, title))
        plan = parse_script_plan(text)
        log.info("script_generated", title=title, scenes=len(plan.scenes))
        return GeneratedScript(script=plan.script, scenes=[s.to_scene() for s in plan.scenes])

    async def synthesize_voice(self, text: str) -> str:
        pcm = await self.client.synthesize_speech(text)
        return self.store.save(AUDIO_KIND, pcm_to_wav(pcm), ".wav")

    async def synthesize_video(self, prompt: str, aspect_ratio: str) -> str:
        return await self.client.generate_video(prompt, aspect_ratio)

    async def synthesize_thumbnail(self, title: str, niche: str, style: str) -> str:
        image = await self.client.generate_image(
            THUMBNAIL_PROMPT.format(title=title, niche=niche, style=style)
        )
        return self.store.save(THUMBNAIL_KIND, image, ".png")


@dataclass
class PortBundle:
    ports: CapabilityPorts
    close: Callable[[], Awaitable[None]]


def build_capability_ports(session_factory: async_sessionmaker[AsyncSession]) -> PortBundle:
    """Build production ports from environment configuration.

    Raises:
        ConfigurationError: GEMINI_API_KEY is not set.
    """
    gemini = GeminiClient(get_gemini_api_key())
    capabilities = GeminiCapabilities(gemini, ArtifactStore(get_workspace_root()))
    notifier = NotificationService(session_factory, webhook_url=get_discord_webhook_url())

    oauth: GoogleOAuthClient | None = None
    credentials: CredentialService | None = None
    try:
        client_id, client_secret = get_youtube_oauth_client()
    except ConfigurationError:
        log.info("credential_refresh_disabled", reason="youtube_oauth_not_configured")
    else:
        oauth = GoogleOAuthClient(client_id, client_secret)
        credentials = CredentialService(session_factory, oauth)

    async def close() -> None:
        await gemini.close()
        if oauth is not None:
            await oauth.close()

    ports = CapabilityPorts(
        scripts=capabilities,
        voice=capabilities,
        video=capabilities,
        thumbnails=capabilities,
        notifier=notifier,
        credentials=credentials,
    )
    return PortBundle(ports=ports, close=close)
