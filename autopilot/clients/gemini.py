"""Generation API client (Gemini text/TTS, Veo video, Imagen thumbnails).

One async httpx client per invocation, shared by every capability call.
Requests are throttled with AsyncLimiter so the Veo poll loop and retried
calls never exceed the provider's per-minute quota.

Error classification:
    - 400, 401, 403, 404: GenerationAPIError (non-retriable, fail fast)
    - 429, 5xx, timeouts, connection errors: raised as httpx errors and
      retried by the Retry Controller

This client does not retry by itself; the Retry Controller owns attempts,
backoff and the invocation budget.

Usage:
    client = GeminiClient(api_key)
    try:
        text = await client.generate_text(prompt)
    finally:
        await client.close()
"""

import asyncio
import base64
from collections.abc import Awaitable, Callable
from typing import Any

import httpx
from aiolimiter import AsyncLimiter

from autopilot.exceptions import GenerationAPIError
from autopilot.utils.logging import get_logger

log = get_logger(__name__)

BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
SCRIPT_MODEL = "gemini-2.0-flash"
TTS_MODEL = "gemini-2.5-flash-preview-tts"
VIDEO_MODEL = "veo-2.0-generate-001"
IMAGE_MODEL = "imagen-3.0-generate-001"
DEFAULT_VOICE = "Kore"
VIDEO_DURATION_SECONDS = 8

NON_RETRIABLE_STATUSES = (400, 401, 403, 404)


class VideoGenerationError(Exception):
    """Video job finished with an error, or never finished within max polls."""

    pass


class GeminiClient:
    """Thin async wrapper over the generation REST endpoints.

    Args:
        api_key: Provider key, sent as x-goog-api-key.
        client: Optional pre-built httpx client (tests pass MockTransport).
        requests_per_minute: Throttle shared by all calls on this client.
        poll_interval: Seconds between video job status checks.
        max_polls: Status checks before the video job is declared timed out.
        sleep: Awaitable sleep used between polls (patched in tests).
    """

    def __init__(
        self,
        api_key: str,
        *,
        client: httpx.AsyncClient | None = None,
        requests_per_minute: int = 60,
        poll_interval: float = 10.0,
        max_polls: int = 12,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api_key = api_key
        self.client = client or httpx.AsyncClient(timeout=60.0)
        self.rate_limiter = AsyncLimiter(max_rate=requests_per_minute, time_period=60)
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self._sleep = sleep

    def _headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json", "x-goog-api-key": self.api_key}

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        async with self.rate_limiter:
            response = await self.client.request(
                method,
                f"{BASE_URL}/{path}",
                headers=self._headers(),
                json=payload,
            )

        if response.status_code in NON_RETRIABLE_STATUSES:
            raise GenerationAPIError(
                f"Non-retriable error from {path.split(':')[0]}",
                status_code=response.status_code,
                response_body=response.text,
            )
        response.raise_for_status()
        return response.json()  # type: ignore[no-any-return]

    async def generate_text(self, prompt: str, model: str = SCRIPT_MODEL) -> str:
        """Generate text and return the first candidate's concatenated parts.

        Raises:
            ValueError: If the response contains no text.
        """
        data = await self._request(
            "POST",
            f"models/{model}:generateContent",
            {"contents": [{"parts": [{"text": prompt}]}]},
        )
        parts = _first_candidate_parts(data)
        text = "".join(part.get("text", "") for part in parts)
        if not text:
            raise ValueError("No text in generation response")
        return text

    async def synthesize_speech(self, text: str, voice: str = DEFAULT_VOICE) -> bytes:
        """Synthesize narration; returns raw 16-bit PCM (24 kHz mono).

        Raises:
            ValueError: If the response carries no audio data.
        """
        data = await self._request(
            "POST",
            f"models/{TTS_MODEL}:generateContent",
            {
                "contents": [{"parts": [{"text": text}]}],
                "generationConfig": {
                    "responseModalities": ["AUDIO"],
                    "speechConfig": {
                        "voiceConfig": {"prebuiltVoiceConfig": {"voiceName": voice}}
                    },
                },
            },
        )
        for part in _first_candidate_parts(data):
            inline = part.get("inlineData") or {}
            if inline.get("data"):
                return base64.b64decode(inline["data"])
        raise ValueError("No audio data in TTS response")

    async def start_video(self, prompt: str, aspect_ratio: str) -> str:
        """Start a video job and return its operation name."""
        data = await self._request(
            "POST",
            f"models/{VIDEO_MODEL}:predictLongRunning",
            {
                "instances": [{"prompt": prompt}],
                "parameters": {
                    "aspectRatio": aspect_ratio,
                    "durationSeconds": VIDEO_DURATION_SECONDS,
                    "numberOfVideos": 1,
                },
            },
        )
        operation_name = data.get("name")
        if not operation_name:
            raise VideoGenerationError("No operation name returned from video job")
        log.info("video_job_started", operation=operation_name)
        return operation_name

    async def wait_for_video(self, operation_name: str) -> str:
        """Poll a video job until done and return the video URI.

        Raises:
            VideoGenerationError: Job reported an error, returned no URI, or
                was still running after max_polls checks.
        """
        for poll in range(1, self.max_polls + 1):
            await self._sleep(self.poll_interval)
            status = await self._request("GET", operation_name)

            if not status.get("done"):
                log.debug("video_job_pending", operation=operation_name, poll=poll)
                continue

            if status.get("error"):
                message = status["error"].get("message", "unknown error")
                raise VideoGenerationError(f"Video generation failed: {message}")

            uri = _video_uri(status.get("response") or {})
            if not uri:
                raise VideoGenerationError("No video URI in completed response")
            return uri

        raise VideoGenerationError(
            f"Video generation timed out after {self.max_polls} status checks"
        )

    async def generate_video(self, prompt: str, aspect_ratio: str) -> str:
        operation_name = await self.start_video(prompt, aspect_ratio)
        return await self.wait_for_video(operation_name)

    async def generate_image(self, prompt: str, aspect_ratio: str = "16:9") -> bytes:
        """Generate one image; returns decoded image bytes.

        Raises:
            ValueError: If the response carries no image data.
        """
        data = await self._request(
            "POST",
            f"models/{IMAGE_MODEL}:predict",
            {
                "instances": [{"prompt": prompt}],
                "parameters": {"sampleCount": 1, "aspectRatio": aspect_ratio},
            },
        )
        predictions = data.get("predictions") or []
        encoded = predictions[0].get("bytesBase64Encoded") if predictions else None
        if not encoded:
            raise ValueError("No image data in thumbnail response")
        return base64.b64decode(encoded)

    async def close(self) -> None:
        await self.client.aclose()


def _first_candidate_parts(data: dict[str, Any]) -> list[dict[str, Any]]:
    candidates = data.get("candidates") or []
    if not candidates:
        return []
    return (candidates[0].get("content") or {}).get("parts") or []


def _video_uri(response: dict[str, Any]) -> str | None:
    # Two response shapes exist depending on API version
    generated = response.get("generatedVideos") or []
    if generated:
        uri = (generated[0].get("video") or {}).get("uri")
        if uri:
            return uri
    predictions = response.get("predictions") or []
    if predictions:
        return predictions[0].get("videoUri")
    return None
