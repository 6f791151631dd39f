"""Configuration management for the autopilot pipeline.

This module provides centralized configuration loading from environment
variables. Process-wide state is limited to the values read here; database
handles and provider clients are built per invocation and injected.

Environment Variables:
    DATABASE_URL: PostgreSQL connection URL (required)
    GEMINI_API_KEY: Generation provider key (required for real capability ports)
    FERNET_KEY: Encryption key for channel credentials
    YOUTUBE_CLIENT_ID / YOUTUBE_CLIENT_SECRET: OAuth client for token refresh
    DISCORD_WEBHOOK_URL: Optional notification mirror
    WORKSPACE_ROOT: Artifact store root (default: /app/workspace)
    PIPELINE_TRIGGER_SECRET: Bearer token for the HTTP trigger (optional)

Pipeline tuning (see PipelineSettings):
    INVOCATION_BUDGET_SECONDS, AUDIO_SCENES_PER_RUN, MAX_SCENE_RETRIES,
    RETRY_MAX_ATTEMPTS, RETRY_BASE_DELAY_SECONDS, RETRY_JITTER_SECONDS,
    CLAIM_TTL_SECONDS, MAX_STAGE_FAILURES, VIDEO_ASPECT_RATIO

Usage:
    from autopilot.config import get_database_url, load_pipeline_settings

    settings = load_pipeline_settings()
    db_url = get_database_url()  # Raises if DATABASE_URL not set
"""

import math
import os
from dataclasses import dataclass
from functools import lru_cache

from autopilot.exceptions import ConfigurationError
from autopilot.utils.logging import get_logger

log = get_logger(__name__)

DEFAULT_INVOCATION_BUDGET_SECONDS = 25.0
CLAIM_TTL_MARGIN_SECONDS = 60
DEFAULT_AUDIO_SCENES_PER_RUN = 2
DEFAULT_MAX_SCENE_RETRIES = 3
DEFAULT_RETRY_MAX_ATTEMPTS = 3
DEFAULT_RETRY_BASE_DELAY_SECONDS = 1.0
DEFAULT_RETRY_JITTER_SECONDS = 0.25
DEFAULT_CLAIM_TTL_SECONDS = 120
DEFAULT_MAX_STAGE_FAILURES = 5
VALID_ASPECT_RATIOS = ("16:9", "9:16")


@lru_cache
def get_database_url() -> str:
    """Get database URL from environment.

    Converts postgresql:// to postgresql+asyncpg:// for async SQLAlchemy.

    Raises:
        ValueError: If DATABASE_URL not set.
    """
    url = os.getenv("DATABASE_URL")
    if not url:
        raise ValueError("DATABASE_URL environment variable is required")

    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    return url


def get_gemini_api_key() -> str:
    """Get the generation provider API key.

    Raises:
        ConfigurationError: If GEMINI_API_KEY is not set. This is fatal for the
            invocation and happens before any project is claimed.
    """
    key = os.getenv("GEMINI_API_KEY")
    if not key:
        raise ConfigurationError("GEMINI_API_KEY environment variable is required")
    return key


def get_youtube_oauth_client() -> tuple[str, str]:
    """Get YouTube OAuth client id and secret.

    Raises:
        ConfigurationError: If either value is missing.
    """
    client_id = os.getenv("YOUTUBE_CLIENT_ID")
    client_secret = os.getenv("YOUTUBE_CLIENT_SECRET")
    if not client_id or not client_secret:
        raise ConfigurationError("YouTube OAuth credentials not configured")
    return client_id, client_secret


def get_discord_webhook_url() -> str | None:
    """Get Discord webhook URL for mirroring notifications (optional)."""
    return os.getenv("DISCORD_WEBHOOK_URL")


def get_workspace_root() -> str:
    """Get artifact store root directory (default: "/app/workspace")."""
    return os.getenv("WORKSPACE_ROOT", "/app/workspace")


def get_pipeline_trigger_secret() -> str | None:
    """Shared secret required by POST /api/v1/pipeline/run (optional)."""
    return os.getenv("PIPELINE_TRIGGER_SECRET") or None


def _int_env(name: str, default: int, minimum: int, maximum: int | None = None) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        log.warning("invalid_int_setting", name=name, value=raw, using_default=default)
        return default
    value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value


def _float_env(name: str, default: float, minimum: float, maximum: float | None = None) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        log.warning("invalid_float_setting", name=name, value=raw, using_default=default)
        return default
    value = max(minimum, value)
    if maximum is not None:
        value = min(maximum, value)
    return value


@dataclass(frozen=True)
class PipelineSettings:
    """Tuning values for one pipeline invocation.

    Attributes:
        invocation_budget_seconds: Hard wall-clock budget for one invocation.
        audio_scenes_per_run: K, the per-invocation scene cap for the audio stage.
        max_scene_retries: Attempts allowed per scene track before it is
            permanently excluded.
        retry_max_attempts: Attempts the Retry Controller makes per operation.
        retry_base_delay_seconds: Backoff base; wait before retry n is
            base * 2**(n-1).
        retry_jitter_seconds: Upper bound of random jitter added to each wait.
        claim_ttl_seconds: Lease length; a crashed invocation's claim expires
            after this long.
        max_stage_failures: Consecutive whole-stage failures before the
            project is marked failed.
        video_aspect_ratio: Aspect ratio passed to video synthesis.
    """

    invocation_budget_seconds: float = DEFAULT_INVOCATION_BUDGET_SECONDS
    audio_scenes_per_run: int = DEFAULT_AUDIO_SCENES_PER_RUN
    max_scene_retries: int = DEFAULT_MAX_SCENE_RETRIES
    retry_max_attempts: int = DEFAULT_RETRY_MAX_ATTEMPTS
    retry_base_delay_seconds: float = DEFAULT_RETRY_BASE_DELAY_SECONDS
    retry_jitter_seconds: float = DEFAULT_RETRY_JITTER_SECONDS
    claim_ttl_seconds: int = DEFAULT_CLAIM_TTL_SECONDS
    max_stage_failures: int = DEFAULT_MAX_STAGE_FAILURES
    video_aspect_ratio: str = "16:9"


def load_pipeline_settings() -> PipelineSettings:
    """Build PipelineSettings from environment variables.

    Out-of-range integers are clamped; unparsable values fall back to the
    default with a warning. CLAIM_TTL_SECONDS is raised to at least the
    budget plus CLAIM_TTL_MARGIN_SECONDS. An unknown aspect ratio raises.

    Raises:
        ConfigurationError: If VIDEO_ASPECT_RATIO is not 16:9 or 9:16.
    """
    aspect_ratio = os.getenv("VIDEO_ASPECT_RATIO", "16:9")
    if aspect_ratio not in VALID_ASPECT_RATIOS:
        raise ConfigurationError(
            f"VIDEO_ASPECT_RATIO must be one of {VALID_ASPECT_RATIOS}, got {aspect_ratio!r}"
        )

    budget = _float_env("INVOCATION_BUDGET_SECONDS", DEFAULT_INVOCATION_BUDGET_SECONDS, 5.0, 300.0)
    # The lease must outlive the invocation plus its final persist
    min_claim_ttl = math.ceil(budget) + CLAIM_TTL_MARGIN_SECONDS

    return PipelineSettings(
        invocation_budget_seconds=budget,
        audio_scenes_per_run=_int_env("AUDIO_SCENES_PER_RUN", DEFAULT_AUDIO_SCENES_PER_RUN, 1),
        max_scene_retries=_int_env("MAX_SCENE_RETRIES", DEFAULT_MAX_SCENE_RETRIES, 1),
        retry_max_attempts=_int_env("RETRY_MAX_ATTEMPTS", DEFAULT_RETRY_MAX_ATTEMPTS, 1),
        retry_base_delay_seconds=_float_env(
            "RETRY_BASE_DELAY_SECONDS", DEFAULT_RETRY_BASE_DELAY_SECONDS, 0.0
        ),
        retry_jitter_seconds=_float_env(
            "RETRY_JITTER_SECONDS", DEFAULT_RETRY_JITTER_SECONDS, 0.0
        ),
        claim_ttl_seconds=_int_env(
            "CLAIM_TTL_SECONDS", max(DEFAULT_CLAIM_TTL_SECONDS, min_claim_ttl), min_claim_ttl
        ),
        max_stage_failures=_int_env("MAX_STAGE_FAILURES", DEFAULT_MAX_STAGE_FAILURES, 1),
        video_aspect_ratio=aspect_ratio,
    )
