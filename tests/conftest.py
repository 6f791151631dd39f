"""Shared pytest fixtures for async database testing.

Database fixtures use an in-memory SQLite database (aiosqlite) shared by
every session through a StaticPool, so the claimer, store and notification
service see the same rows, as they would on PostgreSQL.
"""

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autopilot.config import PipelineSettings
from autopilot.database import create_test_engine
from autopilot.models import Base
from autopilot.utils.encryption import get_token_cipher
from tests.support.fakes import (
    FakeClock,
    FakeScriptGenerator,
    FakeThumbnails,
    FakeVideo,
    FakeVoice,
    RecordingNotifier,
    SleepRecorder,
    make_ports,
)


@pytest.fixture
def valid_fernet_key() -> str:
    """Generate a valid Fernet key for testing."""
    return Fernet.generate_key().decode()


@pytest.fixture
def encryption_env(valid_fernet_key: str, monkeypatch: pytest.MonkeyPatch):
    """Set FERNET_KEY and reset the cached cipher before and after the test."""
    get_token_cipher.cache_clear()
    monkeypatch.setenv("FERNET_KEY", valid_fernet_key)
    yield valid_fernet_key
    get_token_cipher.cache_clear()


@pytest_asyncio.fixture
async def async_engine():
    """In-memory SQLite engine with all tables created."""
    engine, _ = create_test_engine()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(async_engine):
    """Session factory bound to the test engine (expire_on_commit=False)."""
    return async_sessionmaker(bind=async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def async_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def settings() -> PipelineSettings:
    """Default settings with jitter disabled so backoff delays are exact."""
    return PipelineSettings(retry_jitter_seconds=0.0)


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def monotonic() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def fake_scripts() -> FakeScriptGenerator:
    return FakeScriptGenerator()


@pytest.fixture
def fake_voice() -> FakeVoice:
    return FakeVoice()


@pytest.fixture
def fake_video() -> FakeVideo:
    return FakeVideo()


@pytest.fixture
def fake_thumbnails() -> FakeThumbnails:
    return FakeThumbnails()


@pytest.fixture
def ports(fake_scripts, fake_voice, fake_video, fake_thumbnails, notifier):
    return make_ports(fake_scripts, fake_voice, fake_video, fake_thumbnails, notifier)
