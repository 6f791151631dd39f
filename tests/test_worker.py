"""Tests for the CLI worker entry point."""

import json

import pytest

from autopilot import worker
from autopilot.exceptions import ConfigurationError
from autopilot.models import PipelineStage
from autopilot.schemas.outcome import InvocationOutcome, OutcomeKind
from autopilot.services.generation import PortBundle
from tests.support.factories import create_channel, create_project, reload_project


@pytest.fixture
def quiet_worker(monkeypatch):
    """Leave structlog at its defaults and skip engine disposal."""
    monkeypatch.setattr(worker, "configure_logging", lambda: None)

    async def no_dispose() -> None:
        return None

    monkeypatch.setattr(worker.database, "dispose_engine", no_dispose)
    return monkeypatch


def printed_outcome(capsys) -> dict:
    lines = capsys.readouterr().out.strip().splitlines()
    return json.loads(lines[-1])


def patch_invocation(monkeypatch, result: InvocationOutcome | Exception) -> None:
    async def fake_run_invocation(session_factory=None):
        if isinstance(result, Exception):
            raise result
        return result

    monkeypatch.setattr(worker, "run_invocation", fake_run_invocation)


class TestMain:
    def test_no_op_exits_zero(self, quiet_worker, capsys):
        patch_invocation(quiet_worker, InvocationOutcome.no_op())

        assert worker.main() == 0
        assert printed_outcome(capsys)["kind"] == "no_op"

    def test_processed_exits_zero(self, quiet_worker, capsys):
        patch_invocation(
            quiet_worker,
            InvocationOutcome(kind=OutcomeKind.PROCESSED, project_id="p-1", previous_stage="audio", new_stage="audio"),
        )

        assert worker.main() == 0
        assert printed_outcome(capsys)["project_id"] == "p-1"

    def test_error_outcome_exits_one(self, quiet_worker, capsys):
        patch_invocation(quiet_worker, InvocationOutcome.failed(RuntimeError("lease lost")))

        assert worker.main() == 1
        assert printed_outcome(capsys)["error"] == "RuntimeError: lease lost"

    def test_configuration_error_is_reported_as_outcome(self, quiet_worker, capsys):
        patch_invocation(quiet_worker, ConfigurationError("GEMINI_API_KEY environment variable is required"))

        assert worker.main() == 1
        outcome = printed_outcome(capsys)
        assert outcome["kind"] == "error"
        assert outcome["error"].startswith("ConfigurationError: GEMINI_API_KEY")


class TestRunInvocation:
    @pytest.mark.asyncio
    async def test_advances_one_project_and_closes_ports(self, session_factory, ports, monkeypatch):
        closed = []

        async def close() -> None:
            closed.append(True)

        monkeypatch.setattr(worker, "build_capability_ports", lambda factory: PortBundle(ports=ports, close=close))
        channel = await create_channel(session_factory)
        project = await create_project(session_factory, channel)

        outcome = await worker.run_invocation(session_factory)

        assert outcome.kind is OutcomeKind.PROCESSED
        assert (outcome.previous_stage, outcome.new_stage) == ("scripting", "audio")
        assert closed == [True]
        row = await reload_project(session_factory, project.id)
        assert row.pipeline_stage is PipelineStage.AUDIO

    @pytest.mark.asyncio
    async def test_missing_gemini_key_fails_before_claiming(self, session_factory, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        channel = await create_channel(session_factory)
        project = await create_project(session_factory, channel)

        with pytest.raises(ConfigurationError):
            await worker.run_invocation(session_factory)

        row = await reload_project(session_factory, project.id)
        assert row.claim_token is None
        assert row.pipeline_stage is PipelineStage.SCRIPTING

    @pytest.mark.asyncio
    async def test_bad_settings_fail_before_building_ports(self, session_factory, monkeypatch):
        monkeypatch.setenv("VIDEO_ASPECT_RATIO", "4:3")
        built = []
        monkeypatch.setattr(worker, "build_capability_ports", lambda factory: built.append(factory))

        with pytest.raises(ConfigurationError):
            await worker.run_invocation(session_factory)

        assert built == []
