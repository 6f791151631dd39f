"""Tests for POST /api/v1/pipeline/run.

The invocation runner dependency is overridden so no database or provider
is needed; the engine itself is covered in test_pipeline_engine.py.
"""

import pytest
from fastapi.testclient import TestClient

from autopilot.exceptions import ConfigurationError
from autopilot.main import app
from autopilot.routes.pipeline import get_invocation_runner
from autopilot.schemas.outcome import InvocationOutcome, OutcomeKind

RUN_URL = "/api/v1/pipeline/run"


def runner_returning(outcome: InvocationOutcome | Exception):
    calls = {"count": 0}

    async def runner() -> InvocationOutcome:
        calls["count"] += 1
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    return runner, calls


@pytest.fixture
def client(monkeypatch):
    monkeypatch.delenv("PIPELINE_TRIGGER_SECRET", raising=False)
    yield TestClient(app)
    app.dependency_overrides.clear()


def use_runner(runner) -> None:
    app.dependency_overrides[get_invocation_runner] = lambda: runner


class TestRunPipeline:
    def test_no_op_returns_200(self, client):
        runner, calls = runner_returning(InvocationOutcome.no_op())
        use_runner(runner)

        response = client.post(RUN_URL)

        assert response.status_code == 200
        assert response.json()["kind"] == "no_op"
        assert calls["count"] == 1

    def test_processed_outcome_is_returned(self, client):
        outcome = InvocationOutcome(
            kind=OutcomeKind.PROCESSED,
            project_id="p-1",
            title="Black Holes",
            previous_stage="audio",
            new_stage="visuals",
        )
        runner, _ = runner_returning(outcome)
        use_runner(runner)

        body = client.post(RUN_URL).json()

        assert body["project_id"] == "p-1"
        assert (body["previous_stage"], body["new_stage"]) == ("audio", "visuals")

    def test_error_outcome_returns_500(self, client):
        runner, _ = runner_returning(InvocationOutcome.failed(RuntimeError("boom")))
        use_runner(runner)

        response = client.post(RUN_URL)

        assert response.status_code == 500
        assert response.json()["error"] == "RuntimeError: boom"

    def test_configuration_error_becomes_error_outcome(self, client):
        runner, _ = runner_returning(ConfigurationError("GEMINI_API_KEY environment variable is required"))
        use_runner(runner)

        response = client.post(RUN_URL)

        assert response.status_code == 500
        assert response.json()["kind"] == "error"
        assert "GEMINI_API_KEY" in response.json()["error"]


class TestTriggerSecret:
    def test_missing_token_rejected(self, client, monkeypatch):
        monkeypatch.setenv("PIPELINE_TRIGGER_SECRET", "s3cret")
        runner, calls = runner_returning(InvocationOutcome.no_op())
        use_runner(runner)

        response = client.post(RUN_URL)

        assert response.status_code == 401
        assert calls["count"] == 0

    def test_wrong_token_rejected(self, client, monkeypatch):
        monkeypatch.setenv("PIPELINE_TRIGGER_SECRET", "s3cret")
        runner, _ = runner_returning(InvocationOutcome.no_op())
        use_runner(runner)

        response = client.post(RUN_URL, headers={"Authorization": "Bearer nope"})

        assert response.status_code == 401

    def test_correct_token_accepted(self, client, monkeypatch):
        monkeypatch.setenv("PIPELINE_TRIGGER_SECRET", "s3cret")
        runner, calls = runner_returning(InvocationOutcome.no_op())
        use_runner(runner)

        response = client.post(RUN_URL, headers={"Authorization": "Bearer s3cret"})

        assert response.status_code == 200
        assert calls["count"] == 1
