"""Tests for the scheduled intelligence jobs."""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from projects.intelligence.config import intel_settings
from projects.intelligence.jobs.guards import get_guard
from projects.intelligence.jobs.scheduled_tasks import (
    JOB_RUNNERS,
    _execute_job,
    _run_cleanup,
    evaluate_rules,
    get_job_status,
    run_job,
)


@pytest.fixture
def isolated_engine():
    """Engine isolado falso, com dispose assíncrono."""
    with patch(
        "projects.intelligence.jobs.scheduled_tasks.create_isolated_async_session_maker"
    ) as mock_session_maker:
        mock_engine = MagicMock()
        mock_engine.dispose = AsyncMock()
        mock_session_maker.return_value = (mock_engine, MagicMock())
        yield mock_engine


class TestExecuteJob:

    def test_completed_job_returns_result(self, isolated_engine):
        runner = AsyncMock(return_value={"actions_created": 3})

        with patch.dict(JOB_RUNNERS, {"rules": runner}):
            result = _execute_job("rules")

        assert result == {"job": "rules", "status": "completed", "result": {"actions_created": 3}}
        runner.assert_awaited_once()
        isolated_engine.dispose.assert_awaited_once()
        assert get_guard("rules").status()["last_status"] == "completed"
        assert get_guard("rules").is_running is False

    def test_kwargs_forwarded_to_runner(self, isolated_engine):
        runner = AsyncMock(return_value={})

        with patch.dict(JOB_RUNNERS, {"patterns": runner}):
            _execute_job("patterns", kmeans_seed=7)

        assert runner.await_args.kwargs["kmeans_seed"] == 7
        assert "session_maker" in runner.await_args.kwargs

    def test_skipped_when_already_running(self, isolated_engine):
        runner = AsyncMock(return_value={})
        guard = get_guard("scores")
        assert guard.try_acquire()
        try:
            with patch.dict(JOB_RUNNERS, {"scores": runner}):
                result = _execute_job("scores")
        finally:
            guard.release()

        assert result["status"] == "skipped"
        assert result["reason"] == "already_running"
        runner.assert_not_awaited()

    def test_disabled_by_settings(self, isolated_engine, monkeypatch):
        monkeypatch.setattr(intel_settings, "intel_rules_enabled", False)
        runner = AsyncMock(return_value={})

        with patch.dict(JOB_RUNNERS, {"rules": runner}):
            result = _execute_job("rules")

        assert result == {"job": "rules", "status": "disabled"}
        runner.assert_not_awaited()

    def test_failure_releases_guard_and_propagates(self, isolated_engine):
        runner = AsyncMock(side_effect=RuntimeError("banco indisponível"))

        with patch.dict(JOB_RUNNERS, {"cleanup": runner}):
            with pytest.raises(RuntimeError):
                _execute_job("cleanup")

        guard = get_guard("cleanup")
        assert guard.is_running is False
        assert guard.status()["last_status"] == "failed"
        isolated_engine.dispose.assert_awaited_once()


class TestRunJob:

    def test_composite_daily_runs_each_job(self, isolated_engine):
        runners = {
            "scores": AsyncMock(return_value={"scored": 2}),
            "patterns": AsyncMock(return_value={"patterns_stored": 4}),
            "cleanup": AsyncMock(return_value={"expired_removed": 0}),
        }

        with patch.dict(JOB_RUNNERS, runners):
            result = run_job("daily")

        assert result["status"] == "completed"
        assert list(result["results"]) == ["scores", "patterns", "cleanup"]
        assert result["results"]["patterns"]["result"] == {"patterns_stored": 4}
        for runner in runners.values():
            runner.assert_awaited_once()

    def test_composite_continues_after_failed_job(self, isolated_engine):
        runners = {
            "scores": AsyncMock(side_effect=RuntimeError("banco indisponível")),
            "patterns": AsyncMock(return_value={"patterns_stored": 4}),
            "cleanup": AsyncMock(return_value={"expired_removed": 0}),
        }

        with patch.dict(JOB_RUNNERS, runners):
            result = run_job("daily")

        assert result["status"] == "completed_with_errors"
        assert result["failed_jobs"] == ["scores"]
        assert result["results"]["scores"] == {
            "job": "scores", "status": "failed", "error": "banco indisponível",
        }
        assert result["results"]["patterns"]["status"] == "completed"
        assert result["results"]["cleanup"]["status"] == "completed"
        runners["cleanup"].assert_awaited_once()

    def test_unknown_job(self):
        with pytest.raises(ValueError):
            run_job("weekly")

    def test_celery_task_runs_job(self, isolated_engine):
        runner = AsyncMock(return_value={"rules_evaluated": 1})

        with patch.dict(JOB_RUNNERS, {"rules": runner}):
            result = evaluate_rules()

        assert result["status"] == "completed"


def test_job_status_lists_every_job(monkeypatch):
    monkeypatch.setattr(intel_settings, "intel_patterns_enabled", False)

    status = get_job_status()

    assert set(status["jobs"]) == {"patterns", "rules", "scores", "cleanup"}
    assert status["jobs"]["patterns"]["enabled"] is False
    assert status["jobs"]["cleanup"]["enabled"] is True
    assert status["composite_jobs"]["hourly"] == ["rules"]


@pytest.mark.asyncio
async def test_cleanup_runner(fake_intel_repo_cls):
    repo = fake_intel_repo_cls()
    session = MagicMock()
    session.commit = AsyncMock()
    session_maker = MagicMock()
    session_maker.return_value.__aenter__.return_value = session

    with patch(
        "projects.intelligence.db.repositories.intel_repo.IntelRepository",
        return_value=repo,
    ):
        result = await _run_cleanup(session_maker=session_maker)

    assert result == {"patterns_deactivated": 0, "expired_removed": 0, "old_removed": 0}
    session.commit.assert_awaited_once()
