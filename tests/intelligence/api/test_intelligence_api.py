"""Tests for the intelligence admin API."""
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from projects.intelligence.api.health import router as health_router
from projects.intelligence.api.router import router
from projects.intelligence.db.models import (
    ActionStatus,
    ActionType,
    ConditionLogic,
    IntelAutomationAction,
    IntelAutomationRule,
    RuleType,
)
from shared.core.exceptions import (
    ActionNotFoundException,
    InvalidActionTransitionException,
    RuleValidationException,
)
from shared.db.session import get_db

ROUTER = "projects.intelligence.api.router"


@pytest.fixture
def app():
    """Create test FastAPI app."""
    app = FastAPI()
    app.include_router(router, prefix="/intelligence")
    app.include_router(health_router, prefix="/health")

    async def _fake_db():
        yield MagicMock()

    app.dependency_overrides[get_db] = _fake_db
    return app


@pytest.fixture
def client(app):
    return TestClient(app)


def _action(status=ActionStatus.APPROVED):
    return IntelAutomationAction(
        id=5,
        user_id=1,
        rule_id=2,
        ad_account_id="act_1",
        entity_type="adset",
        entity_id="adset_1",
        entity_name="Conjunto 1",
        action_type=ActionType.PAUSE,
        action_params={},
        status=status,
        trigger_reason="cpa > 100",
        created_at=datetime(2026, 3, 1, 10, 0),
    )


def _lifecycle_mock(**methods):
    lifecycle = MagicMock()
    lifecycle.describe.return_value = 'Pausar adset "Conjunto 1"'
    for name, value in methods.items():
        setattr(lifecycle, name, value)
    return lifecycle


class TestJobs:

    def test_trigger_known_job(self, client):
        with patch(f"{ROUTER}.run_intelligence_job") as mock_task:
            mock_task.delay.return_value = MagicMock(id="task-123")

            response = client.post("/intelligence/jobs/daily/run")

        assert response.status_code == 200
        assert response.json() == {"job": "daily", "task_id": "task-123", "status": "queued"}
        mock_task.delay.assert_called_once_with("daily")

    def test_trigger_unknown_job(self, client):
        with patch(f"{ROUTER}.run_intelligence_job") as mock_task:
            response = client.post("/intelligence/jobs/weekly/run")

        assert response.status_code == 404
        mock_task.delay.assert_not_called()

    def test_jobs_status(self, client):
        response = client.get("/intelligence/jobs/status")

        assert response.status_code == 200
        assert "rules" in response.json()["jobs"]


class TestPatterns:

    def test_cluster_visualization_missing(self, client):
        with patch(f"{ROUTER}.PatternLearningService") as mock_cls:
            mock_cls.return_value.get_cluster_visualization = AsyncMock(return_value=None)

            response = client.get("/intelligence/patterns/clusters")

        assert response.status_code == 404

    def test_patterns_status(self, client):
        with patch(f"{ROUTER}.PatternLearningService") as mock_cls:
            mock_cls.return_value.get_training_status = AsyncMock(
                return_value={"status": "collecting", "overall_readiness": 0}
            )

            response = client.get("/intelligence/patterns/status")

        assert response.status_code == 200
        assert response.json()["status"] == "collecting"


class TestRules:

    def test_templates(self, client):
        response = client.get("/intelligence/rules/templates")

        assert response.status_code == 200
        assert len(response.json()["templates"]) == 5

    def test_create_rule(self, client):
        rule = IntelAutomationRule(
            id=3,
            user_id=1,
            name="Stop Loss",
            rule_type=RuleType.CUSTOM,
            entity_type="adset",
            conditions=[{"metric": "cpa", "operator": ">", "value": 100}],
            condition_logic=ConditionLogic.AND,
            actions=[{"action_type": "pause", "params": {}}],
            is_active=True,
            requires_approval=True,
            cooldown_hours=24,
            evaluation_window_hours=24,
            times_triggered=0,
        )
        with patch(f"{ROUTER}.RuleEvaluationService") as mock_cls:
            mock_cls.return_value.create_rule = AsyncMock(return_value=rule)

            response = client.post(
                "/intelligence/rules?user_id=1",
                json={
                    "name": "Stop Loss",
                    "conditions": [{"metric": "cpa", "operator": ">", "value": 100}],
                    "actions": [{"action_type": "pause"}],
                },
            )

        assert response.status_code == 201
        assert response.json()["id"] == 3
        user_id, payload = mock_cls.return_value.create_rule.await_args.args
        assert user_id == 1
        assert payload["actions"] == [{"action_type": "pause", "params": {}}]

    def test_create_rule_validation_error(self, client):
        with patch(f"{ROUTER}.RuleEvaluationService") as mock_cls:
            mock_cls.return_value.create_rule = AsyncMock(
                side_effect=RuleValidationException("conditions", "Operador desconhecido: ~")
            )

            response = client.post(
                "/intelligence/rules?user_id=1",
                json={
                    "name": "Quebrada",
                    "conditions": [{"metric": "cpa", "operator": "~", "value": 1}],
                    "actions": [{"action_type": "pause"}],
                },
            )

        assert response.status_code == 422
        assert response.json()["detail"]["field"] == "conditions"


class TestActions:

    def test_approve(self, client):
        lifecycle = _lifecycle_mock(approve=AsyncMock(return_value=_action()))
        with patch(f"{ROUTER}.ActionLifecycleManager", return_value=lifecycle):
            response = client.post("/intelligence/actions/5/approve?user_id=1")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "approved"
        assert body["description"] == 'Pausar adset "Conjunto 1"'
        lifecycle.approve.assert_awaited_once_with(5, 1)

    def test_approve_not_found(self, client):
        lifecycle = _lifecycle_mock(
            approve=AsyncMock(side_effect=ActionNotFoundException(5, user_id=1))
        )
        with patch(f"{ROUTER}.ActionLifecycleManager", return_value=lifecycle):
            response = client.post("/intelligence/actions/5/approve?user_id=1")

        assert response.status_code == 404

    def test_reject_invalid_transition(self, client):
        lifecycle = _lifecycle_mock(
            reject=AsyncMock(
                side_effect=InvalidActionTransitionException(5, "executed", "rejected")
            )
        )
        with patch(f"{ROUTER}.ActionLifecycleManager", return_value=lifecycle):
            response = client.post(
                "/intelligence/actions/5/reject?user_id=1", json={"reason": "tarde demais"}
            )

        assert response.status_code == 409
        assert response.json()["detail"]["from_status"] == "executed"

    def test_reject_passes_reason(self, client):
        lifecycle = _lifecycle_mock(
            reject=AsyncMock(return_value=_action(status=ActionStatus.REJECTED))
        )
        with patch(f"{ROUTER}.ActionLifecycleManager", return_value=lifecycle):
            response = client.post(
                "/intelligence/actions/5/reject?user_id=1", json={"reason": "sazonal"}
            )

        assert response.status_code == 200
        assert lifecycle.reject.await_args.kwargs["reason"] == "sazonal"

    def test_pending_requires_user(self, client):
        response = client.get("/intelligence/actions/pending")

        assert response.status_code == 422


class TestScores:

    def test_detail_without_data(self, client):
        with patch(f"{ROUTER}.AccountScoreService") as mock_cls:
            mock_cls.return_value.get_account_detail = AsyncMock(return_value={"has_data": False})

            response = client.get("/intelligence/scores/act_1?user_id=1")

        assert response.status_code == 404

    def test_dashboard(self, client):
        with patch(f"{ROUTER}.AccountScoreService") as mock_cls:
            mock_cls.return_value.get_dashboard = AsyncMock(
                return_value={"has_data": True, "summary": {"total_accounts": 1}}
            )

            response = client.get("/intelligence/scores?user_id=1")

        assert response.status_code == 200
        assert response.json()["summary"]["total_accounts"] == 1


class TestHealth:

    def test_liveness(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json()["status"] == "alive"

    def test_unhealthy_when_database_down(self, client):
        with patch(
            "projects.intelligence.api.health.check_database_connection",
            AsyncMock(return_value=False),
        ), patch(
            "projects.intelligence.api.health.check_redis_connection",
            AsyncMock(return_value=True),
        ):
            response = client.get("/health")

        assert response.status_code == 503
        assert response.json()["db"] == "fail"
