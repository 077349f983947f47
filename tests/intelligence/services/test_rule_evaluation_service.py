"""Tests for automation rule evaluation."""
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from projects.intelligence.db.models import (
    ActionStatus,
    ActionType,
    ConditionLogic,
    IntelAutomationAction,
    IntelAutomationRule,
    NotificationType,
    RuleType,
)
from projects.intelligence.services.rule_evaluation_service import (
    RuleEvaluationService,
    latest_by_entity,
    validate_rule_definition,
)
from shared.core.exceptions import CredentialException, RuleValidationException

NOW = datetime(2026, 3, 2, 10, 5)


def _rule(**overrides):
    fields = dict(
        id=1,
        user_id=1,
        ad_account_id=None,
        name="Stop Loss - High CPA",
        rule_type=RuleType.LOSS_PREVENTION,
        entity_type="adset",
        conditions=[
            {"metric": "spend", "operator": ">=", "value": 50},
            {"metric": "cpa", "operator": ">", "value": 100},
        ],
        condition_logic=ConditionLogic.AND,
        actions=[
            {"action_type": "pause", "params": {}},
            {"action_type": "notify", "params": {}},
        ],
        is_active=True,
        requires_approval=True,
        cooldown_hours=24,
        evaluation_window_hours=24,
        times_triggered=0,
    )
    fields.update(overrides)
    return IntelAutomationRule(**fields)


@pytest.fixture
def make_service(intel_repo, fake_snapshot_repo_cls):
    def _make(snapshots):
        service = RuleEvaluationService(
            snapshot_repo=fake_snapshot_repo_cls(snapshots),
            intel_repo=intel_repo,
        )
        service.batch_pause = 0
        return service
    return _make


@pytest.fixture
def high_cpa_snapshot(snapshot_factory):
    return snapshot_factory(spend=75.0, cpa=120.0, created_at=NOW - timedelta(hours=1))


class TestEvaluateRule:

    @pytest.mark.asyncio
    async def test_matching_entity_creates_action_and_notification(
        self, make_service, intel_repo, high_cpa_snapshot
    ):
        rule = _rule()
        service = make_service([high_cpa_snapshot])

        result = await service.evaluate_rule(rule, now=NOW)

        assert result["entities_evaluated"] == 1
        assert result["actions_created"] == 1
        assert result["notifications_created"] == 1

        action = intel_repo.actions[0]
        assert action.action_type == ActionType.PAUSE
        assert action.status == ActionStatus.PENDING_APPROVAL
        assert action.rule_id == rule.id
        assert action.entity_id == "adset_1"
        assert "cpa > 100" in action.trigger_reason
        assert {c["metric"] for c in action.trigger_metrics} == {"spend", "cpa"}

        types = [n.notification_type for n in intel_repo.notifications]
        assert types.count(NotificationType.RULE_TRIGGERED) == 1
        assert types.count(NotificationType.ACTION_PENDING) == 1

        assert rule.times_triggered == 1
        assert rule.last_triggered_at == NOW

    @pytest.mark.asyncio
    async def test_cooldown_blocks_second_action(self, make_service, intel_repo, high_cpa_snapshot):
        rule = _rule()
        service = make_service([high_cpa_snapshot])

        await service.evaluate_rule(rule, now=NOW)
        second = await service.evaluate_rule(rule, now=NOW + timedelta(minutes=30))

        assert second["actions_created"] == 0
        assert second["skipped_cooldown"] == 1
        assert len(intel_repo.actions) == 1
        assert rule.times_triggered == 1

    @pytest.mark.asyncio
    async def test_cooldown_applies_between_actions_of_one_firing(
        self, make_service, intel_repo, high_cpa_snapshot
    ):
        rule = _rule(actions=[
            {"action_type": "pause", "params": {}},
            {"action_type": "decrease_budget", "params": {"percentage": 30}},
        ])
        service = make_service([high_cpa_snapshot])

        result = await service.evaluate_rule(rule, now=NOW)

        assert result["actions_created"] == 1
        assert result["skipped_cooldown"] == 1
        assert [a.action_type for a in intel_repo.actions] == [ActionType.PAUSE]

    @pytest.mark.asyncio
    async def test_multiple_actions_without_cooldown(
        self, make_service, intel_repo, high_cpa_snapshot
    ):
        rule = _rule(cooldown_hours=0, actions=[
            {"action_type": "pause", "params": {}},
            {"action_type": "decrease_budget", "params": {"percentage": 30}},
        ])
        service = make_service([high_cpa_snapshot])

        result = await service.evaluate_rule(rule, now=NOW)

        assert result["actions_created"] == 2
        assert rule.times_triggered == 2

    @pytest.mark.asyncio
    async def test_action_allowed_again_after_cooldown(
        self, make_service, intel_repo, snapshot_factory
    ):
        rule = _rule(cooldown_hours=2, evaluation_window_hours=24)
        snapshot = snapshot_factory(spend=75.0, cpa=120.0, created_at=NOW - timedelta(hours=1))
        service = make_service([snapshot])

        await service.evaluate_rule(rule, now=NOW)
        later = await service.evaluate_rule(rule, now=NOW + timedelta(hours=3))

        assert later["actions_created"] == 1
        assert len(intel_repo.actions) == 2

    @pytest.mark.asyncio
    async def test_zero_cooldown_disables_it(self, make_service, intel_repo, high_cpa_snapshot):
        rule = _rule(cooldown_hours=0)
        service = make_service([high_cpa_snapshot])

        await service.evaluate_rule(rule, now=NOW)
        await service.evaluate_rule(rule, now=NOW)

        assert len(intel_repo.actions) == 2

    @pytest.mark.asyncio
    async def test_notify_only_rule_creates_no_action(
        self, make_service, intel_repo, snapshot_factory
    ):
        rule = _rule(
            conditions=[{"metric": "learning_phase", "operator": "==", "value": "LEARNING_LIMITED"}],
            actions=[{"action_type": "notify", "params": {}}],
            requires_approval=False,
        )
        snapshot = snapshot_factory(learning_phase="LEARNING_LIMITED", created_at=NOW)
        service = make_service([snapshot])

        result = await service.evaluate_rule(rule, now=NOW)
        again = await service.evaluate_rule(rule, now=NOW)

        assert result["actions_created"] == 0
        assert result["notifications_created"] == 1
        assert again["notifications_created"] == 1
        assert intel_repo.actions == []
        assert rule.times_triggered == 0

    @pytest.mark.asyncio
    async def test_non_matching_entity_is_ignored(self, make_service, intel_repo, snapshot_factory):
        service = make_service([snapshot_factory(spend=75.0, cpa=80.0, created_at=NOW)])

        result = await service.evaluate_rule(_rule(), now=NOW)

        assert result["entities_evaluated"] == 1
        assert result["actions_created"] == 0
        assert intel_repo.notifications == []

    @pytest.mark.asyncio
    async def test_only_latest_snapshot_per_entity(self, make_service, intel_repo, snapshot_factory):
        old = snapshot_factory(
            spend=75.0, cpa=120.0, snapshot_hour=8, created_at=NOW - timedelta(hours=3)
        )
        latest = snapshot_factory(
            spend=75.0, cpa=60.0, snapshot_hour=9, created_at=NOW - timedelta(hours=1)
        )
        service = make_service([old, latest])

        result = await service.evaluate_rule(_rule(), now=NOW)

        assert result["entities_evaluated"] == 1
        assert result["actions_created"] == 0

    @pytest.mark.asyncio
    async def test_snapshots_outside_window_are_ignored(
        self, make_service, intel_repo, snapshot_factory
    ):
        stale = snapshot_factory(spend=75.0, cpa=120.0, created_at=NOW - timedelta(hours=30))
        service = make_service([stale])

        result = await service.evaluate_rule(_rule(evaluation_window_hours=24), now=NOW)

        assert result["entities_evaluated"] == 0

    @pytest.mark.asyncio
    async def test_legacy_action_key_is_accepted(self, make_service, intel_repo, high_cpa_snapshot):
        rule = _rule(actions=[{"action": "decrease_budget", "params": {"percentage": 30}}])
        service = make_service([high_cpa_snapshot])

        await service.evaluate_rule(rule, now=NOW)

        action = intel_repo.actions[0]
        assert action.action_type == ActionType.DECREASE_BUDGET
        assert action.action_params == {"percentage": 30}


class TestEvaluateAllRules:

    @pytest.mark.asyncio
    async def test_tallies_across_users(self, make_service, intel_repo, snapshot_factory):
        intel_repo.rules.extend([
            _rule(id=1, user_id=1),
            _rule(id=2, user_id=2),
            _rule(id=3, user_id=3, is_active=False),
        ])
        service = make_service([
            snapshot_factory(user_id=1, spend=75.0, cpa=120.0),
            snapshot_factory(user_id=2, spend=75.0, cpa=50.0),
        ])

        tallies = await service.evaluate_all_rules()

        assert tallies["users"] == 2
        assert tallies["rules_evaluated"] == 2
        assert tallies["entities_evaluated"] == 2
        assert tallies["actions_created"] == 1
        assert tallies["errors"] == 0
        assert intel_repo.commit_count == 2

    @pytest.mark.asyncio
    async def test_credential_error_is_counted_separately(self, make_service, intel_repo):
        intel_repo.rules.append(_rule())
        service = make_service([])
        service.snapshot_repo.get_recent_snapshots = AsyncMock(
            side_effect=CredentialException("act_1", "token expirado")
        )

        tallies = await service.evaluate_all_rules()

        assert tallies["credential_errors"] == 1
        assert tallies["errors"] == 0
        assert tallies["rules_evaluated"] == 0

    @pytest.mark.asyncio
    async def test_rule_error_does_not_stop_other_rules(self, make_service, intel_repo, snapshot_factory):
        intel_repo.rules.extend([_rule(id=1, user_id=1), _rule(id=2, user_id=2)])
        service = make_service([snapshot_factory(user_id=2, spend=75.0, cpa=120.0)])
        original = service.snapshot_repo.get_recent_snapshots

        async def flaky(user_id, **kwargs):
            if user_id == 1:
                raise RuntimeError("falha de leitura")
            return await original(user_id, **kwargs)

        service.snapshot_repo.get_recent_snapshots = flaky

        tallies = await service.evaluate_all_rules()

        assert tallies["errors"] == 1
        assert tallies["actions_created"] == 1


class TestRuleManagement:

    def test_valid_definition(self):
        validate_rule_definition({
            "conditions": [{"metric": "cpa", "operator": "between", "value": [10, 20]}],
            "actions": [{"action_type": "pause"}],
        })

    @pytest.mark.parametrize("rule_data,field", [
        ({"conditions": [], "actions": [{"action_type": "pause"}]}, "conditions"),
        ({"conditions": [{"metric": "cpa", "operator": ">", "value": 1}], "actions": []}, "actions"),
        ({"conditions": [{"metric": "cpa", "value": 1}], "actions": [{"action_type": "pause"}]}, "conditions"),
        ({"conditions": [{"metric": "cpa", "operator": "~", "value": 1}],
          "actions": [{"action_type": "pause"}]}, "conditions"),
        ({"conditions": [{"metric": "cpa", "operator": "between", "value": 5}],
          "actions": [{"action_type": "pause"}]}, "conditions"),
        ({"conditions": [{"metric": "cpa", "operator": ">", "value": 1}],
          "actions": [{"action_type": "explode"}]}, "actions"),
        ({"conditions": [{"metric": "cpa", "operator": ">", "value": 1}],
          "actions": [{"action_type": "pause"}], "entity_type": "pixel"}, "entity_type"),
    ])
    def test_invalid_definitions(self, rule_data, field):
        with pytest.raises(RuleValidationException) as exc_info:
            validate_rule_definition(rule_data)
        assert exc_info.value.details["field"] == field

    @pytest.mark.asyncio
    async def test_create_rule_normalizes_actions(self, make_service, intel_repo):
        service = make_service([])

        rule = await service.create_rule(7, {
            "name": "Minha regra",
            "conditions": [{"metric": "roas", "operator": "<", "value": 50}],
            "actions": [{"action": "pause"}],
            "cooldown_hours": 12,
        })

        assert rule.id is not None
        assert rule.user_id == 7
        assert rule.rule_type == RuleType.CUSTOM
        assert rule.actions == [{"action_type": "pause", "params": {}}]
        assert rule.cooldown_hours == 12
        assert rule.times_triggered == 0
        assert intel_repo.rules == [rule]

    def test_default_templates_are_valid(self):
        templates = RuleEvaluationService.get_default_templates()

        assert len(templates) == 5
        for template in templates:
            validate_rule_definition(template)

    @pytest.mark.asyncio
    async def test_rule_stats(self, make_service, intel_repo):
        intel_repo.rules.extend([
            _rule(id=1, times_triggered=3),
            _rule(id=2, rule_type=RuleType.SCALING, is_active=False, times_triggered=1),
        ])

        stats = await make_service([]).get_rule_stats(1)

        assert stats == {
            "total_rules": 2,
            "active_rules": 1,
            "by_type": {"loss_prevention": 1, "scaling": 1},
            "total_triggers": 4,
        }


def test_latest_by_entity_keeps_first_seen(snapshot_factory):
    newest = snapshot_factory(entity_id="a", cpa=1.0)
    older = snapshot_factory(entity_id="a", cpa=2.0)
    other = snapshot_factory(entity_id="b")

    latest = latest_by_entity([newest, older, other])

    assert latest[("adset", "a")] is newest
    assert len(latest) == 2


class TestEvaluateAllRulesWithDatabase:

    @pytest.mark.asyncio
    async def test_failed_write_does_not_discard_other_rules(
        self, sqlite_db, fake_snapshot_repo_cls, snapshot_factory
    ):
        snapshots = [
            # Sem conta: a ação viola o NOT NULL de ad_account_id no flush
            snapshot_factory(user_id=1, ad_account_id=None, spend=75.0, cpa=120.0),
            snapshot_factory(user_id=2, entity_id="adset_2", spend=75.0, cpa=120.0),
        ]

        async with sqlite_db() as session_maker:
            async with session_maker() as session:
                session.add_all([_rule(id=1, user_id=1), _rule(id=2, user_id=2)])
                await session.commit()

            async with session_maker() as session:
                service = RuleEvaluationService(
                    session, snapshot_repo=fake_snapshot_repo_cls(snapshots)
                )
                service.batch_pause = 0
                tallies = await service.evaluate_all_rules()

            async with session_maker() as session:
                actions = (await session.execute(select(IntelAutomationAction))).scalars().all()
                rules = {
                    r.id: r
                    for r in (await session.execute(select(IntelAutomationRule))).scalars().all()
                }

        assert tallies["users"] == 2
        assert tallies["rules_evaluated"] == 2
        assert tallies["errors"] == 1
        assert tallies["actions_created"] == 1
        assert [(a.rule_id, a.entity_id) for a in actions] == [(2, "adset_2")]
        assert rules[1].times_triggered == 0
        assert rules[2].times_triggered == 1
