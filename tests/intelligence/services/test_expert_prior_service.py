"""Tests for expert rule priors."""
import pytest

from projects.intelligence.config import intel_settings
from projects.intelligence.db.models import PatternType
from projects.intelligence.services.expert_prior_service import (
    ExpertPriorService,
    conditions_as_dict,
    parse_payout_multiplier,
)
from projects.intelligence.services.pattern_store import PatternStore


@pytest.fixture
def only_solar(monkeypatch):
    monkeypatch.setattr(intel_settings, "intel_expert_verticals", ["solar"])


class TestParsing:

    @pytest.mark.parametrize("raw,expected", [
        ("2x payout", 2.0),
        ("1.5X", 1.5),
        (3, 3.0),
        ("sem multiplicador", None),
        (None, None),
    ])
    def test_payout_multiplier(self, raw, expected):
        assert parse_payout_multiplier(raw) == expected

    def test_conditions_list_is_merged(self):
        conditions = [
            {"metric": "roi_threshold", "value": 150},
            {"metric": "cpc_max", "value": 2.5},
            "ignorado",
        ]
        assert conditions_as_dict(conditions) == {"roi_threshold": 150, "cpc_max": 2.5}


@pytest.mark.asyncio
async def test_seed_builds_one_pattern_per_rule_type(
    only_solar, intel_repo, fake_expert_repo_cls, expert_rule_factory
):
    expert_repo = fake_expert_repo_cls([
        expert_rule_factory(name="Kill 2x", vertical="solar", rule_type="kill",
                            conditions={"spend_threshold": "2x payout"}),
        expert_rule_factory(name="Kill 1.5x", vertical="all", rule_type="kill",
                            conditions={"spend_threshold": "1.5x payout"}),
        expert_rule_factory(name="Scale", vertical="solar", rule_type="scale",
                            conditions=[{"metric": "roi_threshold", "value": 120}]),
        expert_rule_factory(name="Bench", vertical="solar", rule_type="benchmark",
                            thresholds={"cpc_max": 3.0, "cpm_min": 10, "cpm_max": 30},
                            expert_count=4),
        expert_rule_factory(name="Inativa", vertical="solar", rule_type="kill",
                            is_active=False, conditions={"spend_threshold": "9x"}),
    ])
    store = PatternStore(intel_repo)
    service = ExpertPriorService(expert_repo=expert_repo, pattern_store=store)

    summary = await service.seed_expert_baseline()

    assert summary["patterns_stored"] == 3
    assert summary["verticals"] == ["solar"]

    by_type = {p.pattern_type: p for p in intel_repo.patterns}
    kill = by_type[PatternType.EXPERT_KILL_THRESHOLD]
    assert kill.pattern_name == "Kill Threshold - solar"
    assert kill.pattern_data["avg_payout_multiplier"] == 1.75
    assert kill.confidence_score == 0.9

    scale = by_type[PatternType.EXPERT_SCALE_THRESHOLD]
    assert scale.pattern_data["avg_roi_target"] == 120.0

    bench = by_type[PatternType.EXPERT_BENCHMARK]
    assert bench.pattern_data["cpc_max"] == 3.0
    assert bench.pattern_data["cpm_range"] == {"min": 10.0, "max": 30.0}
    assert bench.pattern_data["expert_count"] == 4
    assert bench.confidence_score == 0.85


@pytest.mark.asyncio
async def test_no_rules_stores_nothing(only_solar, intel_repo, fake_expert_repo_cls):
    service = ExpertPriorService(
        expert_repo=fake_expert_repo_cls([]), pattern_store=PatternStore(intel_repo)
    )
    summary = await service.seed_expert_baseline()

    assert summary["patterns_stored"] == 0
    assert intel_repo.patterns == []


@pytest.mark.asyncio
async def test_rules_are_cached(only_solar, intel_repo, fake_expert_repo_cls, expert_rule_factory):
    expert_repo = fake_expert_repo_cls([expert_rule_factory(vertical="solar")])
    service = ExpertPriorService(expert_repo=expert_repo, pattern_store=PatternStore(intel_repo))

    await service.get_rules("solar", "kill")
    await service.get_rules("solar", "kill")

    assert expert_repo.calls == 1


def test_kill_payload_defaults_multiplier():
    payload = ExpertPriorService.build_kill_payload(
        "roofing", [{"name": "x", "conditions": {}, "confidence_score": None}]
    )
    assert payload.avg_payout_multiplier == 1.0

    prediction = payload.predict({"payout": 40, "spend": 50, "conversions": 0}, 0.9)
    assert prediction["should_kill"] is True
