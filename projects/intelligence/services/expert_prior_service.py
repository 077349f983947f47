"""
Consumo das regras de especialistas como priors do motor de padrões.

Para cada vertical conhecida, agrega as regras de corte (kill), escala
(scale) e benchmark em padrões expert_* com confiança fixa alta,
independente do volume de dados. Servem de baseline até os padrões
aprendidos dos dados atingirem confiança comparável.
"""

import re
import time
from typing import Any, Optional

from projects.intelligence.config import intel_settings
from projects.intelligence.db.models import PatternType
from projects.intelligence.db.repositories.expert_rule_repo import ExpertRuleRepository
from projects.intelligence.schemas.patterns import (
    CpmRange,
    ExpertBenchmarkPayload,
    ExpertKillPayload,
    ExpertRuleSummary,
    ExpertScalePayload,
)
from shared.core.logging import get_logger

logger = get_logger(__name__)

KILL_CONFIDENCE: float = 0.9
SCALE_CONFIDENCE: float = 0.9
BENCHMARK_CONFIDENCE: float = 0.85

DEFAULT_PAYOUT_MULTIPLIER: float = 1.0
DEFAULT_ROI_TARGET: float = 100.0

_MULTIPLIER_PATTERN = re.compile(r"(\d+\.?\d*)x", re.IGNORECASE)

# (vertical, rule_type) -> (expira_em, regras serializadas)
_rules_cache: dict[tuple[str, str], tuple[float, list[dict[str, Any]]]] = {}


def clear_expert_cache() -> None:
    _rules_cache.clear()


def conditions_as_dict(conditions: Any) -> dict[str, Any]:
    """Aceita condições como objeto ou como lista de {metric, value}."""
    if isinstance(conditions, dict):
        return conditions
    if isinstance(conditions, list):
        merged = {}
        for item in conditions:
            if isinstance(item, dict) and "metric" in item:
                merged[item["metric"]] = item.get("value")
        return merged
    return {}


def parse_payout_multiplier(spend_threshold: Any) -> Optional[float]:
    """Extrai o multiplicador de textos como '2x payout' ou '1.5x'."""
    if spend_threshold is None:
        return None
    if isinstance(spend_threshold, (int, float)):
        return float(spend_threshold)
    match = _MULTIPLIER_PATTERN.search(str(spend_threshold))
    return float(match.group(1)) if match else None


def _mean(values: list[float]) -> Optional[float]:
    return round(sum(values) / len(values), 4) if values else None


class ExpertPriorService:
    """Semeia os padrões expert_* a partir das regras de especialistas."""

    def __init__(self, session=None, expert_repo=None, pattern_store=None):
        self.expert_repo = expert_repo or ExpertRuleRepository(session)
        self.pattern_store = pattern_store
        self.cache_ttl = intel_settings.intel_expert_cache_ttl_seconds
        self.logger = get_logger(self.__class__.__name__)

    async def get_rules(self, vertical: str, rule_type: str) -> list[dict[str, Any]]:
        """Regras da vertical (ou 'all') do tipo pedido, com cache em memória."""
        key = (vertical, rule_type)
        cached = _rules_cache.get(key)
        if cached and cached[0] > time.monotonic():
            return cached[1]

        rows = await self.expert_repo.get_rules(vertical, rule_type)
        rules = [
            {
                "name": r.name,
                "conditions": r.conditions,
                "thresholds": r.thresholds or {},
                "confidence_score": r.confidence_score,
                "expert_count": r.expert_count or 1,
            }
            for r in rows
        ]
        _rules_cache[key] = (time.monotonic() + self.cache_ttl, rules)
        return rules

    # ==================== AGREGAÇÃO ====================

    @staticmethod
    def build_kill_payload(vertical: str, rules: list[dict[str, Any]]) -> ExpertKillPayload:
        multipliers = [
            m for m in (
                parse_payout_multiplier(conditions_as_dict(r["conditions"]).get("spend_threshold"))
                for r in rules
            )
            if m is not None
        ]
        return ExpertKillPayload(
            vertical=vertical,
            avg_payout_multiplier=_mean(multipliers) or DEFAULT_PAYOUT_MULTIPLIER,
            rules=[
                ExpertRuleSummary(
                    name=r["name"], conditions=r["conditions"], confidence=r["confidence_score"]
                )
                for r in rules
            ],
        )

    @staticmethod
    def build_scale_payload(vertical: str, rules: list[dict[str, Any]]) -> ExpertScalePayload:
        targets = []
        for r in rules:
            value = conditions_as_dict(r["conditions"]).get("roi_threshold")
            if isinstance(value, (int, float)):
                targets.append(float(value))
        return ExpertScalePayload(
            vertical=vertical,
            avg_roi_target=_mean(targets) or DEFAULT_ROI_TARGET,
            rules=[
                ExpertRuleSummary(
                    name=r["name"], conditions=r["conditions"], confidence=r["confidence_score"]
                )
                for r in rules
            ],
        )

    @staticmethod
    def build_benchmark_payload(vertical: str, rules: list[dict[str, Any]]) -> ExpertBenchmarkPayload:
        collected: dict[str, list[float]] = {"cpc_max": [], "cpm_min": [], "cpm_max": [], "roi_target": []}
        for r in rules:
            source = r["thresholds"] or conditions_as_dict(r["conditions"])
            for field_name, values in collected.items():
                value = source.get(field_name)
                if isinstance(value, (int, float)):
                    values.append(float(value))

        return ExpertBenchmarkPayload(
            vertical=vertical,
            cpc_max=_mean(collected["cpc_max"]),
            cpm_range=CpmRange(min=_mean(collected["cpm_min"]), max=_mean(collected["cpm_max"])),
            roi_target=_mean(collected["roi_target"]),
            expert_count=sum(r["expert_count"] for r in rules),
        )

    # ==================== SEMEADURA ====================

    async def seed_expert_baseline(
        self,
        user_id: Optional[int] = None,
        ad_account_id: Optional[str] = None,
    ) -> dict[str, Any]:
        """
        Agrega as regras de cada vertical em padrões expert_*.

        Returns:
            Dict com patterns_stored, rules_considered e verticals semeadas
        """
        stored = 0
        considered = 0
        seeded_verticals = []

        for vertical in intel_settings.intel_expert_verticals:
            kill_rules = await self.get_rules(vertical, "kill")
            scale_rules = await self.get_rules(vertical, "scale")
            benchmark_rules = await self.get_rules(vertical, "benchmark")
            considered += len(kill_rules) + len(scale_rules) + len(benchmark_rules)

            specs = [
                (PatternType.EXPERT_KILL_THRESHOLD, f"Kill Threshold - {vertical}",
                 kill_rules, self.build_kill_payload, KILL_CONFIDENCE),
                (PatternType.EXPERT_SCALE_THRESHOLD, f"Scale Threshold - {vertical}",
                 scale_rules, self.build_scale_payload, SCALE_CONFIDENCE),
                (PatternType.EXPERT_BENCHMARK, f"Benchmarks - {vertical}",
                 benchmark_rules, self.build_benchmark_payload, BENCHMARK_CONFIDENCE),
            ]

            vertical_stored = 0
            for pattern_type, name, rules, builder, confidence in specs:
                if not rules:
                    continue
                await self.pattern_store.store_pattern(
                    pattern_type=pattern_type,
                    pattern_name=name,
                    payload=builder(vertical, rules),
                    confidence=confidence,
                    sample_size=len(rules),
                    user_id=user_id,
                    ad_account_id=ad_account_id,
                    description=f"Prior de especialistas ({len(rules)} regras) para {vertical}",
                )
                vertical_stored += 1

            if vertical_stored:
                seeded_verticals.append(vertical)
                stored += vertical_stored

        self.logger.info(
            "Priors de especialistas semeados",
            patterns_stored=stored,
            rules_considered=considered,
            verticals=seeded_verticals,
        )
        return {
            "patterns_stored": stored,
            "rules_considered": considered,
            "verticals": seeded_verticals,
        }
