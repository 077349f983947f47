"""
Payloads tipados dos padrões aprendidos.

O campo pattern_data de IntelLearnedPattern é validado por uma união
discriminada em pattern_type: cada variante descreve o formato do seu
payload e sabe aplicar o padrão a novos dados via predict().
"""

import math
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter


HourClass = Literal["high", "average", "low"]


# ==================== PADRÕES APRENDIDOS DOS DADOS ====================

class TimePerformancePayload(BaseModel):
    """ROAS médio por hora do dia e classificação de cada hora."""
    pattern_type: Literal["time_performance"] = "time_performance"
    hourly_performance: dict[int, HourClass]
    avg_roas_by_hour: dict[int, float]
    overall_avg: float
    best_hours: list[int] = []
    worst_hours: list[int] = []

    def predict(self, inputs: dict[str, Any], confidence: float) -> dict[str, Any]:
        hour = inputs.get("hour")
        if hour is None:
            return {"applicable": False, "reason": "hour ausente"}
        return {
            "applicable": True,
            "prediction": self.hourly_performance.get(int(hour), "average"),
            "best_hours": sorted(h for h, c in self.hourly_performance.items() if c == "high"),
            "confidence": confidence,
        }


class FeatureBand(BaseModel):
    """Faixa p25-p75 de uma métrica dentro de uma coorte."""
    min: float
    max: float


class ProfilePayload(BaseModel):
    """Perfil percentílico de uma coorte (vencedores ou perdedores)."""
    pattern_type: Literal["winner_profile", "loser_profile"]
    profile: dict[str, FeatureBand]
    avg_roas: float
    avg_spend: float

    def predict(self, inputs: dict[str, Any], confidence: float) -> dict[str, Any]:
        if not self.profile:
            return {"applicable": False, "reason": "perfil vazio"}

        matched = []
        for feature, band in self.profile.items():
            value = inputs.get(feature)
            if value is None:
                continue
            if band.min <= value <= band.max:
                matched.append(feature)

        match_percentage = len(matched) / len(self.profile) * 100
        return {
            "applicable": True,
            "pattern_type": self.pattern_type,
            "match_percentage": round(match_percentage, 2),
            "matched_attributes": matched,
            "is_match": match_percentage >= 70,
            "confidence": confidence * match_percentage / 100,
        }


class ClusterPayload(BaseModel):
    """
    Centroides do k-means sobre métricas normalizadas.

    reproducible=False indica que a inicialização não teve semente: duas
    execuções sobre os mesmos dados podem gerar clusters diferentes.
    """
    pattern_type: Literal["cluster"] = "cluster"
    centroids: list[list[float]]
    feature_names: list[str]
    k: int
    cluster_sizes: list[int]
    cluster_labels: list[str]
    feature_min: list[float]
    feature_max: list[float]
    iterations: int
    seed: Optional[int] = None
    reproducible: bool = False

    def predict(self, inputs: dict[str, Any], confidence: float) -> dict[str, Any]:
        normalized = []
        for i, feature in enumerate(self.feature_names):
            value = inputs.get(feature) or 0.0
            span = self.feature_max[i] - self.feature_min[i]
            normalized.append((value - self.feature_min[i]) / span if span > 0 else 0.0)

        distances = [
            {
                "cluster": idx,
                "distance": math.sqrt(sum((v - c) ** 2 for v, c in zip(normalized, centroid))),
            }
            for idx, centroid in enumerate(self.centroids)
        ]
        distances.sort(key=lambda d: d["distance"])
        assigned = distances[0]
        return {
            "applicable": True,
            "assigned_cluster": assigned["cluster"],
            "label": self.cluster_labels[assigned["cluster"]],
            "distance_to_centroid": assigned["distance"],
            "cluster_distances": distances,
            "confidence": confidence,
        }


class FatiguePayload(BaseModel):
    """Frequência típica a partir da qual o CTR começa a cair."""
    pattern_type: Literal["audience_fatigue"] = "audience_fatigue"
    fatigue_threshold: float
    frequency_decay: float
    data_points: int

    def predict(self, inputs: dict[str, Any], confidence: float) -> dict[str, Any]:
        frequency = inputs.get("frequency") or 1.0
        if frequency > self.fatigue_threshold:
            level = "high"
        elif frequency > self.fatigue_threshold * 0.7:
            level = "medium"
        else:
            level = "low"

        days_until_fatigue = 0
        if level == "low":
            days_until_fatigue = (
                math.ceil((self.fatigue_threshold - frequency) / self.frequency_decay)
                if self.frequency_decay > 0 else None
            )

        return {
            "applicable": True,
            "frequency": frequency,
            "fatigue_level": level,
            "threshold": self.fatigue_threshold,
            "days_until_fatigue": days_until_fatigue,
            "confidence": confidence,
        }


# ==================== PRIORS DE ESPECIALISTAS ====================

class ExpertRuleSummary(BaseModel):
    """Regra de especialista agregada em um prior."""
    name: str
    conditions: Any = None
    confidence: Optional[float] = None


class ExpertKillPayload(BaseModel):
    """Limiar de corte: gastar N vezes o payout sem conversão."""
    pattern_type: Literal["expert_kill_threshold"] = "expert_kill_threshold"
    vertical: str
    avg_payout_multiplier: float
    rules: list[ExpertRuleSummary] = []

    def predict(self, inputs: dict[str, Any], confidence: float) -> dict[str, Any]:
        payout = inputs.get("payout")
        if payout is None:
            return {"applicable": False, "reason": "payout ausente"}
        kill_at_spend = payout * self.avg_payout_multiplier
        spend = inputs.get("spend") or 0.0
        return {
            "applicable": True,
            "kill_at_spend": kill_at_spend,
            "should_kill": spend >= kill_at_spend and not inputs.get("conversions"),
            "confidence": confidence,
        }


class ExpertScalePayload(BaseModel):
    """ROI mínimo recomendado pelos especialistas para escalar."""
    pattern_type: Literal["expert_scale_threshold"] = "expert_scale_threshold"
    vertical: str
    avg_roi_target: float
    rules: list[ExpertRuleSummary] = []

    def predict(self, inputs: dict[str, Any], confidence: float) -> dict[str, Any]:
        roas = inputs.get("roas")
        if roas is None:
            return {"applicable": False, "reason": "roas ausente"}
        return {
            "applicable": True,
            "roi_target": self.avg_roi_target,
            "should_scale": roas >= self.avg_roi_target,
            "confidence": confidence,
        }


class CpmRange(BaseModel):
    min: Optional[float] = None
    max: Optional[float] = None


class ExpertBenchmarkPayload(BaseModel):
    """Benchmarks médios de CPC, CPM e ROI para a vertical."""
    pattern_type: Literal["expert_benchmark"] = "expert_benchmark"
    vertical: str
    cpc_max: Optional[float] = None
    cpm_range: CpmRange = CpmRange()
    roi_target: Optional[float] = None
    expert_count: int = 0

    def predict(self, inputs: dict[str, Any], confidence: float) -> dict[str, Any]:
        checks: dict[str, bool] = {}
        if self.cpc_max is not None and inputs.get("cpc") is not None:
            checks["cpc_within_benchmark"] = inputs["cpc"] <= self.cpc_max
        if inputs.get("cpm") is not None:
            cpm = inputs["cpm"]
            low = self.cpm_range.min if self.cpm_range.min is not None else -math.inf
            high = self.cpm_range.max if self.cpm_range.max is not None else math.inf
            checks["cpm_within_benchmark"] = low <= cpm <= high
        if self.roi_target is not None and inputs.get("roas") is not None:
            checks["roi_meets_target"] = inputs["roas"] >= self.roi_target

        return {
            "applicable": bool(checks),
            "checks": checks,
            "confidence": confidence,
        }


PatternPayload = Annotated[
    Union[
        TimePerformancePayload,
        ProfilePayload,
        ClusterPayload,
        FatiguePayload,
        ExpertKillPayload,
        ExpertScalePayload,
        ExpertBenchmarkPayload,
    ],
    Field(discriminator="pattern_type"),
]

_payload_adapter: TypeAdapter = TypeAdapter(PatternPayload)


def parse_pattern_payload(pattern_type: str, data: dict[str, Any]) -> PatternPayload:
    """Valida o pattern_data armazenado contra a variante do seu tipo."""
    pattern_type = getattr(pattern_type, "value", pattern_type)
    return _payload_adapter.validate_python({**data, "pattern_type": pattern_type})
