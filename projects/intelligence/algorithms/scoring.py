"""
Componentes do score de saúde de contas de anúncios.

Cada sinal bruto vira um componente 0-100; o score geral é a média
ponderada com pesos fixos.
"""

import math
from dataclasses import dataclass
from typing import Any, Optional

import numpy as np
import pandas as pd

# =============================================================================
# CONSTANTS
# =============================================================================

COMPONENT_WEIGHTS: dict[str, float] = {
    "performance": 0.35,
    "efficiency": 0.25,
    "pixel_health": 0.15,
    "learning": 0.15,
    "consistency": 0.10,
}

NEUTRAL_COMPONENT_SCORE: int = 50

CPA_TREND_WINDOW_DAYS: int = 7
CPA_TREND_CHANGE_PCT: float = 10.0

CONSISTENCY_MIN_DAYS: int = 7

SCORE_TREND_THRESHOLD: int = 5

PIXEL_EVENT_FIELDS: list[str] = [
    "page_view_count",
    "view_content_count",
    "add_to_cart_count",
    "initiate_checkout_count",
    "purchase_count",
    "lead_count",
    "complete_registration_count",
]

COMPONENT_RECOMMENDATIONS: dict[str, str] = {
    "performance": "Otimize o ROAS revisando os conjuntos de anúncios de baixa performance",
    "efficiency": "Reduza o gasto desperdiçado pausando entidades sem conversão",
    "pixel_health": "Melhore o rastreamento do pixel implementando eventos server-side",
    "learning": "Ajuste a distribuição de orçamento para os conjuntos saírem da fase de aprendizado",
    "consistency": "Investigue as causas da volatilidade de performance",
}

IMPROVEMENT_PRIORITIES: dict[str, str] = {
    "performance": "Foque em aumentar o ROAS e reduzir o CPA",
    "efficiency": "Reduza o gasto desperdiçado e refine a segmentação",
    "pixel_health": "Melhore o rastreamento de eventos do pixel e o EMQ",
    "learning": "Otimize os conjuntos para concluir a fase de aprendizado",
    "consistency": "Mantenha a performance consistente ao longo do tempo",
}


@dataclass
class PerformanceSignal:
    """Sinais de performance dos últimos 30 dias."""
    total_spend: float
    total_revenue: float
    total_conversions: float
    wasted_spend: float
    roas: float
    cpa: Optional[float]
    waste_percentage: float
    cpa_trend: str


# ==================== SINAIS ====================

def classify_cpa_trend(daily: pd.DataFrame) -> str:
    """
    Compara o CPA agregado dos primeiros 7 dias com o dos últimos 7.

    Variação abaixo de -10% é decreasing, acima de +10% increasing;
    com menos de 7 datas, ou sem conversões em uma das janelas, a
    tendência é stable.
    """
    if len(daily) < CPA_TREND_WINDOW_DAYS:
        return "stable"

    daily = daily.sort_index()
    first = daily.iloc[:CPA_TREND_WINDOW_DAYS]
    last = daily.iloc[-CPA_TREND_WINDOW_DAYS:]

    first_conv = first["conversions"].sum()
    last_conv = last["conversions"].sum()
    first_cpa = first["spend"].sum() / first_conv if first_conv > 0 else 0.0
    last_cpa = last["spend"].sum() / last_conv if last_conv > 0 else 0.0

    if first_cpa <= 0 or last_cpa <= 0:
        return "stable"

    change = (last_cpa - first_cpa) / first_cpa * 100
    if change < -CPA_TREND_CHANGE_PCT:
        return "decreasing"
    if change > CPA_TREND_CHANGE_PCT:
        return "increasing"
    return "stable"


def compute_performance_signal(df: pd.DataFrame) -> Optional[PerformanceSignal]:
    """
    Totais, gasto desperdiçado e tendência de CPA a partir dos snapshots.

    Gasto desperdiçado é o gasto de snapshots com spend > 0 e zero conversões.
    """
    if df.empty:
        return None

    spend = df["spend"].fillna(0)
    conversions = df["conversions"].fillna(0)
    total_spend = float(spend.sum())
    total_revenue = float(df["revenue"].fillna(0).sum())
    total_conversions = float(conversions.sum())
    wasted_spend = float(spend[(spend > 0) & (conversions == 0)].sum())

    daily = df.groupby("snapshot_date")[["spend", "conversions"]].sum()

    return PerformanceSignal(
        total_spend=total_spend,
        total_revenue=total_revenue,
        total_conversions=total_conversions,
        wasted_spend=wasted_spend,
        roas=total_revenue / total_spend * 100 if total_spend > 0 else 0.0,
        cpa=total_spend / total_conversions if total_conversions > 0 else None,
        waste_percentage=wasted_spend / total_spend * 100 if total_spend > 0 else 0.0,
        cpa_trend=classify_cpa_trend(daily),
    )


def compute_learning_success_rate(df: pd.DataFrame) -> Optional[float]:
    """Percentual de ad sets cuja fase de aprendizado mais recente é SUCCESS."""
    if df.empty:
        return None
    ordered = df.sort_values(["snapshot_date", "snapshot_hour"], na_position="first")
    latest = ordered.groupby("entity_id")["learning_phase"].last()
    if latest.empty:
        return None
    return float((latest == "SUCCESS").sum() / len(latest) * 100)


def compute_daily_roas(df: pd.DataFrame) -> list[float]:
    """Série diária de ROAS (ordem cronológica)."""
    if df.empty:
        return []
    daily = df.groupby("snapshot_date")[["spend", "revenue"]].sum().sort_index()
    roas = np.where(daily["spend"] > 0, daily["revenue"] / daily["spend"] * 100, 0.0)
    return [float(v) for v in roas]


def compute_pixel_health_score(pixel: Any) -> int:
    """
    Score 0-100 do pixel: EMQ (40), ativo (20), eventos server-side (20),
    domínio verificado (10) e diversidade de eventos (10).
    """
    score = 0.0
    emq = getattr(pixel, "event_match_quality", None)
    if emq:
        score += emq / 10 * 40
    if getattr(pixel, "is_active", False):
        score += 20
    if getattr(pixel, "has_server_events", False):
        pct = getattr(pixel, "server_event_percentage", None) or 0
        score += min(20.0, pct / 100 * 20)
    if getattr(pixel, "domain_verified", False):
        score += 10

    active_events = sum(1 for f in PIXEL_EVENT_FIELDS if (getattr(pixel, f, 0) or 0) > 0)
    score += min(10.0, active_events * 1.5)
    return int(round(score))


# ==================== COMPONENTES ====================

def performance_component(signal: Optional[PerformanceSignal]) -> int:
    if signal is None:
        return NEUTRAL_COMPONENT_SCORE
    score = NEUTRAL_COMPONENT_SCORE
    if signal.roas > 200:
        score += 30
    elif signal.roas > 100:
        score += 15
    if signal.cpa_trend == "decreasing":
        score += 20
    elif signal.cpa_trend == "stable":
        score += 10
    return _clamp(score)


def efficiency_component(waste_percentage: Optional[float]) -> int:
    """100 - 2x o percentual desperdiçado; estritamente não-crescente no desperdício."""
    if waste_percentage is None:
        return NEUTRAL_COMPONENT_SCORE
    return _clamp(round(max(0.0, 100 - waste_percentage * 2)))


def learning_component(success_rate: Optional[float]) -> int:
    if success_rate is None:
        return NEUTRAL_COMPONENT_SCORE
    return _clamp(round(success_rate))


def consistency_component(daily_roas: list[float]) -> int:
    """Penaliza o coeficiente de variação do ROAS diário."""
    if len(daily_roas) <= CONSISTENCY_MIN_DAYS:
        return NEUTRAL_COMPONENT_SCORE
    values = np.asarray(daily_roas, dtype=float)
    mean = values.mean()
    cv = values.std() / mean if mean > 0 else 1.0
    return _clamp(round(max(0.0, 100 - cv * 100)))


def combine_components(components: dict[str, int]) -> int:
    """Média ponderada dos componentes, arredondada e limitada a [0, 100]."""
    total = sum(components[name] * weight for name, weight in COMPONENT_WEIGHTS.items())
    return _clamp(round(total))


def derive_trend(current: int, previous: Optional[int]) -> tuple[str, float]:
    """Tendência e variação percentual em relação ao score anterior."""
    if previous is None:
        return "stable", 0.0
    change = current - previous
    percentage = round(change / previous * 100, 2) if previous else 0.0
    if change > SCORE_TREND_THRESHOLD:
        return "improving", percentage
    if change < -SCORE_TREND_THRESHOLD:
        return "declining", percentage
    return "stable", percentage


def build_recommendations(components: dict[str, int], threshold: int = 70) -> list[str]:
    return [
        COMPONENT_RECOMMENDATIONS[name]
        for name in COMPONENT_WEIGHTS
        if components[name] < threshold
    ]


def build_breakdown(components: dict[str, int]) -> dict[str, dict[str, float]]:
    return {
        name: {"score": components[name], "weight": weight}
        for name, weight in COMPONENT_WEIGHTS.items()
    }


# ==================== LEITURA ====================

def grade_for(score: int, cutoffs: dict[str, int]) -> str:
    """Letra da nota; cutoffs mapeia letra -> nota mínima."""
    for letter, minimum in sorted(cutoffs.items(), key=lambda item: item[1], reverse=True):
        if score >= minimum:
            return letter
    return "F"


def improvement_priority(components: dict[str, int]) -> dict[str, Any]:
    """Componente mais fraco e a recomendação correspondente."""
    name = min(COMPONENT_WEIGHTS, key=lambda c: components[c])
    return {
        "component": name,
        "score": components[name],
        "recommendation": IMPROVEMENT_PRIORITIES[name],
    }


def _clamp(value: float) -> int:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return NEUTRAL_COMPONENT_SCORE
    return int(min(100, max(0, value)))
