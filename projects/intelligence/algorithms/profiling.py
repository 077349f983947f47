"""
Estatísticas simples sobre snapshots de performance.

- ROAS médio por hora do dia e classificação high/average/low
- Agregação por entidade e perfis percentílicos de vencedores/perdedores
- Transições de fadiga (queda de CTR com frequência alta)

Todas as funções recebem DataFrames do pandas e não acessam banco.
"""

import math
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import numpy as np
import pandas as pd

# =============================================================================
# CONSTANTS
# =============================================================================

HOUR_HIGH_FACTOR: float = 1.2
HOUR_LOW_FACTOR: float = 0.8

WINNER_MIN_ROAS: float = 150.0
LOSER_MAX_ROAS: float = 50.0
COHORT_MIN_SPEND: float = 50.0

PROFILE_FEATURES: list[str] = ["cpm", "ctr", "frequency", "days_since_creation"]
PROFILE_LOWER_QUANTILE: float = 0.25
PROFILE_UPPER_QUANTILE: float = 0.75

FATIGUE_MIN_FREQUENCY: float = 2.0

SNAPSHOT_COLUMNS: list[str] = [
    "entity_type", "entity_id", "entity_name", "snapshot_date", "snapshot_hour",
    "spend", "impressions", "clicks", "reach", "conversions", "revenue",
    "cpm", "ctr", "cpc", "cpa", "roas", "frequency",
    "learning_phase", "effective_status", "days_since_creation",
    "hour_of_day", "day_of_week",
]


def snapshots_to_frame(snapshots: Iterable[Any], columns: Optional[list[str]] = None) -> pd.DataFrame:
    """Converte linhas ORM (ou qualquer objeto com atributos) em DataFrame."""
    columns = columns or SNAPSHOT_COLUMNS
    records = [{col: getattr(s, col, None) for col in columns} for s in snapshots]
    df = pd.DataFrame.from_records(records, columns=columns)
    numeric = [
        c for c in columns
        if c not in ("entity_type", "entity_id", "entity_name", "snapshot_date",
                     "learning_phase", "effective_status")
    ]
    for col in numeric:
        df[col] = pd.to_numeric(df[col], errors="coerce")
    return df


# ==================== HORA DO DIA ====================

@dataclass
class HourlyProfile:
    """ROAS médio por hora e classificação relativa à média entre horas."""
    avg_roas_by_hour: dict[int, float]
    hourly_performance: dict[int, str]
    overall_avg: float
    best_hours: list[int]
    worst_hours: list[int]
    sample_size: int


def hourly_rows(df: pd.DataFrame) -> pd.DataFrame:
    """Snapshots elegíveis para o padrão horário: gasto > 0 e hora conhecida."""
    return df[(df["spend"] > 0) & df["hour_of_day"].notna()]


def classify_hours(df: pd.DataFrame) -> HourlyProfile:
    """
    Calcula o ROAS médio de cada hora e classifica cada hora como
    high (> 1.2x a média entre horas), low (< 0.8x) ou average.
    """
    rows = hourly_rows(df).copy()
    rows["roas_calc"] = rows["revenue"].fillna(0) / rows["spend"] * 100
    rows["hour"] = rows["hour_of_day"].astype(int)

    by_hour = rows.groupby("hour")["roas_calc"].mean()
    overall = float(by_hour.mean()) if len(by_hour) else 0.0

    classes: dict[int, str] = {}
    for hour, mean_roas in by_hour.items():
        if mean_roas > overall * HOUR_HIGH_FACTOR:
            classes[int(hour)] = "high"
        elif mean_roas < overall * HOUR_LOW_FACTOR:
            classes[int(hour)] = "low"
        else:
            classes[int(hour)] = "average"

    ranked = by_hour.sort_values(ascending=False)
    return HourlyProfile(
        avg_roas_by_hour={int(h): round(float(v), 4) for h, v in by_hour.items()},
        hourly_performance=classes,
        overall_avg=round(overall, 4),
        best_hours=[int(h) for h in ranked.index[:3]],
        worst_hours=[int(h) for h in ranked.index[::-1][:3]],
        sample_size=len(rows),
    )


# ==================== VENCEDORES / PERDEDORES ====================

def aggregate_entities(df: pd.DataFrame) -> pd.DataFrame:
    """
    Agrega snapshots por entidade: somas de spend/revenue/conversions,
    médias de cpm/ctr/frequency e days_since_creation da primeira observação.
    """
    ordered = df.sort_values(["entity_id", "snapshot_date"])
    grouped = ordered.groupby("entity_id")
    entities = pd.DataFrame({
        "spend": grouped["spend"].sum(),
        "revenue": grouped["revenue"].sum(),
        "conversions": grouped["conversions"].sum(),
        "cpm": grouped["cpm"].mean(),
        "ctr": grouped["ctr"].mean(),
        "frequency": grouped["frequency"].mean(),
        "days_since_creation": grouped["days_since_creation"].first(),
    })
    entities["roas"] = np.where(
        entities["spend"] > 0, entities["revenue"] / entities["spend"] * 100, 0.0
    )
    return entities


def split_cohorts(entities: pd.DataFrame) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Separa vencedores (ROAS > 150) e perdedores (ROAS < 50) com gasto >= 50."""
    has_spend = entities["spend"] >= COHORT_MIN_SPEND
    winners = entities[has_spend & (entities["roas"] > WINNER_MIN_ROAS)]
    losers = entities[has_spend & (entities["roas"] < LOSER_MAX_ROAS)]
    return winners, losers


def percentile_band(values: pd.Series) -> Optional[dict[str, float]]:
    """Faixa p25-p75 por posição nos valores ordenados."""
    ordered = sorted(float(v) for v in values.dropna())
    n = len(ordered)
    if n == 0:
        return None
    return {
        "min": ordered[math.floor(n * PROFILE_LOWER_QUANTILE)],
        "max": ordered[min(n - 1, math.floor(n * PROFILE_UPPER_QUANTILE))],
    }


def build_profile(cohort: pd.DataFrame, features: Optional[list[str]] = None) -> dict[str, dict[str, float]]:
    profile = {}
    for feature in features or PROFILE_FEATURES:
        band = percentile_band(cohort[feature])
        if band is not None:
            profile[feature] = band
    return profile


# ==================== FADIGA ====================

@dataclass
class FatigueSummary:
    fatigue_threshold: float
    frequency_decay: float
    data_points: int


def detect_fatigue_transitions(df: pd.DataFrame) -> pd.DataFrame:
    """
    Percorre os snapshots por entidade em ordem de data e marca as
    observações adjacentes em que o CTR caiu com frequência > 2.

    Returns:
        DataFrame com colunas entity_id, frequency e ctr_decline
    """
    ordered = df.sort_values(["entity_id", "snapshot_date"]).copy()
    ordered["prev_ctr"] = ordered.groupby("entity_id")["ctr"].shift(1)
    ordered["ctr_decline"] = ordered["prev_ctr"] - ordered["ctr"]

    mask = (ordered["ctr_decline"] > 0) & (ordered["frequency"] > FATIGUE_MIN_FREQUENCY)
    return ordered.loc[mask, ["entity_id", "frequency", "ctr_decline"]].reset_index(drop=True)


def summarize_fatigue(transitions: pd.DataFrame) -> FatigueSummary:
    return FatigueSummary(
        fatigue_threshold=round(float(transitions["frequency"].mean()), 4),
        frequency_decay=round(float(transitions["ctr_decline"].abs().mean()), 4),
        data_points=len(transitions),
    )
