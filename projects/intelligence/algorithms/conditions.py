"""
Avaliação das condições de regras de automação contra as métricas de uma entidade.
"""

import operator
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from projects.intelligence.db.models import ConditionLogic

# Métricas extraídas do snapshot para avaliação de regras
RULE_METRICS: list[str] = [
    "spend", "impressions", "clicks", "reach", "conversions", "revenue",
    "cpm", "ctr", "cpc", "cpa", "roas", "frequency",
    "learning_phase", "effective_status", "days_since_creation",
]

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    ">": operator.gt,
    ">=": operator.ge,
    "<": operator.lt,
    "<=": operator.le,
    "==": operator.eq,
    "=": operator.eq,
    "!=": operator.ne,
}

SUPPORTED_OPERATORS: frozenset[str] = frozenset(_COMPARATORS) | {"between"}


@dataclass
class ConditionEvaluation:
    """Resultado da avaliação de uma regra para uma entidade."""
    passes: bool
    triggered_conditions: list[dict[str, Any]] = field(default_factory=list)


def extract_metrics(snapshot: Any) -> dict[str, Any]:
    """Extrai do snapshot o conjunto de métricas usado pelas regras."""
    return {metric: getattr(snapshot, metric, None) for metric in RULE_METRICS}


def evaluate_condition(actual: Any, op: str, expected: Any) -> bool:
    """
    Avalia uma condição isolada.

    Valor ausente, operador desconhecido ou tipos não comparáveis
    resultam em condição falsa.
    """
    if actual is None:
        return False
    try:
        if op == "between":
            low, high = expected
            return low <= actual <= high
        comparator = _COMPARATORS.get(op)
        if comparator is None:
            return False
        return bool(comparator(actual, expected))
    except (TypeError, ValueError):
        return False


def evaluate_conditions(
    conditions: list[dict[str, Any]],
    metrics: dict[str, Any],
    logic: Optional[str] = ConditionLogic.AND,
) -> ConditionEvaluation:
    """
    Avalia a lista de condições de uma regra.

    AND passa se todas as condições forem verdadeiras; OR se ao menos uma for.
    triggered_conditions traz as condições verdadeiras com o valor observado.
    """
    triggered = []
    for condition in conditions:
        actual = metrics.get(condition.get("metric"))
        if evaluate_condition(actual, condition.get("operator"), condition.get("value")):
            triggered.append({**condition, "actual_value": actual})

    logic = getattr(logic, "value", logic) or ConditionLogic.AND.value
    if logic == ConditionLogic.OR.value:
        passes = len(triggered) > 0
    else:
        passes = len(conditions) > 0 and len(triggered) == len(conditions)

    return ConditionEvaluation(passes=passes, triggered_conditions=triggered)


def _format_value(value: Any) -> str:
    if isinstance(value, bool):
        return str(value)
    if isinstance(value, (int, float)):
        return f"{value:.2f}"
    return str(value)


def build_trigger_reason(rule_name: str, triggered_conditions: list[dict[str, Any]]) -> str:
    """Texto legível do motivo do disparo."""
    parts = [
        f"{c.get('metric')} {c.get('operator')} {c.get('value')} "
        f"(atual: {_format_value(c.get('actual_value'))})"
        for c in triggered_conditions
    ]
    return f'Regra "{rule_name}" disparada: ' + ", ".join(parts)
