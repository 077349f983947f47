"""Módulo de observabilidade: métricas Prometheus."""
from shared.observability.metrics import setup_metrics
from shared.observability.celery_metrics import setup_celery_observability

__all__ = [
    "setup_metrics",
    "setup_celery_observability",
]
