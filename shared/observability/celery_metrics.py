"""Métricas Prometheus para Celery workers."""
import time
from prometheus_client import Counter, Histogram, Gauge
from celery.signals import (
    task_prerun, task_postrun, task_failure,
    worker_ready, worker_shutdown,
)


celery_tasks_total = Counter(
    "celery_tasks_total",
    "Total de tasks Celery executadas",
    ["task_name", "queue", "status"],
)
celery_task_duration_seconds = Histogram(
    "celery_task_duration_seconds",
    "Duração de execução de tasks Celery em segundos",
    ["task_name", "queue"],
    buckets=[0.1, 0.5, 1, 5, 10, 30, 60, 120, 300, 600],
)
celery_workers_active = Gauge(
    "celery_workers_active",
    "Número de workers Celery ativos",
)

_task_start_times: dict[str, float] = {}


def _labels(sender) -> tuple[str, str]:
    queue = getattr(sender, "queue", None) or "intelligence"
    task_name = sender.name if sender else "unknown"
    return task_name, queue


def setup_celery_observability(celery_app):
    """Registra signal handlers para o ciclo de vida das tasks."""

    @task_prerun.connect
    def on_task_prerun(sender=None, task_id=None, **kwargs):
        _task_start_times[task_id] = time.monotonic()

    @task_postrun.connect
    def on_task_postrun(sender=None, task_id=None, state=None, **kwargs):
        start = _task_start_times.pop(task_id, None)
        if start is None:
            return
        task_name, queue = _labels(sender)
        celery_task_duration_seconds.labels(task_name=task_name, queue=queue).observe(
            time.monotonic() - start
        )
        if state == "SUCCESS":
            celery_tasks_total.labels(task_name=task_name, queue=queue, status="success").inc()

    @task_failure.connect
    def on_task_failure(sender=None, task_id=None, **kwargs):
        _task_start_times.pop(task_id, None)
        task_name, queue = _labels(sender)
        celery_tasks_total.labels(task_name=task_name, queue=queue, status="failure").inc()

    @worker_ready.connect
    def on_worker_ready(**kwargs):
        celery_workers_active.inc()

    @worker_shutdown.connect
    def on_worker_shutdown(**kwargs):
        celery_workers_active.dec()
