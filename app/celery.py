"""
Configuração do Celery para os jobs agendados do motor de inteligência.
Entry point limpo que referencia as tasks no projeto isolado.
"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging as celery_setup_logging

from shared.config import settings
from shared.core.logging import setup_logging
from shared.observability import setup_celery_observability

# Criar aplicação Celery
celery_app = Celery(
    "intelligence",
    broker=settings.celery_broker,
    backend=settings.celery_backend,
    include=[
        "projects.intelligence.jobs.scheduled_tasks",
    ]
)

# Configurações do Celery
celery_app.conf.update(
    # Serialização
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone=settings.timezone,
    enable_utc=True,

    # Concorrência e recursos
    worker_concurrency=settings.celery_worker_concurrency,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=100,

    # Resultados
    result_expires=3600,  # 1 hora
    task_track_started=True,

    # Entrega
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    broker_connection_retry_on_startup=True,

    # Beat schedule - Jobs agendados
    beat_schedule={
        # Avaliar regras de automação a cada hora (minuto 5, após a ingestão)
        "evaluate-rules-hourly": {
            "task": "projects.intelligence.jobs.scheduled_tasks.evaluate_rules",
            "schedule": crontab(minute=5),
            "options": {"queue": "intelligence"},
        },

        # Calcular score das contas diariamente às 06:00
        "calculate-account-scores-daily": {
            "task": "projects.intelligence.jobs.scheduled_tasks.calculate_account_scores",
            "schedule": crontab(hour=6, minute=0),
            "options": {"queue": "intelligence"},
        },

        # Aprender padrões diariamente às 07:00
        "learn-patterns-daily": {
            "task": "projects.intelligence.jobs.scheduled_tasks.learn_patterns",
            "schedule": crontab(hour=7, minute=0),
            "options": {"queue": "intelligence"},
        },

        # Desativar padrões vencidos e limpar notificações às 03:00
        "cleanup-intelligence-daily": {
            "task": "projects.intelligence.jobs.scheduled_tasks.cleanup_intelligence",
            "schedule": crontab(hour=3, minute=0),
            "options": {"queue": "intelligence"},
        },
    },

    # Filas
    task_queues={
        "default": {},
        "intelligence": {"exchange": "intelligence", "routing_key": "intelligence"},
    },

    task_default_queue="default",

    # Routing
    task_routes={
        "projects.intelligence.jobs.*": {"queue": "intelligence"},
    },
)

# Métricas das tasks (sinais do Celery)
setup_celery_observability(celery_app)


@celery_setup_logging.connect
def configure_worker_logging(**kwargs):
    """Substitui o logging padrão do Celery pelo structlog do serviço."""
    setup_logging(settings.log_level, service_name=f"{settings.service_name}-worker")
