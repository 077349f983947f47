"""Métricas Prometheus da API e do motor de inteligência."""
from prometheus_fastapi_instrumentator import Instrumentator
from prometheus_client import Counter, Histogram


# Jobs do motor (padrões, regras, scores, limpeza)
intel_job_runs_total = Counter(
    "intel_job_runs_total",
    "Execuções de jobs do motor de inteligência",
    ["job", "status"],
)
intel_job_duration_seconds = Histogram(
    "intel_job_duration_seconds",
    "Duração dos jobs do motor de inteligência em segundos",
    ["job"],
    buckets=[1, 5, 10, 30, 60, 120, 300, 600, 1800],
)
intel_job_item_errors_total = Counter(
    "intel_job_item_errors_total",
    "Falhas isoladas por item (conta, usuário, regra) dentro de um job",
    ["job", "kind"],
)

# Saídas do motor
intel_patterns_stored_total = Counter(
    "intel_patterns_stored_total",
    "Padrões gravados (criados ou atualizados) por tipo",
    ["pattern_type", "operation"],
)
intel_learning_passes_total = Counter(
    "intel_learning_passes_total",
    "Resultados dos passes de aprendizado",
    ["learning_pass", "status"],
)
intel_actions_created_total = Counter(
    "intel_actions_created_total",
    "Ações propostas por regras",
    ["action_type", "status"],
)
intel_action_transitions_total = Counter(
    "intel_action_transitions_total",
    "Transições da máquina de estados de ações",
    ["from_status", "to_status"],
)
intel_account_scores_total = Counter(
    "intel_account_scores_total",
    "Scores de conta calculados por letra",
    ["grade"],
)


def setup_metrics(app, service_name: str = "unknown"):
    """Configura métricas Prometheus no app FastAPI.

    Expõe /metrics e instrumenta automaticamente todos os endpoints HTTP.
    """
    instrumentator = Instrumentator(
        should_group_status_codes=True,
        should_ignore_untemplated=True,
        should_respect_env_var=False,
        excluded_handlers=["/metrics", "/health", "/"],
        inprogress_name="http_requests_in_progress",
        inprogress_labels=True,
    )
    instrumentator.instrument(app)
    instrumentator.expose(app, include_in_schema=False, tags=["Observability"])
