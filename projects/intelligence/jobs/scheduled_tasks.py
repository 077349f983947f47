"""
Tasks agendadas do motor de inteligência (Celery Beat).
Executam automaticamente conforme cronograma definido em app/celery.py.

Cada task roda sua corrotina em um event loop próprio, com engine isolado
descartado ao final, e é protegida por uma guarda de execução única.
"""

import asyncio
import time
from typing import Any, Awaitable, Callable, Optional

from app.celery import celery_app
from projects.intelligence.config import intel_settings
from projects.intelligence.jobs.guards import get_guard, guards
from shared.core.logging import get_logger, job_context
from shared.db.session import async_session_maker, create_isolated_async_session_maker
from shared.observability.metrics import intel_job_duration_seconds, intel_job_runs_total

logger = get_logger(__name__)

JOB_TOGGLES = {
    "patterns": "intel_patterns_enabled",
    "rules": "intel_rules_enabled",
    "scores": "intel_scores_enabled",
}

COMPOSITE_JOBS = {
    "hourly": ("rules",),
    "daily": ("scores", "patterns", "cleanup"),
}


# ==================== CORROTINAS ====================

async def _run_pattern_learning(
    session_maker=None,
    user_id: Optional[int] = None,
    ad_account_id: Optional[str] = None,
    kmeans_seed: Optional[int] = None,
) -> dict:
    from projects.intelligence.services.pattern_learning_service import PatternLearningService

    if session_maker is None:
        session_maker = async_session_maker

    async with session_maker() as session:
        service = PatternLearningService(session, kmeans_seed=kmeans_seed)
        passes = await service.learn_all_patterns(user_id=user_id, ad_account_id=ad_account_id)
        await session.commit()

    return {
        "passes": passes,
        "patterns_stored": sum(p["patterns_stored"] for p in passes.values()),
    }


async def _run_rule_evaluation(session_maker=None) -> dict:
    from projects.intelligence.services.rule_evaluation_service import RuleEvaluationService

    if session_maker is None:
        session_maker = async_session_maker

    async with session_maker() as session:
        service = RuleEvaluationService(session)
        tallies = await service.evaluate_all_rules()
        await session.commit()

    return tallies


async def _run_account_scores(session_maker=None) -> dict:
    from projects.intelligence.services.account_score_service import AccountScoreService

    if session_maker is None:
        session_maker = async_session_maker

    async with session_maker() as session:
        service = AccountScoreService(session)
        tallies = await service.calculate_all_scores()
        await session.commit()

    return tallies


async def _run_cleanup(session_maker=None) -> dict:
    from projects.intelligence.db.repositories.intel_repo import IntelRepository
    from projects.intelligence.services.notification_service import NotificationService
    from projects.intelligence.services.pattern_store import PatternStore

    if session_maker is None:
        session_maker = async_session_maker

    async with session_maker() as session:
        intel_repo = IntelRepository(session)
        deactivated = await PatternStore(intel_repo).deactivate_stale_patterns()
        notifications = await NotificationService(intel_repo).cleanup()
        await session.commit()

    return {"patterns_deactivated": deactivated, **notifications}


JOB_RUNNERS: dict[str, Callable[..., Awaitable[dict]]] = {
    "patterns": _run_pattern_learning,
    "rules": _run_rule_evaluation,
    "scores": _run_account_scores,
    "cleanup": _run_cleanup,
}


# ==================== EXECUÇÃO ====================

def _execute_job(job_name: str, **kwargs: Any) -> dict:
    """
    Executa um job sob sua guarda, num event loop e engine isolados.
    Os logs emitidos durante a execução carregam job e run_id.

    Returns:
        Dict com status (completed, skipped, disabled) e o resultado do job
    """
    with job_context(job_name):
        return _execute_guarded(job_name, **kwargs)


def _execute_guarded(job_name: str, **kwargs: Any) -> dict:
    toggle = JOB_TOGGLES.get(job_name)
    if toggle and not getattr(intel_settings, toggle):
        logger.info("Job desabilitado por configuração")
        intel_job_runs_total.labels(job=job_name, status="disabled").inc()
        return {"job": job_name, "status": "disabled"}

    guard = get_guard(job_name)
    if not guard.try_acquire():
        logger.warning("Job já em execução, ignorando")
        intel_job_runs_total.labels(job=job_name, status="skipped").inc()
        return {"job": job_name, "status": "skipped", "reason": "already_running"}

    logger.info("Iniciando job")
    start = time.monotonic()
    status = "failed"
    try:
        # Criar session_maker isolado
        isolated_engine, isolated_session_maker = create_isolated_async_session_maker()

        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        try:
            try:
                result = loop.run_until_complete(
                    JOB_RUNNERS[job_name](session_maker=isolated_session_maker, **kwargs)
                )
            finally:
                # Dispose do engine dentro do mesmo loop
                loop.run_until_complete(isolated_engine.dispose())
        finally:
            loop.close()
            asyncio.set_event_loop(None)

        status = "completed"
    except Exception as e:
        logger.error("Erro no job", error=str(e), exc_info=True)
        raise
    finally:
        duration = time.monotonic() - start
        guard.release(status)
        intel_job_runs_total.labels(job=job_name, status=status).inc()
        intel_job_duration_seconds.labels(job=job_name).observe(duration)

    logger.info("Job concluído", duration_seconds=round(duration, 2))
    return {"job": job_name, "status": status, "result": result}


def run_job(job_name: str) -> dict:
    """
    Executa manualmente um job ou grupo de jobs.

    Em um grupo, a falha de um job é registrada no seu resultado e os
    demais jobs do grupo continuam.

    Raises:
        ValueError: nome de job desconhecido
    """
    if job_name in JOB_RUNNERS:
        return _execute_job(job_name)
    if job_name not in COMPOSITE_JOBS:
        raise ValueError(f"Job desconhecido: {job_name}")

    results = {}
    for name in COMPOSITE_JOBS[job_name]:
        try:
            results[name] = _execute_job(name)
        except Exception as e:
            results[name] = {"job": name, "status": "failed", "error": str(e)}

    failed = [name for name, result in results.items() if result["status"] == "failed"]
    return {
        "job": job_name,
        "status": "completed_with_errors" if failed else "completed",
        "failed_jobs": failed,
        "results": results,
    }


def get_job_status() -> dict:
    """Estado das guardas e dos toggles de cada job."""
    return {
        "jobs": {
            name: {
                "enabled": getattr(intel_settings, JOB_TOGGLES[name]) if name in JOB_TOGGLES else True,
                **guard.status(),
            }
            for name, guard in guards.items()
        },
        "composite_jobs": {name: list(jobs) for name, jobs in COMPOSITE_JOBS.items()},
    }


# ==================== TASKS ====================

@celery_app.task(name="projects.intelligence.jobs.scheduled_tasks.learn_patterns")
def learn_patterns():
    """
    Aprende padrões globais a partir dos snapshots.
    Executado diariamente às 07:00.
    """
    return _execute_job("patterns")


@celery_app.task(name="projects.intelligence.jobs.scheduled_tasks.evaluate_rules")
def evaluate_rules():
    """
    Avalia as regras de automação ativas.
    Executado a cada hora (minuto 5), após a ingestão.
    """
    return _execute_job("rules")


@celery_app.task(name="projects.intelligence.jobs.scheduled_tasks.calculate_account_scores")
def calculate_account_scores():
    """
    Calcula o score de saúde de todas as contas.
    Executado diariamente às 06:00.
    """
    return _execute_job("scores")


@celery_app.task(name="projects.intelligence.jobs.scheduled_tasks.cleanup_intelligence")
def cleanup_intelligence():
    """
    Desativa padrões vencidos e limpa notificações antigas.
    Executado diariamente às 03:00.
    """
    return _execute_job("cleanup")


@celery_app.task(name="projects.intelligence.jobs.scheduled_tasks.run_intelligence_job")
def run_intelligence_job(job_name: str):
    """Execução manual disparada pela API administrativa."""
    return run_job(job_name)
