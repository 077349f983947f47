"""
Endpoints administrativos do motor de inteligência.

Disparo manual de jobs, consulta de padrões, gestão de regras,
aprovação de ações e scores de contas. Autenticação fica a cargo do
gateway; o usuário é informado por query string.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from projects.intelligence.jobs.scheduled_tasks import (
    COMPOSITE_JOBS,
    JOB_RUNNERS,
    get_job_status,
    run_intelligence_job,
)
from projects.intelligence.schemas.rules import (
    ActionResponse,
    RejectRequest,
    RuleCreateRequest,
    RuleResponse,
)
from projects.intelligence.services.account_score_service import AccountScoreService
from projects.intelligence.services.action_lifecycle import ActionLifecycleManager
from projects.intelligence.services.pattern_learning_service import PatternLearningService
from projects.intelligence.services.rule_evaluation_service import RuleEvaluationService
from shared.core.exceptions import (
    EntityNotFoundException,
    InvalidActionTransitionException,
    ValidationException,
)
from shared.core.logging import get_logger
from shared.db.session import get_db

logger = get_logger(__name__)
router = APIRouter()


def _to_http(error: Exception) -> HTTPException:
    """Mapeia exceções do domínio para respostas HTTP."""
    if isinstance(error, EntityNotFoundException):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error.message)
    if isinstance(error, InvalidActionTransitionException):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": error.message, **error.details},
        )
    if isinstance(error, ValidationException):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={"message": error.message, **error.details},
        )
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(error))


def _action_response(action, lifecycle: ActionLifecycleManager) -> ActionResponse:
    response = ActionResponse.model_validate(action)
    response.description = lifecycle.describe(action)
    return response


# ==================== JOBS ====================

@router.post("/jobs/{job}/run")
async def trigger_job(job: str):
    """
    Enfileira a execução manual de um job.
    Jobs: patterns, rules, scores, cleanup, hourly, daily.
    """
    if job not in JOB_RUNNERS and job not in COMPOSITE_JOBS:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Job desconhecido: {job}. "
                   f"Opções: {sorted([*JOB_RUNNERS, *COMPOSITE_JOBS])}",
        )

    task = run_intelligence_job.delay(job)
    logger.info("Job enfileirado manualmente", job=job, task_id=task.id)
    return {"job": job, "task_id": task.id, "status": "queued"}


@router.get("/jobs/status")
async def jobs_status():
    return get_job_status()


# ==================== PATTERNS ====================

@router.get("/patterns")
async def list_patterns(
    user_id: Optional[int] = Query(None),
    ad_account_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Padrões ativos no escopo (globais incluídos)."""
    service = PatternLearningService(db)
    return await service.get_pattern_insights(user_id=user_id, ad_account_id=ad_account_id)


@router.get("/patterns/status")
async def patterns_status(db: AsyncSession = Depends(get_db)):
    """Prontidão do aprendizado de padrões."""
    service = PatternLearningService(db)
    return await service.get_training_status()


@router.get("/patterns/clusters")
async def patterns_clusters(
    user_id: Optional[int] = Query(None),
    ad_account_id: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    service = PatternLearningService(db)
    visualization = await service.get_cluster_visualization(
        user_id=user_id, ad_account_id=ad_account_id
    )
    if visualization is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Nenhum padrão de clusters ativo",
        )
    return visualization


# ==================== RULES ====================

@router.get("/rules/templates")
async def rule_templates():
    return {"templates": RuleEvaluationService.get_default_templates()}


@router.post("/rules", response_model=RuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    request: RuleCreateRequest,
    user_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Cria uma regra de automação para o usuário."""
    service = RuleEvaluationService(db)
    try:
        rule = await service.create_rule(user_id, request.model_dump(mode="json"))
    except ValidationException as e:
        raise _to_http(e)
    return RuleResponse.model_validate(rule)


@router.get("/rules/stats")
async def rule_stats(user_id: int = Query(...), db: AsyncSession = Depends(get_db)):
    service = RuleEvaluationService(db)
    return await service.get_rule_stats(user_id)


# ==================== ACTIONS ====================

@router.get("/actions/pending", response_model=list[ActionResponse])
async def pending_actions(
    user_id: int = Query(...),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """Ações aguardando aprovação e ainda dentro do prazo."""
    lifecycle = ActionLifecycleManager(db)
    actions = await lifecycle.get_pending_actions(user_id, limit=limit)
    return [_action_response(a, lifecycle) for a in actions]


@router.get("/actions/stats")
async def action_stats(
    user_id: int = Query(...),
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    lifecycle = ActionLifecycleManager(db)
    return await lifecycle.get_stats(user_id, days=days)


@router.post("/actions/{action_id}/approve", response_model=ActionResponse)
async def approve_action(
    action_id: int,
    user_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
):
    lifecycle = ActionLifecycleManager(db)
    try:
        action = await lifecycle.approve(action_id, user_id)
    except (EntityNotFoundException, InvalidActionTransitionException) as e:
        raise _to_http(e)
    return _action_response(action, lifecycle)


@router.post("/actions/{action_id}/reject", response_model=ActionResponse)
async def reject_action(
    action_id: int,
    request: Optional[RejectRequest] = None,
    user_id: int = Query(...),
    db: AsyncSession = Depends(get_db),
):
    lifecycle = ActionLifecycleManager(db)
    try:
        action = await lifecycle.reject(
            action_id, user_id, reason=request.reason if request else None
        )
    except (EntityNotFoundException, InvalidActionTransitionException) as e:
        raise _to_http(e)
    return _action_response(action, lifecycle)


# ==================== SCORES ====================

@router.get("/scores")
async def scores_dashboard(user_id: int = Query(...), db: AsyncSession = Depends(get_db)):
    """Ranking e resumo dos scores das contas do usuário."""
    service = AccountScoreService(db)
    return await service.get_dashboard(user_id)


@router.get("/scores/{ad_account_id}")
async def account_score_detail(
    ad_account_id: str,
    user_id: int = Query(...),
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
):
    service = AccountScoreService(db)
    detail = await service.get_account_detail(user_id, ad_account_id, days=days)
    if not detail["has_data"]:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Nenhum score calculado para a conta {ad_account_id}",
        )
    return detail
