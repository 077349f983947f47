"""
Ciclo de vida das ações de automação.

Toda mudança de status passa por ActionLifecycleManager.transition(), que
valida o par (origem, destino) contra ALLOWED_TRANSITIONS:

    pending_approval -> approved | rejected | expired
    approved         -> executed | failed

rejected, executed, failed e expired são terminais. Falhas de execução
não têm retry automático: um novo ciclo de aprovação é necessário.
"""

from datetime import datetime, timedelta
from typing import Any, Optional

from projects.intelligence.config import intel_settings
from projects.intelligence.db.models import (
    ActionStatus,
    ActionType,
    FeedbackLabel,
    IntelAutomationAction,
    IntelTrainingFeedback,
)
from projects.intelligence.db.repositories.intel_repo import IntelRepository
from projects.intelligence.services.notification_service import NotificationService
from shared.core.exceptions import (
    ActionExpiredException,
    ActionNotFoundException,
    InvalidActionTransitionException,
)
from shared.core.logging import get_logger
from shared.observability.metrics import (
    intel_action_transitions_total,
    intel_actions_created_total,
)

logger = get_logger(__name__)

ALLOWED_TRANSITIONS: dict[ActionStatus, frozenset[ActionStatus]] = {
    ActionStatus.PENDING_APPROVAL: frozenset(
        {ActionStatus.APPROVED, ActionStatus.REJECTED, ActionStatus.EXPIRED}
    ),
    ActionStatus.APPROVED: frozenset({ActionStatus.EXECUTED, ActionStatus.FAILED}),
    ActionStatus.REJECTED: frozenset(),
    ActionStatus.EXECUTED: frozenset(),
    ActionStatus.FAILED: frozenset(),
    ActionStatus.EXPIRED: frozenset(),
}

# Transições que geram registro de feedback para calibração
FEEDBACK_LABELS: dict[ActionStatus, FeedbackLabel] = {
    ActionStatus.APPROVED: FeedbackLabel.APPROVED,
    ActionStatus.REJECTED: FeedbackLabel.REJECTED,
    ActionStatus.EXECUTED: FeedbackLabel.EXECUTED,
}


def describe_action(action: IntelAutomationAction) -> str:
    """Descrição legível da ação."""
    label = f'{action.entity_type} "{action.entity_name or action.entity_id}"'
    params = action.action_params or {}
    action_type = ActionType(action.action_type)

    if action_type in (ActionType.INCREASE_BUDGET, ActionType.DECREASE_BUDGET):
        verb = "Aumentar" if action_type == ActionType.INCREASE_BUDGET else "Reduzir"
        if params.get("percentage") is not None:
            return f"{verb} orçamento de {label} em {params['percentage']}%"
        return f"{verb} orçamento de {label} em {params.get('amount')}"

    templates = {
        ActionType.PAUSE: "Pausar {label}",
        ActionType.ACTIVATE: "Ativar {label}",
        ActionType.ADJUST_BID: "Ajustar lance de {label}",
        ActionType.NOTIFY: "Notificar sobre {label}",
        ActionType.CREATE_REPORT: "Gerar relatório de {label}",
        ActionType.DUPLICATE: "Duplicar {label}",
        ActionType.ARCHIVE: "Arquivar {label}",
    }
    return templates[action_type].format(label=label)


class ActionLifecycleManager:
    """Máquina de estados das ações propostas e bookkeeping de cooldown."""

    def __init__(self, session=None, intel_repo=None, notifications=None):
        self.intel_repo = intel_repo or IntelRepository(session)
        self.notifications = notifications or NotificationService(self.intel_repo)
        self.expiry_hours = intel_settings.intel_action_expiry_hours

    # ==================== CRIAÇÃO ====================

    async def create_action(
        self,
        user_id: int,
        ad_account_id: str,
        entity_type: str,
        entity_id: str,
        action_type: ActionType,
        requires_approval: bool = True,
        rule_id: Optional[int] = None,
        entity_name: Optional[str] = None,
        action_params: Optional[dict[str, Any]] = None,
        trigger_reason: Optional[str] = None,
        trigger_metrics: Optional[list[dict[str, Any]]] = None,
        model_confidence: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> IntelAutomationAction:
        """
        Cria uma ação em pending_approval (com prazo de expiração) ou
        diretamente em approved quando a regra dispensa aprovação.
        """
        now = now or datetime.utcnow()
        status = ActionStatus.PENDING_APPROVAL if requires_approval else ActionStatus.APPROVED

        action = IntelAutomationAction(
            user_id=user_id,
            rule_id=rule_id,
            ad_account_id=ad_account_id,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_name=entity_name,
            action_type=ActionType(action_type),
            action_params=action_params or {},
            status=status,
            trigger_reason=trigger_reason,
            trigger_metrics=trigger_metrics,
            model_confidence=model_confidence,
            expires_at=now + timedelta(hours=self.expiry_hours) if requires_approval else None,
            approved_at=None if requires_approval else now,
            created_at=now,
        )
        await self.intel_repo.add(action)

        intel_actions_created_total.labels(
            action_type=action.action_type.value, status=status.value
        ).inc()
        logger.info(
            "Ação criada",
            action_id=action.id,
            rule_id=rule_id,
            entity_id=entity_id,
            action_type=action.action_type.value,
            status=status.value,
        )

        if requires_approval:
            await self.notifications.action_pending(action, describe_action(action))
        return action

    async def is_on_cooldown(
        self, rule_id: int, entity_id: str, cooldown_hours: Optional[int], now: Optional[datetime] = None
    ) -> bool:
        """Se a regra já gerou ação para a entidade nas últimas cooldown_hours."""
        if not cooldown_hours:
            return False
        now = now or datetime.utcnow()
        return await self.intel_repo.action_exists_since(
            rule_id, entity_id, now - timedelta(hours=cooldown_hours)
        )

    # ==================== TRANSIÇÕES ====================

    async def transition(
        self,
        action: IntelAutomationAction,
        target: ActionStatus,
        actor_user_id: Optional[int] = None,
        reason: Optional[str] = None,
        result: Optional[dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> IntelAutomationAction:
        """
        Única função que altera o status de uma ação.

        Raises:
            InvalidActionTransitionException: par (origem, destino) não permitido
        """
        now = now or datetime.utcnow()
        current = ActionStatus(action.status)
        target = ActionStatus(target)

        if target not in ALLOWED_TRANSITIONS[current]:
            raise InvalidActionTransitionException(action.id, current.value, target.value)

        action.status = target
        if target in (ActionStatus.APPROVED, ActionStatus.REJECTED):
            action.approved_by_user_id = actor_user_id
            action.approved_at = now
        if target == ActionStatus.REJECTED:
            action.error_message = reason
        if target == ActionStatus.EXECUTED:
            action.executed_at = now
            action.execution_result = result
        if target == ActionStatus.FAILED:
            action.executed_at = now
            action.error_message = reason
        action.updated_at = now

        if target in FEEDBACK_LABELS:
            await self._record_feedback(action, FEEDBACK_LABELS[target], now)

        await self.intel_repo.flush()

        intel_action_transitions_total.labels(
            from_status=current.value, to_status=target.value
        ).inc()
        logger.info(
            "Transição de ação",
            action_id=action.id,
            from_status=current.value,
            to_status=target.value,
            actor_user_id=actor_user_id,
        )
        return action

    async def _record_feedback(
        self, action: IntelAutomationAction, label: FeedbackLabel, now: datetime
    ) -> IntelTrainingFeedback:
        feedback = IntelTrainingFeedback(
            user_id=action.user_id,
            data_type="action_feedback",
            action_id=action.id,
            entity_type=action.entity_type,
            entity_id=action.entity_id,
            features={
                "entity_type": action.entity_type,
                "action_type": ActionType(action.action_type).value,
                "trigger_metrics": action.trigger_metrics,
                "model_confidence": action.model_confidence,
            },
            label=label,
            created_at=now,
        )
        return await self.intel_repo.add(feedback)

    async def _get_owned(self, action_id: int, user_id: int) -> IntelAutomationAction:
        action = await self.intel_repo.get_action(action_id, user_id=user_id)
        if action is None:
            raise ActionNotFoundException(action_id, user_id)
        return action

    async def approve(self, action_id: int, user_id: int) -> IntelAutomationAction:
        """Aprovação explícita do usuário dono da ação."""
        action = await self._get_owned(action_id, user_id)
        now = datetime.utcnow()
        if (
            ActionStatus(action.status) == ActionStatus.PENDING_APPROVAL
            and action.expires_at is not None
            and action.expires_at <= now
        ):
            raise ActionExpiredException(action.id, ActionStatus.APPROVED.value)
        return await self.transition(action, ActionStatus.APPROVED, actor_user_id=user_id, now=now)

    async def reject(
        self, action_id: int, user_id: int, reason: Optional[str] = None
    ) -> IntelAutomationAction:
        """Rejeição explícita, com motivo opcional."""
        action = await self._get_owned(action_id, user_id)
        return await self.transition(
            action, ActionStatus.REJECTED, actor_user_id=user_id, reason=reason
        )

    async def mark_executed(
        self, action_id: int, result: Optional[dict[str, Any]] = None
    ) -> IntelAutomationAction:
        """Reportado pelo colaborador de execução após sucesso na plataforma."""
        action = await self.intel_repo.get_action(action_id)
        if action is None:
            raise ActionNotFoundException(action_id)
        await self.transition(action, ActionStatus.EXECUTED, result=result)
        await self.notifications.action_executed(action, describe_action(action))
        return action

    async def mark_failed(self, action_id: int, error_message: str) -> IntelAutomationAction:
        """Falha terminal reportada pelo colaborador de execução."""
        action = await self.intel_repo.get_action(action_id)
        if action is None:
            raise ActionNotFoundException(action_id)
        await self.transition(action, ActionStatus.FAILED, reason=error_message)
        await self.notifications.action_failed(action, describe_action(action))
        return action

    async def expire_overdue(self, now: Optional[datetime] = None) -> int:
        """
        Expira ações pendentes com prazo vencido.
        Chamado pelo colaborador responsável; o motor não agenda esta rotina.
        """
        now = now or datetime.utcnow()
        overdue = await self.intel_repo.get_overdue_pending_actions(now)
        for action in overdue:
            await self.transition(action, ActionStatus.EXPIRED, now=now)
        return len(overdue)

    # ==================== LEITURA ====================

    @staticmethod
    def describe(action: IntelAutomationAction) -> str:
        return describe_action(action)

    async def get_pending_actions(self, user_id: int, limit: int = 50) -> list[IntelAutomationAction]:
        return await self.intel_repo.get_pending_actions(user_id, datetime.utcnow(), limit=limit)

    async def get_approved_actions(self, limit: int = 10) -> list[IntelAutomationAction]:
        return await self.intel_repo.get_approved_actions(limit=limit)

    async def get_stats(self, user_id: int, days: int = 30) -> dict[str, Any]:
        """Contagem por status e tipo, e taxa de aprovação das decisões."""
        actions = await self.intel_repo.get_actions_since(
            user_id, datetime.utcnow() - timedelta(days=days)
        )
        by_status: dict[str, int] = {}
        by_action_type: dict[str, int] = {}
        for action in actions:
            status = ActionStatus(action.status).value
            action_type = ActionType(action.action_type).value
            by_status[status] = by_status.get(status, 0) + 1
            by_action_type[action_type] = by_action_type.get(action_type, 0) + 1

        approved = by_status.get(ActionStatus.APPROVED.value, 0) + by_status.get(
            ActionStatus.EXECUTED.value, 0
        ) + by_status.get(ActionStatus.FAILED.value, 0)
        decisions = approved + by_status.get(ActionStatus.REJECTED.value, 0)
        return {
            "total": len(actions),
            "by_status": by_status,
            "by_action_type": by_action_type,
            "approval_rate": round(approved / decisions * 100, 1) if decisions else 0.0,
        }
