"""
Produção de notificações estruturadas para o colaborador de entrega.
O serviço apenas grava registros em intel_notifications.
"""

from datetime import datetime, timedelta
from typing import Any, Optional

from projects.intelligence.db.models import (
    IntelAutomationAction,
    IntelAutomationRule,
    IntelNotification,
    NotificationPriority,
    NotificationType,
)
from shared.core.logging import get_logger

logger = get_logger(__name__)

READ_RETENTION_DAYS = 30


class NotificationService:
    """Cria notificações de regras, ações e variação de score."""

    def __init__(self, intel_repo):
        self.intel_repo = intel_repo

    async def _create(self, **fields: Any) -> IntelNotification:
        notification = IntelNotification(
            created_at=datetime.utcnow(),
            is_read=False,
            **fields,
        )
        await self.intel_repo.add(notification)
        logger.debug(
            "Notificação criada",
            user_id=notification.user_id,
            notification_type=getattr(notification.notification_type, "value", None),
        )
        return notification

    async def rule_triggered(
        self,
        rule: IntelAutomationRule,
        snapshot: Any,
        trigger_reason: str,
        metrics: dict[str, Any],
    ) -> IntelNotification:
        return await self._create(
            user_id=rule.user_id,
            notification_type=NotificationType.RULE_TRIGGERED,
            priority=NotificationPriority.MEDIUM,
            title=f"Regra disparada: {rule.name}",
            message=trigger_reason,
            entity_type=snapshot.entity_type,
            entity_id=snapshot.entity_id,
            extra_data={
                "rule_id": rule.id,
                "rule_name": rule.name,
                "ad_account_id": snapshot.ad_account_id,
                "metrics": _jsonable(metrics),
            },
        )

    async def action_pending(
        self, action: IntelAutomationAction, description: str
    ) -> IntelNotification:
        return await self._create(
            user_id=action.user_id,
            notification_type=NotificationType.ACTION_PENDING,
            priority=NotificationPriority.HIGH,
            title="Ação aguardando aprovação",
            message=f"{description}. Motivo: {action.trigger_reason}",
            entity_type=action.entity_type,
            entity_id=action.entity_id,
            action_id=action.id,
            action_buttons=[
                {"label": "Aprovar", "action": "approve", "style": "primary"},
                {"label": "Rejeitar", "action": "reject", "style": "danger"},
            ],
            expires_at=action.expires_at,
        )

    async def action_executed(
        self, action: IntelAutomationAction, description: str
    ) -> IntelNotification:
        return await self._create(
            user_id=action.user_id,
            notification_type=NotificationType.ACTION_EXECUTED,
            priority=NotificationPriority.LOW,
            title="Ação executada",
            message=f"{description} executada com sucesso",
            entity_type=action.entity_type,
            entity_id=action.entity_id,
            action_id=action.id,
        )

    async def action_failed(
        self, action: IntelAutomationAction, description: str
    ) -> IntelNotification:
        return await self._create(
            user_id=action.user_id,
            notification_type=NotificationType.ACTION_FAILED,
            priority=NotificationPriority.HIGH,
            title="Falha ao executar ação",
            message=f"{description} falhou: {action.error_message}",
            entity_type=action.entity_type,
            entity_id=action.entity_id,
            action_id=action.id,
        )

    async def score_change(
        self,
        user_id: int,
        ad_account_id: str,
        previous_score: int,
        new_score: int,
        change_threshold: int,
    ) -> IntelNotification:
        change = new_score - previous_score
        improved = change > 0
        return await self._create(
            user_id=user_id,
            notification_type=NotificationType.SCORE_CHANGE,
            priority=(
                NotificationPriority.HIGH
                if abs(change) > change_threshold
                else NotificationPriority.MEDIUM
            ),
            title="Score da conta melhorou" if improved else "Score da conta caiu",
            message=(
                f"O score da conta {ad_account_id} mudou de {previous_score} "
                f"para {new_score} ({'+' if improved else ''}{change})"
            ),
            entity_type="account",
            entity_id=ad_account_id,
            extra_data={
                "previous_score": previous_score,
                "new_score": new_score,
                "change": change,
            },
        )

    async def cleanup(self, now: Optional[datetime] = None) -> dict[str, int]:
        """Remove notificações expiradas e as lidas há mais de 30 dias."""
        now = now or datetime.utcnow()
        expired = await self.intel_repo.delete_expired_notifications(now)
        old = await self.intel_repo.delete_old_notifications(
            now - timedelta(days=READ_RETENTION_DAYS)
        )
        logger.info("Limpeza de notificações", expired_removed=expired, old_removed=old)
        return {"expired_removed": expired, "old_removed": old}


def _jsonable(metrics: dict[str, Any]) -> dict[str, Optional[Any]]:
    return {
        key: (value if isinstance(value, (int, float, str, bool)) or value is None else str(value))
        for key, value in metrics.items()
    }
