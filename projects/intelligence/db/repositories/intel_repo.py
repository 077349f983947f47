"""
Repositório das tabelas escritas pelo motor de inteligência:
padrões, regras, ações, notificações, feedback e scores.
"""

from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import and_, delete, desc, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from projects.intelligence.db.models import (
    ActionStatus,
    IntelAccountScore,
    IntelAutomationAction,
    IntelAutomationRule,
    IntelLearnedPattern,
    IntelNotification,
)
from shared.core.logging import get_logger

logger = get_logger(__name__)


def _nullable_eq(column, value):
    return column.is_(None) if value is None else column == value


class IntelRepository:
    """Repositório READ-WRITE do motor de inteligência."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, instance: Any) -> Any:
        """Adiciona uma instância à sessão e faz flush para obter o ID."""
        self.session.add(instance)
        await self.session.flush()
        return instance

    async def flush(self) -> None:
        await self.session.flush()

    def savepoint(self):
        """
        SAVEPOINT para isolar um item de lote (use com `async with`).
        Uma falha desfaz só o item; a transação externa segue utilizável.
        """
        return self.session.begin_nested()

    async def commit(self) -> None:
        await self.session.commit()

    # ==================== PATTERNS ====================

    async def get_pattern_by_key(
        self,
        pattern_type: str,
        pattern_name: str,
        user_id: Optional[int] = None,
        ad_account_id: Optional[str] = None,
    ) -> Optional[IntelLearnedPattern]:
        """Busca um padrão pela chave lógica (tipo, nome, escopo)."""
        result = await self.session.execute(
            select(IntelLearnedPattern)
            .where(
                and_(
                    IntelLearnedPattern.pattern_type == pattern_type,
                    IntelLearnedPattern.pattern_name == pattern_name,
                    _nullable_eq(IntelLearnedPattern.user_id, user_id),
                    _nullable_eq(IntelLearnedPattern.ad_account_id, ad_account_id),
                )
            )
            .order_by(IntelLearnedPattern.id)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_active_patterns(
        self,
        now: datetime,
        user_id: Optional[int] = None,
        ad_account_id: Optional[str] = None,
        pattern_type: Optional[str] = None,
    ) -> list[IntelLearnedPattern]:
        """Padrões ativos e válidos no escopo (globais incluídos), por confiança."""
        filters = [
            IntelLearnedPattern.is_active == True,
            or_(
                IntelLearnedPattern.valid_until.is_(None),
                IntelLearnedPattern.valid_until > now,
            ),
        ]
        if user_id is not None:
            filters.append(
                or_(IntelLearnedPattern.user_id.is_(None), IntelLearnedPattern.user_id == user_id)
            )
        if ad_account_id is not None:
            filters.append(
                or_(
                    IntelLearnedPattern.ad_account_id.is_(None),
                    IntelLearnedPattern.ad_account_id == ad_account_id,
                )
            )
        if pattern_type is not None:
            filters.append(IntelLearnedPattern.pattern_type == pattern_type)

        result = await self.session.execute(
            select(IntelLearnedPattern)
            .where(and_(*filters))
            .order_by(desc(IntelLearnedPattern.confidence_score))
        )
        return list(result.scalars().all())

    async def deactivate_stale_patterns(self, now: datetime) -> int:
        """Desativa padrões cuja validade expirou."""
        result = await self.session.execute(
            update(IntelLearnedPattern)
            .where(
                and_(
                    IntelLearnedPattern.is_active == True,
                    IntelLearnedPattern.valid_until < now,
                )
            )
            .values(is_active=False)
        )
        return result.rowcount or 0

    # ==================== RULES ====================

    async def get_users_with_active_rules(self) -> list[int]:
        result = await self.session.execute(
            select(IntelAutomationRule.user_id)
            .where(IntelAutomationRule.is_active == True)
            .distinct()
            .order_by(IntelAutomationRule.user_id)
        )
        return [row[0] for row in result.all()]

    async def get_active_rules(
        self, user_id: int, ad_account_id: Optional[str] = None
    ) -> list[IntelAutomationRule]:
        filters = [
            IntelAutomationRule.user_id == user_id,
            IntelAutomationRule.is_active == True,
        ]
        if ad_account_id:
            filters.append(
                or_(
                    IntelAutomationRule.ad_account_id.is_(None),
                    IntelAutomationRule.ad_account_id == ad_account_id,
                )
            )
        result = await self.session.execute(
            select(IntelAutomationRule)
            .where(and_(*filters))
            .order_by(IntelAutomationRule.rule_type, IntelAutomationRule.created_at)
        )
        return list(result.scalars().all())

    async def get_rules(self, user_id: int) -> list[IntelAutomationRule]:
        result = await self.session.execute(
            select(IntelAutomationRule)
            .where(IntelAutomationRule.user_id == user_id)
            .order_by(IntelAutomationRule.created_at)
        )
        return list(result.scalars().all())

    # ==================== ACTIONS ====================

    async def get_action(
        self, action_id: int, user_id: Optional[int] = None
    ) -> Optional[IntelAutomationAction]:
        """Busca uma ação; com user_id, apenas se pertencer ao usuário."""
        filters = [IntelAutomationAction.id == action_id]
        if user_id is not None:
            filters.append(IntelAutomationAction.user_id == user_id)
        result = await self.session.execute(
            select(IntelAutomationAction).where(and_(*filters))
        )
        return result.scalar_one_or_none()

    async def action_exists_since(
        self, rule_id: int, entity_id: str, since: datetime
    ) -> bool:
        """Se a regra já gerou ação (em qualquer status) para a entidade desde `since`."""
        result = await self.session.execute(
            select(IntelAutomationAction.id)
            .where(
                and_(
                    IntelAutomationAction.rule_id == rule_id,
                    IntelAutomationAction.entity_id == entity_id,
                    IntelAutomationAction.created_at >= since,
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def get_pending_actions(
        self, user_id: int, now: datetime, limit: int = 50
    ) -> list[IntelAutomationAction]:
        """Ações aguardando aprovação que ainda não expiraram."""
        result = await self.session.execute(
            select(IntelAutomationAction)
            .where(
                and_(
                    IntelAutomationAction.user_id == user_id,
                    IntelAutomationAction.status == ActionStatus.PENDING_APPROVAL,
                    or_(
                        IntelAutomationAction.expires_at.is_(None),
                        IntelAutomationAction.expires_at > now,
                    ),
                )
            )
            .order_by(desc(IntelAutomationAction.created_at))
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_approved_actions(self, limit: int = 10) -> list[IntelAutomationAction]:
        """Fila do colaborador de execução: aprovadas, mais antigas primeiro."""
        result = await self.session.execute(
            select(IntelAutomationAction)
            .where(IntelAutomationAction.status == ActionStatus.APPROVED)
            .order_by(IntelAutomationAction.approved_at)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_overdue_pending_actions(self, now: datetime) -> list[IntelAutomationAction]:
        result = await self.session.execute(
            select(IntelAutomationAction)
            .where(
                and_(
                    IntelAutomationAction.status == ActionStatus.PENDING_APPROVAL,
                    IntelAutomationAction.expires_at < now,
                )
            )
        )
        return list(result.scalars().all())

    async def get_actions_since(
        self, user_id: int, since: datetime
    ) -> list[IntelAutomationAction]:
        result = await self.session.execute(
            select(IntelAutomationAction)
            .where(
                and_(
                    IntelAutomationAction.user_id == user_id,
                    IntelAutomationAction.created_at >= since,
                )
            )
            .order_by(desc(IntelAutomationAction.created_at))
        )
        return list(result.scalars().all())

    # ==================== SCORES ====================

    async def get_score(
        self, user_id: int, ad_account_id: str, score_date: date
    ) -> Optional[IntelAccountScore]:
        result = await self.session.execute(
            select(IntelAccountScore)
            .where(
                and_(
                    IntelAccountScore.user_id == user_id,
                    IntelAccountScore.ad_account_id == ad_account_id,
                    IntelAccountScore.score_date == score_date,
                )
            )
        )
        return result.scalar_one_or_none()

    async def get_latest_scores(self, user_id: int) -> list[IntelAccountScore]:
        """Score mais recente de cada conta do usuário, maior primeiro."""
        latest = (
            select(
                IntelAccountScore.ad_account_id,
                func.max(IntelAccountScore.score_date).label("latest_date"),
            )
            .where(IntelAccountScore.user_id == user_id)
            .group_by(IntelAccountScore.ad_account_id)
            .subquery()
        )
        result = await self.session.execute(
            select(IntelAccountScore)
            .join(
                latest,
                and_(
                    IntelAccountScore.ad_account_id == latest.c.ad_account_id,
                    IntelAccountScore.score_date == latest.c.latest_date,
                ),
            )
            .where(IntelAccountScore.user_id == user_id)
            .order_by(desc(IntelAccountScore.overall_score))
        )
        return list(result.scalars().all())

    async def get_score_history(
        self, user_id: int, ad_account_id: str, since: date
    ) -> list[IntelAccountScore]:
        result = await self.session.execute(
            select(IntelAccountScore)
            .where(
                and_(
                    IntelAccountScore.user_id == user_id,
                    IntelAccountScore.ad_account_id == ad_account_id,
                    IntelAccountScore.score_date >= since,
                )
            )
            .order_by(IntelAccountScore.score_date)
        )
        return list(result.scalars().all())

    # ==================== NOTIFICATIONS ====================

    async def delete_expired_notifications(self, now: datetime) -> int:
        """Remove notificações com prazo vencido."""
        result = await self.session.execute(
            delete(IntelNotification).where(
                and_(
                    IntelNotification.expires_at.is_not(None),
                    IntelNotification.expires_at < now,
                )
            )
        )
        return result.rowcount or 0

    async def delete_old_notifications(self, before: datetime) -> int:
        """Remove notificações já lidas criadas antes de `before`."""
        result = await self.session.execute(
            delete(IntelNotification).where(
                and_(
                    IntelNotification.is_read == True,
                    IntelNotification.created_at < before,
                )
            )
        )
        return result.rowcount or 0
