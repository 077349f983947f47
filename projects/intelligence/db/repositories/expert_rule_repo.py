"""
Repositório de leitura das regras de especialistas.
"""

from typing import Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.db.models.intel_readonly import IntelExpertRule


class ExpertRuleRepository:
    """Acesso READ-ONLY às regras extraídas das pesquisas com especialistas."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_rules(
        self, vertical: str, rule_type: Optional[str] = None
    ) -> list[IntelExpertRule]:
        """Regras ativas da vertical ou marcadas como 'all'."""
        filters = [
            IntelExpertRule.is_active == True,
            or_(IntelExpertRule.vertical == vertical, IntelExpertRule.vertical == "all"),
        ]
        if rule_type:
            filters.append(IntelExpertRule.rule_type == rule_type)

        result = await self.session.execute(
            select(IntelExpertRule)
            .where(and_(*filters))
            .order_by(IntelExpertRule.confidence_score.desc().nulls_last())
        )
        return list(result.scalars().all())

    async def count_active(self) -> int:
        result = await self.session.execute(
            select(func.count(IntelExpertRule.id)).where(IntelExpertRule.is_active == True)
        )
        return result.scalar() or 0
