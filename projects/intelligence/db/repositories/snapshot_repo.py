"""
Repositório de leitura dos snapshots de performance e da saúde do pixel.
Acesso READ-ONLY às tabelas alimentadas pelo pipeline de ingestão.
"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy import and_, desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from shared.db.models.intel_readonly import IntelPerformanceSnapshot, IntelPixelHealth
from shared.core.logging import get_logger

logger = get_logger(__name__)


class SnapshotRepository:
    """
    Repositório para os snapshots de performance.
    Todas as operações são READ-ONLY.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ==================== SNAPSHOTS ====================

    async def get_snapshots(
        self,
        entity_type: Optional[str],
        since: date,
        user_id: Optional[int] = None,
        ad_account_id: Optional[str] = None,
        min_spend: Optional[float] = None,
        min_frequency: Optional[float] = None,
    ) -> list[IntelPerformanceSnapshot]:
        """
        Snapshots a partir de uma data, filtrados por tipo de entidade e escopo.
        Ordenados por entidade e data.
        """
        filters = [IntelPerformanceSnapshot.snapshot_date >= since]
        if entity_type:
            filters.append(IntelPerformanceSnapshot.entity_type == entity_type)
        if user_id is not None:
            filters.append(IntelPerformanceSnapshot.user_id == user_id)
        if ad_account_id is not None:
            filters.append(IntelPerformanceSnapshot.ad_account_id == ad_account_id)
        if min_spend is not None:
            filters.append(IntelPerformanceSnapshot.spend > min_spend)
        if min_frequency is not None:
            filters.append(IntelPerformanceSnapshot.frequency > min_frequency)

        result = await self.session.execute(
            select(IntelPerformanceSnapshot)
            .where(and_(*filters))
            .order_by(
                IntelPerformanceSnapshot.entity_id,
                IntelPerformanceSnapshot.snapshot_date,
                IntelPerformanceSnapshot.snapshot_hour,
            )
        )
        return list(result.scalars().all())

    async def get_recent_snapshots(
        self,
        user_id: int,
        created_since: datetime,
        entity_type: Optional[str] = None,
        ad_account_id: Optional[str] = None,
    ) -> list[IntelPerformanceSnapshot]:
        """
        Snapshots ingeridos desde created_since para o escopo de uma regra.
        Mais recentes primeiro (data, depois hora).
        """
        filters = [
            IntelPerformanceSnapshot.user_id == user_id,
            IntelPerformanceSnapshot.created_at >= created_since,
        ]
        if entity_type and entity_type != "all":
            filters.append(IntelPerformanceSnapshot.entity_type == entity_type)
        if ad_account_id:
            filters.append(IntelPerformanceSnapshot.ad_account_id == ad_account_id)

        result = await self.session.execute(
            select(IntelPerformanceSnapshot)
            .where(and_(*filters))
            .order_by(
                desc(IntelPerformanceSnapshot.snapshot_date),
                IntelPerformanceSnapshot.snapshot_hour.desc().nulls_last(),
            )
        )
        return list(result.scalars().all())

    async def get_account_pairs(self) -> list[tuple[int, str]]:
        """Pares (user_id, ad_account_id) presentes nos snapshots."""
        result = await self.session.execute(
            select(
                IntelPerformanceSnapshot.user_id,
                IntelPerformanceSnapshot.ad_account_id,
            )
            .distinct()
            .order_by(IntelPerformanceSnapshot.user_id, IntelPerformanceSnapshot.ad_account_id)
        )
        return [(row.user_id, row.ad_account_id) for row in result.all()]

    async def count_snapshots(self, user_id: Optional[int] = None) -> int:
        """Total de snapshots (opcionalmente de um usuário)."""
        query = select(func.count(IntelPerformanceSnapshot.id))
        if user_id is not None:
            query = query.where(IntelPerformanceSnapshot.user_id == user_id)
        result = await self.session.execute(query)
        return result.scalar() or 0

    # ==================== PIXEL ====================

    async def get_latest_pixel_health(
        self, user_id: int, ad_account_id: str
    ) -> Optional[IntelPixelHealth]:
        """Snapshot de saúde do pixel mais recente da conta."""
        result = await self.session.execute(
            select(IntelPixelHealth)
            .where(
                and_(
                    IntelPixelHealth.user_id == user_id,
                    IntelPixelHealth.ad_account_id == ad_account_id,
                )
            )
            .order_by(desc(IntelPixelHealth.snapshot_date))
            .limit(1)
        )
        return result.scalar_one_or_none()
