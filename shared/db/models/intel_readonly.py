"""
Modelos SQLAlchemy READ-ONLY para as tabelas alimentadas pelos colaboradores
externos (ingestão de métricas e pesquisa com especialistas).
O serviço de inteligência apenas lê estas tabelas.
"""

from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from shared.db.session import Base


class IntelPerformanceSnapshot(Base):
    """
    Snapshot de performance por entidade e dia (opcionalmente por hora).
    READ-ONLY - escrito pelo pipeline de ingestão.
    """
    __tablename__ = "intel_performance_snapshots"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    ad_account_id: Mapped[str] = mapped_column(String(100), nullable=False)

    # campaign, adset, ad, geo, hourly, device, placement, age_gender
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_name: Mapped[Optional[str]] = mapped_column(String(255))

    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)
    snapshot_hour: Mapped[Optional[int]] = mapped_column(Integer)

    # Contadores
    spend: Mapped[float] = mapped_column(Float, default=0)
    impressions: Mapped[int] = mapped_column(Integer, default=0)
    clicks: Mapped[int] = mapped_column(Integer, default=0)
    reach: Mapped[int] = mapped_column(Integer, default=0)
    conversions: Mapped[int] = mapped_column(Integer, default=0)
    revenue: Mapped[float] = mapped_column(Float, default=0)

    # Métricas derivadas
    cpm: Mapped[Optional[float]] = mapped_column(Float)
    ctr: Mapped[Optional[float]] = mapped_column(Float)
    cpc: Mapped[Optional[float]] = mapped_column(Float)
    cpa: Mapped[Optional[float]] = mapped_column(Float)
    roas: Mapped[Optional[float]] = mapped_column(Float)
    frequency: Mapped[Optional[float]] = mapped_column(Float)

    # Contexto
    learning_phase: Mapped[Optional[str]] = mapped_column(String(50))
    effective_status: Mapped[Optional[str]] = mapped_column(String(50))
    days_since_creation: Mapped[Optional[int]] = mapped_column(Integer)
    hour_of_day: Mapped[Optional[int]] = mapped_column(Integer)
    day_of_week: Mapped[Optional[int]] = mapped_column(Integer)

    raw_insights: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "ad_account_id", "entity_type", "entity_id",
            "snapshot_date", "snapshot_hour",
            name="uq_intel_snapshot_entity_date_hour",
        ),
        Index("idx_intel_snapshot_user_date", "user_id", "snapshot_date"),
        Index("idx_intel_snapshot_type_date", "entity_type", "snapshot_date"),
        {"extend_existing": True},
    )


class IntelPixelHealth(Base):
    """
    Snapshot diário da saúde do pixel de uma conta.
    READ-ONLY - escrito pelo pipeline de ingestão.
    """
    __tablename__ = "intel_pixel_health"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    ad_account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    pixel_id: Mapped[str] = mapped_column(String(100), nullable=False)
    pixel_name: Mapped[Optional[str]] = mapped_column(String(255))

    event_match_quality: Mapped[Optional[float]] = mapped_column(Float)  # 0-10
    last_fired_time: Mapped[Optional[datetime]] = mapped_column(DateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    page_view_count: Mapped[int] = mapped_column(Integer, default=0)
    view_content_count: Mapped[int] = mapped_column(Integer, default=0)
    add_to_cart_count: Mapped[int] = mapped_column(Integer, default=0)
    initiate_checkout_count: Mapped[int] = mapped_column(Integer, default=0)
    purchase_count: Mapped[int] = mapped_column(Integer, default=0)
    lead_count: Mapped[int] = mapped_column(Integer, default=0)
    complete_registration_count: Mapped[int] = mapped_column(Integer, default=0)

    has_server_events: Mapped[bool] = mapped_column(Boolean, default=False)
    server_event_percentage: Mapped[Optional[float]] = mapped_column(Float)
    domain_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    domain_name: Mapped[Optional[str]] = mapped_column(String(255))

    snapshot_date: Mapped[date] = mapped_column(Date, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_intel_pixel_account_date", "user_id", "ad_account_id", "snapshot_date"),
        {"extend_existing": True},
    )


class IntelExpertRule(Base):
    """
    Regra heurística extraída de respostas de especialistas.
    READ-ONLY - escrita pelo processo de extração de pesquisas.
    """
    __tablename__ = "intel_expert_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    vertical: Mapped[str] = mapped_column(String(50), default="all")
    # kill, scale, budget_increase, benchmark, structure, targeting
    rule_type: Mapped[str] = mapped_column(String(30), nullable=False)
    campaign_structure: Mapped[Optional[str]] = mapped_column(String(50))
    conditions: Mapped[Optional[Any]] = mapped_column(JSON)
    thresholds: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    actions: Mapped[Optional[Any]] = mapped_column(JSON)
    confidence_score: Mapped[Optional[float]] = mapped_column(Float)
    expert_count: Mapped[int] = mapped_column(Integer, default=1)
    source: Mapped[Optional[str]] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_intel_expert_vertical_type", "vertical", "rule_type"),
        {"extend_existing": True},
    )
