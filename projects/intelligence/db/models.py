"""
Modelos SQLAlchemy READ-WRITE das tabelas do motor de inteligência.
Estas tabelas são escritas exclusivamente por este serviço; os snapshots
de performance que as alimentam ficam em shared.db.models (somente leitura).
"""

import enum
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from shared.db.session import Base


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


# ==================== ENUMS ====================

class PatternType(str, enum.Enum):
    """Tipos de padrões aprendidos."""
    TIME_PERFORMANCE = "time_performance"
    WINNER_PROFILE = "winner_profile"
    LOSER_PROFILE = "loser_profile"
    CLUSTER = "cluster"
    AUDIENCE_FATIGUE = "audience_fatigue"
    EXPERT_KILL_THRESHOLD = "expert_kill_threshold"
    EXPERT_SCALE_THRESHOLD = "expert_scale_threshold"
    EXPERT_BENCHMARK = "expert_benchmark"


class RuleType(str, enum.Enum):
    """Categorias de regras de automação."""
    LOSS_PREVENTION = "loss_prevention"
    SCALING = "scaling"
    LEARNING_PROTECTION = "learning_protection"
    FATIGUE_DETECTION = "fatigue_detection"
    SCHEDULE = "schedule"
    CUSTOM = "custom"


class ConditionLogic(str, enum.Enum):
    """Combinação das condições de uma regra."""
    AND = "AND"
    OR = "OR"


class ActionType(str, enum.Enum):
    """Ações que uma regra pode propor."""
    PAUSE = "pause"
    ACTIVATE = "activate"
    INCREASE_BUDGET = "increase_budget"
    DECREASE_BUDGET = "decrease_budget"
    ADJUST_BID = "adjust_bid"
    NOTIFY = "notify"
    CREATE_REPORT = "create_report"
    DUPLICATE = "duplicate"
    ARCHIVE = "archive"


class ActionStatus(str, enum.Enum):
    """Estados do ciclo de vida de uma ação."""
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTED = "executed"
    FAILED = "failed"
    EXPIRED = "expired"


class ScoreTrend(str, enum.Enum):
    """Tendência do score em relação ao dia anterior."""
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class NotificationType(str, enum.Enum):
    """Tipos de notificação produzidos pelo motor."""
    ACTION_PENDING = "action_pending"
    ACTION_EXECUTED = "action_executed"
    ACTION_FAILED = "action_failed"
    RULE_TRIGGERED = "rule_triggered"
    ALERT = "alert"
    INSIGHT = "insight"
    RECOMMENDATION = "recommendation"
    SCORE_CHANGE = "score_change"


class NotificationPriority(str, enum.Enum):
    """Prioridade da notificação."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FeedbackLabel(str, enum.Enum):
    """Rótulo do registro de feedback para calibração futura."""
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTED = "executed"


# ==================== MODELOS ====================

class IntelLearnedPattern(Base):
    """
    Padrão estatístico aprendido a partir dos snapshots.
    Chave lógica: (pattern_type, pattern_name, user_id, ad_account_id);
    user_id/ad_account_id nulos indicam padrão global.
    """
    __tablename__ = "intel_learned_patterns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer)
    ad_account_id: Mapped[Optional[str]] = mapped_column(String(100))
    pattern_type: Mapped[PatternType] = mapped_column(
        Enum(PatternType, name="intel_pattern_type", values_callable=_enum_values),
        nullable=False,
    )
    pattern_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    pattern_data: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    sample_size: Mapped[int] = mapped_column(Integer, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    valid_from: Mapped[Optional[datetime]] = mapped_column(DateTime)
    valid_until: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_validated: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index(
            "idx_intel_pattern_key",
            "pattern_type", "pattern_name", "user_id", "ad_account_id",
        ),
        Index("idx_intel_pattern_active", "is_active", "valid_until"),
        {"extend_existing": True},
    )


class IntelAutomationRule(Base):
    """Regra de automação definida pelo usuário."""
    __tablename__ = "intel_automation_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    ad_account_id: Mapped[Optional[str]] = mapped_column(String(100))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    rule_type: Mapped[RuleType] = mapped_column(
        Enum(RuleType, name="intel_rule_type", values_callable=_enum_values),
        nullable=False,
    )
    # campaign, adset, ad ou all
    entity_type: Mapped[str] = mapped_column(String(20), default="adset")
    # [{"metric": "cpa", "operator": ">", "value": 100}, ...]
    conditions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    condition_logic: Mapped[ConditionLogic] = mapped_column(
        Enum(ConditionLogic, name="intel_condition_logic", values_callable=_enum_values),
        default=ConditionLogic.AND,
    )
    # [{"action_type": "pause", "params": {}}, ...]
    actions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    requires_approval: Mapped[bool] = mapped_column(Boolean, default=True)
    cooldown_hours: Mapped[int] = mapped_column(Integer, default=24)
    evaluation_window_hours: Mapped[int] = mapped_column(Integer, default=24)
    times_triggered: Mapped[int] = mapped_column(Integer, default=0)
    last_triggered_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_intel_rule_user_active", "user_id", "is_active"),
        {"extend_existing": True},
    )


class IntelAutomationAction(Base):
    """
    Ação proposta por uma regra (ou criada manualmente).
    O serviço nunca executa a ação: o colaborador de execução consome as
    ações aprovadas e reporta executed/failed.
    """
    __tablename__ = "intel_automation_actions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    rule_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("intel_automation_rules.id", ondelete="SET NULL")
    )
    ad_account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_name: Mapped[Optional[str]] = mapped_column(String(255))
    action_type: Mapped[ActionType] = mapped_column(
        Enum(ActionType, name="intel_action_type", values_callable=_enum_values),
        nullable=False,
    )
    action_params: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    status: Mapped[ActionStatus] = mapped_column(
        Enum(ActionStatus, name="intel_action_status", values_callable=_enum_values),
        default=ActionStatus.PENDING_APPROVAL,
    )

    # Motivo
    trigger_reason: Mapped[Optional[str]] = mapped_column(Text)
    trigger_metrics: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSON)

    # Campos de modelo
    model_confidence: Mapped[Optional[float]] = mapped_column(Float)
    model_version: Mapped[Optional[str]] = mapped_column(String(50))
    features_used: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)

    # Aprovação / execução
    approved_by_user_id: Mapped[Optional[int]] = mapped_column(Integer)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    executed_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    execution_result: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    error_message: Mapped[Optional[str]] = mapped_column(Text)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        Index("idx_intel_action_cooldown", "rule_id", "entity_id", "created_at"),
        Index("idx_intel_action_user_status", "user_id", "status"),
        {"extend_existing": True},
    )


class IntelAccountScore(Base):
    """Score diário de saúde de uma conta de anúncios."""
    __tablename__ = "intel_account_scores"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    ad_account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    score_date: Mapped[date] = mapped_column(Date, nullable=False)

    overall_score: Mapped[int] = mapped_column(Integer, nullable=False)
    performance_score: Mapped[int] = mapped_column(Integer, default=0)
    efficiency_score: Mapped[int] = mapped_column(Integer, default=0)
    pixel_health_score: Mapped[int] = mapped_column(Integer, default=0)
    learning_score: Mapped[int] = mapped_column(Integer, default=0)
    consistency_score: Mapped[int] = mapped_column(Integer, default=0)

    score_trend: Mapped[ScoreTrend] = mapped_column(
        Enum(ScoreTrend, name="intel_score_trend", values_callable=_enum_values),
        default=ScoreTrend.STABLE,
    )
    trend_percentage: Mapped[float] = mapped_column(Float, default=0)
    score_breakdown: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    recommendations: Mapped[Optional[list[str]]] = mapped_column(JSON)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "ad_account_id", "score_date",
            name="uq_intel_account_score_day",
        ),
        {"extend_existing": True},
    )


class IntelNotification(Base):
    """Notificação estruturada consumida pelo colaborador de entrega."""
    __tablename__ = "intel_notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    notification_type: Mapped[NotificationType] = mapped_column(
        Enum(NotificationType, name="intel_notification_type", values_callable=_enum_values),
        nullable=False,
    )
    priority: Mapped[NotificationPriority] = mapped_column(
        Enum(NotificationPriority, name="intel_notification_priority", values_callable=_enum_values),
        default=NotificationPriority.MEDIUM,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[Optional[str]] = mapped_column(String(20))
    entity_id: Mapped[Optional[str]] = mapped_column(String(100))
    action_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("intel_automation_actions.id", ondelete="SET NULL")
    )
    action_buttons: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSON)
    # "metadata" é reservado pelo SQLAlchemy declarativo
    extra_data: Mapped[Optional[dict[str, Any]]] = mapped_column("metadata", JSON)
    is_read: Mapped[bool] = mapped_column(Boolean, default=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_intel_notification_user_read", "user_id", "is_read"),
        {"extend_existing": True},
    )


class IntelTrainingFeedback(Base):
    """
    Registro de feedback humano sobre ações propostas.
    Base para calibração futura da confiança das regras.
    """
    __tablename__ = "intel_training_feedback"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    data_type: Mapped[str] = mapped_column(String(50), default="action_feedback")
    action_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("intel_automation_actions.id", ondelete="SET NULL")
    )
    entity_type: Mapped[Optional[str]] = mapped_column(String(20))
    entity_id: Mapped[Optional[str]] = mapped_column(String(100))
    features: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    label: Mapped[FeedbackLabel] = mapped_column(
        Enum(FeedbackLabel, name="intel_feedback_label", values_callable=_enum_values),
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_intel_feedback_label", "data_type", "label"),
        {"extend_existing": True},
    )
