"""Criar tabelas do motor de inteligência.

Revision ID: 001
Revises:
Create Date: 2026-10-17

Tabelas criadas:
- intel_learned_patterns: Padrões aprendidos (upsert por chave lógica)
- intel_automation_rules: Regras de automação dos usuários
- intel_automation_actions: Ações propostas e seu ciclo de vida
- intel_account_scores: Score diário de saúde das contas
- intel_notifications: Notificações para o colaborador de entrega
- intel_training_feedback: Feedback das decisões sobre ações

As tabelas de snapshots, pixel e regras de especialistas pertencem à
ingestão e não são criadas aqui.
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "001"
down_revision = None
branch_labels = None
depends_on = None


ENUMS = {
    "intel_pattern_type": (
        "time_performance", "winner_profile", "loser_profile", "cluster",
        "audience_fatigue", "expert_kill_threshold", "expert_scale_threshold",
        "expert_benchmark",
    ),
    "intel_rule_type": (
        "loss_prevention", "scaling", "learning_protection",
        "fatigue_detection", "schedule", "custom",
    ),
    "intel_condition_logic": ("AND", "OR"),
    "intel_action_type": (
        "pause", "activate", "increase_budget", "decrease_budget", "adjust_bid",
        "notify", "create_report", "duplicate", "archive",
    ),
    "intel_action_status": (
        "pending_approval", "approved", "rejected", "executed", "failed", "expired",
    ),
    "intel_score_trend": ("improving", "stable", "declining"),
    "intel_notification_type": (
        "action_pending", "action_executed", "action_failed", "rule_triggered",
        "alert", "insight", "recommendation", "score_change",
    ),
    "intel_notification_priority": ("low", "medium", "high", "critical"),
    "intel_feedback_label": ("approved", "rejected", "executed"),
}


def _enum(name: str) -> postgresql.ENUM:
    return postgresql.ENUM(*ENUMS[name], name=name, create_type=False)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)

    for name, values in ENUMS.items():
        postgresql.ENUM(*values, name=name).create(bind, checkfirst=True)

    if not inspector.has_table("intel_learned_patterns"):
        op.create_table(
            "intel_learned_patterns",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer()),
            sa.Column("ad_account_id", sa.String(100)),
            sa.Column("pattern_type", _enum("intel_pattern_type"), nullable=False),
            sa.Column("pattern_name", sa.String(255), nullable=False),
            sa.Column("description", sa.Text()),
            sa.Column("pattern_data", sa.JSON(), nullable=False),
            sa.Column("confidence_score", sa.Float(), nullable=False),
            sa.Column("sample_size", sa.Integer(), server_default="0"),
            sa.Column("is_active", sa.Boolean(), server_default="true"),
            sa.Column("valid_from", sa.DateTime()),
            sa.Column("valid_until", sa.DateTime()),
            sa.Column("last_validated", sa.DateTime()),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        )
        op.create_index(
            "idx_intel_pattern_key",
            "intel_learned_patterns",
            ["pattern_type", "pattern_name", "user_id", "ad_account_id"],
        )
        op.create_index(
            "idx_intel_pattern_active", "intel_learned_patterns", ["is_active", "valid_until"]
        )

    if not inspector.has_table("intel_automation_rules"):
        op.create_table(
            "intel_automation_rules",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("ad_account_id", sa.String(100)),
            sa.Column("name", sa.String(255), nullable=False),
            sa.Column("description", sa.Text()),
            sa.Column("rule_type", _enum("intel_rule_type"), nullable=False),
            sa.Column("entity_type", sa.String(20), server_default="adset"),
            sa.Column("conditions", sa.JSON(), nullable=False),
            sa.Column("condition_logic", _enum("intel_condition_logic"), server_default="AND"),
            sa.Column("actions", sa.JSON(), nullable=False),
            sa.Column("is_active", sa.Boolean(), server_default="true"),
            sa.Column("requires_approval", sa.Boolean(), server_default="true"),
            sa.Column("cooldown_hours", sa.Integer(), server_default="24"),
            sa.Column("evaluation_window_hours", sa.Integer(), server_default="24"),
            sa.Column("times_triggered", sa.Integer(), server_default="0"),
            sa.Column("last_triggered_at", sa.DateTime()),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        )
        op.create_index(
            "idx_intel_rule_user_active", "intel_automation_rules", ["user_id", "is_active"]
        )

    if not inspector.has_table("intel_automation_actions"):
        op.create_table(
            "intel_automation_actions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column(
                "rule_id",
                sa.Integer(),
                sa.ForeignKey("intel_automation_rules.id", ondelete="SET NULL"),
            ),
            sa.Column("ad_account_id", sa.String(100), nullable=False),
            sa.Column("entity_type", sa.String(20), nullable=False),
            sa.Column("entity_id", sa.String(100), nullable=False),
            sa.Column("entity_name", sa.String(255)),
            sa.Column("action_type", _enum("intel_action_type"), nullable=False),
            sa.Column("action_params", sa.JSON()),
            sa.Column(
                "status", _enum("intel_action_status"), server_default="pending_approval"
            ),
            sa.Column("trigger_reason", sa.Text()),
            sa.Column("trigger_metrics", sa.JSON()),
            sa.Column("model_confidence", sa.Float()),
            sa.Column("model_version", sa.String(50)),
            sa.Column("features_used", sa.JSON()),
            sa.Column("approved_by_user_id", sa.Integer()),
            sa.Column("approved_at", sa.DateTime()),
            sa.Column("executed_at", sa.DateTime()),
            sa.Column("execution_result", sa.JSON()),
            sa.Column("error_message", sa.Text()),
            sa.Column("expires_at", sa.DateTime()),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
        )
        op.create_index(
            "idx_intel_action_cooldown",
            "intel_automation_actions",
            ["rule_id", "entity_id", "created_at"],
        )
        op.create_index(
            "idx_intel_action_user_status", "intel_automation_actions", ["user_id", "status"]
        )

    if not inspector.has_table("intel_account_scores"):
        op.create_table(
            "intel_account_scores",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("ad_account_id", sa.String(100), nullable=False),
            sa.Column("score_date", sa.Date(), nullable=False),
            sa.Column("overall_score", sa.Integer(), nullable=False),
            sa.Column("performance_score", sa.Integer(), server_default="0"),
            sa.Column("efficiency_score", sa.Integer(), server_default="0"),
            sa.Column("pixel_health_score", sa.Integer(), server_default="0"),
            sa.Column("learning_score", sa.Integer(), server_default="0"),
            sa.Column("consistency_score", sa.Integer(), server_default="0"),
            sa.Column("score_trend", _enum("intel_score_trend"), server_default="stable"),
            sa.Column("trend_percentage", sa.Float(), server_default="0"),
            sa.Column("score_breakdown", sa.JSON()),
            sa.Column("recommendations", sa.JSON()),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
            sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
            sa.UniqueConstraint(
                "user_id", "ad_account_id", "score_date", name="uq_intel_account_score_day"
            ),
        )

    if not inspector.has_table("intel_notifications"):
        op.create_table(
            "intel_notifications",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("notification_type", _enum("intel_notification_type"), nullable=False),
            sa.Column(
                "priority", _enum("intel_notification_priority"), server_default="medium"
            ),
            sa.Column("title", sa.String(255), nullable=False),
            sa.Column("message", sa.Text(), nullable=False),
            sa.Column("entity_type", sa.String(20)),
            sa.Column("entity_id", sa.String(100)),
            sa.Column(
                "action_id",
                sa.Integer(),
                sa.ForeignKey("intel_automation_actions.id", ondelete="SET NULL"),
            ),
            sa.Column("action_buttons", sa.JSON()),
            sa.Column("metadata", sa.JSON()),
            sa.Column("is_read", sa.Boolean(), server_default="false"),
            sa.Column("expires_at", sa.DateTime()),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        )
        op.create_index(
            "idx_intel_notification_user_read", "intel_notifications", ["user_id", "is_read"]
        )

    if not inspector.has_table("intel_training_feedback"):
        op.create_table(
            "intel_training_feedback",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("data_type", sa.String(50), server_default="action_feedback"),
            sa.Column(
                "action_id",
                sa.Integer(),
                sa.ForeignKey("intel_automation_actions.id", ondelete="SET NULL"),
            ),
            sa.Column("entity_type", sa.String(20)),
            sa.Column("entity_id", sa.String(100)),
            sa.Column("features", sa.JSON(), nullable=False),
            sa.Column("label", _enum("intel_feedback_label"), nullable=False),
            sa.Column("created_at", sa.DateTime(), server_default=sa.func.now()),
        )
        op.create_index(
            "idx_intel_feedback_label", "intel_training_feedback", ["data_type", "label"]
        )


def downgrade() -> None:
    """Remover tabelas e tipos do motor de inteligência."""
    op.execute("DROP TABLE IF EXISTS intel_training_feedback CASCADE;")
    op.execute("DROP TABLE IF EXISTS intel_notifications CASCADE;")
    op.execute("DROP TABLE IF EXISTS intel_account_scores CASCADE;")
    op.execute("DROP TABLE IF EXISTS intel_automation_actions CASCADE;")
    op.execute("DROP TABLE IF EXISTS intel_automation_rules CASCADE;")
    op.execute("DROP TABLE IF EXISTS intel_learned_patterns CASCADE;")
    for name in ENUMS:
        op.execute(f"DROP TYPE IF EXISTS {name};")
