"""
Avaliação das regras de automação.

O motor nunca altera campanhas: uma regra satisfeita apenas cria registros
de IntelAutomationAction (e notificações). A execução fica a cargo do
colaborador que consome as ações aprovadas.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Optional

from projects.intelligence.algorithms.conditions import (
    SUPPORTED_OPERATORS,
    build_trigger_reason,
    evaluate_conditions,
    extract_metrics,
)
from projects.intelligence.config import intel_settings
from projects.intelligence.db.models import (
    ActionType,
    ConditionLogic,
    IntelAutomationRule,
    RuleType,
)
from projects.intelligence.db.repositories.intel_repo import IntelRepository
from projects.intelligence.db.repositories.snapshot_repo import SnapshotRepository
from projects.intelligence.services.action_lifecycle import ActionLifecycleManager
from projects.intelligence.services.notification_service import NotificationService
from shared.core.exceptions import CredentialException, RuleValidationException
from shared.core.logging import get_logger
from shared.observability.metrics import intel_job_item_errors_total

logger = get_logger(__name__)

ENTITY_TYPES = ("campaign", "adset", "ad", "all")


def action_type_of(action_config: dict[str, Any]) -> Optional[str]:
    """Tipo da ação configurada; aceita as chaves action_type e action."""
    return action_config.get("action_type") or action_config.get("action")


def validate_rule_definition(rule_data: dict[str, Any]) -> None:
    """
    Valida condições e ações de uma regra.

    Raises:
        RuleValidationException: definição inválida
    """
    conditions = rule_data.get("conditions") or []
    actions = rule_data.get("actions") or []

    if not conditions:
        raise RuleValidationException("conditions", "Pelo menos uma condição é obrigatória")
    if not actions:
        raise RuleValidationException("actions", "Pelo menos uma ação é obrigatória")

    for condition in conditions:
        if (
            not isinstance(condition, dict)
            or not condition.get("metric")
            or not condition.get("operator")
            or "value" not in condition
        ):
            raise RuleValidationException(
                "conditions", "Formato inválido. Obrigatório: metric, operator, value"
            )
        if condition["operator"] not in SUPPORTED_OPERATORS:
            raise RuleValidationException(
                "conditions", f"Operador desconhecido: {condition['operator']}"
            )
        if condition["operator"] == "between":
            value = condition["value"]
            if not isinstance(value, (list, tuple)) or len(value) != 2:
                raise RuleValidationException(
                    "conditions", "between exige value no formato [mínimo, máximo]"
                )

    valid_action_types = {a.value for a in ActionType}
    for action in actions:
        if not isinstance(action, dict) or action_type_of(action) not in valid_action_types:
            raise RuleValidationException(
                "actions", f"Tipo de ação desconhecido: {action!r}"
            )

    entity_type = rule_data.get("entity_type", "adset")
    if entity_type not in ENTITY_TYPES:
        raise RuleValidationException("entity_type", f"Tipo de entidade inválido: {entity_type}")


def latest_by_entity(snapshots: list[Any]) -> dict[tuple[str, str], Any]:
    """
    Snapshot mais recente de cada (entity_type, entity_id).
    Espera a lista ordenada por data e hora decrescentes.
    """
    latest: dict[tuple[str, str], Any] = {}
    for snapshot in snapshots:
        key = (snapshot.entity_type, snapshot.entity_id)
        if key not in latest:
            latest[key] = snapshot
    return latest


class RuleEvaluationService:
    """Avalia regras ativas contra os snapshots mais recentes de cada entidade."""

    def __init__(
        self,
        session=None,
        snapshot_repo=None,
        intel_repo=None,
        lifecycle=None,
        notifications=None,
    ):
        self.snapshot_repo = snapshot_repo or SnapshotRepository(session)
        self.intel_repo = intel_repo or IntelRepository(session)
        self.notifications = notifications or NotificationService(self.intel_repo)
        self.lifecycle = lifecycle or ActionLifecycleManager(
            intel_repo=self.intel_repo, notifications=self.notifications
        )
        self.batch_size = intel_settings.intel_batch_size
        self.batch_pause = intel_settings.intel_batch_pause_seconds

    # ==================== AVALIAÇÃO ====================

    async def evaluate_all_rules(self) -> dict[str, int]:
        """
        Avalia as regras ativas de todos os usuários, em lotes.

        Cada regra roda em um SAVEPOINT e é confirmada ao final: erros por
        usuário ou por regra são registrados, contabilizados e desfeitos
        sem afetar as demais regras do lote.
        """
        tallies = {
            "users": 0,
            "rules_evaluated": 0,
            "entities_evaluated": 0,
            "actions_created": 0,
            "notifications_created": 0,
            "skipped_cooldown": 0,
            "errors": 0,
            "credential_errors": 0,
        }

        user_ids = await self.intel_repo.get_users_with_active_rules()
        logger.info("Iniciando avaliação de regras", users=len(user_ids))

        for start in range(0, len(user_ids), self.batch_size):
            if start > 0 and self.batch_pause:
                await asyncio.sleep(self.batch_pause)

            for user_id in user_ids[start:start + self.batch_size]:
                try:
                    async with self.intel_repo.savepoint():
                        rules = await self.intel_repo.get_active_rules(user_id)
                except Exception as e:
                    logger.error("Erro ao carregar regras do usuário", user_id=user_id, error=str(e))
                    intel_job_item_errors_total.labels(job="rules", kind="user").inc()
                    tallies["errors"] += 1
                    continue

                tallies["users"] += 1
                for rule in rules:
                    # Após o rollback do SAVEPOINT a regra com falha fica expirada
                    rule_id = rule.id
                    try:
                        async with self.intel_repo.savepoint():
                            result = await self.evaluate_rule(rule)
                        await self.intel_repo.commit()
                    except CredentialException as e:
                        logger.warning(
                            "Credencial indisponível para a regra",
                            rule_id=rule_id,
                            user_id=user_id,
                            error=str(e),
                        )
                        tallies["credential_errors"] += 1
                        continue
                    except Exception as e:
                        logger.error(
                            "Erro ao avaliar regra",
                            rule_id=rule_id,
                            user_id=user_id,
                            error=str(e),
                        )
                        intel_job_item_errors_total.labels(job="rules", kind="rule").inc()
                        tallies["errors"] += 1
                        continue

                    tallies["rules_evaluated"] += 1
                    for key in (
                        "entities_evaluated",
                        "actions_created",
                        "notifications_created",
                        "skipped_cooldown",
                        "errors",
                    ):
                        tallies[key] += result[key]

        logger.info("Avaliação de regras concluída", **tallies)
        return tallies

    async def evaluate_rule(
        self, rule: IntelAutomationRule, now: Optional[datetime] = None
    ) -> dict[str, int]:
        """
        Avalia uma regra contra o snapshot mais recente de cada entidade
        no escopo e na janela de avaliação da regra.
        """
        now = now or datetime.utcnow()
        result = {
            "entities_evaluated": 0,
            "actions_created": 0,
            "notifications_created": 0,
            "skipped_cooldown": 0,
            "errors": 0,
        }

        window_hours = rule.evaluation_window_hours or 24
        snapshots = await self.snapshot_repo.get_recent_snapshots(
            user_id=rule.user_id,
            created_since=now - timedelta(hours=window_hours),
            entity_type=rule.entity_type,
            ad_account_id=rule.ad_account_id,
        )

        for key, snapshot in latest_by_entity(snapshots).items():
            result["entities_evaluated"] += 1
            try:
                async with self.intel_repo.savepoint():
                    created, notified, on_cooldown = await self._fire_if_matches(rule, snapshot, now)
            except CredentialException:
                raise
            except Exception as e:
                logger.error(
                    "Erro ao avaliar entidade",
                    rule_id=rule.id,
                    entity_type=key[0],
                    entity_id=key[1],
                    error=str(e),
                )
                intel_job_item_errors_total.labels(job="rules", kind="entity").inc()
                result["errors"] += 1
                continue

            result["actions_created"] += created
            result["notifications_created"] += notified
            result["skipped_cooldown"] += int(on_cooldown)

        if result["actions_created"]:
            rule.times_triggered = (rule.times_triggered or 0) + result["actions_created"]
            rule.last_triggered_at = now
            await self.intel_repo.flush()

        logger.debug("Regra avaliada", rule_id=rule.id, **result)
        return result

    async def _fire_if_matches(
        self, rule: IntelAutomationRule, snapshot: Any, now: datetime
    ) -> tuple[int, int, bool]:
        """
        Retorna (ações criadas, notificações de regra, bloqueada por cooldown).

        O cooldown é consultado antes de cada ação de plataforma, então uma
        regra com várias ações cria no máximo uma por entidade na janela.
        """
        metrics = extract_metrics(snapshot)
        evaluation = evaluate_conditions(rule.conditions or [], metrics, rule.condition_logic)
        if not evaluation.passes:
            return 0, 0, False

        reason = build_trigger_reason(rule.name, evaluation.triggered_conditions)
        notify_actions = [a for a in rule.actions if action_type_of(a) == ActionType.NOTIFY.value]
        platform_actions = [a for a in rule.actions if action_type_of(a) != ActionType.NOTIFY.value]

        notified = 0
        for _ in notify_actions:
            await self.notifications.rule_triggered(rule, snapshot, reason, metrics)
            notified += 1

        created = 0
        on_cooldown = False
        for action_config in platform_actions:
            if await self.lifecycle.is_on_cooldown(
                rule.id, snapshot.entity_id, rule.cooldown_hours, now=now
            ):
                logger.debug(
                    "Regra em cooldown",
                    rule_id=rule.id,
                    entity_id=snapshot.entity_id,
                    action_type=action_type_of(action_config),
                )
                on_cooldown = True
                continue

            await self.lifecycle.create_action(
                user_id=rule.user_id,
                rule_id=rule.id,
                ad_account_id=snapshot.ad_account_id,
                entity_type=snapshot.entity_type,
                entity_id=snapshot.entity_id,
                entity_name=getattr(snapshot, "entity_name", None),
                action_type=ActionType(action_type_of(action_config)),
                action_params=action_config.get("params") or {},
                requires_approval=bool(rule.requires_approval),
                trigger_reason=reason,
                trigger_metrics=evaluation.triggered_conditions,
                now=now,
            )
            created += 1
        return created, notified, on_cooldown

    # ==================== GESTÃO DE REGRAS ====================

    async def create_rule(self, user_id: int, rule_data: dict[str, Any]) -> IntelAutomationRule:
        """Valida e persiste uma nova regra do usuário."""
        validate_rule_definition(rule_data)
        now = datetime.utcnow()
        rule = IntelAutomationRule(
            user_id=user_id,
            ad_account_id=rule_data.get("ad_account_id"),
            name=rule_data["name"],
            description=rule_data.get("description"),
            rule_type=RuleType(rule_data.get("rule_type", RuleType.CUSTOM.value)),
            entity_type=rule_data.get("entity_type", "adset"),
            conditions=list(rule_data["conditions"]),
            condition_logic=ConditionLogic(rule_data.get("condition_logic", ConditionLogic.AND.value)),
            actions=[
                {"action_type": action_type_of(a), "params": a.get("params") or {}}
                for a in rule_data["actions"]
            ],
            is_active=rule_data.get("is_active", True),
            requires_approval=rule_data.get("requires_approval", True),
            cooldown_hours=rule_data.get("cooldown_hours", 24),
            evaluation_window_hours=rule_data.get("evaluation_window_hours", 24),
            times_triggered=0,
            created_at=now,
            updated_at=now,
        )
        await self.intel_repo.add(rule)
        logger.info("Regra criada", rule_id=rule.id, user_id=user_id, rule_type=rule.rule_type.value)
        return rule

    @staticmethod
    def get_default_templates() -> list[dict[str, Any]]:
        """Modelos de regra prontos para o usuário adaptar."""
        return [
            {
                "name": "Stop Loss - High CPA",
                "description": "Pausa conjuntos com gasto acima de 50 e CPA acima da meta",
                "rule_type": RuleType.LOSS_PREVENTION.value,
                "entity_type": "adset",
                "conditions": [
                    {"metric": "spend", "operator": ">=", "value": 50},
                    {"metric": "cpa", "operator": ">", "value": 100},
                ],
                "condition_logic": ConditionLogic.AND.value,
                "actions": [
                    {"action_type": ActionType.PAUSE.value, "params": {}},
                    {"action_type": ActionType.NOTIFY.value, "params": {}},
                ],
                "requires_approval": True,
                "cooldown_hours": 24,
                "evaluation_window_hours": 24,
            },
            {
                "name": "Scale Winners - High ROAS",
                "description": "Aumenta o orçamento de conjuntos com ROAS acima de 200%",
                "rule_type": RuleType.SCALING.value,
                "entity_type": "adset",
                "conditions": [
                    {"metric": "roas", "operator": ">", "value": 200},
                    {"metric": "spend", "operator": ">=", "value": 100},
                ],
                "condition_logic": ConditionLogic.AND.value,
                "actions": [
                    {"action_type": ActionType.INCREASE_BUDGET.value, "params": {"percentage": 20}},
                ],
                "requires_approval": True,
                "cooldown_hours": 48,
                "evaluation_window_hours": 72,
            },
            {
                "name": "Learning Phase Alert",
                "description": "Alerta quando o conjunto entra em aprendizado limitado",
                "rule_type": RuleType.LEARNING_PROTECTION.value,
                "entity_type": "adset",
                "conditions": [
                    {"metric": "learning_phase", "operator": "==", "value": "LEARNING_LIMITED"},
                ],
                "condition_logic": ConditionLogic.AND.value,
                "actions": [{"action_type": ActionType.NOTIFY.value, "params": {}}],
                "requires_approval": False,
                "cooldown_hours": 24,
                "evaluation_window_hours": 1,
            },
            {
                "name": "Creative Fatigue Detection",
                "description": "Alerta quando a frequência está alta e o CTR caindo",
                "rule_type": RuleType.FATIGUE_DETECTION.value,
                "entity_type": "ad",
                "conditions": [
                    {"metric": "frequency", "operator": ">", "value": 3},
                    {"metric": "ctr", "operator": "<", "value": 1},
                ],
                "condition_logic": ConditionLogic.AND.value,
                "actions": [{"action_type": ActionType.NOTIFY.value, "params": {}}],
                "requires_approval": False,
                "cooldown_hours": 48,
                "evaluation_window_hours": 168,
            },
            {
                "name": "Zero Conversion Alert",
                "description": "Alerta de gasto alto sem nenhuma conversão",
                "rule_type": RuleType.LOSS_PREVENTION.value,
                "entity_type": "adset",
                "conditions": [
                    {"metric": "spend", "operator": ">=", "value": 100},
                    {"metric": "conversions", "operator": "==", "value": 0},
                ],
                "condition_logic": ConditionLogic.AND.value,
                "actions": [
                    {"action_type": ActionType.PAUSE.value, "params": {}},
                    {"action_type": ActionType.NOTIFY.value, "params": {}},
                ],
                "requires_approval": True,
                "cooldown_hours": 24,
                "evaluation_window_hours": 24,
            },
        ]

    async def get_rule_stats(self, user_id: int) -> dict[str, Any]:
        rules = await self.intel_repo.get_rules(user_id)
        by_type: dict[str, int] = {}
        for rule in rules:
            rule_type = RuleType(rule.rule_type).value
            by_type[rule_type] = by_type.get(rule_type, 0) + 1
        return {
            "total_rules": len(rules),
            "active_rules": sum(1 for r in rules if r.is_active),
            "by_type": by_type,
            "total_triggers": sum(r.times_triggered or 0 for r in rules),
        }
