"""
Schemas de entrada e saída da API de regras e ações.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from projects.intelligence.db.models import ActionStatus, ActionType, ConditionLogic, RuleType


class RuleCondition(BaseModel):
    """Condição {metric, operator, value}."""
    metric: str
    operator: str
    value: Any


class RuleAction(BaseModel):
    """Ação proposta quando a regra dispara."""
    action_type: str
    params: dict[str, Any] = Field(default_factory=dict)


class RuleCreateRequest(BaseModel):
    """Criação de regra de automação."""
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    ad_account_id: Optional[str] = None
    rule_type: RuleType = RuleType.CUSTOM
    entity_type: str = Field(default="adset", description="campaign, adset, ad ou all")
    conditions: list[RuleCondition] = Field(default_factory=list)
    condition_logic: ConditionLogic = ConditionLogic.AND
    actions: list[RuleAction] = Field(default_factory=list)
    is_active: bool = True
    requires_approval: bool = True
    cooldown_hours: int = Field(default=24, ge=0)
    evaluation_window_hours: int = Field(default=24, ge=1)


class RuleResponse(BaseModel):
    """Regra persistida."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    ad_account_id: Optional[str] = None
    name: str
    description: Optional[str] = None
    rule_type: RuleType
    entity_type: str
    conditions: list[dict[str, Any]]
    condition_logic: ConditionLogic
    actions: list[dict[str, Any]]
    is_active: bool
    requires_approval: bool
    cooldown_hours: int
    evaluation_window_hours: int
    times_triggered: int = 0
    last_triggered_at: Optional[datetime] = None


class ActionResponse(BaseModel):
    """Ação proposta."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    rule_id: Optional[int] = None
    ad_account_id: str
    entity_type: str
    entity_id: str
    entity_name: Optional[str] = None
    action_type: ActionType
    action_params: Optional[dict[str, Any]] = None
    status: ActionStatus
    trigger_reason: Optional[str] = None
    trigger_metrics: Optional[list[dict[str, Any]]] = None
    approved_at: Optional[datetime] = None
    executed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    description: Optional[str] = None


class RejectRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)
