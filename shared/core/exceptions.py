"""
Exceções customizadas do serviço de inteligência.
"""

from typing import Any, Optional


class IntelligenceException(Exception):
    """Exceção base para erros do serviço de inteligência."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None
    ):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class EntityNotFoundException(IntelligenceException):
    """Entidade não encontrada."""

    def __init__(self, entity_type: str, entity_id: Any):
        super().__init__(
            message=f"{entity_type} com ID {entity_id} não encontrado(a)",
            details={"entity_type": entity_type, "entity_id": entity_id}
        )


class ActionNotFoundException(EntityNotFoundException):
    """Ação de automação não encontrada para o usuário."""

    def __init__(self, action_id: int, user_id: Optional[int] = None):
        super().__init__(entity_type="Ação", entity_id=action_id)
        self.details["user_id"] = user_id


class InvalidActionTransitionException(IntelligenceException):
    """Transição de status não permitida pela máquina de estados de ações."""

    def __init__(self, action_id: Optional[int], from_status: str, to_status: str):
        super().__init__(
            message=f"Transição inválida para ação {action_id}: {from_status} -> {to_status}",
            details={
                "action_id": action_id,
                "from_status": from_status,
                "to_status": to_status,
            }
        )


class ActionExpiredException(InvalidActionTransitionException):
    """Ação pendente cujo prazo de aprovação já passou."""

    def __init__(self, action_id: Optional[int], to_status: str):
        super().__init__(action_id, "pending_approval", to_status)
        self.message = f"Ação {action_id} expirou antes de ser {to_status}"
        self.args = (self.message,)
        self.details["reason"] = "expired"


class ValidationException(IntelligenceException):
    """Erro de validação de dados."""

    def __init__(self, field: str, error: str):
        super().__init__(
            message=f"Erro de validação no campo '{field}': {error}",
            details={"field": field, "error": error}
        )


class RuleValidationException(ValidationException):
    """Regra de automação malformada."""


class CredentialException(IntelligenceException):
    """
    Credencial upstream inutilizável (token expirado, revogado ou sem permissão).

    Diferente de dados ausentes: deve interromper o processamento da conta,
    pois tentar de novo com a mesma credencial desperdiça o lote inteiro.
    """

    def __init__(self, ad_account_id: Optional[str], error: str):
        super().__init__(
            message=f"Credencial inválida para conta {ad_account_id}: {error}",
            details={"ad_account_id": ad_account_id, "error": error}
        )

