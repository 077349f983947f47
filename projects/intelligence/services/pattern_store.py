"""
Armazenamento dos padrões aprendidos.

Upsert pela chave lógica (pattern_type, pattern_name, user_id, ad_account_id):
reexecutar um aprendizado atualiza a linha existente e nunca cria duplicata.
"""

from datetime import datetime, timedelta
from typing import Any, Optional

from pydantic import BaseModel

from projects.intelligence.config import intel_settings
from projects.intelligence.db.models import IntelLearnedPattern, PatternType
from projects.intelligence.schemas.patterns import parse_pattern_payload
from shared.core.logging import get_logger
from shared.observability.metrics import intel_patterns_stored_total

logger = get_logger(__name__)


class PatternStore:
    """Coleção chaveada de padrões com confiança, amostra e validade."""

    def __init__(self, intel_repo, validity_days: Optional[int] = None):
        self.intel_repo = intel_repo
        self.validity_days = validity_days or intel_settings.intel_pattern_validity_days

    async def store_pattern(
        self,
        pattern_type: PatternType,
        pattern_name: str,
        payload: BaseModel,
        confidence: float,
        sample_size: int,
        user_id: Optional[int] = None,
        ad_account_id: Optional[str] = None,
        description: Optional[str] = None,
    ) -> IntelLearnedPattern:
        """Cria ou atualiza o padrão identificado pela chave lógica."""
        now = datetime.utcnow()
        valid_until = now + timedelta(days=self.validity_days)
        pattern_data = payload.model_dump(mode="json")
        confidence = max(0.0, min(1.0, float(confidence)))

        existing = await self.intel_repo.get_pattern_by_key(
            pattern_type, pattern_name, user_id, ad_account_id
        )

        if existing is not None:
            existing.pattern_data = pattern_data
            existing.confidence_score = confidence
            existing.sample_size = sample_size
            existing.is_active = True
            existing.valid_until = valid_until
            existing.last_validated = now
            if description:
                existing.description = description
            await self.intel_repo.flush()
            operation = "updated"
            pattern = existing
        else:
            pattern = await self.intel_repo.add(
                IntelLearnedPattern(
                    pattern_type=pattern_type,
                    pattern_name=pattern_name,
                    description=description,
                    user_id=user_id,
                    ad_account_id=ad_account_id,
                    pattern_data=pattern_data,
                    confidence_score=confidence,
                    sample_size=sample_size,
                    is_active=True,
                    valid_from=now,
                    valid_until=valid_until,
                    last_validated=now,
                    created_at=now,
                )
            )
            operation = "created"

        intel_patterns_stored_total.labels(
            pattern_type=pattern_type.value, operation=operation
        ).inc()
        logger.info(
            "Padrão armazenado",
            pattern_type=pattern_type.value,
            pattern_name=pattern_name,
            operation=operation,
            confidence=round(confidence, 4),
            sample_size=sample_size,
        )
        return pattern

    async def get_active_patterns(
        self,
        user_id: Optional[int] = None,
        ad_account_id: Optional[str] = None,
        pattern_type: Optional[PatternType] = None,
    ) -> list[IntelLearnedPattern]:
        return await self.intel_repo.get_active_patterns(
            datetime.utcnow(),
            user_id=user_id,
            ad_account_id=ad_account_id,
            pattern_type=pattern_type,
        )

    async def deactivate_stale_patterns(self) -> int:
        count = await self.intel_repo.deactivate_stale_patterns(datetime.utcnow())
        logger.info("Padrões expirados desativados", count=count)
        return count

    @staticmethod
    def payload_of(pattern: IntelLearnedPattern):
        return parse_pattern_payload(pattern.pattern_type, pattern.pattern_data)

    def predict(self, pattern: IntelLearnedPattern, inputs: dict[str, Any]) -> dict[str, Any]:
        """Aplica o padrão a novos dados usando a variante do seu tipo."""
        payload = self.payload_of(pattern)
        return payload.predict(inputs, pattern.confidence_score)
