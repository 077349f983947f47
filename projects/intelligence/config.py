"""
Configurações do módulo de inteligência.
Limiares de aprendizado, lotes dos jobs e faixas de nota das contas.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class IntelligenceSettings(BaseSettings):
    """Configurações do motor de padrões, regras e score de contas."""

    # Jobs
    intel_rules_enabled: bool = Field(
        default=True,
        description="Habilita a avaliação horária de regras de automação"
    )
    intel_scores_enabled: bool = Field(
        default=True,
        description="Habilita o cálculo diário do score das contas"
    )
    intel_patterns_enabled: bool = Field(
        default=True,
        description="Habilita o aprendizado diário de padrões"
    )
    intel_batch_size: int = Field(
        default=25,
        description="Quantidade de contas/usuários processados por lote"
    )
    intel_batch_pause_seconds: float = Field(
        default=1.0,
        description="Pausa entre lotes, em segundos"
    )

    # Aprendizado de padrões
    intel_learning_entity_type: str = Field(
        default="adset",
        description="Tipo de entidade lido pelos passes de aprendizado"
    )
    intel_pattern_validity_days: int = Field(
        default=7,
        description="Validade de um padrão aprendido, renovada a cada execução"
    )
    intel_expert_verticals: list[str] = Field(
        default=[
            "home_insurance",
            "auto_insurance",
            "medicare",
            "aca",
            "final_expense",
            "solar",
            "roofing",
        ],
        description="Verticais com regras de especialistas a semear"
    )
    intel_expert_cache_ttl_seconds: int = Field(
        default=300,
        description="TTL do cache em memória das regras de especialistas"
    )
    intel_kmeans_k: int = Field(default=4, description="Número de clusters")
    intel_kmeans_max_iterations: int = Field(default=100, description="Iterações máximas do k-means")
    intel_kmeans_seed: Optional[int] = Field(
        default=None,
        description="Semente da inicialização dos centroides (None = não reprodutível)"
    )

    # Ações
    intel_action_expiry_hours: int = Field(
        default=24,
        description="Prazo para aprovação de ações pendentes"
    )

    # Score de contas
    intel_recommendation_threshold: int = Field(
        default=70,
        description="Componentes abaixo deste valor geram recomendação"
    )
    intel_score_change_threshold: int = Field(
        default=10,
        description="Variação diária do score que gera notificação"
    )
    intel_grade_cutoffs: dict[str, int] = Field(
        default={"A": 90, "B": 80, "C": 70, "D": 60},
        description="Nota mínima de cada letra; abaixo da menor faixa a letra é F"
    )
    intel_status_labels: dict[str, str] = Field(
        default={
            "A": "Excelente",
            "B": "Bom",
            "C": "Regular",
            "D": "Precisa Melhorar",
            "F": "Crítico",
        },
        description="Rótulo exibido para cada letra"
    )

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


@lru_cache()
def get_intelligence_settings() -> IntelligenceSettings:
    """
    Retorna instância cacheada das configurações de inteligência.
    Use esta função para obter as configurações em qualquer lugar do módulo.
    """
    return IntelligenceSettings()


# Instância global para imports diretos
intel_settings = get_intelligence_settings()
