"""
Modelos de banco de dados compartilhados.

- intel_readonly: tabelas dos colaboradores externos (snapshots de
  performance, saúde do pixel e regras de especialistas), somente leitura
"""

from shared.db.models.intel_readonly import (
    IntelPerformanceSnapshot,
    IntelPixelHealth,
    IntelExpertRule,
)

__all__ = [
    "IntelPerformanceSnapshot",
    "IntelPixelHealth",
    "IntelExpertRule",
]
