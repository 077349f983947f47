"""
Router agregador da API v1 - motor de inteligência.
"""

from fastapi import APIRouter

from projects.intelligence.api.health import router as health_router
from projects.intelligence.api.router import router as intelligence_router

# Router principal
api_router = APIRouter()

# Health endpoints (sem autenticação)
api_router.include_router(
    health_router,
    prefix="/health",
    tags=["Health"]
)

api_router.include_router(
    intelligence_router,
    prefix="/intelligence",
    tags=["Inteligência"]
)
