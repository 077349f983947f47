"""
Endpoints de health check.
Não requerem autenticação.
"""

from datetime import datetime

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from shared.config import settings
from shared.db.session import check_database_connection
from shared.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


class HealthResponse(BaseModel):
    """Resposta do health check."""
    status: str
    timestamp: datetime
    version: str
    db: str
    redis: str


async def check_redis_connection() -> bool:
    """Verifica conexão com o Redis do broker Celery."""
    try:
        import redis.asyncio as redis
        client = redis.from_url(settings.redis_url)
        await client.ping()
        await client.aclose()
        return True
    except Exception as e:
        logger.error("Erro ao conectar ao Redis", error=str(e))
        return False


@router.get("", response_model=HealthResponse)
async def health_check():
    """
    Health check simples.
    Banco e Redis são necessários para os jobs agendados.
    """
    db_ok = await check_database_connection()
    redis_ok = await check_redis_connection()
    response = HealthResponse(
        status="healthy" if db_ok and redis_ok else "unhealthy",
        timestamp=datetime.utcnow(),
        version=settings.app_version,
        db="ok" if db_ok else "fail",
        redis="ok" if redis_ok else "fail",
    )
    if not db_ok or not redis_ok:
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=response.model_dump(mode="json"),
        )
    return response


@router.get("/live")
async def liveness_check():
    """Liveness check para Kubernetes/Docker."""
    return {"status": "alive", "timestamp": datetime.utcnow().isoformat()}
