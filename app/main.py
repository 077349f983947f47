"""
Campaign Intelligence - aplicação FastAPI.

Superfície administrativa do motor: disparo manual de jobs, padrões,
regras, aprovação de ações e scores. Os jobs em si rodam no Celery
(app/celery.py).
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.router import api_router
from projects.intelligence.api.health import check_redis_connection
from projects.intelligence.config import intel_settings
from shared.config import settings
from shared.core.logging import get_logger, setup_logging
from shared.db.session import check_database_connection, engine
from shared.observability import setup_metrics

setup_logging(settings.log_level, service_name=settings.service_name)
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        "Iniciando Campaign Intelligence",
        version=settings.app_version,
        environment=settings.environment,
        patterns_enabled=intel_settings.intel_patterns_enabled,
        rules_enabled=intel_settings.intel_rules_enabled,
        scores_enabled=intel_settings.intel_scores_enabled,
    )

    # Sem banco a API sobe mesmo assim; o health check reporta a falha
    if not await check_database_connection():
        logger.error("Falha na conexão com o banco de dados")
    if not await check_redis_connection():
        logger.warning("Redis indisponível: disparo manual de jobs vai falhar")

    yield

    logger.info("Encerrando Campaign Intelligence")
    await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    description="""
    Motor de inteligência para campanhas de anúncios.

    * **Jobs**: disparo manual e estado dos jobs agendados
    * **Padrões**: aprendizado estatístico a partir dos snapshots de performance
    * **Regras**: modelos, criação e estatísticas de regras de automação
    * **Ações**: aprovação e rejeição das ações propostas pelas regras
    * **Scores**: score diário de saúde das contas
    """,
    version=settings.app_version,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    openapi_url="/openapi.json" if settings.debug else None,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_metrics(app, service_name=settings.service_name)

app.include_router(api_router, prefix="/api/v1")


@app.get("/", tags=["Root"])
async def root():
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "status": "running",
        "docs": "/docs" if settings.debug else "disabled",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
