"""
Engines e sessões do SQLAlchemy.

- engine / async_session_maker: API e serviços (asyncpg)
- get_sync_database_url: URL psycopg usada pelo Alembic
- create_isolated_async_session_maker: tasks Celery, que rodam cada
  execução em um event loop novo e não podem compartilhar o pool global
"""

from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from shared.config import settings
from shared.core.logging import get_logger

logger = get_logger(__name__)


class Base(DeclarativeBase):
    """Base declarativa de todos os modelos."""


def get_async_database_url(url: str | None = None) -> str:
    """Converte a URL do PostgreSQL para o driver asyncpg."""
    url = url or settings.database_url
    if url.startswith("postgresql+"):
        url = "postgresql://" + url.split("://", 1)[1]
    return url.replace("postgresql://", "postgresql+asyncpg://", 1)


def get_sync_database_url(url: str | None = None) -> str:
    """Converte a URL do PostgreSQL para o driver psycopg (v3)."""
    url = url or settings.database_url
    if url.startswith("postgresql+"):
        url = "postgresql://" + url.split("://", 1)[1]
    return url.replace("postgresql://", "postgresql+psycopg://", 1)


engine = create_async_engine(
    get_async_database_url(),
    pool_size=settings.database_pool_size,
    max_overflow=settings.database_max_overflow,
    pool_recycle=settings.database_pool_recycle,
    pool_timeout=settings.database_pool_timeout,
    pool_pre_ping=True,
    echo=False,
)

async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency do FastAPI: sessão com commit/rollback automático."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def check_database_connection() -> bool:
    """Verifica se o banco responde."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Falha ao conectar no banco", error=str(e))
        return False


def create_isolated_async_session_maker() -> tuple[AsyncEngine, async_sessionmaker]:
    """
    Cria engine + session_maker isolados para uso dentro de um event loop
    próprio (tasks Celery). O chamador deve fazer dispose do engine no mesmo loop.
    """
    isolated_engine = create_async_engine(
        get_async_database_url(),
        pool_size=2,
        max_overflow=2,
        pool_pre_ping=True,
        echo=False,
    )
    isolated_session_maker = async_sessionmaker(
        isolated_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return isolated_engine, isolated_session_maker
