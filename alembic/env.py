"""
Ambiente do Alembic. Usa a DATABASE_URL das configurações da aplicação,
com o driver síncrono (psycopg).
"""

from logging.config import fileConfig

from sqlalchemy import create_engine
from sqlalchemy.pool import NullPool
from alembic import context

from shared.config import settings
from shared.db.session import Base, get_sync_database_url

# Registrar modelos no metadata para autogenerate
import projects.intelligence.db.models  # noqa: F401
import shared.db.models  # noqa: F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

config.set_main_option("sqlalchemy.url", get_sync_database_url(settings.database_url))

target_metadata = Base.metadata

# Tabelas alimentadas pela ingestão não são gerenciadas por estas migrações
UPSTREAM_TABLES = {"intel_performance_snapshots", "intel_pixel_health", "intel_expert_rules"}


def include_object(obj, name, type_, reflected, compare_to):
    if type_ == "table" and name in UPSTREAM_TABLES:
        return False
    return True


def run_migrations_offline() -> None:
    """Migrações em modo 'offline' (gera SQL)."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        include_object=include_object,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Migrações em modo 'online' com engine síncrono."""
    connectable = create_engine(config.get_main_option("sqlalchemy.url"), poolclass=NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            include_object=include_object,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
