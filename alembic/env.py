"""Alembic environment for the pipeline schema.

All tables live in the default schema; the database URL comes from
application settings (the async driver is swapped for the sync one).
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from src.dealflow.config import get_settings
from src.dealflow.core.database import Base

# Import models so their tables register on Base.metadata
from src.dealflow.crm import models as _crm_models  # noqa: F401
from src.dealflow.integrations import models as _integration_models  # noqa: F401
from src.dealflow.jobs import models as _job_models  # noqa: F401

# Alembic Config object
config = context.config

# Interpret the config file for Python logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _sync_url() -> str:
    return get_settings().DATABASE_URL.replace("+asyncpg", "")


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=_sync_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = create_engine(_sync_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
