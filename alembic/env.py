"""Alembic environment for the sync cache schema.

DATABASE_URL comes from Settings; the async driver suffix is stripped so
migrations run on a plain synchronous engine:
  sqlite+aiosqlite:///./data/orgsync-cache.db  ->  sqlite:///./data/orgsync-cache.db
  postgresql+asyncpg://...                      ->  postgresql://...
"""

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from src.orgsync.cache import models  # noqa: F401
from src.orgsync.config import get_settings
from src.orgsync.core.database import CacheBase

# Alembic Config object
config = context.config

# Interpret the config file for Python logging
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = CacheBase.metadata


def _sync_url() -> str:
    url = get_settings().DATABASE_URL
    return url.replace("+aiosqlite", "").replace("+asyncpg", "")


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode."""
    context.configure(
        url=_sync_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=True,
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode."""
    connectable = create_engine(_sync_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
