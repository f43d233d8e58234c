"""Alembic environment for the identity schema (async psycopg engine)."""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import pool
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import async_engine_from_config

from app import models  # noqa: F401  registers tables on Base.metadata
from app.core.settings import settings
from app.db.base import Base
from app.db.session import normalize_database_url

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

config.set_main_option("sqlalchemy.url", normalize_database_url(settings.database_url))

CONFIGURE_OPTS = {"target_metadata": Base.metadata, "compare_type": True}


def _migrate(**options) -> None:
    context.configure(**CONFIGURE_OPTS, **options)
    with context.begin_transaction():
        context.run_migrations()


def _migrate_connection(connection: Connection) -> None:
    _migrate(connection=connection)


async def _migrate_online() -> None:
    engine = async_engine_from_config(
        config.get_section(config.config_ini_section) or {},
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    async with engine.connect() as connection:
        await connection.run_sync(_migrate_connection)
    await engine.dispose()


if context.is_offline_mode():
    _migrate(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
else:
    asyncio.run(_migrate_online())
