"""Alembic migrations for the podcore schema (episodes, podcasts)."""
import asyncio
import os
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel

load_dotenv(Path(__file__).resolve().parents[1] / ".env", override=False)

from podcore.utils.db_async import import_models, prepare_asyncpg_connection  # noqa: E402

import_models()

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _database_url() -> tuple[str, dict]:
    raw = os.getenv("DATABASE_URL")
    if not raw:
        raise RuntimeError("DATABASE_URL must be set to run podcore migrations")
    return prepare_asyncpg_connection(raw)


DB_URL, CONNECT_ARGS = _database_url()
config.set_main_option("sqlalchemy.url", DB_URL.replace("%", "%%"))


def _configure(**kwargs) -> None:
    # Autogenerate must notice enum/default drift on the episode state columns
    context.configure(
        target_metadata=SQLModel.metadata,
        compare_type=True,
        compare_server_default=True,
        **kwargs,
    )


def _migrate(connection=None) -> None:
    if connection is None:
        _configure(url=DB_URL, literal_binds=True)
    else:
        _configure(connection=connection)
    with context.begin_transaction():
        context.run_migrations()


async def _migrate_online() -> None:
    engine = create_async_engine(DB_URL, poolclass=pool.NullPool, connect_args=CONNECT_ARGS)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    _migrate()
else:
    asyncio.run(_migrate_online())
