"""Alembic environment for the enrollment schema.

DATABASE_URL comes from app.core.config, so migrations target the same
database as the running service.  Migrations run synchronously: the
asyncpg URL is rewritten to the psycopg2 driver.
"""

from __future__ import annotations

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context
from app.core.config import SETTINGS
from app.db.engine import Base

config = context.config

if SETTINGS.database_url:
    config.set_main_option(
        "sqlalchemy.url",
        SETTINGS.database_url.replace("postgresql+asyncpg", "postgresql+psycopg2"),
    )

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Registers courses, course_modules, module_items and enrollments on Base.metadata.
import app.db.tables  # noqa: E402, F401

# Column type changes (e.g. JSON -> JSONB) show up in autogenerate diffs.
_CONFIGURE_OPTS = {"target_metadata": Base.metadata, "compare_type": True}


def _migrate() -> None:
    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():
    # Emit SQL to stdout without a live database.
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_CONFIGURE_OPTS,
    )
    _migrate()
else:
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with connectable.connect() as connection:
        context.configure(connection=connection, **_CONFIGURE_OPTS)
        _migrate()
