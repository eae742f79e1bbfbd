"""Alembic environment for the ALERIS.ops studio schema."""

import os
from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool

from src.database.connection import get_database_url
from src.models.orm_models import Base

config = context.config
if config.config_file_name is not None and config.attributes.get("connection") is None:
    # Con conexión inyectada el logging ya lo configuró la aplicación
    fileConfig(config.config_file_name, disable_existing_loggers=False)

target_metadata = Base.metadata


def _url() -> str:
    # DATABASE_URL manda sobre el valor de alembic.ini
    if os.getenv("DATABASE_URL"):
        return get_database_url()
    return config.get_main_option("sqlalchemy.url")


def _configure(**kwargs) -> None:
    context.configure(
        target_metadata=target_metadata,
        compare_type=True,
        **kwargs,
    )


if context.is_offline_mode():
    _configure(url=_url(), literal_binds=True, dialect_opts={"paramstyle": "named"})
    with context.begin_transaction():
        context.run_migrations()
else:
    injected = config.attributes.get("connection")
    if injected is not None:
        _configure(connection=injected)
        with context.begin_transaction():
            context.run_migrations()
    else:
        engine = create_engine(_url(), poolclass=pool.NullPool)
        with engine.connect() as connection:
            _configure(connection=connection)
            with context.begin_transaction():
                context.run_migrations()
        engine.dispose()
