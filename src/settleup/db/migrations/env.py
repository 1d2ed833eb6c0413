from __future__ import annotations

from logging.config import fileConfig

from alembic import context
from sqlalchemy import create_engine, pool
from sqlalchemy.engine import make_url

from settleup.config import get_settings

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Schema is written by hand in versions/, there is no ORM metadata to diff against.
target_metadata = None


def _database_url() -> str:
    # `alembic -x url=postgresql://...` overrides the configured DSN
    override = context.get_x_argument(as_dictionary=True).get("url")
    url = make_url(override or get_settings().database_url)
    if url.drivername in {"postgres", "postgresql+asyncpg"}:
        url = url.set(drivername="postgresql")
    return url.render_as_string(hide_password=False)


def run_migrations_offline() -> None:
    context.configure(url=_database_url(), target_metadata=target_metadata, literal_binds=True)

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(_database_url(), poolclass=pool.NullPool)

    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
