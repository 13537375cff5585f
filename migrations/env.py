"""Alembic environment sharing the application's engine settings.

Online migrations go through ``init_engine`` so they run with the same
isolation level and SQLite busy timeout as the service itself.
"""
from logging.config import fileConfig

from alembic import context

import portal_events.models  # noqa: F401 - registers events and event_registrations
from portal_events.database import Base, init_engine, resolve_database_url

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)


def _database_url() -> str:
    # An explicit -x url=... wins over the environment.
    return context.get_x_argument(as_dictionary=True).get("url") or resolve_database_url()


def run_offline(url: str) -> None:
    context.configure(
        url=url,
        target_metadata=Base.metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_online(url: str) -> None:
    engine = init_engine(url)
    try:
        with engine.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=Base.metadata,
                # SQLite cannot ALTER constraints in place; batch mode recreates the table.
                render_as_batch=connection.dialect.name == "sqlite",
            )
            with context.begin_transaction():
                context.run_migrations()
    finally:
        engine.dispose()


if context.is_offline_mode():
    run_offline(_database_url())
else:
    run_online(_database_url())
