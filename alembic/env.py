"""
Alembic environment for the ReadAlong schema.

The database URL comes from readalong settings (DATABASE_URL), never from
alembic.ini. All models are imported so autogenerate sees the reading
group tables:

    alembic revision --autogenerate -m "add group invitations"
    alembic upgrade head

SQLite databases are migrated in batch mode because SQLite cannot alter
constraints in place (reading_groups carries a version column and check
constraints).
"""

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context
from readalong.config import get_settings
from readalong.database import Base
from readalong.models import (  # noqa: F401 - registers tables on Base.metadata
    Book,
    GroupMember,
    GroupMessage,
    ReadingGroup,
    User,
)

config = context.config
config.set_main_option("sqlalchemy.url", get_settings().database_url)

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def is_sqlite(url: str | None) -> bool:
    return bool(url) and url.startswith("sqlite")


def run_migrations_offline() -> None:
    """Emit SQL to stdout (`alembic upgrade head --sql`)."""
    url = config.get_main_option("sqlalchemy.url")
    context.configure(
        url=url,
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=is_sqlite(url),
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations over a dedicated, unpooled connection."""
    connectable = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            render_as_batch=connection.dialect.name == "sqlite",
        )

        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
