import logging
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context

# project modules live at the repository root
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from config import get_settings  # noqa: E402
from database import Base, make_engine  # noqa: E402
import models  # noqa: E402,F401

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

# `alembic -x db_url=...` wins over POCKETPILOT_DATABASE_URL
database_url = context.get_x_argument(as_dictionary=True).get(
    "db_url", get_settings().database_url
)
target_metadata = Base.metadata


def run_migrations_offline() -> None:
    context.configure(
        url=database_url,
        target_metadata=target_metadata,
        literal_binds=True,
        render_as_batch=database_url.startswith("sqlite"),
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    connectable = make_engine(database_url)
    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
            compare_type=True,
        )
        with context.begin_transaction():
            context.run_migrations()
    connectable.dispose()
    logger.info(f"migrations_applied: url={connectable.url.render_as_string(hide_password=True)}")


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
