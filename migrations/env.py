import os
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from dotenv import load_dotenv
from sqlalchemy import engine_from_config, pool

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)


def _database_url() -> str:
    """URL set by the app at startup, else DATABASE_URL / DATABASE_PATH from the environment."""
    configured = config.get_main_option("sqlalchemy.url")
    if configured:
        return configured
    load_dotenv(Path(__file__).resolve().parents[1] / ".env")
    url = os.getenv("DATABASE_URL", "")
    if url.startswith("postgresql://"):
        return url
    return f"sqlite:///{os.getenv('DATABASE_PATH', 'learnsmart.db')}"


url = _database_url()
config.set_main_option("sqlalchemy.url", url)
batch = url.startswith("sqlite")

# Raw DDL migrations, no ORM metadata
target_metadata = None

if context.is_offline_mode():
    context.configure(url=url, target_metadata=target_metadata, literal_binds=True, render_as_batch=batch)
    with context.begin_transaction():
        context.run_migrations()
else:
    engine = engine_from_config(
        config.get_section(config.config_ini_section, {}),
        prefix="sqlalchemy.",
        poolclass=pool.NullPool,
    )
    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata, render_as_batch=batch)
        with context.begin_transaction():
            context.run_migrations()
