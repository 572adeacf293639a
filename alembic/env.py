import logging
import os
import sys
from logging.config import fileConfig

from google.cloud.sql.connector import Connector, IPTypes
from sqlalchemy import create_engine, pool

from alembic import context

# -----------------------------------------------------------------------------
# 1. Path Setup & Imports
# -----------------------------------------------------------------------------
# Add the project root to python path so we can import 'app'
sys.path.append(os.getcwd())

import app.models  # noqa: F401 - Ensure models are registered with Base.metadata
from app.core.config import settings
from app.models.base import Base

# -----------------------------------------------------------------------------
# 2. Config & Logging
# -----------------------------------------------------------------------------
config = context.config

# Interpret the config file for Python logging.
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

# -----------------------------------------------------------------------------
# 3. Metadata Definition
# -----------------------------------------------------------------------------
# This is crucial for 'autogenerate' support
target_metadata = Base.metadata


def _configured_url() -> str | None:
    return settings.DATABASE_URL or config.get_main_option("sqlalchemy.url")


# -----------------------------------------------------------------------------
# 4. Offline Migrations (Generate SQL Scripts)
# -----------------------------------------------------------------------------
def run_migrations_offline() -> None:
    """
    Emits the migration as SQL. Only the dialect of the URL matters here,
    no connection is opened.
    """
    context.configure(
        url=_configured_url() or "postgresql+pg8000://",
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def _run_with_engine(connectable) -> None:
    with connectable.connect() as connection:
        context.configure(connection=connection, target_metadata=target_metadata)

        with context.begin_transaction():
            context.run_migrations()


# -----------------------------------------------------------------------------
# 5. Online Migrations (Apply Changes to DB)
# -----------------------------------------------------------------------------
def run_migrations_online() -> None:
    """
    Applies migrations against the configured database.

    DATABASE_URL (local Postgres, SQLite) wins; otherwise the Google Cloud SQL
    Connector is used with the CLOUD_SQL_* settings.
    """
    url = _configured_url()
    if url:
        logger.info("Running migrations against DATABASE_URL")
        _run_with_engine(create_engine(url, poolclass=pool.NullPool))
        return

    if not settings.CLOUD_SQL_CONNECTION_NAME:
        raise RuntimeError(
            "No database configured. Set DATABASE_URL or CLOUD_SQL_CONNECTION_NAME."
        )

    # We use a Context Manager to ensure the Connector is closed after migration
    with Connector() as connector:

        def getconn():
            return connector.connect(
                instance_connection_string=settings.CLOUD_SQL_CONNECTION_NAME,
                driver="pg8000",
                user=settings.DB_USER,
                password=settings.DB_PASS,
                db=settings.DB_NAME,
                ip_type=IPTypes.PUBLIC,
            )

        logger.info("Running migrations through the Cloud SQL connector")
        _run_with_engine(
            create_engine(
                "postgresql+pg8000://",
                creator=getconn,
                poolclass=pool.NullPool,  # No need for pooling during migrations
            )
        )


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
