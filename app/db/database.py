import logging
import threading
from contextlib import asynccontextmanager
from typing import Any, Generator

from fastapi import FastAPI
from google.cloud.sql.connector import Connector, IPTypes
from sqlalchemy import Engine, create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import settings

# Base is imported from app.models.base to avoid circular imports
from app.models.base import (  # noqa: F401 - Required for SQLAlchemy model registration
    Base,
)

logger = logging.getLogger("app.db")

# -----------------------------------------------------------------------------
# 1. Process-wide State (lazy, initialized once, never torn down)
# -----------------------------------------------------------------------------
_init_lock = threading.Lock()
_connector: Connector | None = None
_engine: Engine | None = None
_session_factory: sessionmaker | None = None


def get_connector() -> Connector:
    """
    Returns the shared Cloud SQL Connector, creating it on first use.
    """
    global _connector
    if _connector is None:
        with _init_lock:
            if _connector is None:
                _connector = Connector()
    return _connector


# -----------------------------------------------------------------------------
# 2. Connection Factory
# -----------------------------------------------------------------------------
def getconn() -> Any:
    """Cloud SQL connection factory (pg8000)."""
    connector = get_connector()
    try:
        return connector.connect(
            instance_connection_string=settings.CLOUD_SQL_CONNECTION_NAME,
            driver="pg8000",
            user=settings.DB_USER,
            password=settings.DB_PASS,
            db=settings.DB_NAME,
            ip_type=IPTypes.PUBLIC,
        )
    except Exception as e:
        logger.error(f"Failed to establish Cloud SQL connection: {e}")
        raise


def _build_engine() -> Engine:
    echo = settings.LOG_LEVEL == "DEBUG"

    if settings.USES_CLOUD_SQL:
        logger.info("Creating engine through the Cloud SQL connector")
        return create_engine(
            "postgresql+pg8000://",
            creator=getconn,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_recycle=1800,  # Recycle connections every 30 mins
            pool_timeout=settings.DB_POOL_TIMEOUT,
            echo=echo,
        )

    if not settings.DATABASE_URL:
        raise RuntimeError(
            "No database configured. Set DATABASE_URL or CLOUD_SQL_CONNECTION_NAME."
        )

    logger.info("Creating engine from DATABASE_URL")
    return create_engine(settings.DATABASE_URL, pool_pre_ping=True, echo=echo)


# -----------------------------------------------------------------------------
# 3. Engine & Session Factory
# -----------------------------------------------------------------------------
def get_engine() -> Engine:
    global _engine
    if _engine is None:
        with _init_lock:
            if _engine is None:
                _engine = _build_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    global _session_factory
    if _session_factory is None:
        engine = get_engine()
        with _init_lock:
            if _session_factory is None:
                _session_factory = sessionmaker(
                    autocommit=False, autoflush=False, bind=engine
                )
    return _session_factory


# -----------------------------------------------------------------------------
# 4. FastAPI Dependency
# -----------------------------------------------------------------------------
def get_raw_db() -> Generator[Session, None, None]:
    """
    Dependency to yield a database session per request.
    Ensures the session is closed even if an error occurs.
    """
    db = get_session_factory()()
    try:
        yield db
    except Exception as e:
        logger.error(f"Database session error: {e}")
        db.rollback()
        raise
    finally:
        db.close()


# -----------------------------------------------------------------------------
# 5. Lifespan
# -----------------------------------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Warms up the shared engine so configuration errors surface at boot.
    """
    logger.info("Initializing database engine...")
    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
        logger.info("Database engine initialized.")
    except Exception as e:
        logger.critical(f"Failed to initialize database: {e}")
        raise e

    yield

    logger.info("Shutting down API.")
