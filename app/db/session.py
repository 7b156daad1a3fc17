from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import QueuePool, StaticPool
from app.core.config import settings
import logging

logger = logging.getLogger("database")


def build_engine(database_url: str = None, **overrides) -> Engine:
    """Create an engine for the storefront database.

    Server databases get a connection pool sized from settings. In-memory
    SQLite shares a single connection so every session sees the same data.
    """
    url = database_url or settings.DATABASE_URL

    if url.startswith("sqlite"):
        options = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            options["poolclass"] = StaticPool
    else:
        options = {
            "poolclass": QueuePool,
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_pre_ping": True,
            "pool_recycle": 3600,
        }
        if url.startswith("postgresql"):
            options["connect_args"] = {
                "options": "-c timezone=utc",
                "application_name": "storefront",
            }

    options.update(overrides)
    engine = create_engine(url, echo=False, **options)

    if engine.dialect.name == "sqlite":
        @event.listens_for(engine, "connect")
        def enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    @event.listens_for(engine, "connect")
    def receive_connect(dbapi_connection, connection_record):
        logger.debug("DB connection established")

    return engine


# Base class for all models
Base = declarative_base()
