from typing import Optional

from sqlmodel import create_engine
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
import logging

from circuitguard.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def build_engine(url: Optional[str] = None, config: Optional[Settings] = None) -> Engine:
    """
    Create the engine backing the durable circuit store.

    Every durable call is bounded: pool_timeout caps the wait for a pooled
    connection, connect_timeout caps connection setup and statement_timeout
    caps each query on PostgreSQL.
    """
    config = config or default_settings
    url = url or config.CIRCUIT_BREAKER_POSTGRES_URL

    if url.startswith("sqlite"):
        # SQLite is used for local development and tests
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
        return create_engine(url, echo=False, **kwargs)

    engine = create_engine(
        url,
        echo=False,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_pre_ping=True,  # Verify connections before use
        pool_recycle=300,  # Serverless poolers drop idle connections
        pool_timeout=config.DB_POOL_TIMEOUT,
        connect_args={
            "connect_timeout": config.DB_CONNECT_TIMEOUT,
            "keepalives": 1,
            "keepalives_idle": 30,
            "keepalives_interval": 10,
            "keepalives_count": 5,
        },
    )

    statement_timeout = config.DB_STATEMENT_TIMEOUT

    # statement_timeout set per connection (poolers don't accept it in options)
    @event.listens_for(engine, "connect")
    def set_statement_timeout(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(f"SET statement_timeout = '{statement_timeout}'")
        except Exception as e:
            logger.warning(f"Could not set statement_timeout: {e}")
        finally:
            cursor.close()

    return engine
