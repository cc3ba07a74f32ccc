"""
SQLAlchemy Database Configuration
Lets SQLAlchemy manage connections internally with built-in pooling.
ORM models describe the schema; workflow writes use raw SQL inside explicit transactions.
"""

from sqlalchemy import create_engine, text
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from typing import Generator, Any, Dict, List
from contextlib import contextmanager


# Logger
from orderdesk.logging.utils import get_app_logger
logger = get_app_logger("database")

# Settings
from orderdesk.config.settings import OrderDeskConfigs
configs = OrderDeskConfigs()


def _normalize_url(url: str) -> str:
    # psycopg3 driver for plain postgresql:// URLs
    if url and url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def _engine_options(url: str) -> Dict[str, Any]:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}, "echo": False}
    return {
        "pool_size": 10,
        "max_overflow": 20,
        "pool_pre_ping": True,     # Validate connections before use
        "pool_recycle": 3600,      # Recycle connections after 1 hour
        "echo": False,
        "connect_args": {
            "keepalives_idle": 600,
            "keepalives_interval": 30,
            "keepalives_count": 3
        },
    }


DATABASE_URL = _normalize_url(configs.DATABASE_URL)
DATABASE_READ_URL = _normalize_url(configs.DATABASE_READ_URL)

# Base class for ORM models
Base = declarative_base()

engine = create_engine(DATABASE_URL, **_engine_options(DATABASE_URL))

# Read engine (separate for read replicas, same as write if no replica)
read_engine = create_engine(
    DATABASE_READ_URL, **_engine_options(DATABASE_READ_URL)
) if DATABASE_READ_URL != DATABASE_URL else engine

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
ReadSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=read_engine)

logger.info(f"SQLAlchemy engines initialized | dialect={engine.dialect.name}")


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency for write database sessions."""
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def execute_raw_sql_readonly(query: str, params: Dict[str, Any] = None) -> List[Dict[str, Any]]:
    """
    Execute raw SQL read-only query using read SessionLocal.

    Args:
        query: SQL query string
        params: Query parameters (optional)

    Returns:
        List of dictionaries representing query results
    """
    db = ReadSessionLocal()
    try:
        result = db.execute(text(query), params or {})
        columns = result.keys()
        return [dict(zip(columns, row)) for row in result.fetchall()]
    finally:
        db.close()


@contextmanager
def get_raw_transaction():
    """
    Session with transaction management for raw SQL writes.
    Commits when the block exits cleanly, rolls back on any exception.
    """
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def create_schema():
    """Create all tables (used by tests and local bootstrapping; production uses alembic)."""
    import orderdesk.models.orders  # noqa: F401  registers the tables on Base
    Base.metadata.create_all(bind=engine)


def drop_schema():
    import orderdesk.models.orders  # noqa: F401
    Base.metadata.drop_all(bind=engine)


def close_db_pool():
    engine.dispose()
    read_engine.dispose()
