"""Database configuration and session management.

The database is the only coordination point between the API handlers and
the worker: every state transition is a conditional UPDATE against it.
"""

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
import os

# SQLite is fine for local development; production runs on PostgreSQL.
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./sitedeploy.db")


if DATABASE_URL.startswith("sqlite"):
    engine = create_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False}
    )
else:
    # PostgreSQL: pool parameters come from DB_POOL_* environment variables.
    from .core.config import settings as _db_settings
    engine = create_engine(
        DATABASE_URL,
        pool_size=_db_settings.db_pool_size,
        max_overflow=_db_settings.db_max_overflow,
        pool_timeout=_db_settings.db_pool_timeout,
        pool_recycle=_db_settings.db_pool_recycle,
        pool_pre_ping=True,
    )

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db() -> None:
    """Create the deployment_jobs table and its indexes if they are missing."""
    from . import models  # noqa: F401  (registers tables on Base.metadata)
    Base.metadata.create_all(bind=engine)


def get_db():
    """Dependency for FastAPI routes to get database session.

    Rolls back the transaction on unhandled exceptions so that the
    connection is returned to the pool in a clean state.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
