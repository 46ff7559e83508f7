from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from typing import Optional
import logging

from .config import settings
from ..models.base import Base

logger = logging.getLogger(__name__)


def create_db_engine(database_url: Optional[str] = None, **kwargs) -> Engine:
    """Create a SQLAlchemy engine for the flow graph store."""
    url = database_url or settings.DATABASE_URL
    options = {"pool_pre_ping": True, "echo": settings.DATABASE_ECHO}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False}
    options.update(kwargs)
    return create_engine(url, **options)


# SQLAlchemy setup
engine = create_db_engine()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def check_db_connection(bind: Optional[Engine] = None) -> bool:
    """Check database connectivity."""
    try:
        with (bind or engine).connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection check failed: {e}")
        return False


def create_tables(bind: Optional[Engine] = None):
    """Create all database tables."""
    from .. import models  # noqa: F401  registers the chatbot tables

    Base.metadata.create_all(bind=bind or engine)
