"""
SQLAlchemy engine, session factory and the ``get_db`` dependency.

Users and family ledgers live in one database; ``DATABASE_URL`` picks it.
"""
import logging
import os

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from app.config import settings

logger = logging.getLogger(__name__)

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

engine = create_engine(
    settings.DATABASE_URL,
    connect_args={"check_same_thread": False} if _is_sqlite else {},
    echo=settings.DEBUG,
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def init_db() -> None:
    """Create the data directory (file-backed SQLite only) and missing tables."""
    if _is_sqlite and ":memory:" not in settings.DATABASE_URL:
        os.makedirs(settings.DATA_DIR, exist_ok=True)
    # Models register themselves on Base.metadata at import
    import app.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("Database tables ready (%s)", settings.DATABASE_URL)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
