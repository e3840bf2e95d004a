"""Database connection and session management."""

import time
from collections.abc import Generator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .config import DATABASE_URL

engine = create_engine(DATABASE_URL, echo=False)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def now_ms() -> int:
    """Current time as epoch milliseconds, the unit of every *_time column."""
    return int(time.time() * 1000)


def get_db() -> Generator[Session, None, None]:
    """Dependency for getting database sessions."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create all tables."""
    from . import models  # noqa: F401  registers the mappers on Base

    Base.metadata.create_all(bind=engine)
