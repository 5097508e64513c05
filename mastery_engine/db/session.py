"""Database session management."""

import logging
from typing import Generator

from sqlalchemy.orm import Session, sessionmaker

from mastery_engine.db.engine import engine

logger = logging.getLogger(__name__)

# Repositories hand back dataclasses built from rows, so nothing is
# lazily reloaded after commit
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,
)


def get_db() -> Generator[Session, None, None]:
    """
    Request-scoped session.

    Writes are committed explicitly by the services. An exception escaping
    the request discards whatever the request left uncommitted.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        if db.in_transaction():
            logger.warning("Rolling back uncommitted learner state after request error")
            db.rollback()
        raise
    finally:
        db.close()
