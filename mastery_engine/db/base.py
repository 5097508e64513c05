"""Declarative base for all models."""

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


def create_all_tables(bind) -> None:
    """Create every table registered on Base."""
    import mastery_engine.models  # noqa: F401

    Base.metadata.create_all(bind=bind)
