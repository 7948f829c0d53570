"""Database configuration and session management.

This module initializes the SQLAlchemy engine, session factory,
and declarative base, and provides the session dependencies and the
transaction scope used by the API.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import Depends
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from .core import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


engine = create_engine(
    settings.DATABASE_URL,
    future=True,
)
"""SQLAlchemy engine bound to the configured database URL."""


SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    future=True,
)
"""Factory for database sessions."""


Base = declarative_base()
"""Declarative base class for SQLAlchemy models."""


def get_session_factory() -> sessionmaker:
    """
    Return the session factory used by the API.

    Streamed list responses open their own session from this factory,
    so overriding this dependency redirects every database access.
    """
    return SessionLocal


def get_db(factory: sessionmaker = Depends(get_session_factory)):
    """
    Provide a SQLAlchemy database session.

    This function is used as a FastAPI dependency.
    It yields a database session and ensures it is
    properly closed after the request is completed.
    """

    db = factory()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session) -> Iterator[Session]:
    """
    Run a block of writes as one transaction.

    The transaction is opened at the configured isolation level, committed
    when the block finishes and rolled back on any exception, which is
    then re-raised.

    Args:
        db (Session): Session without an open transaction.

    Yields:
        Session: The same session.
    """
    # isolation level can only be set before the transaction begins
    if db.in_transaction():
        db.rollback()
    db.connection(
        execution_options={"isolation_level": get_settings().DB_ISOLATION_LEVEL}
    )
    try:
        yield db
        db.commit()
    except Exception:
        logger.debug("Rolling back transaction")
        db.rollback()
        raise
