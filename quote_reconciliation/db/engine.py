"""
Engine, session factory and transactional scope.
"""

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from quote_reconciliation.config import get_config
from quote_reconciliation.db.base import Base
from quote_reconciliation.db import immutability  # noqa: F401  registers the order listener
from quote_reconciliation.errors import ConflictError
from quote_reconciliation.utils.logging import setup_logging


logger = setup_logging(__name__)
config = get_config()


def make_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """
    Create an engine for the given URL (defaults from config).

    In-memory SQLite gets a StaticPool so every session shares one
    connection and sees the same database.
    """
    url = database_url or config.DATABASE_URL
    kwargs = {"echo": config.DATABASE_ECHO if echo is None else echo}
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url in ("sqlite://", "sqlite:///"):
            kwargs["poolclass"] = StaticPool
    engine = create_engine(url, **kwargs)
    logger.info(f"Database engine created for dialect {engine.dialect.name}")
    return engine


def create_tables(engine: Engine) -> None:
    # Import registers every model on Base.metadata
    from quote_reconciliation.db import models  # noqa: F401

    Base.metadata.create_all(engine)


def make_session_factory(engine: Optional[Engine] = None) -> sessionmaker:
    engine = engine or make_engine()
    create_tables(engine)
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def unit_of_work(session_factory: sessionmaker) -> Iterator[Session]:
    """
    Transactional scope: commit on success, roll back and re-raise on error.

    A unique-constraint violation surfaces as ConflictError.
    """
    session = session_factory()
    try:
        yield session
        session.commit()
    except IntegrityError as e:
        session.rollback()
        logger.warning(f"Transaction rolled back on integrity error: {e.orig}")
        raise ConflictError("Conflicting write rejected by the store", reason=str(e.orig)) from e
    except Exception:
        session.rollback()
        logger.warning("Transaction rolled back", exc_info=True)
        raise
    finally:
        session.close()


_session_factory: Optional[sessionmaker] = None


def get_session_factory() -> sessionmaker:
    """Get or create the process-wide session factory."""
    global _session_factory
    if _session_factory is None:
        _session_factory = make_session_factory()
    return _session_factory
