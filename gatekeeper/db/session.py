"""Database engine, session factory, and per-operation session scope."""

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from gatekeeper.core.config import settings
from gatekeeper.core.exceptions import StoreUnavailableError

logger = logging.getLogger("gatekeeper")


def make_engine(url: Optional[str] = None, echo: bool = False) -> Engine:
    """Create the role store engine.

    SQLite gets a thread-shareable connection; every other backend gets the
    pooled settings.
    """
    url = url or settings.DATABASE_URL
    if make_url(url).get_backend_name() == "sqlite":
        return create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=echo,
        )
    return create_engine(
        url,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=1800,
        pool_pre_ping=True,
        echo=echo,
    )


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False, autoflush=False, expire_on_commit=False, bind=engine
    )


@contextmanager
def session_scope(session_factory: sessionmaker, operation: str) -> Generator[Session, None, None]:
    """Provide one session per store operation.

    Any database failure that the operation did not handle itself is rolled
    back and surfaced as ``StoreUnavailableError``.
    """
    db = session_factory()
    try:
        yield db
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Role store failure during %s: %s", operation, exc)
        raise StoreUnavailableError(f"Role store unavailable during {operation}") from exc
    finally:
        db.close()
