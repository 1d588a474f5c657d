"""
Engine and session management.

Usage:
    db = get_database()
    with db.session() as session:
        ...  # committed on success, rolled back on error
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from lapse.db.models import Base

logger = logging.getLogger(__name__)


class Database:
    """Owns one engine and its session factory."""

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        kwargs: dict = {"echo": echo}
        if url.startswith("sqlite"):
            # Sessions are opened from FastAPI's worker threads.
            kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
                kwargs["poolclass"] = StaticPool
        self.engine: Engine = create_engine(url, **kwargs)
        self._session_factory = sessionmaker(
            bind=self.engine,
            autoflush=False,
            expire_on_commit=False,
        )
        logger.debug("Database engine created for %s", self.engine.url.render_as_string())

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    def create_all(self) -> None:
        Base.metadata.create_all(self.engine)
        logger.info("Database schema ready (%s)", self.dialect_name)

    def drop_all(self) -> None:
        Base.metadata.drop_all(self.engine)

    @contextmanager
    def session(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def dispose(self) -> None:
        self.engine.dispose()


# Singleton
_database: Database | None = None


def get_database() -> Database:
    global _database
    if _database is None:
        from lapse.config import get_settings

        settings = get_settings()
        _database = Database(settings.resolved_database_url(), echo=settings.db_echo)
    return _database


def reset_database() -> None:
    """Dispose and reset singleton (for testing)."""
    global _database
    if _database is not None:
        _database.dispose()
    _database = None
