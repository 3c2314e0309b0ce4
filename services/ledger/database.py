"""SQLAlchemy engine, session scope and upsert helpers for the ledgers.

The order ledger and event ledger are shared by concurrent invocations, so
cross-request coordination relies on the database's atomic
INSERT ... ON CONFLICT and single-statement UPDATE semantics rather than on
in-process locks.
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Table, create_engine, text
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from services.shared.config import Settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for all ledger tables."""


class Database:
    """Engine plus session factory for one database URL."""

    def __init__(self, url: str, echo: bool = False) -> None:
        kwargs: dict[str, Any] = {"echo": echo}
        if url.startswith("sqlite"):
            kwargs["connect_args"] = {"check_same_thread": False}
            if url in ("sqlite://", "sqlite:///:memory:"):
                # One shared connection so every session sees the same in-memory database
                kwargs["poolclass"] = StaticPool
        else:
            kwargs["pool_pre_ping"] = True

        self.engine: Engine = create_engine(url, **kwargs)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(settings.database_url)

    def create_tables(self) -> None:
        """Create every ledger table that does not exist yet."""
        # Registers the ORM tables on Base.metadata
        from services.ledger import models  # noqa: F401

        Base.metadata.create_all(self.engine)
        logger.info(f"Ledger tables ensured on {self.engine.url.render_as_string()}")

    def health_check(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            return False

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Provide a transactional scope around a series of operations.

        Commits on normal exit; rolls back and re-raises on error.
        """
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def dialect_insert(session: Session, table: Table) -> Any:
    """Return an INSERT construct that supports ON CONFLICT for the session's dialect.

    Raises:
        ValueError: If the dialect has no native upsert support here
    """
    name = session.get_bind().dialect.name
    if name == "postgresql":
        return postgresql.insert(table)
    if name == "sqlite":
        return sqlite.insert(table)
    raise ValueError(f"Upsert not supported for database dialect: {name}")
