"""
Database connection and session management.

A ``Database`` owns one engine and its session factory. It is constructed
explicitly from configuration and passed to whatever needs it.
"""

from __future__ import annotations

from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from .models import Base

if TYPE_CHECKING:
    from publio.core.config.models import DatabaseConfig


# =============================================================================
# SQLite Configuration
# =============================================================================


def _configure_sqlite(engine: Engine, wal: bool = True) -> None:
    """Configure SQLite for reliability.

    Enables:
    - Foreign key enforcement (needed for cascade deletes of equity logs)
    - WAL mode for better concurrency
    - BEGIN IMMEDIATE, so SAVEPOINTs behave under pysqlite and writers
      queue on the database lock instead of failing on a stale snapshot
    """

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_connection, connection_record):
        # Let SQLAlchemy emit BEGIN itself
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


# SQLSTATEs for serialization failure, deadlock and lock_not_available
_PG_CONTENTION_CODES = {"40001", "40P01", "55P03"}


def is_lock_contention(error: OperationalError) -> bool:
    """True when a write lost to a concurrent transaction rather than failing outright."""
    code = getattr(error.orig, "pgcode", None) or getattr(error.orig, "sqlstate", None)
    if code in _PG_CONTENTION_CODES:
        return True
    message = str(error.orig).lower()
    return "database is locked" in message or "database is busy" in message


# =============================================================================
# Database
# =============================================================================


class Database:
    """Engine plus session factory for one database URL."""

    def __init__(
        self,
        url: str = "sqlite:///data/publio.db",
        echo: bool = False,
        pool_size: int = 5,
        busy_timeout: float = 15.0,
    ):
        self.url = url

        if url.startswith("sqlite:///") and url != "sqlite:///:memory:":
            db_path = url.replace("sqlite:///", "")
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        if url.startswith("sqlite"):
            self.engine = create_engine(
                url,
                echo=echo,
                connect_args={"check_same_thread": False, "timeout": busy_timeout},
            )
            _configure_sqlite(self.engine, wal=":memory:" not in url)
        else:
            self.engine = create_engine(
                url,
                echo=echo,
                pool_size=pool_size,
                max_overflow=10,
                pool_pre_ping=True,
            )

        self._session_factory = sessionmaker(
            bind=self.engine,
            autocommit=False,
            autoflush=False,
            expire_on_commit=False,
        )

    @classmethod
    def from_config(cls, config: "DatabaseConfig") -> "Database":
        return cls(
            config.url,
            echo=config.echo,
            pool_size=config.pool_size,
            busy_timeout=config.busy_timeout_seconds,
        )

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Transactional session scope.

        Usage:
            with db.session() as session:
                session.execute(...)

        Commits on success, rolls back on any exception.
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

    def create_all(self) -> None:
        """Create all tables if they don't exist.

        For production use, prefer Alembic migrations.
        """
        Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        """Drop all tables.

        WARNING: This will delete all data!
        """
        Base.metadata.drop_all(bind=self.engine)

    def dispose(self) -> None:
        self.engine.dispose()

    def __repr__(self) -> str:
        return f"<Database(url='{self.engine.url.render_as_string(hide_password=True)}')>"
