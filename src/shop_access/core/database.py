"""Database module."""

import logging
from typing import Any, Generator

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger("database")


class Base(DeclarativeBase):
    pass


def engine_options(url: str, timeout_seconds: float) -> dict[str, Any]:
    """
    Engine keyword arguments for ``url`` with every store round-trip bounded.

    Checkouts wait at most ``timeout_seconds`` for a pooled connection. PostgreSQL
    also gets a connect timeout and a server-side statement timeout; SQLite waits
    the same time for a database lock.
    """
    options: dict[str, Any] = {"pool_pre_ping": True, "pool_timeout": timeout_seconds}
    if url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False, "timeout": timeout_seconds}
        if ":memory:" in url or url in ("sqlite://", "sqlite+pysqlite://"):
            # one shared connection, otherwise every session sees an empty database
            options["poolclass"] = StaticPool
            del options["pool_pre_ping"], options["pool_timeout"]
    elif url.startswith("postgresql"):
        options["connect_args"] = {
            "connect_timeout": max(1, int(timeout_seconds)),
            "options": f"-c statement_timeout={int(timeout_seconds * 1000)}",
        }
    return options


class Database:
    """
    Owns the engine and session factory for the credential store.

    Opened once by the application factory and disposed on shutdown.
    """

    def __init__(self, url: str, timeout_seconds: float = 10.0) -> None:
        if not url:
            raise RuntimeError("DATABASE_URL is not set in your .env file!")

        self.engine: Engine = create_engine(url, **engine_options(url, timeout_seconds))
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)

    def create_all(self) -> None:
        """Create any missing tables."""
        # models must be imported so their tables are registered on Base.metadata
        from shop_access.core import models  # noqa: F401

        Base.metadata.create_all(bind=self.engine)

    def check_connection(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("Database connection failed: %s", e)
            return False

    def session(self) -> Session:
        return self.SessionLocal()

    def dispose(self) -> None:
        self.engine.dispose()


def dialect_insert(db: Session, model: type[Base]) -> Any:
    """
    Return an INSERT construct that supports ON CONFLICT for the bound dialect.

    Raises:
        RuntimeError: If the database dialect has no native upsert support.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise RuntimeError(f"Upserts are not supported for dialect: {dialect}")
    return insert(model)


def get_db(request: Request) -> Generator[Session, None, None]:
    """Dependency to get a database session."""
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()
