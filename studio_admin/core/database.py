"""
Database connection management and ORM session factory.
The Database object is built once by the application factory and handed to
request handlers through app.state; nothing connects at import time.
"""
from typing import Any, Iterator, Optional
from fastapi import Request
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from studio_admin.core.logger import logger

Base = declarative_base()


class Database:
    """Owns the engine and the session factory for one application instance."""

    def __init__(self, url: str, engine: Optional[Engine] = None):
        self.url = url
        if engine is None:
            engine = create_engine(
                url,
                # SQLite specific: FastAPI serves sync endpoints from a thread pool
                connect_args={"check_same_thread": False} if url.startswith("sqlite") else {}
            )
            if url.startswith("sqlite") and ":memory:" not in url and url != "sqlite://":
                event.listen(engine, "connect", _set_sqlite_pragma)
        self.engine = engine
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def create_all(self) -> None:
        """Idempotent initialization of database schema artifacts."""
        # Import side effect registers every mapped table on Base.metadata
        from studio_admin import models_registry  # noqa: F401

        logger.info("Creating database tables")
        Base.metadata.create_all(bind=self.engine)
        logger.info("Database tables ready")

    def session(self) -> Session:
        return self.SessionLocal()

    def dispose(self) -> None:
        self.engine.dispose()


def _set_sqlite_pragma(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def get_db(request: Request) -> Iterator[Session]:
    """Yields a request-scoped session. Ensures connection closure upon completion."""
    db = request.app.state.database.session()
    try:
        yield db
    finally:
        db.close()
