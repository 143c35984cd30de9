"""Database connection and session management."""

import logging
import os
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Generator, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from signflow.models.base import Base

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Database configuration settings."""

    host: str = "localhost"
    port: int = 5432
    database: str = "signflow"
    username: str = "postgres"
    password: str = ""
    pool_size: int = 5
    max_overflow: int = 10
    echo: bool = False
    url_override: Optional[str] = None

    @classmethod
    def from_env(cls) -> "DatabaseConfig":
        """Create config from environment variables."""
        return cls(
            host=os.getenv("DB_HOST", "localhost"),
            port=int(os.getenv("DB_PORT", "5432")),
            database=os.getenv("DB_NAME", "signflow"),
            username=os.getenv("DB_USER", "postgres"),
            password=os.getenv("DB_PASSWORD", ""),
            pool_size=int(os.getenv("DB_POOL_SIZE", "5")),
            max_overflow=int(os.getenv("DB_MAX_OVERFLOW", "10")),
            echo=os.getenv("DB_ECHO", "false").lower() == "true",
            url_override=os.getenv("DATABASE_URL") or None,
        )

    @property
    def url(self) -> str:
        """Generate SQLAlchemy database URL."""
        if self.url_override:
            return self.url_override
        return f"postgresql://{self.username}:{self.password}@{self.host}:{self.port}/{self.database}"

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    def engine_options(self) -> Dict[str, Any]:
        """Keyword arguments for ``create_engine`` suited to the backend."""
        if self.is_sqlite:
            return {"echo": self.echo, "connect_args": {"check_same_thread": False}}
        return {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "echo": self.echo,
            "pool_pre_ping": True,
        }


_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker[Session]] = None


def get_engine(config: Optional[DatabaseConfig] = None) -> Engine:
    """Process-wide engine, created from ``config`` (or the environment) on first use."""
    global _engine

    if _engine is None:
        config = config or DatabaseConfig.from_env()
        _engine = create_engine(config.url, **config.engine_options())
        logger.info(f"Created database engine ({'sqlite' if config.is_sqlite else 'postgresql'})")
    return _engine


def get_session_factory(config: Optional[DatabaseConfig] = None) -> sessionmaker[Session]:
    global _session_factory

    if _session_factory is None:
        # Services flush and keep using rows after the request commits
        _session_factory = sessionmaker(
            bind=get_engine(config),
            autoflush=False,
            expire_on_commit=False,
        )
    return _session_factory


def _new_session() -> Session:
    return get_session_factory()()


@contextmanager
def get_db_context() -> Generator[Session, None, None]:
    """
    One unit of work: commit when the block exits cleanly, roll back on error.

    Commit fires the change feed; rollback discards its queued changes.
    """
    session = _new_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """FastAPI dependency wrapping each request in ``get_db_context``."""
    with get_db_context() as session:
        yield session


def check_connection() -> bool:
    """Run ``SELECT 1`` against the configured database."""
    try:
        with get_engine().connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning(f"Database health check failed: {e}")
        return False
    return True


def init_db(config: Optional[DatabaseConfig] = None) -> None:
    """
    Create the signature tables directly from the models.

    Local SQLite databases only; PostgreSQL is managed by Alembic.
    """
    engine = get_engine(config)
    Base.metadata.create_all(bind=engine)
    logger.info("Created signature tables")


def dispose_engine() -> None:
    global _engine, _session_factory

    if _engine is not None:
        _engine.dispose()
        _engine = None
        _session_factory = None
