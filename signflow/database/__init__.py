"""Database engine, sessions and units of work."""

from signflow.database.database import (
    DatabaseConfig,
    check_connection,
    dispose_engine,
    get_db,
    get_db_context,
    get_engine,
    get_session_factory,
    init_db,
)

__all__ = [
    "DatabaseConfig",
    "check_connection",
    "dispose_engine",
    "get_db",
    "get_db_context",
    "get_engine",
    "get_session_factory",
    "init_db",
]
