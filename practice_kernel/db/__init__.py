"""Database layer: declarative bases and engine/session management."""

from practice_kernel.db.base import Base, TrackedBase, UUIDString
from practice_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    install_sqlite_savepoint_support,
    reset_engine,
    session_scope,
)

__all__ = [
    "Base",
    "TrackedBase",
    "UUIDString",
    "create_tables",
    "drop_tables",
    "get_engine",
    "get_session",
    "get_session_factory",
    "init_engine_from_url",
    "install_sqlite_savepoint_support",
    "reset_engine",
    "session_scope",
]
