"""Database engine, sessions and the unit of work."""

from commerce_outbox.infra.database.session import (
    check_database,
    close_database,
    configure_database,
    create_session_factory,
    ensure_tables,
    get_async_session,
    get_engine,
    get_session_factory,
)
from commerce_outbox.infra.database.unit_of_work import UnitOfWork

__all__ = [
    "UnitOfWork",
    "check_database",
    "close_database",
    "configure_database",
    "create_session_factory",
    "ensure_tables",
    "get_async_session",
    "get_engine",
    "get_session_factory",
]
