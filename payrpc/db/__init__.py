"""Database helpers for the payment ledger."""

from payrpc.db.session import (
    Base,
    create_db_engine,
    create_session_factory,
    create_tables,
    drop_tables,
)

__all__ = ["Base", "create_db_engine", "create_session_factory", "create_tables", "drop_tables"]
