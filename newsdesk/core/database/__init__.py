"""
Database abstraction layer supporting PostgreSQL and SQLite.

Usage:
    from newsdesk.core.database import get_database

    db = await get_database()

    async with db.transaction() as txn:
        rows = await txn.fetch("SELECT * FROM issue_delivery_queue WHERE n_retries = $1", 0)
"""

from .adapter import (
    DatabaseAdapter,
    DatabaseBackend,
    DatabaseConfig,
    Transaction,
    get_database,
    close_database,
    rows_affected,
)

__all__ = [
    "DatabaseAdapter",
    "DatabaseBackend",
    "DatabaseConfig",
    "Transaction",
    "get_database",
    "close_database",
    "rows_affected",
]
