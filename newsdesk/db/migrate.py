#!/usr/bin/env python3
"""
Database Migration Runner

Usage:
    python -m newsdesk.db.migrate              # Run all pending migrations
    python -m newsdesk.db.migrate --status     # Show migration status

Environment:
    DATABASE_BACKEND - postgresql (default) or sqlite
    DATABASE_URL     - PostgreSQL connection string
    SQLITE_PATH      - SQLite database file
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Tuple

from ..config import get_settings
from ..core.database import DatabaseAdapter, DatabaseConfig

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def discover_migrations(directory: Path = MIGRATIONS_DIR) -> List[Tuple[str, Path]]:
    """Return (version, path) pairs ordered by version."""
    files = sorted(directory.glob("*.sql"))
    return [(f.stem.split("_")[0], f) for f in files if "rollback" not in f.name.lower()]


async def ensure_migrations_table(db: DatabaseAdapter) -> None:
    await db.execute_script(
        """
        CREATE TABLE IF NOT EXISTS schema_migrations (
            version TEXT PRIMARY KEY,
            name TEXT NOT NULL,
            applied_at TIMESTAMPTZ NOT NULL
        );
        """
    )


async def get_applied_migrations(db: DatabaseAdapter) -> set:
    """Get set of already-applied migration versions."""
    rows = await db.fetch("SELECT version FROM schema_migrations")
    return {row["version"] for row in rows}


async def run_migrations(db: DatabaseAdapter, directory: Path = MIGRATIONS_DIR) -> List[str]:
    """
    Apply every pending migration in order.

    Returns:
        Versions applied by this call
    """
    await ensure_migrations_table(db)
    applied = await get_applied_migrations(db)

    newly_applied = []
    for version, path in discover_migrations(directory):
        if version in applied:
            continue

        logger.info(f"Running migration {version} ({path.stem})")
        await db.execute_script(path.read_text())
        await db.execute(
            "INSERT INTO schema_migrations (version, name, applied_at) VALUES ($1, $2, $3)",
            version,
            path.stem,
            datetime.now(timezone.utc)
        )
        newly_applied.append(version)

    if newly_applied:
        logger.info(f"Applied {len(newly_applied)} migration(s): {', '.join(newly_applied)}")
    else:
        logger.info("No pending migrations. Database is up to date.")

    return newly_applied


async def show_status(db: DatabaseAdapter) -> None:
    """Show migration status."""
    await ensure_migrations_table(db)
    applied = await get_applied_migrations(db)

    print("Migrations:")
    print("-" * 50)
    for version, path in discover_migrations():
        status = "Applied" if version in applied else "Pending"
        print(f"  {version}: {path.stem}  [{status}]")


async def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Newsdesk Database Migration Runner")
    parser.add_argument("--status", action="store_true", help="Show migration status")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    db = DatabaseAdapter(DatabaseConfig.from_settings(get_settings()))
    await db.connect()
    try:
        if args.status:
            await show_status(db)
        else:
            await run_migrations(db)
    finally:
        await db.disconnect()


if __name__ == "__main__":
    asyncio.run(main())
