"""
Shared SQLite helpers for the local stores.
"""

from __future__ import annotations

from pathlib import Path

import aiosqlite

from caseshelf.exceptions import StorageUnavailableError, StoreCorruptedError


def translate_engine_error(exc: aiosqlite.Error, store: str, action: str) -> Exception:
    """Map a SQLite error onto the caseshelf taxonomy.

    Operational errors (disk full, locked, cannot open) mean the engine is
    unavailable; any other database error means the file cannot be trusted.
    """
    context = {"store": store, "action": action, "reason": str(exc)}
    if isinstance(exc, aiosqlite.OperationalError):
        return StorageUnavailableError(f"{store} storage unavailable", context=context)
    return StoreCorruptedError(f"{store} database is unreadable", context=context)


async def open_database(db_path: Path, store: str) -> aiosqlite.Connection:
    """Open a SQLite database in autocommit mode with row access by name.

    Transactions are issued explicitly by the stores that need them.

    Raises:
        StorageUnavailableError: If the directory or file cannot be opened.
        StoreCorruptedError: If the file is not a usable database.
    """
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StorageUnavailableError(
            f"{store} storage unavailable",
            context={"store": store, "action": "open", "reason": str(e)},
        ) from e

    try:
        db = await aiosqlite.connect(db_path, isolation_level=None)
    except aiosqlite.Error as e:
        raise translate_engine_error(e, store, "open") from e

    db.row_factory = aiosqlite.Row
    return db
