"""
Balance persistence for credit accounts.

The identity subsystem owns account balances; the ledger reads and writes
them only through the BalancePersistence protocol. AccountStore is the
default SQLite-backed implementation.
"""

from __future__ import annotations

from pathlib import Path
from typing import Protocol, runtime_checkable

import aiosqlite

from caseshelf.exceptions import StoreCorruptedError
from caseshelf.logging import get_logger
from caseshelf.storage import open_database, translate_engine_error
from caseshelf.types import utc_now

logger = get_logger(__name__)


@runtime_checkable
class BalancePersistence(Protocol):
    """Read/write access to the balance of a subject."""

    async def read(self, subject_id: str) -> int | None:
        """Get the balance, None if the subject has no account."""
        ...

    async def write(self, subject_id: str, balance: int) -> bool:
        """Persist a new balance. Returns False if it was not stored."""
        ...


class AccountStore:
    """SQLite-backed account balances.

    Local only; there is no reconciliation with a server-side balance.
    """

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Open the database and create the accounts table."""
        self._db = await open_database(self.db_path, "accounts")
        try:
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS accounts (
                    subject_id TEXT PRIMARY KEY,
                    balance INTEGER NOT NULL CHECK (balance >= 0),
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
        except aiosqlite.Error as e:
            await self.close()
            raise translate_engine_error(e, "accounts", "init") from e

        logger.info("Account store initialized", db_path=str(self.db_path))

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _require_db(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("AccountStore not initialized. Call init() first.")
        return self._db

    async def open_account(self, subject_id: str, starting_balance: int = 50) -> int:
        """Create an account if it does not exist.

        Args:
            subject_id: The subject to open an account for.
            starting_balance: Balance for a new account.

        Returns:
            The account balance (existing accounts are left untouched).
        """
        if starting_balance < 0:
            raise ValueError("starting_balance must be >= 0")
        db = self._require_db()
        now = utc_now().isoformat()
        try:
            await db.execute(
                """
                INSERT OR IGNORE INTO accounts (subject_id, balance, created_at, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (subject_id, starting_balance, now, now),
            )
        except aiosqlite.Error as e:
            raise translate_engine_error(e, "accounts", "open") from e

        balance = await self.read(subject_id)
        logger.info("Account opened", subject_id=subject_id, balance=balance)
        return balance if balance is not None else starting_balance

    async def close_account(self, subject_id: str) -> bool:
        """Delete an account. Returns True if it existed."""
        db = self._require_db()
        try:
            cursor = await db.execute(
                "DELETE FROM accounts WHERE subject_id = ?", (subject_id,)
            )
        except aiosqlite.Error as e:
            raise translate_engine_error(e, "accounts", "close") from e
        return cursor.rowcount > 0

    async def read(self, subject_id: str) -> int | None:
        """Get the balance of ``subject_id``.

        Raises:
            StorageUnavailableError: If the database cannot be read.
        """
        db = self._require_db()
        try:
            async with db.execute(
                "SELECT balance FROM accounts WHERE subject_id = ?", (subject_id,)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise translate_engine_error(e, "accounts", "read") from e
        return row["balance"] if row else None

    async def write(self, subject_id: str, balance: int) -> bool:
        """Persist a balance for an existing account.

        Returns:
            True if stored; False for unknown subjects or an unavailable engine.
        """
        if balance < 0:
            raise ValueError("balance must be >= 0")
        db = self._require_db()
        try:
            cursor = await db.execute(
                "UPDATE accounts SET balance = ?, updated_at = ? WHERE subject_id = ?",
                (balance, utc_now().isoformat(), subject_id),
            )
        except aiosqlite.Error as e:
            error = translate_engine_error(e, "accounts", "write")
            if isinstance(error, StoreCorruptedError):
                raise error from e
            logger.warning("Balance not written", subject_id=subject_id, error=str(error))
            return False
        return cursor.rowcount == 1
