"""
Append-only log of credit transactions.

Every debit and credit produces one CreditTransaction row. Rows are never
updated or deleted.
"""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from caseshelf.logging import get_logger
from caseshelf.storage import open_database, translate_engine_error
from caseshelf.types import CreditTransaction, TransactionKind

logger = get_logger(__name__)


class TransactionLog:
    """Immutable history of balance changes."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Open the database and create the transactions table."""
        self._db = await open_database(self.db_path, "transactions")
        try:
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS credit_transactions (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    transaction_id TEXT NOT NULL UNIQUE,
                    subject_id TEXT NOT NULL,
                    kind TEXT NOT NULL,
                    amount INTEGER NOT NULL CHECK (amount > 0),
                    description TEXT NOT NULL,
                    ts TEXT NOT NULL,
                    balance_after INTEGER NOT NULL
                )
            """)
            await self._db.execute(
                "CREATE INDEX IF NOT EXISTS idx_tx_subject ON credit_transactions(subject_id)"
            )
        except aiosqlite.Error as e:
            await self.close()
            raise translate_engine_error(e, "transactions", "init") from e

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _require_db(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("TransactionLog not initialized. Call init() first.")
        return self._db

    async def append(self, transaction: CreditTransaction) -> None:
        """Append a transaction to the log.

        Raises:
            StorageUnavailableError: If the row could not be written.
        """
        db = self._require_db()
        try:
            await db.execute(
                """
                INSERT INTO credit_transactions (
                    transaction_id, subject_id, kind, amount, description, ts, balance_after
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    transaction.transaction_id,
                    transaction.subject_id,
                    transaction.kind.value,
                    transaction.amount,
                    transaction.description,
                    transaction.timestamp.isoformat(),
                    transaction.balance_after,
                ),
            )
        except aiosqlite.Error as e:
            raise translate_engine_error(e, "transactions", "append") from e

        logger.debug(
            "Appended transaction",
            transaction_id=transaction.transaction_id,
            kind=transaction.kind.value,
            amount=transaction.amount,
        )

    async def history(
        self,
        subject_id: str,
        kind: TransactionKind | None = None,
        limit: int = 100,
    ) -> list[CreditTransaction]:
        """Get transactions for a subject, newest first.

        Args:
            subject_id: Subject to list transactions for.
            kind: Optional filter on purchase/usage.
            limit: Maximum number of transactions.
        """
        db = self._require_db()
        conditions = ["subject_id = ?"]
        params: list[Any] = [subject_id]
        if kind:
            conditions.append("kind = ?")
            params.append(kind.value)
        params.append(limit)

        query = (
            "SELECT * FROM credit_transactions WHERE "
            + " AND ".join(conditions)
            + " ORDER BY seq DESC LIMIT ?"
        )
        try:
            async with db.execute(query, params) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise translate_engine_error(e, "transactions", "history") from e

        return [self._row_to_transaction(row) for row in rows]

    async def count(self, subject_id: str | None = None) -> int:
        """Count transactions, optionally for one subject."""
        db = self._require_db()
        if subject_id is None:
            query, params = "SELECT COUNT(*) FROM credit_transactions", ()
        else:
            query = "SELECT COUNT(*) FROM credit_transactions WHERE subject_id = ?"
            params = (subject_id,)
        try:
            async with db.execute(query, params) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise translate_engine_error(e, "transactions", "count") from e
        return row[0] if row else 0

    def _row_to_transaction(self, row: aiosqlite.Row) -> CreditTransaction:
        """Convert a database row to CreditTransaction."""
        return CreditTransaction(
            transaction_id=row["transaction_id"],
            subject_id=row["subject_id"],
            kind=TransactionKind(row["kind"]),
            amount=row["amount"],
            description=row["description"],
            timestamp=datetime.fromisoformat(row["ts"]),
            balance_after=row["balance_after"],
        )
