"""
Access gate: charge a gated resource at most once per period.

A grant for (gate_key, period_key) records that the charge was applied.
Later calls with the same keys are authorized without touching the ledger.
Period keys are caller-chosen; calendar days are the common case. This is a
usage nudge, not an entitlement system: grants live on the local device.
"""

from __future__ import annotations

import asyncio
import weakref
from datetime import date, datetime
from pathlib import Path

import aiosqlite

from caseshelf.credits.ledger import CreditLedger
from caseshelf.exceptions import CaseShelfError, StorageUnavailableError
from caseshelf.logging import get_logger, log_context
from caseshelf.storage import open_database, translate_engine_error
from caseshelf.types import (
    AccessDecision,
    AccessGrant,
    FailureKind,
    GateResult,
    LedgerResult,
    utc_now,
)

logger = get_logger(__name__)

DEFAULT_RETENTION_PERIODS = 7


def period_for(day: date | None = None) -> str:
    """Get the period key for a calendar day (local date by default)."""
    return (day or date.today()).isoformat()


class GrantStore:
    """SQLite-backed access grants."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self._db: aiosqlite.Connection | None = None

    async def init(self) -> None:
        """Open the database and create the grants table."""
        self._db = await open_database(self.db_path, "grants")
        try:
            await self._db.execute("""
                CREATE TABLE IF NOT EXISTS access_grants (
                    gate_key TEXT NOT NULL,
                    period_key TEXT NOT NULL,
                    subject_id TEXT NOT NULL,
                    cost INTEGER NOT NULL,
                    granted_at TEXT NOT NULL,
                    PRIMARY KEY (gate_key, period_key)
                )
            """)
        except aiosqlite.Error as e:
            await self.close()
            raise translate_engine_error(e, "grants", "init") from e

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            await self._db.close()
            self._db = None

    def _require_db(self) -> aiosqlite.Connection:
        if not self._db:
            raise RuntimeError("GrantStore not initialized. Call init() first.")
        return self._db

    async def get(self, gate_key: str, period_key: str) -> AccessGrant | None:
        """Get the grant for a gate and period, None if not charged yet."""
        db = self._require_db()
        try:
            async with db.execute(
                "SELECT * FROM access_grants WHERE gate_key = ? AND period_key = ?",
                (gate_key, period_key),
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            raise translate_engine_error(e, "grants", "get") from e
        return self._row_to_grant(row) if row else None

    async def add(self, grant: AccessGrant) -> None:
        """Record a grant. An existing grant for the same keys is kept."""
        db = self._require_db()
        try:
            await db.execute(
                """
                INSERT OR IGNORE INTO access_grants (
                    gate_key, period_key, subject_id, cost, granted_at
                ) VALUES (?, ?, ?, ?, ?)
                """,
                (
                    grant.gate_key,
                    grant.period_key,
                    grant.subject_id,
                    grant.cost,
                    grant.granted_at.isoformat(),
                ),
            )
        except aiosqlite.Error as e:
            raise translate_engine_error(e, "grants", "add") from e

    async def list_grants(self, gate_key: str) -> list[AccessGrant]:
        """List grants for a gate, most recent first."""
        db = self._require_db()
        try:
            async with db.execute(
                """
                SELECT * FROM access_grants WHERE gate_key = ?
                ORDER BY granted_at DESC, period_key DESC
                """,
                (gate_key,),
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            raise translate_engine_error(e, "grants", "list") from e
        return [self._row_to_grant(row) for row in rows]

    async def prune(self, gate_key: str, keep: int) -> int:
        """Delete all but the ``keep`` most recently granted periods of a gate.

        Returns:
            Number of grants deleted.
        """
        db = self._require_db()
        try:
            cursor = await db.execute(
                """
                DELETE FROM access_grants
                WHERE gate_key = ? AND period_key NOT IN (
                    SELECT period_key FROM access_grants
                    WHERE gate_key = ?
                    ORDER BY granted_at DESC, period_key DESC
                    LIMIT ?
                )
                """,
                (gate_key, gate_key, keep),
            )
        except aiosqlite.Error as e:
            raise translate_engine_error(e, "grants", "prune") from e
        return cursor.rowcount

    def _row_to_grant(self, row: aiosqlite.Row) -> AccessGrant:
        """Convert a database row to AccessGrant."""
        return AccessGrant(
            gate_key=row["gate_key"],
            period_key=row["period_key"],
            subject_id=row["subject_id"],
            cost=row["cost"],
            granted_at=datetime.fromisoformat(row["granted_at"]),
        )


class AccessGate:
    """Idempotent per-period charging over a CreditLedger.

    Calls for the same (gate_key, period_key) are serialised, so concurrent
    flows cannot both charge the same period. Old grants are pruned
    whenever a call finds or records a grant.
    """

    def __init__(
        self,
        ledger: CreditLedger,
        grants: GrantStore,
        retention_periods: int = DEFAULT_RETENTION_PERIODS,
    ) -> None:
        if retention_periods < 1:
            raise ValueError("retention_periods must be >= 1")
        self.ledger = ledger
        self.grants = grants
        self.retention_periods = retention_periods
        self._locks: weakref.WeakValueDictionary[tuple[str, str], asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, gate_key: str, period_key: str) -> asyncio.Lock:
        key = (gate_key, period_key)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    async def is_authorized(self, gate_key: str, period_key: str) -> bool:
        """Check whether the gate was already charged for the period."""
        return await self.grants.get(gate_key, period_key) is not None

    async def authorize(
        self,
        gate_key: str,
        period_key: str,
        subject_id: str,
        cost: int,
        description: str,
    ) -> GateResult:
        """Authorize access, charging ``cost`` once per (gate_key, period_key).

        Args:
            gate_key: Gated resource, e.g. a page name.
            period_key: Charging period, e.g. an ISO calendar day.
            subject_id: Account to charge.
            cost: Credits to debit on first access in the period.
            description: Transaction description.

        Returns:
            GateResult with decision authorized, already_authorized or denied.
        """
        with log_context(subject_id=subject_id, operation="authorize"):
            async with self._lock_for(gate_key, period_key):
                try:
                    existing = await self.grants.get(gate_key, period_key)
                except StorageUnavailableError as e:
                    # Without the grant record a charge could be repeated.
                    logger.warning("Grant lookup failed", gate_key=gate_key, error=str(e))
                    return self._denied(gate_key, period_key, FailureKind.STORAGE_UNAVAILABLE)

                if existing is not None:
                    logger.debug("Already authorized", gate_key=gate_key, period_key=period_key)
                    await self._prune(gate_key)
                    return GateResult(
                        decision=AccessDecision.ALREADY_AUTHORIZED,
                        gate_key=gate_key,
                        period_key=period_key,
                    )

                check = await self.ledger.sufficient(subject_id, cost)
                if not check:
                    return self._denied(gate_key, period_key, check.failure, check)

                debit = await self.ledger.debit(subject_id, cost, description)
                if not debit:
                    return self._denied(gate_key, period_key, debit.failure, debit)

                grant = AccessGrant(
                    gate_key=gate_key,
                    period_key=period_key,
                    subject_id=subject_id,
                    cost=cost,
                    granted_at=utc_now(),
                )
                try:
                    await self.grants.add(grant)
                except CaseShelfError as e:
                    # Credits are spent; the caller is still authorized.
                    logger.error(
                        "Failed to record access grant",
                        gate_key=gate_key,
                        period_key=period_key,
                        error=str(e),
                    )
                else:
                    await self._prune(gate_key)

            logger.info(
                "Access authorized",
                gate_key=gate_key,
                period_key=period_key,
                cost=cost,
                balance=debit.balance,
            )
        return GateResult(
            decision=AccessDecision.AUTHORIZED,
            gate_key=gate_key,
            period_key=period_key,
            ledger=debit,
        )

    async def _prune(self, gate_key: str) -> None:
        try:
            removed = await self.grants.prune(gate_key, self.retention_periods)
        except CaseShelfError as e:
            logger.warning("Grant pruning failed", gate_key=gate_key, error=str(e))
            return
        if removed:
            logger.debug("Pruned access grants", gate_key=gate_key, removed=removed)

    def _denied(
        self,
        gate_key: str,
        period_key: str,
        reason: FailureKind | None,
        ledger_result: LedgerResult | None = None,
    ) -> GateResult:
        logger.info(
            "Access denied",
            gate_key=gate_key,
            period_key=period_key,
            reason=reason.value if reason else None,
        )
        return GateResult(
            decision=AccessDecision.DENIED,
            gate_key=gate_key,
            period_key=period_key,
            reason=reason,
            ledger=ledger_result,
        )
