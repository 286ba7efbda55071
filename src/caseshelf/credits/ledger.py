"""
Credit ledger.

Debits and credits a per-subject balance held by a BalancePersistence
collaborator and records every change in a TransactionLog. All operations on
one subject are serialised by a per-subject lock, so a debit re-checks
sufficiency at the moment it writes and no reader sees a balance without its
transaction.
"""

from __future__ import annotations

import asyncio
import weakref

from caseshelf.credits.accounts import BalancePersistence
from caseshelf.credits.transactions import TransactionLog
from caseshelf.exceptions import (
    InsufficientCreditsError,
    NotAuthenticatedError,
    StorageUnavailableError,
)
from caseshelf.logging import get_logger, log_context
from caseshelf.types import (
    CreditStatus,
    CreditTransaction,
    FailureKind,
    LedgerResult,
    TransactionKind,
)

logger = get_logger(__name__)


# Credits charged per operation
CREDIT_COSTS: dict[str, int] = {
    "case_law_search": 1,
    "document_view": 2,
    "document_download": 5,
    "form_generation": 3,
    "premium_feature": 10,
}

# Status thresholds: above GOOD_ABOVE is good, above CRITICAL_AT_OR_BELOW is warning
GOOD_ABOVE = 50
CRITICAL_AT_OR_BELOW = 10


def credit_status(balance: int) -> CreditStatus:
    """Classify a balance.

    Args:
        balance: Current balance.

    Returns:
        GOOD above 50, WARNING above 10, CRITICAL otherwise.
    """
    if balance > GOOD_ABOVE:
        return CreditStatus.GOOD
    if balance > CRITICAL_AT_OR_BELOW:
        return CreditStatus.WARNING
    return CreditStatus.CRITICAL


def _validate_amount(amount: int) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise ValueError(f"Credit amount must be a positive integer, got {amount!r}")


class CreditLedger:
    """Balance operations for authenticated subjects.

    Every public operation returns a LedgerResult. A subject without an
    account yields not_authenticated, never a zero balance.
    """

    def __init__(self, accounts: BalancePersistence, transactions: TransactionLog) -> None:
        self.accounts = accounts
        self.transactions = transactions
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, subject_id: str) -> asyncio.Lock:
        lock = self._locks.get(subject_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[subject_id] = lock
        return lock

    async def _read_balance(self, subject_id: str) -> int:
        balance = await self.accounts.read(subject_id)
        if balance is None:
            raise NotAuthenticatedError(
                "User not authenticated", context={"subject_id": subject_id}
            )
        return balance

    async def balance(self, subject_id: str) -> LedgerResult:
        """Get the current balance."""
        async with self._lock_for(subject_id):
            try:
                balance = await self._read_balance(subject_id)
            except (NotAuthenticatedError, StorageUnavailableError) as e:
                return self._failure(subject_id, e)
        return LedgerResult(success=True, subject_id=subject_id, balance=balance)

    async def sufficient(self, subject_id: str, amount: int) -> LedgerResult:
        """Check whether ``amount`` could be debited right now.

        Returns:
            Truthy result if balance >= amount; otherwise insufficient_credits
            with required/available, or not_authenticated.
        """
        _validate_amount(amount)
        async with self._lock_for(subject_id):
            try:
                balance = await self._read_balance(subject_id)
            except (NotAuthenticatedError, StorageUnavailableError) as e:
                return self._failure(subject_id, e)

        if balance < amount:
            return self._failure(
                subject_id, InsufficientCreditsError(amount, balance, subject_id)
            )
        return LedgerResult(
            success=True,
            subject_id=subject_id,
            balance=balance,
            required=amount,
            available=balance,
        )

    async def debit(self, subject_id: str, amount: int, description: str) -> LedgerResult:
        """Spend credits.

        Args:
            subject_id: Account to debit.
            amount: Positive number of credits.
            description: What the credits were spent on.

        Returns:
            LedgerResult with the new balance and usage transaction, or
            insufficient_credits / not_authenticated / persistence_failed.
        """
        _validate_amount(amount)
        with log_context(subject_id=subject_id, operation="debit"):
            async with self._lock_for(subject_id):
                try:
                    balance = await self._read_balance(subject_id)
                    if amount > balance:
                        raise InsufficientCreditsError(amount, balance, subject_id)
                    transaction = await self._commit(
                        subject_id, TransactionKind.USAGE, amount, description, balance
                    )
                except (
                    NotAuthenticatedError,
                    InsufficientCreditsError,
                    StorageUnavailableError,
                ) as e:
                    logger.info("Debit refused", amount=amount, reason=str(e))
                    return self._failure(subject_id, e)

            logger.info(
                "Spent credits",
                amount=amount,
                description=description,
                balance=transaction.balance_after,
            )
        return LedgerResult(
            success=True,
            subject_id=subject_id,
            balance=transaction.balance_after,
            transaction=transaction,
        )

    async def credit(self, subject_id: str, amount: int, description: str) -> LedgerResult:
        """Add purchased credits. There is no upper bound."""
        _validate_amount(amount)
        with log_context(subject_id=subject_id, operation="credit"):
            async with self._lock_for(subject_id):
                try:
                    balance = await self._read_balance(subject_id)
                    transaction = await self._commit(
                        subject_id, TransactionKind.PURCHASE, amount, description, balance
                    )
                except (NotAuthenticatedError, StorageUnavailableError) as e:
                    logger.warning("Credit refused", amount=amount, reason=str(e))
                    return self._failure(subject_id, e)

            logger.info(
                "Added credits",
                amount=amount,
                description=description,
                balance=transaction.balance_after,
            )
        return LedgerResult(
            success=True,
            subject_id=subject_id,
            balance=transaction.balance_after,
            transaction=transaction,
        )

    async def status(self, subject_id: str) -> LedgerResult:
        """Get the credit status derived from the current balance."""
        result = await self.balance(subject_id)
        if not result:
            return result
        return LedgerResult(
            success=True,
            subject_id=subject_id,
            balance=result.balance,
            status=credit_status(result.balance or 0),
        )

    async def history(
        self,
        subject_id: str,
        kind: TransactionKind | None = None,
        limit: int = 100,
    ) -> list[CreditTransaction]:
        """Get the subject's transactions, newest first."""
        return await self.transactions.history(subject_id, kind=kind, limit=limit)

    async def _commit(
        self,
        subject_id: str,
        kind: TransactionKind,
        amount: int,
        description: str,
        balance: int,
    ) -> CreditTransaction:
        """Write the new balance and its transaction while holding the subject lock.

        Once started, the write runs to completion even if the caller is
        cancelled, so the lock is never released between the two writes.
        """
        new_balance = balance - amount if kind == TransactionKind.USAGE else balance + amount
        task = asyncio.ensure_future(
            self._apply(subject_id, kind, amount, description, balance, new_balance)
        )
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                logger.error(
                    "Balance update failed after cancellation",
                    subject_id=subject_id,
                    error=str(task.exception()),
                )
            raise

    async def _apply(
        self,
        subject_id: str,
        kind: TransactionKind,
        amount: int,
        description: str,
        old_balance: int,
        new_balance: int,
    ) -> CreditTransaction:
        if not await self.accounts.write(subject_id, new_balance):
            raise StorageUnavailableError(
                "Balance could not be persisted",
                context={"subject_id": subject_id, "balance": new_balance},
            )

        transaction = CreditTransaction.create(
            subject_id=subject_id,
            kind=kind,
            amount=amount,
            description=description,
            balance_after=new_balance,
        )
        try:
            await self.transactions.append(transaction)
        except Exception:
            # No balance change may outlive a missing transaction record.
            if not await self.accounts.write(subject_id, old_balance):
                logger.error(
                    "Failed to restore balance after transaction error",
                    subject_id=subject_id,
                    balance=new_balance,
                    expected=old_balance,
                )
            raise
        return transaction

    def _failure(self, subject_id: str, error: Exception) -> LedgerResult:
        """Build a failure result from an expected ledger error."""
        if isinstance(error, InsufficientCreditsError):
            return LedgerResult(
                success=False,
                subject_id=subject_id,
                failure=FailureKind.INSUFFICIENT_CREDITS,
                balance=error.available,
                required=error.required,
                available=error.available,
                error=error.message,
            )
        if isinstance(error, NotAuthenticatedError):
            return LedgerResult(
                success=False,
                subject_id=subject_id,
                failure=FailureKind.NOT_AUTHENTICATED,
                error=error.message,
            )
        return LedgerResult(
            success=False,
            subject_id=subject_id,
            failure=FailureKind.PERSISTENCE_FAILED,
            error=str(error),
        )
