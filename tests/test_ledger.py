"""
Tests for the credit ledger.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from caseshelf.credits.accounts import AccountStore, BalancePersistence
from caseshelf.credits.ledger import CREDIT_COSTS, CreditLedger, credit_status
from caseshelf.credits.transactions import TransactionLog
from caseshelf.exceptions import InsufficientCreditsError, StorageUnavailableError
from caseshelf.types import CreditStatus, CreditTransaction, FailureKind, TransactionKind


class MemoryBalances:
    """In-memory BalancePersistence that can refuse writes."""

    def __init__(self, balances: dict[str, int] | None = None) -> None:
        self.balances = dict(balances or {})
        self.accept_writes = True

    async def read(self, subject_id: str) -> int | None:
        return self.balances.get(subject_id)

    async def write(self, subject_id: str, balance: int) -> bool:
        if not self.accept_writes or subject_id not in self.balances:
            return False
        self.balances[subject_id] = balance
        return True


class FailingLog(TransactionLog):
    """Transaction log whose appends always fail."""

    async def append(self, transaction: CreditTransaction) -> None:
        raise StorageUnavailableError("transactions storage unavailable")


class TestCreditStatus:
    """Test balance classification."""

    @pytest.mark.parametrize(
        ("balance", "expected"),
        [
            (51, CreditStatus.GOOD),
            (50, CreditStatus.WARNING),
            (11, CreditStatus.WARNING),
            (10, CreditStatus.CRITICAL),
            (0, CreditStatus.CRITICAL),
        ],
    )
    def test_thresholds(self, balance: int, expected: CreditStatus) -> None:
        """Test status boundaries."""
        assert credit_status(balance) == expected

    def test_status_messages(self) -> None:
        """Test every status has a message."""
        assert CreditStatus.CRITICAL.message.startswith("Critical credit level")
        assert all(status.message for status in CreditStatus)

    def test_credit_costs(self) -> None:
        """Test the operation price list."""
        assert CREDIT_COSTS["case_law_search"] == 1
        assert CREDIT_COSTS["document_download"] == 5
        assert all(cost > 0 for cost in CREDIT_COSTS.values())


class TestDebit:
    """Test spending credits."""

    @pytest.mark.asyncio
    async def test_debit_then_insufficient(
        self, ledger: CreditLedger, account_store: AccountStore
    ) -> None:
        """Test 50 - 10 = 40, then a debit of 45 is refused with its shortfall."""
        await account_store.open_account("user-1", 50)

        spent = await ledger.debit("user-1", 10, "Document view")
        assert spent
        assert spent.balance == 40
        assert spent.transaction is not None
        assert spent.transaction.kind == TransactionKind.USAGE
        assert spent.transaction.amount == 10
        assert spent.transaction.balance_after == 40

        refused = await ledger.debit("user-1", 45, "Premium feature")
        assert not refused
        assert refused.failure == FailureKind.INSUFFICIENT_CREDITS
        assert refused.required == 45
        assert refused.available == 40
        assert refused.shortfall == 5
        assert refused.error == "Insufficient credits. You need 45 credits but have 40."

        balance = await ledger.balance("user-1")
        assert balance.balance == 40

    @pytest.mark.asyncio
    async def test_debit_records_one_transaction(
        self,
        ledger: CreditLedger,
        account_store: AccountStore,
        transaction_log: TransactionLog,
    ) -> None:
        """Test a successful debit appends exactly one usage transaction."""
        await account_store.open_account("user-1", 20)

        await ledger.debit("user-1", 3, "Case law search")

        history = await ledger.history("user-1")
        assert len(history) == 1
        assert history[0].kind == TransactionKind.USAGE
        assert history[0].description == "Case law search"
        assert await transaction_log.count("user-1") == 1

    @pytest.mark.asyncio
    async def test_refused_debit_records_nothing(
        self,
        ledger: CreditLedger,
        account_store: AccountStore,
        transaction_log: TransactionLog,
    ) -> None:
        """Test a refused debit leaves balance and log unchanged."""
        await account_store.open_account("user-1", 5)

        result = await ledger.debit("user-1", 6, "Too expensive")

        assert not result
        assert await account_store.read("user-1") == 5
        assert await transaction_log.count("user-1") == 0

    @pytest.mark.asyncio
    async def test_debit_to_zero(self, ledger: CreditLedger, account_store: AccountStore) -> None:
        """Test spending the exact balance is allowed."""
        await account_store.open_account("user-1", 10)

        result = await ledger.debit("user-1", 10, "Everything")

        assert result.balance == 0

    @pytest.mark.asyncio
    async def test_concurrent_debits_never_go_negative(
        self,
        ledger: CreditLedger,
        account_store: AccountStore,
        transaction_log: TransactionLog,
    ) -> None:
        """Test concurrent debits succeed only while the balance covers them."""
        await account_store.open_account("user-1", 50)

        results = await asyncio.gather(
            *(ledger.debit("user-1", 7, f"Request {i}") for i in range(10))
        )

        succeeded = [r for r in results if r]
        refused = [r for r in results if not r]
        assert len(succeeded) == 7
        assert all(r.failure == FailureKind.INSUFFICIENT_CREDITS for r in refused)
        assert await account_store.read("user-1") == 1
        assert await transaction_log.count("user-1") == 7

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, -5, 1.5, True])
    async def test_invalid_amount(
        self, ledger: CreditLedger, account_store: AccountStore, amount: object
    ) -> None:
        """Test non-positive or non-integer amounts are rejected."""
        await account_store.open_account("user-1", 50)

        with pytest.raises(ValueError):
            await ledger.debit("user-1", amount, "Bad")  # type: ignore[arg-type]


class TestCredit:
    """Test adding credits."""

    @pytest.mark.asyncio
    async def test_credit(self, ledger: CreditLedger, account_store: AccountStore) -> None:
        """Test 50 + 50 = 100 with a purchase transaction."""
        await account_store.open_account("user-1", 50)

        result = await ledger.credit("user-1", 50, "Credit purchase")

        assert result
        assert result.balance == 100
        assert result.transaction is not None
        assert result.transaction.kind == TransactionKind.PURCHASE
        status = await ledger.status("user-1")
        assert status.status == CreditStatus.GOOD

    @pytest.mark.asyncio
    async def test_history_newest_first(
        self, ledger: CreditLedger, account_store: AccountStore
    ) -> None:
        """Test history is returned newest first and can be filtered."""
        await account_store.open_account("user-1", 50)
        await ledger.debit("user-1", 1, "first")
        await ledger.credit("user-1", 5, "second")
        await ledger.debit("user-1", 2, "third")

        history = await ledger.history("user-1")
        assert [t.description for t in history] == ["third", "second", "first"]

        purchases = await ledger.history("user-1", kind=TransactionKind.PURCHASE)
        assert [t.description for t in purchases] == ["second"]

        assert len(await ledger.history("user-1", limit=2)) == 2


class TestNotAuthenticated:
    """Test subjects without an account."""

    @pytest.mark.asyncio
    async def test_unknown_subject(self, ledger: CreditLedger) -> None:
        """Test unknown subjects are not authenticated, not zero balance."""
        balance = await ledger.balance("ghost")
        assert not balance
        assert balance.failure == FailureKind.NOT_AUTHENTICATED
        assert balance.balance is None

        debit = await ledger.debit("ghost", 1, "x")
        assert debit.failure == FailureKind.NOT_AUTHENTICATED

        credit = await ledger.credit("ghost", 1, "x")
        assert credit.failure == FailureKind.NOT_AUTHENTICATED

        check = await ledger.sufficient("ghost", 1)
        assert check.failure == FailureKind.NOT_AUTHENTICATED

    @pytest.mark.asyncio
    async def test_zero_balance_is_not_unauthenticated(
        self, ledger: CreditLedger, account_store: AccountStore
    ) -> None:
        """Test an empty account reports insufficient credits."""
        await account_store.open_account("user-1", 0)

        result = await ledger.sufficient("user-1", 1)

        assert result.failure == FailureKind.INSUFFICIENT_CREDITS
        assert result.available == 0


class TestPersistenceFailures:
    """Test behaviour when storage refuses writes."""

    @pytest.mark.asyncio
    async def test_balance_write_refused(self, transaction_log: TransactionLog) -> None:
        """Test a refused balance write fails without a transaction."""
        balances = MemoryBalances({"user-1": 50})
        balances.accept_writes = False
        ledger = CreditLedger(balances, transaction_log)

        result = await ledger.debit("user-1", 10, "View")

        assert result.failure == FailureKind.PERSISTENCE_FAILED
        assert balances.balances["user-1"] == 50
        assert await transaction_log.count("user-1") == 0

    @pytest.mark.asyncio
    async def test_append_failure_restores_balance(self, temp_dir: Path) -> None:
        """Test a failed transaction append rolls the balance back."""
        balances = MemoryBalances({"user-1": 50})
        log = FailingLog(temp_dir / "ledger.db")
        await log.init()
        try:
            ledger = CreditLedger(balances, log)

            result = await ledger.debit("user-1", 10, "View")

            assert result.failure == FailureKind.PERSISTENCE_FAILED
            assert balances.balances["user-1"] == 50
        finally:
            await log.close()

    def test_memory_balances_is_persistence(self) -> None:
        """Test the protocol accepts custom implementations."""
        assert isinstance(MemoryBalances(), BalancePersistence)


class TestInsufficientCreditsError:
    """Test the insufficient credits exception."""

    def test_shortfall(self) -> None:
        error = InsufficientCreditsError(required=45, available=40, subject_id="user-1")

        assert error.shortfall == 5
        assert error.context["required"] == 45
        assert "You need 45 credits but have 40" in str(error)


class SlowBalances(MemoryBalances):
    """MemoryBalances whose writes wait until released."""

    def __init__(self, balances: dict[str, int] | None = None) -> None:
        super().__init__(balances)
        self.writing = asyncio.Event()
        self.release = asyncio.Event()

    async def write(self, subject_id: str, balance: int) -> bool:
        self.writing.set()
        await self.release.wait()
        return await super().write(subject_id, balance)


class TestCancellation:
    """Test cancelled operations keep balance and history consistent."""

    @pytest.mark.asyncio
    async def test_cancelled_debit_completes_write(self, transaction_log: TransactionLog) -> None:
        """Test a debit cancelled mid-write still records its transaction."""
        balances = SlowBalances({"user-1": 50})
        ledger = CreditLedger(balances, transaction_log)

        task = asyncio.create_task(ledger.debit("user-1", 10, "Document view"))
        await balances.writing.wait()
        task.cancel()
        await asyncio.sleep(0)
        balances.release.set()
        with pytest.raises(asyncio.CancelledError):
            await task

        history = await ledger.history("user-1")
        assert balances.balances["user-1"] == 40
        assert len(history) == 1
        assert history[0].balance_after == 40

    @pytest.mark.asyncio
    async def test_ledger_usable_after_cancelled_debit(
        self, transaction_log: TransactionLog
    ) -> None:
        """Test the subject lock is released after a cancelled debit."""
        balances = SlowBalances({"user-1": 50})
        ledger = CreditLedger(balances, transaction_log)

        task = asyncio.create_task(ledger.debit("user-1", 10, "Document view"))
        await balances.writing.wait()
        task.cancel()
        balances.release.set()
        with pytest.raises(asyncio.CancelledError):
            await task

        result = await ledger.debit("user-1", 5, "Case law search")

        assert result.balance == 35
        assert [t.balance_after for t in await ledger.history("user-1")] == [35, 40]

    @pytest.mark.asyncio
    async def test_cancelled_before_write_changes_nothing(
        self, ledger: CreditLedger, account_store: AccountStore, transaction_log: TransactionLog
    ) -> None:
        """Test a debit cancelled while queued on the subject lock has no effect."""
        await account_store.open_account("user-1", 50)
        lock = ledger._lock_for("user-1")

        async with lock:
            task = asyncio.create_task(ledger.debit("user-1", 10, "Document view"))
            await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert await account_store.read("user-1") == 50
        assert await transaction_log.count("user-1") == 0
