"""
Composition root.

CaseShelf builds the document cache, connectivity observer, credit ledger and
access gate from Settings and owns their lifecycle. Consumers receive these
instances explicitly; there is no module-level state.
"""

from __future__ import annotations

from types import TracebackType

from caseshelf.cache.documents import DocumentCache
from caseshelf.cache.fetcher import Fetcher, HttpFetcher
from caseshelf.cache.store import BinaryStore
from caseshelf.config import Settings
from caseshelf.connectivity import (
    ConnectivityObserver,
    HttpProbeSignal,
    PlatformConnectivitySignal,
)
from caseshelf.credits.accounts import AccountStore
from caseshelf.credits.gate import AccessGate, GrantStore
from caseshelf.credits.ledger import CreditLedger
from caseshelf.credits.transactions import TransactionLog
from caseshelf.exceptions import ConfigurationError
from caseshelf.logging import get_logger

logger = get_logger(__name__)


class CaseShelf:
    """All caseshelf components wired together.

    Use as an async context manager, or call ``open()`` and ``close()``.
    """

    def __init__(
        self,
        settings: Settings,
        fetcher: Fetcher | None = None,
        signal: PlatformConnectivitySignal | None = None,
    ) -> None:
        """Build the components.

        Args:
            settings: Application settings.
            fetcher: Document fetcher; defaults to HttpFetcher.
            signal: Connectivity signal; defaults to an HTTP probe when
                CONNECTIVITY_PROBE_URL is set, otherwise none (assumed online).
        """
        self.settings = settings

        self._probe: HttpProbeSignal | None = None
        if signal is None and settings.CONNECTIVITY_PROBE_URL:
            self._probe = HttpProbeSignal(
                settings.CONNECTIVITY_PROBE_URL,
                interval=settings.CONNECTIVITY_PROBE_INTERVAL_SECONDS,
            )
            signal = self._probe

        self._owned_fetcher: HttpFetcher | None = None
        if fetcher is None:
            self._owned_fetcher = HttpFetcher(
                timeout=settings.FETCH_TIMEOUT_SECONDS,
                max_content_size=settings.MAX_DOCUMENT_BYTES,
            )
            fetcher = self._owned_fetcher

        self.connectivity = ConnectivityObserver(signal)
        self.store = BinaryStore(settings.documents_db_path, quota_bytes=settings.cache_quota_bytes)
        self.documents = DocumentCache(self.store, fetcher, self.connectivity)

        self.accounts = AccountStore(settings.ledger_db_path)
        self.transactions = TransactionLog(settings.ledger_db_path)
        self.grants = GrantStore(settings.ledger_db_path)
        self.ledger = CreditLedger(self.accounts, self.transactions)
        self.gate = AccessGate(
            self.ledger,
            self.grants,
            retention_periods=settings.GRANT_RETENTION_PERIODS,
        )

    async def open(self) -> CaseShelf:
        """Open every store and start the connectivity probe if configured."""
        try:
            self.settings.ensure_directories()
        except OSError as e:
            raise ConfigurationError(
                "Data directory cannot be created",
                context={"data_dir": str(self.settings.DATA_DIR), "reason": str(e)},
            ) from e

        try:
            await self.store.init()
            await self.accounts.init()
            await self.transactions.init()
            await self.grants.init()
        except BaseException:
            await self.close()
            raise

        if self._probe is not None:
            self._probe.start()

        logger.info("caseshelf opened", data_dir=str(self.settings.DATA_DIR))
        return self

    async def close(self) -> None:
        """Stop background work and close every store."""
        if self._probe is not None:
            await self._probe.stop()
        if self._owned_fetcher is not None:
            await self._owned_fetcher.close()
        await self.grants.close()
        await self.transactions.close()
        await self.accounts.close()
        await self.store.close()

    async def open_account(self, subject_id: str) -> int:
        """Open an account with the configured starting balance."""
        return await self.accounts.open_account(subject_id, self.settings.STARTING_CREDITS)

    async def __aenter__(self) -> CaseShelf:
        return await self.open()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
