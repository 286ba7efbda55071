"""
Pytest configuration and fixtures for caseshelf tests.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import AsyncGenerator, Generator
from unittest.mock import patch

import pytest

from caseshelf.cache.documents import DocumentCache
from caseshelf.cache.store import BinaryStore
from caseshelf.config import Settings, clear_settings_cache
from caseshelf.connectivity import ConnectivityObserver, ManualSignal
from caseshelf.credits.accounts import AccountStore
from caseshelf.credits.gate import AccessGate, GrantStore
from caseshelf.credits.ledger import CreditLedger
from caseshelf.credits.transactions import TransactionLog
from caseshelf.exceptions import FetchError
from caseshelf.types import ConnectivityState


class StaticFetcher:
    """Fetcher serving fixed bytes per URL and counting calls."""

    def __init__(self, documents: dict[str, bytes] | None = None) -> None:
        self.documents = dict(documents or {})
        self.calls: list[str] = []

    async def fetch(self, url: str) -> bytes:
        self.calls.append(url)
        if url not in self.documents:
            raise FetchError("HTTP 404 fetching document", context={"url": url, "status_code": 404})
        return self.documents[url]


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide environment variables pointing caseshelf at temp_dir."""
    env_vars = {
        "DATA_DIR": str(temp_dir / "data"),
        "MAX_CACHE_BYTES": "1048576",
        "STARTING_CREDITS": "50",
        "GRANT_RETENTION_PERIODS": "7",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str]) -> Generator[Settings, None, None]:
    """Provide a Settings instance with mock configuration."""
    from caseshelf.config import get_settings

    settings = get_settings()
    yield settings
    clear_settings_cache()


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
async def binary_store(temp_dir: Path) -> AsyncGenerator[BinaryStore, None]:
    """Create an initialized binary store without a quota."""
    store = BinaryStore(temp_dir / "documents.db")
    await store.init()
    yield store
    await store.close()


@pytest.fixture
def fetcher() -> StaticFetcher:
    """Fetcher with one known PDF."""
    return StaticFetcher({"https://example.com/doc-1.pdf": b"%PDF-1.7 case file one"})


@pytest.fixture
def signal() -> ManualSignal:
    """Connectivity signal that starts online."""
    return ManualSignal(ConnectivityState.ONLINE)


@pytest.fixture
def connectivity(signal: ManualSignal) -> ConnectivityObserver:
    return ConnectivityObserver(signal)


@pytest.fixture
def document_cache(
    binary_store: BinaryStore,
    fetcher: StaticFetcher,
    connectivity: ConnectivityObserver,
) -> DocumentCache:
    return DocumentCache(binary_store, fetcher, connectivity)


@pytest.fixture
async def account_store(temp_dir: Path) -> AsyncGenerator[AccountStore, None]:
    store = AccountStore(temp_dir / "ledger.db")
    await store.init()
    yield store
    await store.close()


@pytest.fixture
async def transaction_log(temp_dir: Path) -> AsyncGenerator[TransactionLog, None]:
    log = TransactionLog(temp_dir / "ledger.db")
    await log.init()
    yield log
    await log.close()


@pytest.fixture
async def grant_store(temp_dir: Path) -> AsyncGenerator[GrantStore, None]:
    store = GrantStore(temp_dir / "ledger.db")
    await store.init()
    yield store
    await store.close()


@pytest.fixture
def ledger(account_store: AccountStore, transaction_log: TransactionLog) -> CreditLedger:
    return CreditLedger(account_store, transaction_log)


@pytest.fixture
def gate(ledger: CreditLedger, grant_store: GrantStore) -> AccessGate:
    return AccessGate(ledger, grant_store, retention_periods=7)
