"""
Core types for caseshelf.

This module defines the data structures shared by the cache and the ledger:
- Enums for connectivity, credit status, transaction kinds and failures
- Frozen dataclasses for immutable records (CachedDocument, CreditTransaction, AccessGrant)
- Outcome dataclasses returned by the public operations
- Helper functions for ID generation and timestamps
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum

from uuid6 import uuid7


def generate_id(prefix: str = "") -> str:
    """Generate a time-ordered unique ID using UUID7.

    Args:
        prefix: Optional prefix for the ID (e.g., "tx", "grant")

    Returns:
        A unique ID string, optionally prefixed.
    """
    uid = str(uuid7())
    return f"{prefix}_{uid}" if prefix else uid


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class ConnectivityState(str, Enum):
    """Network reachability as seen by the host."""

    ONLINE = "online"
    OFFLINE = "offline"


class CreditStatus(str, Enum):
    """Health of a credit balance."""

    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def message(self) -> str:
        """User-facing description of the status."""
        return _STATUS_MESSAGES[self]


_STATUS_MESSAGES = {
    CreditStatus.GOOD: "You have plenty of credits",
    CreditStatus.WARNING: "Your credits are running low",
    CreditStatus.CRITICAL: "Critical credit level! Add more credits to continue",
}


class TransactionKind(str, Enum):
    """Direction of a credit transaction."""

    PURCHASE = "purchase"
    USAGE = "usage"


class FailureKind(str, Enum):
    """Expected failure conditions reported through outcome values."""

    STORAGE_UNAVAILABLE = "storage_unavailable"
    FETCH_FAILED = "fetch_failed"
    UNAVAILABLE_OFFLINE = "unavailable_offline"
    NOT_AUTHENTICATED = "not_authenticated"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    PERSISTENCE_FAILED = "persistence_failed"


class ResolveOrigin(str, Enum):
    """Where resolved document bytes came from."""

    CACHE = "cache"
    NETWORK = "network"


class AccessDecision(str, Enum):
    """Result of an access gate check."""

    AUTHORIZED = "authorized"
    ALREADY_AUTHORIZED = "already_authorized"
    DENIED = "denied"


# =============================================================================
# Records
# =============================================================================


@dataclass(frozen=True)
class DocumentInfo:
    """Metadata of a cached document, without its payload."""

    identity: str
    title: str
    source_url: str
    cached_at: datetime
    size_bytes: int


@dataclass(frozen=True)
class CachedDocument:
    """A cached binary document.

    The payload is never mutated; re-caching an identity replaces the record.
    """

    identity: str
    title: str
    source_url: str
    payload: bytes
    cached_at: datetime
    size_bytes: int

    def __post_init__(self) -> None:
        if self.size_bytes != len(self.payload):
            raise ValueError(
                f"size_bytes {self.size_bytes} does not match payload length {len(self.payload)}"
            )

    @classmethod
    def create(
        cls,
        identity: str,
        title: str,
        source_url: str,
        payload: bytes,
    ) -> CachedDocument:
        """Create a document stamped with the current time."""
        return cls(
            identity=identity,
            title=title,
            source_url=source_url,
            payload=payload,
            cached_at=utc_now(),
            size_bytes=len(payload),
        )

    @property
    def info(self) -> DocumentInfo:
        """Metadata view of this document."""
        return DocumentInfo(
            identity=self.identity,
            title=self.title,
            source_url=self.source_url,
            cached_at=self.cached_at,
            size_bytes=self.size_bytes,
        )


@dataclass(frozen=True)
class CacheUsage:
    """Current cache occupancy."""

    count: int
    total_size_bytes: int
    quota_bytes: int | None = None

    @property
    def remaining_bytes(self) -> int | None:
        """Bytes left before the quota is reached, None when unbounded."""
        if self.quota_bytes is None:
            return None
        return max(self.quota_bytes - self.total_size_bytes, 0)


@dataclass(frozen=True)
class CreditTransaction:
    """Immutable record of a balance change.

    Amount is always positive; the direction is carried by ``kind``.
    """

    transaction_id: str
    subject_id: str
    kind: TransactionKind
    amount: int
    description: str
    timestamp: datetime
    balance_after: int

    @classmethod
    def create(
        cls,
        subject_id: str,
        kind: TransactionKind,
        amount: int,
        description: str,
        balance_after: int,
    ) -> CreditTransaction:
        """Create a new transaction with generated ID and timestamp."""
        if amount <= 0:
            raise ValueError("Transaction amount must be positive")
        return cls(
            transaction_id=generate_id("tx"),
            subject_id=subject_id,
            kind=kind,
            amount=amount,
            description=description,
            timestamp=utc_now(),
            balance_after=balance_after,
        )


@dataclass(frozen=True)
class AccessGrant:
    """Record that a gated resource was charged for a period."""

    gate_key: str
    period_key: str
    subject_id: str
    cost: int
    granted_at: datetime


# =============================================================================
# Outcomes
# =============================================================================


@dataclass(frozen=True)
class StoreOutcome:
    """Result of a mutating cache operation."""

    success: bool
    failure: FailureKind | None = None
    error: str | None = None

    def __bool__(self) -> bool:
        return self.success

    @classmethod
    def ok(cls) -> StoreOutcome:
        return cls(success=True)

    @classmethod
    def fail(cls, failure: FailureKind, error: str | None = None) -> StoreOutcome:
        return cls(success=False, failure=failure, error=error)


@dataclass(frozen=True)
class ResolveResult:
    """Result of resolving a document for viewing."""

    identity: str
    content: bytes | None = None
    origin: ResolveOrigin | None = None
    failure: FailureKind | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.content is not None

    @property
    def unavailable(self) -> bool:
        """True when offline and the document is not cached."""
        return self.failure == FailureKind.UNAVAILABLE_OFFLINE

    def __bool__(self) -> bool:
        return self.success


@dataclass(frozen=True)
class LedgerResult:
    """Result of a credit ledger operation.

    For insufficient credits, ``required`` and ``available`` are both set so
    callers can report the exact shortfall.
    """

    success: bool
    subject_id: str
    failure: FailureKind | None = None
    balance: int | None = None
    required: int | None = None
    available: int | None = None
    status: CreditStatus | None = None
    transaction: CreditTransaction | None = None
    error: str | None = None

    def __bool__(self) -> bool:
        return self.success

    @property
    def shortfall(self) -> int:
        """Credits missing to cover ``required``."""
        if self.required is None or self.available is None:
            return 0
        return max(self.required - self.available, 0)


@dataclass(frozen=True)
class GateResult:
    """Result of an access gate authorization."""

    decision: AccessDecision
    gate_key: str
    period_key: str
    reason: FailureKind | None = None
    ledger: LedgerResult | None = None

    @property
    def allowed(self) -> bool:
        return self.decision in (AccessDecision.AUTHORIZED, AccessDecision.ALREADY_AUTHORIZED)

    def __bool__(self) -> bool:
        return self.allowed
