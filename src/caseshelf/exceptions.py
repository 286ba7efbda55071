"""
Custom exception hierarchy for caseshelf.

All exceptions inherit from CaseShelfError, which provides optional context
for structured error handling and logging.

Expected conditions (insufficient credits, offline, fetch failures) are
reported to callers as outcome values; these exceptions carry the same
conditions inside component boundaries and for faults that must propagate.
"""

from __future__ import annotations

from typing import Any


class CaseShelfError(Exception):
    """Base exception for all caseshelf errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(CaseShelfError):
    """Raised when configuration is invalid or missing.

    Examples:
        - Data directory cannot be created
        - Negative quota or retention values
    """

    pass


class StorageUnavailableError(CaseShelfError):
    """Raised when a local storage engine cannot serve a request.

    Covers an engine that cannot be opened, a full disk, a locked database
    and an exceeded cache quota.

    Context should include:
        - store: Which store failed (documents, accounts, ...)
        - reason: Short description of the engine condition
    """

    pass


class StoreCorruptedError(CaseShelfError):
    """Raised when a local database is unreadable.

    Not recoverable by the caller; always propagates.
    """

    pass


class FetchError(CaseShelfError):
    """Raised when fetching a document over the network fails.

    Context should include:
        - url: The URL that was being fetched
        - status_code: HTTP status code if applicable
    """

    pass


class NotAuthenticatedError(CaseShelfError):
    """Raised when a subject has no known credit account.

    Context should include:
        - subject_id: The unknown subject
    """

    pass


class InsufficientCreditsError(CaseShelfError):
    """Raised when a debit exceeds the available balance.

    Context should include:
        - required: Credits the operation needs
        - available: Credits currently on the account
    """

    def __init__(self, required: int, available: int, subject_id: str | None = None) -> None:
        super().__init__(
            f"Insufficient credits. You need {required} credits but have {available}.",
            context={"subject_id": subject_id, "required": required, "available": available},
        )
        self.required = required
        self.available = available

    @property
    def shortfall(self) -> int:
        return self.required - self.available
