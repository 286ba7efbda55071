"""
Credit ledger package.

This package handles usage credits:
- Account balances behind the BalancePersistence protocol
- Append-only transaction history
- Atomic debit/credit and balance status
- Idempotent once-per-period access gating
"""

from caseshelf.credits.accounts import AccountStore, BalancePersistence
from caseshelf.credits.gate import AccessGate, GrantStore, period_for
from caseshelf.credits.ledger import CREDIT_COSTS, CreditLedger, credit_status
from caseshelf.credits.transactions import TransactionLog

__all__ = [
    "AccessGate",
    "AccountStore",
    "BalancePersistence",
    "CREDIT_COSTS",
    "CreditLedger",
    "GrantStore",
    "TransactionLog",
    "credit_status",
    "period_for",
]
