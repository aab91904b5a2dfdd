"""
Digital Wallet Ledger

This package provides:
- Account balances kept consistent with an append-only transaction log
- Deposits, two-account transfers and retroactive reversals
- Atomic, row-locked mutation through an injected ledger store
- Read-only history views with related account names resolved
"""

from .errors import (
    WalletError,
    ValidationError,
    NotFoundError,
    ConflictError,
    TransientError,
    InternalError,
)
from .models import (
    TransactionType,
    Account,
    Transaction,
    DepositRequest,
    TransferRequest,
    ReverseRequest,
    OpenAccountRequest,
)
from .service import WalletService
from .store import LedgerStore

__all__ = [
    "WalletError",
    "ValidationError",
    "NotFoundError",
    "ConflictError",
    "TransientError",
    "InternalError",
    "TransactionType",
    "Account",
    "Transaction",
    "DepositRequest",
    "TransferRequest",
    "ReverseRequest",
    "OpenAccountRequest",
    "WalletService",
    "LedgerStore",
]
