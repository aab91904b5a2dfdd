"""
Error taxonomy for the wallet ledger.

Every failure carries a stable ``kind`` (machine readable), a ``category``
used by transports to pick a status code, and a human readable message.
"""

from typing import Optional


class WalletError(Exception):
    kind = "internal"
    category = "internal"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"kind": self.kind, "category": self.category, "error": self.message}


# Validation: rejected before the store is touched.

class ValidationError(WalletError):
    kind = "validation"
    category = "validation"


class InvalidAmountError(ValidationError):
    kind = "invalid_amount"

    def __init__(self, amount: object):
        super().__init__(f"Amount must be a positive integer of minor units, got {amount!r}")
        self.amount = amount


class InvalidAccountError(ValidationError):
    kind = "invalid_account"


class SelfTransferError(ValidationError):
    kind = "self_transfer"

    def __init__(self, message: str = "Cannot transfer to your own account"):
        super().__init__(message)


class NotReversibleError(ValidationError):
    kind = "not_reversible"

    def __init__(self, transaction_id: Optional[int] = None):
        target = f"Transaction {transaction_id}" if transaction_id is not None else "Transaction"
        super().__init__(f"{target} is a reversal and cannot be reversed")
        self.transaction_id = transaction_id


class ReversalMismatchError(ValidationError):
    kind = "reversal_mismatch"


class InvalidLimitError(ValidationError):
    kind = "invalid_limit"


# Not found

class NotFoundError(WalletError):
    kind = "not_found"
    category = "not_found"


class AccountNotFoundError(NotFoundError):
    kind = "account_not_found"

    def __init__(self, account_id: str):
        super().__init__(f"Account {account_id} not found")
        self.account_id = account_id


class SenderNotFoundError(AccountNotFoundError):
    kind = "sender_not_found"


class RecipientNotFoundError(NotFoundError):
    kind = "recipient_not_found"

    def __init__(self, email: str):
        super().__init__(f"Recipient {email} not found")
        self.email = email


class TransactionNotFoundError(NotFoundError):
    kind = "transaction_not_found"

    def __init__(self, transaction_id: int, account_id: Optional[str] = None):
        if account_id is None:
            message = f"Transaction {transaction_id} not found"
        else:
            message = f"Transaction {transaction_id} not found for account {account_id}"
        super().__init__(message)
        self.transaction_id = transaction_id


# Conflict: the request is well formed but the current state forbids it.

class ConflictError(WalletError):
    kind = "conflict"
    category = "conflict"


class InsufficientBalanceError(ConflictError):
    kind = "insufficient_balance"

    def __init__(self, balance: int, amount: int):
        super().__init__(f"Insufficient balance: {balance} available, {amount} requested")
        self.balance = balance
        self.amount = amount


class AlreadyReversedError(ConflictError):
    kind = "already_reversed"

    def __init__(self, transaction_id: int):
        super().__init__(f"Transaction {transaction_id} has already been reversed")
        self.transaction_id = transaction_id


class EmailTakenError(ConflictError):
    kind = "email_taken"

    def __init__(self, email: str):
        super().__init__(f"An account with email {email} already exists")
        self.email = email


# Infrastructure

class TransientError(WalletError):
    """The atomic unit could not complete; nothing was committed and a retry is safe."""

    kind = "transient"
    category = "transient"


class InternalError(WalletError):
    kind = "internal"
    category = "internal"

    def __init__(self, message: str = "Internal ledger error"):
        super().__init__(message)
