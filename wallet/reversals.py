"""
Reversal Engine

Inverts the balance effect of a committed transaction on its owning account:

    deposit            -> -amount
    transfer_sent      -> +amount
    transfer_received  -> -amount
    reversal           -> rejected

The delta always comes from the stored row. Caller-supplied amount and type
are optional and only checked for agreement. The counterparty of a reversed
transfer is not adjusted.
"""

from typing import Optional

from .errors import (
    AccountNotFoundError, AlreadyReversedError, NotReversibleError,
    ReversalMismatchError, TransactionNotFoundError,
)
from .models import BALANCE_SIGN, ReversalResponse, Transaction, TransactionType
from .store import InsertTransaction, LedgerStore, MarkTransactionReversed, UpdateAccountBalance


def reversal_delta(transaction_type: TransactionType, amount: int) -> int:
    transaction_type = TransactionType(transaction_type)
    if transaction_type == TransactionType.REVERSAL:
        raise NotReversibleError()
    return -BALANCE_SIGN[transaction_type] * amount


class ReversalEngine:
    def __init__(self, store: LedgerStore):
        self.store = store

    def reverse(
        self,
        account_id: str,
        transaction_id: int,
        original_amount: Optional[int] = None,
        transaction_type: Optional[TransactionType] = None,
    ) -> ReversalResponse:
        if transaction_type is not None and TransactionType(transaction_type) == TransactionType.REVERSAL:
            raise NotReversibleError(transaction_id)

        with self.store.atomic() as unit:
            account = unit.lock_account(account_id)
            if account is None:
                raise AccountNotFoundError(account_id)

            original = unit.lock_transaction(transaction_id)
            if original is None or original.account_id != account.id:
                raise TransactionNotFoundError(transaction_id, account_id)

            stored_type = TransactionType(original.type)
            if stored_type == TransactionType.REVERSAL:
                raise NotReversibleError(transaction_id)
            self._check_caller_fields(original.id, original.amount, stored_type, original_amount, transaction_type)
            if original.reversed:
                raise AlreadyReversedError(transaction_id)

            new_balance = account.balance + reversal_delta(stored_type, original.amount)

            (row,) = unit.apply([
                UpdateAccountBalance(account_id=account.id, new_balance=new_balance),
                InsertTransaction(
                    account_id=account.id,
                    type=TransactionType.REVERSAL,
                    amount=original.amount,
                    balance_after=new_balance,
                    related_account_id=original.related_account_id,
                    reversal_of=original.id,
                    description=f"Reversal of transaction #{original.id}",
                ),
                MarkTransactionReversed(transaction_id=original.id),
            ])
            reversal = Transaction.model_validate(row)

        return ReversalResponse(
            new_balance=new_balance,
            reversal=reversal,
            reversed_transaction_id=transaction_id,
            message="Transaction reversed successfully",
        )

    @staticmethod
    def _check_caller_fields(
        transaction_id: int,
        stored_amount: int,
        stored_type: TransactionType,
        original_amount: Optional[int],
        transaction_type: Optional[TransactionType],
    ) -> None:
        if original_amount is not None and original_amount != stored_amount:
            raise ReversalMismatchError(
                f"Transaction {transaction_id} recorded amount {stored_amount}, not {original_amount}"
            )
        if transaction_type is not None and TransactionType(transaction_type) != stored_type:
            raise ReversalMismatchError(
                f"Transaction {transaction_id} is a {stored_type.value}, not a {TransactionType(transaction_type).value}"
            )
