from typing import Optional

from .errors import AccountNotFoundError, InvalidAmountError
from .models import DepositResponse, Transaction, TransactionType
from .store import InsertTransaction, LedgerStore, UpdateAccountBalance


def validate_amount(amount: object) -> int:
    """Amounts are positive integers of currency minor units."""
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount)
    return amount


class BalanceMutator:
    """Single-account credit: the balance update and its deposit row commit together."""

    def __init__(self, store: LedgerStore):
        self.store = store

    def deposit(self, account_id: str, amount: int, description: Optional[str] = None) -> DepositResponse:
        amount = validate_amount(amount)

        with self.store.atomic() as unit:
            account = unit.lock_account(account_id)
            if account is None:
                raise AccountNotFoundError(account_id)

            new_balance = account.balance + amount
            (row,) = unit.apply([
                UpdateAccountBalance(account_id=account.id, new_balance=new_balance),
                InsertTransaction(
                    account_id=account.id,
                    type=TransactionType.DEPOSIT,
                    amount=amount,
                    balance_after=new_balance,
                    description=description or "Deposit",
                ),
            ])
            transaction = Transaction.model_validate(row)

        return DepositResponse(
            account_id=account_id,
            new_balance=new_balance,
            transaction=transaction,
            message="Deposit completed successfully",
        )
