from typing import Optional

from .errors import (
    InsufficientBalanceError, RecipientNotFoundError, SelfTransferError, SenderNotFoundError,
)
from .models import Transaction, TransactionType, TransferResponse
from .mutator import validate_amount
from .store import InsertTransaction, LedgerStore, UpdateAccountBalance, normalise_email


class TransferCoordinator:
    """
    Moves funds between two distinct accounts.

    Both balance updates and both transaction rows are written in one atomic
    unit; a failure at any point leaves neither account changed.
    """

    def __init__(self, store: LedgerStore):
        self.store = store

    def transfer(
        self,
        sender_id: str,
        sender_email: str,
        recipient_email: str,
        amount: int,
        description: Optional[str] = None,
    ) -> TransferResponse:
        amount = validate_amount(amount)
        if normalise_email(recipient_email) == normalise_email(sender_email):
            raise SelfTransferError()

        with self.store.atomic() as unit:
            # Resolve the recipient first so both rows can be locked in id order.
            recipient_ref = unit.find_account_by_email(recipient_email)
            lock_ids = [sender_id] + ([recipient_ref.id] if recipient_ref is not None else [])
            locked = unit.lock_accounts(lock_ids)

            sender = locked.get(sender_id)
            if sender is None:
                raise SenderNotFoundError(sender_id)
            recipient = locked.get(recipient_ref.id) if recipient_ref is not None else None
            if recipient is None:
                raise RecipientNotFoundError(normalise_email(recipient_email))
            if recipient.id == sender.id:
                raise SelfTransferError()

            if sender.balance < amount:
                raise InsufficientBalanceError(sender.balance, amount)

            new_sender_balance = sender.balance - amount
            new_recipient_balance = recipient.balance + amount

            sent_row, received_row = unit.apply([
                UpdateAccountBalance(account_id=sender.id, new_balance=new_sender_balance),
                UpdateAccountBalance(account_id=recipient.id, new_balance=new_recipient_balance),
                InsertTransaction(
                    account_id=sender.id,
                    type=TransactionType.TRANSFER_SENT,
                    amount=amount,
                    balance_after=new_sender_balance,
                    related_account_id=recipient.id,
                    description=description or f"Transfer to {recipient.email}",
                ),
                InsertTransaction(
                    account_id=recipient.id,
                    type=TransactionType.TRANSFER_RECEIVED,
                    amount=amount,
                    balance_after=new_recipient_balance,
                    related_account_id=sender.id,
                    description=description or f"Transfer received from {sender.email}",
                ),
            ])
            sent = Transaction.model_validate(sent_row)
            received = Transaction.model_validate(received_row)

        return TransferResponse(
            sent=sent,
            received=received,
            message="Transfer completed successfully",
        )
