from contextlib import contextmanager
from typing import Iterator, Optional

from .config import WalletSettings, get_settings
from .errors import InternalError, InvalidAccountError, WalletError
from .logging import get_logger
from .models import (
    Account, AccountHistory, BalanceAudit, DepositRequest, DepositResponse,
    OpenAccountRequest, ReversalResponse, ReverseRequest, Transaction,
    TransactionPage, TransferRequest, TransferResponse,
)
from .mutator import BalanceMutator
from .queries import QueryFacade
from .reversals import ReversalEngine
from .store import LedgerStore
from .transfers import TransferCoordinator

logger = get_logger(__name__)


class WalletService:
    """
    Entry point for callers of the ledger core.

    Wires the mutator, transfer coordinator, reversal engine and query facade
    over one injected store. Domain errors pass through unchanged; anything
    else is logged and surfaced as an opaque InternalError.
    """

    def __init__(self, store: Optional[LedgerStore] = None, settings: Optional[WalletSettings] = None):
        if store is None:
            store = LedgerStore.from_settings(settings) if settings is not None else LedgerStore.in_memory()
        self.settings = settings or get_settings()
        self.store = store
        self.mutator = BalanceMutator(self.store)
        self.transfers = TransferCoordinator(self.store)
        self.reversals = ReversalEngine(self.store)
        self.queries = QueryFacade(self.store, max_limit=self.settings.history_limit)

    @classmethod
    def from_settings(cls, settings: WalletSettings) -> "WalletService":
        return cls(store=LedgerStore.from_settings(settings), settings=settings)

    def close(self) -> None:
        self.store.dispose()

    # -- accounts -------------------------------------------------------------

    def open_account(self, request: OpenAccountRequest) -> Account:
        with self._operation("open_account", email=request.email):
            if "@" not in request.email:
                raise InvalidAccountError(f"Invalid email address: {request.email}")
            account = self.store.create_account(request.name, request.email)
        logger.info("account_opened", account_id=account.id)
        return account

    # -- mutations ------------------------------------------------------------

    def deposit(self, request: DepositRequest) -> DepositResponse:
        with self._operation("deposit", account_id=request.account_id, amount=request.amount):
            response = self.mutator.deposit(request.account_id, request.amount, request.description)
        logger.info(
            "deposit_committed",
            account_id=request.account_id,
            amount=request.amount,
            transaction_id=response.transaction.id,
            new_balance=response.new_balance,
        )
        return response

    def transfer(self, request: TransferRequest) -> TransferResponse:
        with self._operation("transfer", sender_id=request.sender_id, amount=request.amount):
            response = self.transfers.transfer(
                request.sender_id,
                request.sender_email,
                request.recipient_email,
                request.amount,
                request.description,
            )
        logger.info(
            "transfer_committed",
            sender_id=response.sent.account_id,
            recipient_id=response.received.account_id,
            amount=request.amount,
            sent_id=response.sent.id,
            received_id=response.received.id,
        )
        return response

    def reverse(self, request: ReverseRequest) -> ReversalResponse:
        with self._operation("reverse", account_id=request.account_id, transaction_id=request.transaction_id):
            response = self.reversals.reverse(
                request.account_id,
                request.transaction_id,
                request.original_amount,
                request.transaction_type,
            )
        logger.info(
            "reversal_committed",
            account_id=request.account_id,
            reversed_transaction_id=request.transaction_id,
            reversal_id=response.reversal.id,
            new_balance=response.new_balance,
        )
        return response

    # -- reads ----------------------------------------------------------------

    def get_account(self, account_id: str, limit: int = 50, offset: int = 0) -> AccountHistory:
        with self._operation("get_account", account_id=account_id):
            return self.queries.get_account_with_history(account_id, limit, offset)

    def get_transactions(self, account_id: str, limit: int = 50, offset: int = 0) -> TransactionPage:
        with self._operation("get_transactions", account_id=account_id):
            return self.queries.get_transactions(account_id, limit, offset)

    def get_transaction(self, transaction_id: int) -> Transaction:
        with self._operation("get_transaction", transaction_id=transaction_id):
            return self.queries.get_transaction(transaction_id)

    def audit_balance(self, account_id: str) -> BalanceAudit:
        with self._operation("audit_balance", account_id=account_id):
            audit = self.queries.audit_balance(account_id)
        if not audit.consistent:
            logger.error(
                "balance_drift_detected",
                account_id=account_id,
                stored_balance=audit.stored_balance,
                ledger_balance=audit.ledger_balance,
            )
        return audit

    @contextmanager
    def _operation(self, name: str, **fields) -> Iterator[None]:
        try:
            yield
        except WalletError as e:
            logger.warning("operation_rejected", operation=name, kind=e.kind, error=e.message, **fields)
            raise
        except Exception as e:
            logger.exception("operation_failed", operation=name, **fields)
            raise InternalError() from e
