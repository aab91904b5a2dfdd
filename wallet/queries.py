from .errors import AccountNotFoundError, InvalidLimitError
from .models import (
    Account, AccountHistory, BalanceAudit, Transaction, TransactionPage, TransactionType,
)
from .store import LedgerSnapshot, LedgerStore, TransactionRow

DEFAULT_HISTORY_LIMIT = 50


class QueryFacade:
    """Read-only projections over the ledger. Never writes."""

    def __init__(self, store: LedgerStore, max_limit: int = DEFAULT_HISTORY_LIMIT):
        self.store = store
        self.max_limit = max_limit

    def get_account_with_history(
        self, account_id: str, limit: int = DEFAULT_HISTORY_LIMIT, offset: int = 0
    ) -> AccountHistory:
        limit = self._page_limit(limit, offset)
        with self.store.snapshot() as snap:
            row = snap.get_account(account_id)
            if row is None:
                raise AccountNotFoundError(account_id)
            rows = snap.list_transactions(account_id, limit, offset)
            return AccountHistory(
                account=Account.model_validate(row),
                transactions=[Transaction.model_validate(r) for r in rows],
                related_names_by_id=self._related_names(snap, rows),
                total_count=snap.count_transactions(account_id),
            )

    def get_transactions(
        self, account_id: str, limit: int = DEFAULT_HISTORY_LIMIT, offset: int = 0
    ) -> TransactionPage:
        limit = self._page_limit(limit, offset)
        with self.store.snapshot() as snap:
            if snap.get_account(account_id) is None:
                raise AccountNotFoundError(account_id)
            rows = snap.list_transactions(account_id, limit, offset)
            return TransactionPage(
                account_id=account_id,
                transactions=[Transaction.model_validate(r) for r in rows],
                related_names_by_id=self._related_names(snap, rows),
                total_count=snap.count_transactions(account_id),
            )

    def get_transaction(self, transaction_id: int) -> Transaction:
        return self.store.get_transaction(transaction_id)

    def audit_balance(self, account_id: str) -> BalanceAudit:
        """Recompute the balance the log implies and compare it with the stored one."""
        with self.store.snapshot() as snap:
            row = snap.get_account(account_id)
            if row is None:
                raise AccountNotFoundError(account_id)
            transactions = [Transaction.model_validate(r) for r in snap.all_transactions(account_id)]

        ledger_balance = sum(
            t.signed_delta() for t in transactions
            if not t.reversed and t.type != TransactionType.REVERSAL
        )
        return BalanceAudit(
            account_id=account_id,
            stored_balance=row.balance,
            ledger_balance=ledger_balance,
            transaction_count=len(transactions),
        )

    def _page_limit(self, limit: int, offset: int) -> int:
        if limit < 1:
            raise InvalidLimitError(f"limit must be at least 1, got {limit}")
        if offset < 0:
            raise InvalidLimitError(f"offset must not be negative, got {offset}")
        return min(limit, self.max_limit)

    @staticmethod
    def _related_names(snap: LedgerSnapshot, rows: list[TransactionRow]) -> dict[str, str]:
        return snap.account_names(r.related_account_id for r in rows if r.related_account_id)
