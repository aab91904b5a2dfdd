"""
Unit Tests for the Wallet Service

Tests cover:
1. Account opening
2. Deposit flow
3. Transfer flow and its precondition order
4. Reversal flow, including hardened field checks
5. History queries and the balance audit
6. Store selection from settings
"""

import pytest

from wallet.config import WalletSettings
from wallet.errors import (
    AccountNotFoundError, AlreadyReversedError, ConflictError, EmailTakenError,
    InsufficientBalanceError, InvalidAccountError, InvalidAmountError, InvalidLimitError,
    NotFoundError, NotReversibleError, RecipientNotFoundError, ReversalMismatchError,
    SelfTransferError, SenderNotFoundError, TransactionNotFoundError, ValidationError,
)
from wallet.models import (
    DepositRequest, OpenAccountRequest, ReverseRequest, TransactionType, TransferRequest,
)
from wallet.service import WalletService


def transfer(service, sender, recipient_email, amount, sender_email=None):
    return service.transfer(TransferRequest(
        sender_id=sender.id,
        sender_email=sender_email or sender.email,
        recipient_email=recipient_email,
        amount=amount,
    ))


def balance_of(service, account):
    return service.get_account(account.id).account.balance


class TestOpenAccount:
    """Tests for account opening."""

    def test_new_account_starts_at_zero(self, service):
        account = service.open_account(OpenAccountRequest(name="Carla", email="Carla@Example.com "))

        assert account.balance == 0
        assert account.email == "carla@example.com"
        assert service.get_account(account.id).transactions == []

    def test_duplicate_email_rejected(self, service):
        service.open_account(OpenAccountRequest(name="Carla", email="carla@example.com"))

        with pytest.raises(EmailTakenError) as exc:
            service.open_account(OpenAccountRequest(name="Other", email="CARLA@example.com"))
        assert isinstance(exc.value, ConflictError)

    def test_email_without_at_sign_rejected(self, service):
        with pytest.raises(InvalidAccountError):
            service.open_account(OpenAccountRequest(name="Carla", email="not-an-email"))


class TestDepositFlow:
    """Tests for the balance mutator."""

    def test_deposit_updates_balance_and_writes_row(self, service, alice):
        response = service.deposit(DepositRequest(account_id=alice.id, amount=2_500))

        assert response.success is True
        assert response.new_balance == 102_500
        assert response.transaction.type == TransactionType.DEPOSIT
        assert response.transaction.amount == 2_500
        assert response.transaction.balance_after == 102_500
        assert balance_of(service, alice) == 102_500

        history = service.get_account(alice.id)
        assert [t.type for t in history.transactions] == [TransactionType.DEPOSIT, TransactionType.DEPOSIT]

    @pytest.mark.parametrize("amount", [0, -100])
    def test_non_positive_amount_rejected(self, service, alice, amount):
        with pytest.raises(InvalidAmountError) as exc:
            service.deposit(DepositRequest(account_id=alice.id, amount=amount))

        assert isinstance(exc.value, ValidationError)
        assert balance_of(service, alice) == 100_000
        assert service.get_account(alice.id).total_count == 1

    def test_deposit_to_unknown_account(self, service):
        with pytest.raises(AccountNotFoundError):
            service.deposit(DepositRequest(account_id="missing", amount=100))


class TestTransferFlow:
    """Tests for the transfer coordinator."""

    def test_transfer_moves_funds_and_links_rows(self, service, open_funded):
        a = open_funded("A", "a@example.com", 1_000)
        b = open_funded("B", "b@example.com", 500)

        response = transfer(service, a, b.email, 200)

        assert balance_of(service, a) == 800
        assert balance_of(service, b) == 700

        assert response.sent.type == TransactionType.TRANSFER_SENT
        assert response.sent.account_id == a.id
        assert response.sent.related_account_id == b.id
        assert response.sent.balance_after == 800

        assert response.received.type == TransactionType.TRANSFER_RECEIVED
        assert response.received.account_id == b.id
        assert response.received.related_account_id == a.id
        assert response.received.balance_after == 700

        assert service.get_account(a.id).total_count == 2
        assert service.get_account(b.id).total_count == 2

    def test_self_transfer_rejected(self, service, alice):
        with pytest.raises(SelfTransferError) as exc:
            transfer(service, alice, "ALICE@example.com", 100)

        assert isinstance(exc.value, ValidationError)
        assert balance_of(service, alice) == 100_000

    def test_recipient_resolving_to_sender_rejected(self, service, alice):
        # Claimed identity differs from the stored one; the recipient is still the sender.
        with pytest.raises(SelfTransferError):
            transfer(service, alice, alice.email, 100, sender_email="someone@else.com")

        assert balance_of(service, alice) == 100_000

    def test_insufficient_balance_rejected(self, service, alice, bruno):
        with pytest.raises(InsufficientBalanceError) as exc:
            transfer(service, alice, bruno.email, 100_001)

        assert isinstance(exc.value, ConflictError)
        assert balance_of(service, alice) == 100_000
        assert balance_of(service, bruno) == 50_000
        assert service.get_account(alice.id).total_count == 1

    def test_exact_balance_can_be_sent(self, service, alice, bruno):
        transfer(service, alice, bruno.email, 100_000)

        assert balance_of(service, alice) == 0
        assert balance_of(service, bruno) == 150_000

    def test_unknown_recipient(self, service, alice):
        with pytest.raises(RecipientNotFoundError):
            transfer(service, alice, "nobody@example.com", 100)

    def test_unknown_sender_checked_before_recipient(self, service):
        with pytest.raises(SenderNotFoundError) as exc:
            service.transfer(TransferRequest(
                sender_id="missing", sender_email="ghost@example.com",
                recipient_email="nobody@example.com", amount=100,
            ))
        assert isinstance(exc.value, NotFoundError)

    def test_invalid_amount_checked_first(self, service):
        with pytest.raises(InvalidAmountError):
            service.transfer(TransferRequest(
                sender_id="missing", sender_email="x@example.com",
                recipient_email="x@example.com", amount=0,
            ))


class TestReversalFlow:
    """Tests for the reversal engine."""

    def test_reverse_deposit(self, service, alice):
        deposit = service.deposit(DepositRequest(account_id=alice.id, amount=3_000)).transaction

        response = service.reverse(ReverseRequest(
            account_id=alice.id,
            transaction_id=deposit.id,
            original_amount=3_000,
            transaction_type=TransactionType.DEPOSIT,
        ))

        assert response.new_balance == 100_000
        assert response.reversal.type == TransactionType.REVERSAL
        assert response.reversal.amount == 3_000
        assert response.reversal.reversal_of == deposit.id
        assert response.reversal.balance_after == 100_000
        assert service.get_transaction(deposit.id).reversed is True
        assert balance_of(service, alice) == 100_000

    def test_reverse_transfer_sent_restores_sender_only(self, service, alice, bruno):
        sent = transfer(service, alice, bruno.email, 20_000).sent

        response = service.reverse(ReverseRequest(account_id=alice.id, transaction_id=sent.id))

        assert response.new_balance == 100_000
        assert response.reversal.related_account_id == bruno.id
        assert balance_of(service, alice) == 100_000
        assert balance_of(service, bruno) == 70_000

    def test_reverse_transfer_received_debits_recipient(self, service, alice, bruno):
        received = transfer(service, alice, bruno.email, 20_000).received

        response = service.reverse(ReverseRequest(account_id=bruno.id, transaction_id=received.id))

        assert response.new_balance == 50_000
        assert balance_of(service, alice) == 80_000

    def test_cannot_reverse_twice(self, service, alice):
        deposit = service.deposit(DepositRequest(account_id=alice.id, amount=1_000)).transaction
        service.reverse(ReverseRequest(account_id=alice.id, transaction_id=deposit.id))

        with pytest.raises(AlreadyReversedError) as exc:
            service.reverse(ReverseRequest(account_id=alice.id, transaction_id=deposit.id))

        assert isinstance(exc.value, ConflictError)
        assert balance_of(service, alice) == 100_000

    def test_reversal_row_is_not_reversible(self, service, alice):
        deposit = service.deposit(DepositRequest(account_id=alice.id, amount=1_000)).transaction
        reversal = service.reverse(ReverseRequest(account_id=alice.id, transaction_id=deposit.id)).reversal

        with pytest.raises(NotReversibleError) as exc:
            service.reverse(ReverseRequest(account_id=alice.id, transaction_id=reversal.id))

        assert isinstance(exc.value, ValidationError)
        assert balance_of(service, alice) == 100_000

    def test_caller_claiming_reversal_type_rejected_up_front(self, service, alice):
        with pytest.raises(NotReversibleError):
            service.reverse(ReverseRequest(
                account_id="missing", transaction_id=1, transaction_type=TransactionType.REVERSAL,
            ))

    def test_mismatched_amount_rejected(self, service, alice):
        deposit = service.deposit(DepositRequest(account_id=alice.id, amount=1_000)).transaction

        with pytest.raises(ReversalMismatchError):
            service.reverse(ReverseRequest(
                account_id=alice.id, transaction_id=deposit.id, original_amount=999_999,
            ))

        assert service.get_transaction(deposit.id).reversed is False
        assert balance_of(service, alice) == 101_000

    def test_mismatched_type_rejected(self, service, alice):
        deposit = service.deposit(DepositRequest(account_id=alice.id, amount=1_000)).transaction

        with pytest.raises(ReversalMismatchError):
            service.reverse(ReverseRequest(
                account_id=alice.id, transaction_id=deposit.id,
                transaction_type=TransactionType.TRANSFER_SENT,
            ))

    def test_transaction_of_other_account_not_found(self, service, alice, bruno):
        deposit = service.deposit(DepositRequest(account_id=alice.id, amount=1_000)).transaction

        with pytest.raises(TransactionNotFoundError):
            service.reverse(ReverseRequest(account_id=bruno.id, transaction_id=deposit.id))

    def test_unknown_account(self, service):
        with pytest.raises(AccountNotFoundError):
            service.reverse(ReverseRequest(account_id="missing", transaction_id=1))


class TestQueryFacade:
    """Tests for history and audit views."""

    def test_history_newest_first_with_related_names(self, service, alice, bruno):
        transfer(service, alice, bruno.email, 1_000)
        service.deposit(DepositRequest(account_id=alice.id, amount=500))

        history = service.get_account(alice.id)

        assert history.account.id == alice.id
        assert [t.type for t in history.transactions] == [
            TransactionType.DEPOSIT, TransactionType.TRANSFER_SENT, TransactionType.DEPOSIT,
        ]
        ids = [t.id for t in history.transactions]
        assert ids == sorted(ids, reverse=True)
        assert history.related_names_by_id == {bruno.id: "Bruno Reis"}

    def test_history_limit_is_respected_and_clamped(self, service, alice):
        for _ in range(60):
            service.deposit(DepositRequest(account_id=alice.id, amount=1))

        assert len(service.get_account(alice.id, limit=10).transactions) == 10
        clamped = service.get_account(alice.id, limit=500)
        assert len(clamped.transactions) == 50
        assert clamped.total_count == 61

    def test_history_offset_pages(self, service, alice):
        for _ in range(5):
            service.deposit(DepositRequest(account_id=alice.id, amount=1))

        first = service.get_transactions(alice.id, limit=3)
        second = service.get_transactions(alice.id, limit=3, offset=3)

        assert len(first.transactions) == 3
        assert len(second.transactions) == 3
        assert not {t.id for t in first.transactions} & {t.id for t in second.transactions}

    @pytest.mark.parametrize("limit,offset", [(0, 0), (-1, 0), (10, -1)])
    def test_invalid_paging_rejected(self, service, alice, limit, offset):
        with pytest.raises(InvalidLimitError):
            service.get_account(alice.id, limit=limit, offset=offset)

    def test_unknown_account_history(self, service):
        with pytest.raises(AccountNotFoundError):
            service.get_account("missing")
        with pytest.raises(AccountNotFoundError):
            service.get_transactions("missing")

    def test_unknown_transaction(self, service):
        with pytest.raises(TransactionNotFoundError):
            service.get_transaction(424242)

    def test_audit_consistent_after_mixed_operations(self, service, alice, bruno):
        sent = transfer(service, alice, bruno.email, 10_000).sent
        deposit = service.deposit(DepositRequest(account_id=alice.id, amount=7_000)).transaction
        received = transfer(service, bruno, alice.email, 3_000).received
        service.reverse(ReverseRequest(account_id=alice.id, transaction_id=sent.id))
        service.reverse(ReverseRequest(account_id=alice.id, transaction_id=deposit.id))
        service.reverse(ReverseRequest(account_id=alice.id, transaction_id=received.id))

        for account in (alice, bruno):
            audit = service.audit_balance(account.id)
            assert audit.consistent, audit
            assert audit.stored_balance == balance_of(service, account)

        assert balance_of(service, alice) == 100_000
        assert balance_of(service, bruno) == 57_000


class TestServiceConstruction:
    """Tests for how the service picks its store."""

    def test_store_follows_configured_database(self, tmp_path):
        path = tmp_path / "configured.db"
        service = WalletService(settings=WalletSettings(_env_file=None, database_url=f"sqlite:///{path}"))
        try:
            assert service.store.engine.url.database == str(path)
            account = service.open_account(OpenAccountRequest(name="Gil", email="gil@example.com"))
            service.deposit(DepositRequest(account_id=account.id, amount=900))
        finally:
            service.close()

        reopened = WalletService(settings=WalletSettings(_env_file=None, database_url=f"sqlite:///{path}"))
        try:
            assert reopened.get_account(account.id).account.balance == 900
        finally:
            reopened.close()

    def test_injected_store_wins_over_settings(self, settings, file_store):
        service = WalletService(store=file_store, settings=settings)

        assert service.store is file_store
