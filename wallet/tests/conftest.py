import pytest

from wallet.config import WalletSettings
from wallet.models import DepositRequest, OpenAccountRequest
from wallet.service import WalletService
from wallet.store import LedgerStore


@pytest.fixture
def settings():
    return WalletSettings(_env_file=None, database_url="sqlite://")


@pytest.fixture
def service(settings):
    service = WalletService(settings=settings)
    yield service
    service.close()


@pytest.fixture
def file_store(tmp_path):
    store = LedgerStore.from_url(f"sqlite:///{tmp_path / 'wallet.db'}", lock_timeout_seconds=30.0)
    store.create_schema()
    yield store
    store.dispose()


def _open_funded(service: WalletService, name: str, email: str, balance: int = 0):
    account = service.open_account(OpenAccountRequest(name=name, email=email))
    if balance:
        service.deposit(DepositRequest(account_id=account.id, amount=balance))
    return account


@pytest.fixture
def open_funded(service):
    """Open an account on the service fixture and seed it with a deposit."""
    def _open(name: str, email: str, balance: int = 0):
        return _open_funded(service, name, email, balance)
    return _open


@pytest.fixture
def alice(service):
    return _open_funded(service, "Alice Lima", "alice@example.com", 100_000)


@pytest.fixture
def bruno(service):
    return _open_funded(service, "Bruno Reis", "bruno@example.com", 50_000)
