"""
Ledger Store

Durable tables for accounts and transactions, plus the atomic unit that every
balance mutation runs inside:

- ``LedgerStore.atomic()`` opens one database transaction, hands out an
  ``AtomicUnit`` for locked reads and writes, commits on success and rolls
  back on any exception.
- ``LedgerStore.apply_atomic(ops)`` runs a prepared list of operations as one
  such unit.
- ``LedgerStore.snapshot()`` gives a read-only, consistent view.

Account rows are locked with ``SELECT ... FOR UPDATE`` in ascending id order.
SQLite has no row locks, so write units there start with ``BEGIN IMMEDIATE``
and serialise on the database write lock instead.
"""

import threading
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Iterator, Optional, Sequence, Union
from uuid import uuid4

from sqlalchemy import (
    BigInteger, Boolean, DateTime, ForeignKey, Index, Integer, String,
    create_engine, event, func, select, update,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from .config import WalletSettings
from .errors import (
    AccountNotFoundError, AlreadyReversedError, EmailTakenError,
    TransactionNotFoundError, TransientError,
)
from .logging import get_logger
from .models import Account, Transaction, TransactionType

logger = get_logger(__name__)

# SQLite only autoincrements INTEGER PRIMARY KEY columns.
_TransactionId = BigInteger().with_variant(Integer, "sqlite")

_READ_ONLY_OPTION = "wallet_read_only"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalise_email(email: str) -> str:
    return email.strip().lower()


class Base(DeclarativeBase):
    pass


class AccountRow(Base):
    __tablename__ = "accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
    balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class TransactionRow(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_account_created", "account_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(_TransactionId, primary_key=True, autoincrement=True)
    account_id: Mapped[str] = mapped_column(ForeignKey("accounts.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    related_account_id: Mapped[Optional[str]] = mapped_column(ForeignKey("accounts.id"), nullable=True)
    reversal_of: Mapped[Optional[int]] = mapped_column(ForeignKey("transactions.id"), nullable=True)
    reversed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


# ---------------------------------------------------------------------------
# Operations accepted by an atomic unit
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class UpdateAccountBalance:
    account_id: str
    new_balance: int


@dataclass(frozen=True)
class InsertTransaction:
    account_id: str
    type: TransactionType
    amount: int
    balance_after: int
    description: Optional[str] = None
    related_account_id: Optional[str] = None
    reversal_of: Optional[int] = None


@dataclass(frozen=True)
class MarkTransactionReversed:
    transaction_id: int


LedgerOp = Union[UpdateAccountBalance, InsertTransaction, MarkTransactionReversed]


# ---------------------------------------------------------------------------
# Units
# ---------------------------------------------------------------------------

class LedgerSnapshot:
    """Read access inside one database transaction."""

    def __init__(self, session: Session):
        self.session = session

    def get_account(self, account_id: str) -> Optional[AccountRow]:
        return self.session.get(AccountRow, account_id)

    def find_account_by_email(self, email: str) -> Optional[AccountRow]:
        stmt = select(AccountRow).where(AccountRow.email == normalise_email(email))
        return self.session.scalars(stmt).first()

    def get_transaction(self, transaction_id: int) -> Optional[TransactionRow]:
        return self.session.get(TransactionRow, transaction_id)

    def list_transactions(self, account_id: str, limit: int, offset: int = 0) -> list[TransactionRow]:
        stmt = (
            select(TransactionRow)
            .where(TransactionRow.account_id == account_id)
            .order_by(TransactionRow.created_at.desc(), TransactionRow.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(self.session.scalars(stmt))

    def all_transactions(self, account_id: str) -> list[TransactionRow]:
        stmt = (
            select(TransactionRow)
            .where(TransactionRow.account_id == account_id)
            .order_by(TransactionRow.id)
        )
        return list(self.session.scalars(stmt))

    def count_transactions(self, account_id: str) -> int:
        stmt = select(func.count()).select_from(TransactionRow).where(TransactionRow.account_id == account_id)
        return self.session.scalar(stmt) or 0

    def account_names(self, account_ids: Iterable[str]) -> dict[str, str]:
        ids = sorted(set(account_ids))
        if not ids:
            return {}
        stmt = select(AccountRow.id, AccountRow.name).where(AccountRow.id.in_(ids))
        return {row.id: row.name for row in self.session.execute(stmt)}


class AtomicUnit(LedgerSnapshot):
    """Locked read-modify-write access inside one all-or-nothing transaction."""

    def lock_account(self, account_id: str) -> Optional[AccountRow]:
        stmt = (
            select(AccountRow)
            .where(AccountRow.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.scalars(stmt).first()

    def lock_accounts(self, account_ids: Iterable[str]) -> dict[str, AccountRow]:
        # Locked rows are re-read so an earlier unlocked read of the same row cannot go stale.
        # Fixed ascending order so opposite-direction transfers cannot deadlock.
        locked = {}
        for account_id in sorted(set(account_ids)):
            row = self.lock_account(account_id)
            if row is not None:
                locked[account_id] = row
        return locked

    def lock_transaction(self, transaction_id: int) -> Optional[TransactionRow]:
        stmt = (
            select(TransactionRow)
            .where(TransactionRow.id == transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return self.session.scalars(stmt).first()

    def apply(self, ops: Sequence[LedgerOp]) -> list[TransactionRow]:
        inserted = []
        for op in ops:
            if isinstance(op, UpdateAccountBalance):
                account = self.session.get(AccountRow, op.account_id)
                if account is None:
                    raise AccountNotFoundError(op.account_id)
                account.balance = op.new_balance
            elif isinstance(op, InsertTransaction):
                row = TransactionRow(
                    account_id=op.account_id,
                    type=TransactionType(op.type).value,
                    amount=op.amount,
                    balance_after=op.balance_after,
                    description=op.description,
                    related_account_id=op.related_account_id,
                    reversal_of=op.reversal_of,
                    reversed=False,
                    created_at=_utcnow(),
                )
                self.session.add(row)
                inserted.append(row)
            elif isinstance(op, MarkTransactionReversed):
                self._mark_reversed(op.transaction_id)
            else:
                raise TypeError(f"Unsupported ledger operation: {op!r}")
        self.session.flush()
        return inserted

    def _mark_reversed(self, transaction_id: int) -> None:
        # Check-and-set in one statement: only a row not yet reversed matches.
        self.session.flush()
        result = self.session.execute(
            update(TransactionRow)
            .where(TransactionRow.id == transaction_id, TransactionRow.reversed.is_(False))
            .values(reversed=True)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return
        if self.session.get(TransactionRow, transaction_id) is None:
            raise TransactionNotFoundError(transaction_id)
        raise AlreadyReversedError(transaction_id)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

def _install_sqlite_locking(engine: Engine) -> None:
    """Let SQLAlchemy, not pysqlite, emit BEGIN so write units can take the lock up front."""

    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get(_READ_ONLY_OPTION):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")


class LedgerStore:
    """
    Explicitly constructed store client.

    Components receive the store by injection; whoever builds it owns its
    lifecycle and must call ``dispose()`` on shutdown.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        # One shared connection cannot hold two transactions; units take turns on it.
        self._unit_lock = threading.RLock() if isinstance(engine.pool, StaticPool) else None
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        self._read_session_factory = sessionmaker(
            bind=engine.execution_options(**{_READ_ONLY_OPTION: True}),
            expire_on_commit=False,
        )

    @classmethod
    def from_url(cls, url: str, lock_timeout_seconds: float = 5.0, echo: bool = False) -> "LedgerStore":
        if url.startswith("sqlite"):
            in_memory = url in ("sqlite://", "sqlite:///:memory:")
            kwargs = {
                "connect_args": {"check_same_thread": False, "timeout": lock_timeout_seconds},
            }
            if in_memory:
                kwargs["poolclass"] = StaticPool
            engine = create_engine(url, echo=echo, **kwargs)
            _install_sqlite_locking(engine)
        else:
            connect_args = {}
            if url.startswith("postgresql"):
                # Row lock waits fail fast instead of queueing indefinitely.
                connect_args["options"] = f"-c lock_timeout={int(lock_timeout_seconds * 1000)}"
            engine = create_engine(
                url,
                echo=echo,
                pool_pre_ping=True,
                pool_timeout=lock_timeout_seconds,
                connect_args=connect_args,
            )
        return cls(engine)

    @classmethod
    def from_settings(cls, settings: WalletSettings) -> "LedgerStore":
        store = cls.from_url(
            settings.database_url,
            lock_timeout_seconds=settings.lock_timeout_seconds,
            echo=settings.echo_sql,
        )
        store.create_schema()
        return store

    @classmethod
    def in_memory(cls) -> "LedgerStore":
        store = cls.from_url("sqlite://")
        store.create_schema()
        return store

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)
        if self.engine.dialect.name == "sqlite" and self.engine.url.database not in (None, "", ":memory:"):
            # journal_mode cannot change inside a transaction, so bypass the BEGIN hook.
            raw = self.engine.raw_connection()
            try:
                raw.cursor().execute("PRAGMA journal_mode=WAL")
            finally:
                raw.close()
        logger.info("ledger_schema_ready", url=self.engine.url.render_as_string(hide_password=True))

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("ledger_store_disposed", url=self.engine.url.render_as_string(hide_password=True))

    # -- units ---------------------------------------------------------------

    @contextmanager
    def atomic(self) -> Iterator[AtomicUnit]:
        """Open an all-or-nothing unit. Any exception rolls back every write in it."""
        with self._exclusive(), self._translate_failures():
            with self._session_factory() as session:
                with session.begin():
                    yield AtomicUnit(session)

    @contextmanager
    def snapshot(self) -> Iterator[LedgerSnapshot]:
        with self._exclusive(), self._translate_failures():
            with self._read_session_factory() as session:
                with session.begin():
                    yield LedgerSnapshot(session)

    def _exclusive(self):
        return self._unit_lock if self._unit_lock is not None else nullcontext()

    @contextmanager
    def _translate_failures(self) -> Iterator[None]:
        try:
            yield
        except OperationalError as e:
            logger.warning("ledger_store_unavailable", error=str(e.orig))
            raise TransientError("Ledger store is busy or unavailable; nothing was committed") from e
        except DBAPIError as e:
            if e.connection_invalidated:
                logger.warning("ledger_store_connection_lost", error=str(e.orig))
                raise TransientError("Ledger store connection was lost; nothing was committed") from e
            raise

    def apply_atomic(self, ops: Sequence[LedgerOp]) -> list[Transaction]:
        with self.atomic() as unit:
            rows = unit.apply(ops)
            return [Transaction.model_validate(row) for row in rows]

    # -- accounts --------------------------------------------------------------

    def create_account(self, name: str, email: str) -> Account:
        email = normalise_email(email)
        try:
            with self.atomic() as unit:
                if unit.find_account_by_email(email) is not None:
                    raise EmailTakenError(email)
                row = AccountRow(id=str(uuid4()), name=name.strip(), email=email, balance=0, created_at=_utcnow())
                unit.session.add(row)
                unit.session.flush()
                return Account.model_validate(row)
        except IntegrityError as e:
            # Lost a race with a concurrent signup for the same email.
            raise EmailTakenError(email) from e

    def get_account(self, account_id: str) -> Account:
        with self.snapshot() as snap:
            row = snap.get_account(account_id)
            if row is None:
                raise AccountNotFoundError(account_id)
            return Account.model_validate(row)

    def get_account_by_email(self, email: str) -> Account:
        with self.snapshot() as snap:
            row = snap.find_account_by_email(email)
            if row is None:
                raise AccountNotFoundError(normalise_email(email))
            return Account.model_validate(row)

    # -- transactions ----------------------------------------------------------

    def get_transaction(self, transaction_id: int) -> Transaction:
        with self.snapshot() as snap:
            row = snap.get_transaction(transaction_id)
            if row is None:
                raise TransactionNotFoundError(transaction_id)
            return Transaction.model_validate(row)
