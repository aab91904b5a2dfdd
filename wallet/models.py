from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Optional
from pydantic import AfterValidator, BaseModel, Field, ConfigDict, computed_field


class TransactionType(str, Enum):
    DEPOSIT = "deposit"
    TRANSFER_SENT = "transfer_sent"
    TRANSFER_RECEIVED = "transfer_received"
    REVERSAL = "reversal"


# Sign of the balance movement each type records on its owning account.
# Reversal rows cancel their original instead of moving the balance themselves.
BALANCE_SIGN = {
    TransactionType.DEPOSIT: 1,
    TransactionType.TRANSFER_SENT: -1,
    TransactionType.TRANSFER_RECEIVED: 1,
}


class OpenAccountRequest(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)

    model_config = ConfigDict(json_schema_extra={
        "example": {"name": "Ana Souza", "email": "ana@example.com"}
    })


class DepositRequest(BaseModel):
    account_id: str
    amount: int = Field(..., description="Amount in currency minor units")
    description: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {"account_id": "550e8400-e29b-41d4-a716-446655440000", "amount": 10000}
    })


class TransferRequest(BaseModel):
    sender_id: str
    sender_email: str = Field(..., description="Claimed sender identity, used to reject self-transfers")
    recipient_email: str
    amount: int = Field(..., description="Amount in currency minor units")
    description: Optional[str] = None

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "sender_id": "550e8400-e29b-41d4-a716-446655440000",
            "sender_email": "ana@example.com",
            "recipient_email": "bruno@example.com",
            "amount": 2500,
        }
    })


class ReverseRequest(BaseModel):
    account_id: str
    transaction_id: int
    original_amount: Optional[int] = Field(
        default=None, description="Optional; must match the stored amount when given"
    )
    transaction_type: Optional[TransactionType] = Field(
        default=None, description="Optional; must match the stored type when given"
    )


def _assume_utc(value: datetime) -> datetime:
    # SQLite hands timestamps back without tzinfo; everything is stored in UTC.
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


UtcDatetime = Annotated[datetime, AfterValidator(_assume_utc)]


class Account(BaseModel):
    id: str
    name: str
    email: str
    balance: int
    created_at: UtcDatetime

    model_config = ConfigDict(from_attributes=True)


class Transaction(BaseModel):
    id: int
    account_id: str
    type: TransactionType
    amount: int
    balance_after: int
    description: Optional[str] = None
    related_account_id: Optional[str] = None
    reversal_of: Optional[int] = None
    reversed: bool = False
    created_at: UtcDatetime

    model_config = ConfigDict(from_attributes=True)

    def signed_delta(self) -> int:
        """Balance movement this row recorded on its owning account (0 for reversals)."""
        return BALANCE_SIGN.get(self.type, 0) * self.amount


class DepositResponse(BaseModel):
    success: bool = True
    account_id: str
    new_balance: int
    transaction: Transaction
    message: str


class TransferResponse(BaseModel):
    success: bool = True
    sent: Transaction
    received: Transaction
    message: str


class ReversalResponse(BaseModel):
    success: bool = True
    new_balance: int
    reversal: Transaction
    reversed_transaction_id: int
    message: str


class AccountHistory(BaseModel):
    account: Account
    transactions: list[Transaction]
    related_names_by_id: dict[str, str] = Field(default_factory=dict)
    total_count: int


class TransactionPage(BaseModel):
    account_id: str
    transactions: list[Transaction]
    related_names_by_id: dict[str, str] = Field(default_factory=dict)
    total_count: int


class BalanceAudit(BaseModel):
    account_id: str
    stored_balance: int
    ledger_balance: int
    transaction_count: int

    @computed_field
    @property
    def consistent(self) -> bool:
        return self.stored_balance == self.ledger_balance
