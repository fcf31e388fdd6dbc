"""Pydantic schemas for the rs_ledger API."""

from pydantic import BaseModel, Field

from src.rs_common.points import points_to_display
from src.rs_ledger.domain.models import Account, PointTransaction

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class GiftRequest(BaseModel):
    cast_id: str = Field(..., min_length=1, max_length=64)
    points: int = Field(..., gt=0, description="Points to gift")
    message: str | None = Field(None, max_length=200)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class BalanceResponse(BaseModel):
    account_type: str
    account_id: str
    points: int
    points_display: str
    grade_points: int
    grade: str | None

    @classmethod
    def from_account(cls, account: Account) -> "BalanceResponse":
        return cls(
            account_type=account.kind.value,
            account_id=account.id,
            points=account.points,
            points_display=points_to_display(account.points),
            grade_points=account.grade_points,
            grade=account.grade,
        )


class PointTransactionItem(BaseModel):
    id: int | None
    type: str
    account_type: str
    account_id: str
    amount: int
    balance_after: int
    counterparty_type: str | None
    counterparty_id: str | None
    reservation_id: str | None
    cast_payout_id: str | None
    description: str | None
    created_at: str  # ISO8601 string

    @classmethod
    def from_domain(cls, tx: PointTransaction) -> "PointTransactionItem":
        return cls(
            id=tx.id,
            type=tx.type,
            account_type=tx.account_type,
            account_id=tx.account_id,
            amount=tx.amount,
            balance_after=tx.balance_after,
            counterparty_type=tx.counterparty_type,
            counterparty_id=tx.counterparty_id,
            reservation_id=tx.reservation_id,
            cast_payout_id=tx.cast_payout_id,
            description=tx.description,
            created_at=tx.created_at.isoformat() if tx.created_at else "",
        )


class TransactionListResponse(BaseModel):
    items: list[PointTransactionItem]
    next_cursor: str | None
    has_more: bool


class GiftResponse(BaseModel):
    guest_balance: int
    transactions: list[PointTransactionItem]
