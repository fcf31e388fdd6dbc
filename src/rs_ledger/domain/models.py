"""Domain models for rs_ledger — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from datetime import datetime

from src.rs_common.enums import AccountKind


@dataclass(frozen=True)
class AccountRef:
    """Tagged reference to a guest or cast account."""

    kind: AccountKind
    id: str

    @classmethod
    def guest(cls, guest_id: str) -> "AccountRef":
        return cls(AccountKind.GUEST, guest_id)

    @classmethod
    def cast(cls, cast_id: str) -> "AccountRef":
        return cls(AccountKind.CAST, cast_id)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


@dataclass
class Account:
    kind: AccountKind
    id: str
    nickname: str | None
    points: int          # spendable, never negative
    grade_points: int    # guests: lifetime spend; casts: rate per 30 minutes
    grade: str | None
    version: int
    payout_account_ref: str | None = None   # casts only
    payouts_enabled: bool = False           # casts only
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def ref(self) -> AccountRef:
        return AccountRef(self.kind, self.id)


@dataclass
class PointTransaction:
    id: int | None                   # BIGSERIAL, None until inserted
    account_type: str                # AccountKind value of the account whose balance moved
    account_id: str
    type: str                        # PointTransactionType value
    amount: int                      # points, positive=credit negative=debit
    balance_after: int               # account points snapshot after the move
    counterparty_type: str | None = None
    counterparty_id: str | None = None
    reservation_id: str | None = None
    cast_payout_id: str | None = None
    description: str | None = None
    consumed_at: datetime | None = None   # pending rows only
    created_at: datetime | None = None

    @property
    def account(self) -> AccountRef:
        return AccountRef(AccountKind(self.account_type), self.account_id)

    @property
    def counterparty(self) -> AccountRef | None:
        if self.counterparty_type is None or self.counterparty_id is None:
            return None
        return AccountRef(AccountKind(self.counterparty_type), self.counterparty_id)


@dataclass(frozen=True)
class Allocation:
    """Share of a reservation's held points released to one target at settlement.

    `amount` comes out of the hold; `bonus` is charged to the payer on top.
    """

    account: AccountRef
    amount: int
    bonus: int = 0


@dataclass
class SettlementResult:
    entries: list[PointTransaction]
    refunded: int = 0            # unused part of the hold returned to the payer
    surcharge_collected: int = 0
    shortfall: int = 0           # surcharge the payer could not cover
