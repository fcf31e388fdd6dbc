"""Domain models for rs_payout — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from src.rs_common.enums import PaymentStatus, PayoutStatus

TERMINAL_PAYOUT_STATUSES = (PayoutStatus.PAID.value, PayoutStatus.FAILED.value)
TERMINAL_PAYMENT_STATUSES = (
    PaymentStatus.PAID.value,
    PaymentStatus.FAILED.value,
    PaymentStatus.REFUNDED.value,
)


@dataclass
class CastPayout:
    id: str
    cast_id: str
    type: str                    # PayoutType value
    status: str                  # PayoutStatus value
    amount: int                  # points leaving the cast's balance, fee included
    fee_rate_bps: int
    fee: int                     # points
    net_points: int
    net_amount: int              # currency minor units sent to the cast
    currency: str
    closing_month: date | None = None
    scheduled_payout_date: date | None = None
    processor_ref: str | None = None
    memo: str | None = None
    failure_reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    requested_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    paid_at: datetime | None = None
    failed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PAYOUT_STATUSES


@dataclass
class Payment:
    id: str
    user_id: str
    user_type: str
    amount: int                  # currency minor units
    currency: str
    status: str                  # PaymentStatus value
    payment_method: str
    processor_ref: str | None
    cast_payout_id: str | None = None
    processor_account_ref: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    failure_reason: str | None = None
    paid_at: datetime | None = None
    failed_at: datetime | None = None
    created_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_PAYMENT_STATUSES


@dataclass
class PayoutSummary:
    cast_id: str
    balance_points: int
    in_flight_points: int
    unsettled_points: int
    unsettled_amount: int
    period_start: datetime
    period_earnings: int
    instant_committed: int
    instant_eligible_points: int
    instant_eligible_amount: int
    fee_rate_bps: int
    payouts_enabled: bool
    recent_payouts: list[CastPayout] = field(default_factory=list)
