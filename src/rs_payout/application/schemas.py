"""Pydantic schemas for the rs_payout API."""

from datetime import date

from pydantic import BaseModel, Field

from src.rs_common.points import points_to_display
from src.rs_payout.domain.models import CastPayout, Payment, PayoutSummary

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class InstantPayoutRequest(BaseModel):
    amount: int = Field(..., gt=0, description="Points to pay out, fee included")
    memo: str | None = Field(None, max_length=255)


class ReconcileRequest(BaseModel):
    older_than_minutes: int = Field(30, ge=0, le=60 * 24 * 30)
    limit: int = Field(100, ge=1, le=1000)


class ClosePeriodRequest(BaseModel):
    period_end: date = Field(..., description="Any date inside the month being closed")


class DispatchRequest(BaseModel):
    run_date: date | None = Field(None, description="Defaults to today in the business timezone")
    limit: int = Field(100, ge=1, le=1000)


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


class PayoutResponse(BaseModel):
    id: str
    cast_id: str
    type: str
    status: str
    amount: int
    fee_rate_bps: int
    fee: int
    net_points: int
    net_amount: int
    currency: str
    closing_month: str | None
    scheduled_payout_date: str | None
    processor_ref: str | None
    memo: str | None
    failure_reason: str | None
    created_at: str | None
    paid_at: str | None
    failed_at: str | None

    @classmethod
    def from_domain(cls, payout: CastPayout) -> "PayoutResponse":
        return cls(
            id=payout.id,
            cast_id=payout.cast_id,
            type=payout.type,
            status=payout.status,
            amount=payout.amount,
            fee_rate_bps=payout.fee_rate_bps,
            fee=payout.fee,
            net_points=payout.net_points,
            net_amount=payout.net_amount,
            currency=payout.currency,
            closing_month=payout.closing_month.isoformat() if payout.closing_month else None,
            scheduled_payout_date=(
                payout.scheduled_payout_date.isoformat() if payout.scheduled_payout_date else None
            ),
            processor_ref=payout.processor_ref,
            memo=payout.memo,
            failure_reason=payout.failure_reason,
            created_at=payout.created_at.isoformat() if payout.created_at else None,
            paid_at=payout.paid_at.isoformat() if payout.paid_at else None,
            failed_at=payout.failed_at.isoformat() if payout.failed_at else None,
        )


class PaymentResponse(BaseModel):
    id: str
    status: str
    amount: int
    currency: str
    processor_ref: str | None

    @classmethod
    def from_domain(cls, payment: Payment) -> "PaymentResponse":
        return cls(
            id=payment.id,
            status=payment.status,
            amount=payment.amount,
            currency=payment.currency,
            processor_ref=payment.processor_ref,
        )


class PayoutSummaryResponse(BaseModel):
    cast_id: str
    balance_points: int
    balance_display: str
    in_flight_points: int
    unsettled_points: int
    unsettled_amount: int
    period_start: str
    period_earnings: int
    instant_committed: int
    instant_eligible_points: int
    instant_eligible_amount: int
    fee_rate_bps: int
    payouts_enabled: bool
    recent_payouts: list[PayoutResponse]

    @classmethod
    def from_domain(cls, summary: PayoutSummary) -> "PayoutSummaryResponse":
        return cls(
            cast_id=summary.cast_id,
            balance_points=summary.balance_points,
            balance_display=points_to_display(summary.balance_points),
            in_flight_points=summary.in_flight_points,
            unsettled_points=summary.unsettled_points,
            unsettled_amount=summary.unsettled_amount,
            period_start=summary.period_start.isoformat(),
            period_earnings=summary.period_earnings,
            instant_committed=summary.instant_committed,
            instant_eligible_points=summary.instant_eligible_points,
            instant_eligible_amount=summary.instant_eligible_amount,
            fee_rate_bps=summary.fee_rate_bps,
            payouts_enabled=summary.payouts_enabled,
            recent_payouts=[PayoutResponse.from_domain(p) for p in summary.recent_payouts],
        )


class InstantPayoutResponse(BaseModel):
    payout: PayoutResponse
    payment: PaymentResponse


class WebhookAck(BaseModel):
    received: bool = True
    event_id: str
    outcome: str


class BatchResult(BaseModel):
    processed: int
    outcomes: dict[str, str]


class ClosePeriodResponse(BaseModel):
    closing_month: str
    created: list[PayoutResponse]
