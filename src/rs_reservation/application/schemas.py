"""Pydantic schemas for the rs_reservation API."""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from src.rs_ledger.application.schemas import PointTransactionItem
from src.rs_reservation.domain.models import Reservation, ReservationApplication

# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------


class CreateReservationRequest(BaseModel):
    type: Literal["standard", "free", "pishatto"]
    duration_minutes: int = Field(..., gt=0, le=24 * 60)
    scheduled_at: datetime
    location: str | None = Field(None, max_length=100)


class ApproveMultipleRequest(BaseModel):
    cast_ids: list[str] = Field(..., min_length=1)


class RejectApplicationRequest(BaseModel):
    reason: str | None = Field(None, max_length=500)


class StartReservationRequest(BaseModel):
    started_at: datetime | None = None


class CompleteReservationRequest(BaseModel):
    ended_at: datetime | None = None


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------


def _iso(moment: datetime | None) -> str | None:
    return moment.isoformat() if moment else None


class ReservationResponse(BaseModel):
    id: str
    guest_id: str
    type: str
    duration_minutes: int
    scheduled_at: str
    location: str | None
    active: bool
    cast_id: str | None
    cast_ids: list[str]
    started_at: str | None
    ended_at: str | None
    points_earned: int | None
    points_shortfall: int
    cancelled_at: str | None

    @classmethod
    def from_domain(cls, reservation: Reservation) -> "ReservationResponse":
        return cls(
            id=reservation.id,
            guest_id=reservation.guest_id,
            type=reservation.type,
            duration_minutes=reservation.duration_minutes,
            scheduled_at=reservation.scheduled_at.isoformat(),
            location=reservation.location,
            active=reservation.active,
            cast_id=reservation.cast_id,
            cast_ids=list(reservation.cast_ids),
            started_at=_iso(reservation.started_at),
            ended_at=_iso(reservation.ended_at),
            points_earned=reservation.points_earned,
            points_shortfall=reservation.points_shortfall,
            cancelled_at=_iso(reservation.cancelled_at),
        )


class ApplicationResponse(BaseModel):
    id: str
    reservation_id: str
    cast_id: str
    status: str
    applied_at: str | None
    approved_at: str | None
    rejected_at: str | None
    rejection_reason: str | None

    @classmethod
    def from_domain(cls, application: ReservationApplication) -> "ApplicationResponse":
        return cls(
            id=application.id,
            reservation_id=application.reservation_id,
            cast_id=application.cast_id,
            status=application.status,
            applied_at=_iso(application.applied_at),
            approved_at=_iso(application.approved_at),
            rejected_at=_iso(application.rejected_at),
            rejection_reason=application.rejection_reason,
        )


class CreateReservationResponse(BaseModel):
    reservation: ReservationResponse
    hold: PointTransactionItem | None


class ApprovalResponse(BaseModel):
    approved: list[ApplicationResponse]
    rejected: list[ApplicationResponse]


class SettlementResponse(BaseModel):
    reservation: ReservationResponse
    transactions: list[PointTransactionItem]


class CancellationResponse(BaseModel):
    reservation: ReservationResponse
    refunded_points: int
