"""Domain models for rs_reservation — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class Reservation:
    id: str
    guest_id: str
    type: str                        # ReservationType value
    duration_minutes: int            # scheduled length
    scheduled_at: datetime
    location: str | None = None      # ranking region
    active: bool = True              # open for applications
    cast_id: str | None = None       # primary winner
    cast_ids: list[str] = field(default_factory=list)  # every winner, approval order
    started_at: datetime | None = None
    ended_at: datetime | None = None
    points_earned: int | None = None  # set once, at settlement
    points_shortfall: int = 0        # surcharge the guest could not cover
    cancelled_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def winners(self) -> list[str]:
        if self.cast_ids:
            return list(self.cast_ids)
        return [self.cast_id] if self.cast_id else []

    @property
    def is_settled(self) -> bool:
        return self.points_earned is not None

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled_at is not None


@dataclass
class ReservationApplication:
    id: str
    reservation_id: str
    cast_id: str
    status: str                      # ApplicationStatus value; terminal once not pending
    applied_at: datetime | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    rejected_at: datetime | None = None
    rejected_by: str | None = None
    rejection_reason: str | None = None
