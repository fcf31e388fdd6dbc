"""Repository Protocol for reservations and their applications."""

from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.rs_reservation.domain.models import Reservation, ReservationApplication


class ReservationRepositoryProtocol(Protocol):
    async def insert_reservation(
        self, db: AsyncSession, reservation: Reservation
    ) -> Reservation: ...

    async def get_reservation(
        self, db: AsyncSession, reservation_id: str, for_update: bool = False
    ) -> Reservation | None: ...

    async def save_reservation(self, db: AsyncSession, reservation: Reservation) -> None: ...

    async def insert_application(
        self, db: AsyncSession, application: ReservationApplication
    ) -> ReservationApplication | None:
        """None when the (reservation, cast) pair already exists."""
        ...

    async def get_application(
        self, db: AsyncSession, application_id: str
    ) -> ReservationApplication | None: ...

    async def approve_application(
        self, db: AsyncSession, application_id: str, approved_by: str, now: datetime
    ) -> ReservationApplication | None:
        """Conditional pending -> approved. None when not pending (or missing)."""
        ...

    async def reject_application(
        self,
        db: AsyncSession,
        application_id: str,
        rejected_by: str,
        reason: str,
        now: datetime,
    ) -> ReservationApplication | None: ...

    async def reject_pending(
        self,
        db: AsyncSession,
        reservation_id: str,
        rejected_by: str,
        reason: str,
        now: datetime,
    ) -> list[ReservationApplication]:
        """Reject every still-pending application of a reservation."""
        ...

    async def list_applications(
        self, db: AsyncSession, reservation_id: str, status: str | None = None
    ) -> list[ReservationApplication]: ...
