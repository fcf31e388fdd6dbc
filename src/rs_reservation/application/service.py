"""ReservationApplicationService — transaction boundary around MatchingEngine.

Each mutating call commits on success and rolls back on any error, so an
approval (application, siblings, reservation, holds, outbox rows) is one
atomic unit.
"""

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.rs_common.actor import Actor
from src.rs_ledger.application.schemas import PointTransactionItem
from src.rs_ledger.domain.service import PointLedger
from src.rs_ledger.infrastructure.persistence import LedgerRepository
from src.rs_outbox.infrastructure.persistence import OutboxRepository
from src.rs_reservation.application.schemas import (
    ApplicationResponse,
    ApprovalResponse,
    CancellationResponse,
    CreateReservationResponse,
    ReservationResponse,
    SettlementResponse,
)
from src.rs_reservation.domain.engine import MatchingEngine
from src.rs_reservation.infrastructure.persistence import ReservationRepository
from src.rs_settlement.domain.pricing import DefaultPricingPolicy


def build_engine() -> MatchingEngine:
    return MatchingEngine(
        repo=ReservationRepository(),
        ledger=PointLedger(LedgerRepository()),
        pricing=DefaultPricingPolicy(),
        outbox=OutboxRepository(),
    )


class ReservationApplicationService:
    def __init__(self, engine: MatchingEngine | None = None) -> None:
        self._engine = engine or build_engine()

    async def create_reservation(
        self,
        db: AsyncSession,
        actor: Actor,
        reservation_type: str,
        duration_minutes: int,
        scheduled_at: datetime,
        location: str | None,
    ) -> CreateReservationResponse:
        try:
            reservation, hold = await self._engine.create_reservation(
                db, actor, reservation_type, duration_minutes, scheduled_at, location
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return CreateReservationResponse(
            reservation=ReservationResponse.from_domain(reservation),
            hold=PointTransactionItem.from_domain(hold) if hold else None,
        )

    async def get_reservation(self, db: AsyncSession, reservation_id: str) -> ReservationResponse:
        reservation = await self._engine.get_reservation(db, reservation_id)
        return ReservationResponse.from_domain(reservation)

    async def list_applications(
        self, db: AsyncSession, reservation_id: str, status: str | None
    ) -> list[ApplicationResponse]:
        applications = await self._engine.list_applications(db, reservation_id, status)
        return [ApplicationResponse.from_domain(a) for a in applications]

    async def apply(
        self, db: AsyncSession, actor: Actor, reservation_id: str
    ) -> ApplicationResponse:
        try:
            application = await self._engine.apply(db, actor, reservation_id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return ApplicationResponse.from_domain(application)

    async def approve_single(
        self, db: AsyncSession, actor: Actor, application_id: str
    ) -> ApprovalResponse:
        try:
            approved, rejected = await self._engine.approve_single(db, actor, application_id)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return ApprovalResponse(
            approved=[ApplicationResponse.from_domain(approved)],
            rejected=[ApplicationResponse.from_domain(a) for a in rejected],
        )

    async def approve_multiple(
        self, db: AsyncSession, actor: Actor, reservation_id: str, cast_ids: list[str]
    ) -> ApprovalResponse:
        try:
            approved, rejected = await self._engine.approve_multiple(
                db, actor, reservation_id, cast_ids
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return ApprovalResponse(
            approved=[ApplicationResponse.from_domain(a) for a in approved],
            rejected=[ApplicationResponse.from_domain(a) for a in rejected],
        )

    async def reject(
        self, db: AsyncSession, actor: Actor, application_id: str, reason: str | None
    ) -> ApplicationResponse:
        try:
            application = await self._engine.reject(db, actor, application_id, reason)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return ApplicationResponse.from_domain(application)

    async def start_reservation(
        self, db: AsyncSession, actor: Actor, reservation_id: str, started_at: datetime | None
    ) -> ReservationResponse:
        try:
            reservation = await self._engine.start_reservation(
                db, actor, reservation_id, started_at
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return ReservationResponse.from_domain(reservation)

    async def complete_reservation(
        self, db: AsyncSession, actor: Actor, reservation_id: str, ended_at: datetime | None
    ) -> SettlementResponse:
        try:
            reservation, entries = await self._engine.complete_reservation(
                db, actor, reservation_id, ended_at
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return SettlementResponse(
            reservation=ReservationResponse.from_domain(reservation),
            transactions=[PointTransactionItem.from_domain(tx) for tx in entries],
        )

    async def cancel_reservation(
        self, db: AsyncSession, actor: Actor, reservation_id: str
    ) -> CancellationResponse:
        try:
            reservation, refund = await self._engine.cancel_reservation(
                db, actor, reservation_id
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return CancellationResponse(
            reservation=ReservationResponse.from_domain(reservation),
            refunded_points=refund.amount if refund else 0,
        )
