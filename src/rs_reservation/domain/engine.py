"""MatchingEngine — decides which cast(s) win a reservation and settles it.

Every operation runs inside the caller's transaction and never commits.
The reservation row is locked FOR UPDATE before any application or ledger
change, so approve / complete / cancel on one reservation serialize, and the
application status is the optimistic guard (`UPDATE ... WHERE status =
'pending'`): of two racing approvals exactly one sees its row.

Side effects (notifications, chats, ranking) are only recorded here as outbox
intents; the relay delivers them after commit.
"""

import logging
from collections import defaultdict
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from src.rs_common.actor import Actor
from src.rs_common.datetime_utils import utc_now
from src.rs_common.enums import (
    AccountKind,
    ActorRole,
    ApplicationStatus,
    PointTransactionType,
    ReservationType,
)
from src.rs_common.errors import (
    AlreadySettledError,
    ApplicationNotFoundError,
    DuplicateApplicationError,
    ForbiddenError,
    NoPendingFundsError,
    NotPendingError,
    ReservationClosedError,
    ReservationNotFoundError,
    ReservationNotMatchedError,
    UnsupportedTypeError,
)
from src.rs_common.id_generator import generate_id
from src.rs_ledger.domain.models import AccountRef, Allocation, PointTransaction
from src.rs_ledger.domain.service import PointLedger
from src.rs_outbox.domain import events
from src.rs_outbox.domain.repository import OutboxRepositoryProtocol
from src.rs_reservation.domain.models import Reservation, ReservationApplication
from src.rs_reservation.domain.repository import ReservationRepositoryProtocol
from src.rs_settlement.domain.calculator import (
    elapsed_minutes,
    extension_fee,
    night_bonus,
    split_evenly,
)
from src.rs_settlement.domain.pricing import PricingPolicy, price_reservation

logger = logging.getLogger(__name__)

REASON_ANOTHER_APPROVED = "Another cast was approved for this reservation"
REASON_NOT_SELECTED = "Another set of casts was approved for this reservation"
REASON_CANCELLED = "Reservation cancelled"
REASON_ADMIN_DEFAULT = "Application rejected by admin"

# reservation types priced up front, at creation; pishatto is held per cast at approval
_PREPAID_TYPES = (ReservationType.STANDARD.value, ReservationType.FREE.value)


class MatchingEngine:
    def __init__(
        self,
        repo: ReservationRepositoryProtocol,
        ledger: PointLedger,
        pricing: PricingPolicy,
        outbox: OutboxRepositoryProtocol,
    ) -> None:
        self._repo = repo
        self._ledger = ledger
        self._pricing = pricing
        self._outbox = outbox

    # ------------------------------------------------------------------
    # Reservation lifecycle
    # ------------------------------------------------------------------

    async def create_reservation(
        self,
        db: AsyncSession,
        actor: Actor,
        reservation_type: str,
        duration_minutes: int,
        scheduled_at: datetime,
        location: str | None = None,
    ) -> tuple[Reservation, PointTransaction | None]:
        """Open a reservation. Standard and free bookings hold their price immediately."""
        actor.require(ActorRole.GUEST)
        ReservationType(reservation_type)  # ValueError on unknown type
        reservation = await self._repo.insert_reservation(
            db,
            Reservation(
                id=generate_id(),
                guest_id=actor.id,
                type=reservation_type,
                duration_minutes=duration_minutes,
                scheduled_at=scheduled_at,
                location=location,
            ),
        )
        hold: PointTransaction | None = None
        if reservation_type in _PREPAID_TYPES:
            amount = price_reservation(self._pricing, reservation_type, duration_minutes)
            hold = await self._ledger.hold(
                db,
                AccountRef.guest(actor.id),
                amount,
                reservation.id,
                f"Hold for {reservation_type} reservation",
            )
        logger.info(
            "Reservation %s created by %s (%s, %d min)",
            reservation.id,
            actor,
            reservation_type,
            duration_minutes,
        )
        return reservation, hold

    async def start_reservation(
        self,
        db: AsyncSession,
        actor: Actor,
        reservation_id: str,
        started_at: datetime | None = None,
    ) -> Reservation:
        actor.require(ActorRole.ADMIN, ActorRole.SYSTEM)
        reservation = await self._lock_reservation(db, reservation_id)
        if reservation.is_settled:
            raise AlreadySettledError(reservation_id)
        if reservation.is_cancelled:
            raise ReservationClosedError(reservation_id)
        if not reservation.winners:
            raise ReservationNotMatchedError(reservation_id)
        if reservation.started_at is None:
            reservation.started_at = started_at or utc_now()
            await self._repo.save_reservation(db, reservation)
        return reservation

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    async def apply(
        self, db: AsyncSession, actor: Actor, reservation_id: str
    ) -> ReservationApplication:
        actor.require(ActorRole.CAST)
        # serializes with approve, which closes the reservation under the same lock
        reservation = await self._lock_reservation(db, reservation_id)
        if not reservation.active:
            raise ReservationClosedError(reservation_id)
        application = await self._repo.insert_application(
            db,
            ReservationApplication(
                id=generate_id(),
                reservation_id=reservation_id,
                cast_id=actor.id,
                status=ApplicationStatus.PENDING.value,
                applied_at=utc_now(),
            ),
        )
        if application is None:
            raise DuplicateApplicationError(reservation_id, actor.id)
        await self._outbox.add(
            db,
            events.notification(
                reservation.guest_id,
                AccountKind.GUEST.value,
                "cast_applied",
                {"reservation_id": reservation_id, "cast_id": actor.id},
            ),
        )
        return application

    async def approve_single(
        self, db: AsyncSession, actor: Actor, application_id: str
    ) -> tuple[ReservationApplication, list[ReservationApplication]]:
        """Approve one application. Returns (approved, auto-rejected siblings)."""
        actor.require(ActorRole.ADMIN)
        found = await self._repo.get_application(db, application_id)
        if found is None:
            raise ApplicationNotFoundError(application_id)
        reservation = await self._lock_reservation(db, found.reservation_id)
        if reservation.is_settled or reservation.is_cancelled:
            raise ReservationClosedError(reservation.id)
        # re-read under the reservation lock: every approval takes it first
        current = await self._repo.get_application(db, application_id)
        if current is None or current.status != ApplicationStatus.PENDING:
            raise NotPendingError(application_id)
        if not reservation.active and reservation.type != ReservationType.FREE:
            # a pending application left behind on a closed reservation
            raise ReservationClosedError(reservation.id)

        now = utc_now()
        approved = await self._repo.approve_application(db, application_id, actor.id, now)
        if approved is None:
            raise NotPendingError(application_id)

        reservation.active = False
        reservation.cast_id = approved.cast_id
        if approved.cast_id not in reservation.cast_ids:
            reservation.cast_ids.append(approved.cast_id)

        rejected: list[ReservationApplication] = []
        if reservation.type != ReservationType.FREE:
            rejected = await self._repo.reject_pending(
                db, reservation.id, actor.id, REASON_ANOTHER_APPROVED, now
            )

        if reservation.type == ReservationType.PISHATTO:
            outstanding = await self._ledger.held_for(db, reservation.id)
            if not outstanding:
                await self._hold_per_cast(db, reservation, [approved.cast_id])

        await self._repo.save_reservation(db, reservation)
        await self._record_match(db, reservation, [approved.cast_id], rejected)
        logger.info(
            "Application %s approved by %s: reservation %s -> cast %s (%d siblings rejected)",
            application_id,
            actor,
            reservation.id,
            approved.cast_id,
            len(rejected),
        )
        return approved, rejected

    async def approve_multiple(
        self, db: AsyncSession, actor: Actor, reservation_id: str, cast_ids: list[str]
    ) -> tuple[list[ReservationApplication], list[ReservationApplication]]:
        """Approve a set of casts on a pishatto reservation in one step."""
        actor.require(ActorRole.ADMIN)
        winners = list(dict.fromkeys(cast_ids))
        if not winners:
            raise ValueError("cast_ids must not be empty")
        reservation = await self._lock_reservation(db, reservation_id)
        if reservation.type != ReservationType.PISHATTO:
            raise UnsupportedTypeError(reservation.type, "multiple approval")
        if not reservation.active:
            raise ReservationClosedError(reservation_id)

        pending = await self._repo.list_applications(
            db, reservation_id, ApplicationStatus.PENDING.value
        )
        by_cast = {application.cast_id: application for application in pending}
        now = utc_now()
        approved: list[ReservationApplication] = []
        for cast_id in winners:
            candidate = by_cast.get(cast_id)
            if candidate is None:
                raise NotPendingError(f"{reservation_id}/{cast_id}")
            result = await self._repo.approve_application(db, candidate.id, actor.id, now)
            if result is None:
                raise NotPendingError(candidate.id)
            approved.append(result)

        rejected = await self._repo.reject_pending(
            db, reservation_id, actor.id, REASON_NOT_SELECTED, now
        )

        reservation.active = False
        reservation.cast_id = winners[0]
        reservation.cast_ids = winners

        outstanding = await self._ledger.held_for(db, reservation_id)
        if not outstanding:
            await self._hold_per_cast(db, reservation, winners)

        await self._repo.save_reservation(db, reservation)
        await self._record_match(db, reservation, winners, rejected)
        logger.info(
            "Reservation %s matched to %d casts by %s (%d applications rejected)",
            reservation_id,
            len(winners),
            actor,
            len(rejected),
        )
        return approved, rejected

    async def reject(
        self,
        db: AsyncSession,
        actor: Actor,
        application_id: str,
        reason: str | None = None,
    ) -> ReservationApplication:
        actor.require(ActorRole.ADMIN)
        rejected = await self._repo.reject_application(
            db, application_id, actor.id, reason or REASON_ADMIN_DEFAULT, utc_now()
        )
        if rejected is None:
            if await self._repo.get_application(db, application_id) is None:
                raise ApplicationNotFoundError(application_id)
            raise NotPendingError(application_id)
        await self._outbox.add(
            db,
            events.notification(
                rejected.cast_id,
                AccountKind.CAST.value,
                "application_rejected",
                {"reservation_id": rejected.reservation_id, "reason": rejected.rejection_reason},
            ),
        )
        return rejected

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def complete_reservation(
        self,
        db: AsyncSession,
        actor: Actor,
        reservation_id: str,
        ended_at: datetime | None = None,
    ) -> tuple[Reservation, list[PointTransaction]]:
        """Price the finished session and pay the winners.

        The held points cover the booked length; an early finish refunds the unused
        part. Overtime and night bonus are charged on top, up to what the guest can
        cover; any uncovered remainder is kept on the reservation as
        `points_shortfall` instead of blocking the settlement.
        """
        actor.require(ActorRole.ADMIN, ActorRole.SYSTEM)
        reservation = await self._lock_reservation(db, reservation_id)
        if reservation.is_settled:
            raise AlreadySettledError(reservation_id)
        if reservation.is_cancelled:
            raise ReservationClosedError(reservation_id)
        winners = reservation.winners
        if not winners:
            raise ReservationNotMatchedError(reservation_id)

        started = reservation.started_at or reservation.scheduled_at
        ended = ended_at or utc_now()
        outstanding = await self._ledger.held_for(db, reservation_id)
        if not outstanding:
            raise NoPendingFundsError(reservation_id)

        base = _base_shares(outstanding, winners)
        used = _used_shares(
            base, elapsed_minutes(started, ended), reservation.duration_minutes
        )
        night_shares = split_evenly(night_bonus(started), len(winners))
        allocations: list[Allocation] = []
        for index, cast_id in enumerate(winners):
            cast = await self._ledger.get_account(db, AccountRef.cast(cast_id))
            overtime = extension_fee(
                cast.grade_points, reservation.duration_minutes, started, ended
            )
            allocations.append(
                Allocation(
                    account=cast.ref,
                    amount=used[index],
                    bonus=overtime + night_shares[index],
                )
            )

        settlement = await self._ledger.settle(db, reservation_id, allocations)

        reservation.started_at = started
        reservation.ended_at = ended
        reservation.points_earned = sum(used) + settlement.surcharge_collected
        reservation.points_shortfall = settlement.shortfall
        await self._repo.save_reservation(db, reservation)

        await self._outbox.add(
            db,
            events.notification(
                reservation.guest_id,
                AccountKind.GUEST.value,
                "reservation_completed",
                {
                    "reservation_id": reservation_id,
                    "points": reservation.points_earned,
                    "refunded": settlement.refunded,
                    "shortfall": settlement.shortfall,
                },
            ),
        )
        for entry in settlement.entries:
            if entry.type != PointTransactionType.TRANSFER:
                continue
            await self._outbox.add(
                db,
                events.notification(
                    entry.account_id,
                    AccountKind.CAST.value,
                    "points_received",
                    {"reservation_id": reservation_id, "points": entry.amount},
                ),
            )
        await self._outbox.add(db, events.ranking_invalidate(reservation.location))
        logger.info(
            "Reservation %s completed by %s: %d points to %d casts (refunded %d, shortfall %d)",
            reservation_id,
            actor,
            reservation.points_earned,
            len(winners),
            settlement.refunded,
            settlement.shortfall,
        )
        return reservation, settlement.entries

    async def cancel_reservation(
        self, db: AsyncSession, actor: Actor, reservation_id: str
    ) -> tuple[Reservation, PointTransaction | None]:
        actor.require(ActorRole.ADMIN, ActorRole.GUEST)
        reservation = await self._lock_reservation(db, reservation_id)
        if actor.role == ActorRole.GUEST and reservation.guest_id != actor.id:
            raise ForbiddenError("the reservation's guest")
        if reservation.is_settled:
            raise AlreadySettledError(reservation_id)
        if reservation.is_cancelled:
            return reservation, None

        now = utc_now()
        refund = await self._ledger.refund(db, reservation_id)
        rejected = await self._repo.reject_pending(
            db, reservation_id, actor.id, REASON_CANCELLED, now
        )
        reservation.active = False
        reservation.cancelled_at = now
        await self._repo.save_reservation(db, reservation)

        await self._outbox.add(
            db,
            events.notification(
                reservation.guest_id,
                AccountKind.GUEST.value,
                "reservation_cancelled",
                {"reservation_id": reservation_id, "refunded": refund.amount if refund else 0},
            ),
        )
        for cast_id in reservation.winners + [a.cast_id for a in rejected]:
            await self._outbox.add(
                db,
                events.notification(
                    cast_id,
                    AccountKind.CAST.value,
                    "reservation_cancelled",
                    {"reservation_id": reservation_id},
                ),
            )
        logger.info("Reservation %s cancelled by %s", reservation_id, actor)
        return reservation, refund

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_reservation(self, db: AsyncSession, reservation_id: str) -> Reservation:
        reservation = await self._repo.get_reservation(db, reservation_id)
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        return reservation

    async def list_applications(
        self, db: AsyncSession, reservation_id: str, status: str | None = None
    ) -> list[ReservationApplication]:
        await self.get_reservation(db, reservation_id)
        return await self._repo.list_applications(db, reservation_id, status)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _lock_reservation(self, db: AsyncSession, reservation_id: str) -> Reservation:
        reservation = await self._repo.get_reservation(db, reservation_id, for_update=True)
        if reservation is None:
            raise ReservationNotFoundError(reservation_id)
        return reservation

    async def _hold_per_cast(
        self, db: AsyncSession, reservation: Reservation, cast_ids: list[str]
    ) -> list[PointTransaction]:
        """Price the winners together and hold one even share per cast from the guest."""
        grade_points = [
            (await self._ledger.get_account(db, AccountRef.cast(cast_id))).grade_points
            for cast_id in cast_ids
        ]
        total = price_reservation(
            self._pricing, reservation.type, reservation.duration_minutes, grade_points
        )
        holds = []
        for cast_id, share in zip(cast_ids, split_evenly(total, len(cast_ids))):
            holds.append(
                await self._ledger.hold(
                    db,
                    AccountRef.guest(reservation.guest_id),
                    share,
                    reservation.id,
                    f"Hold for cast {cast_id}",
                    counterparty=AccountRef.cast(cast_id),
                )
            )
        return holds

    async def _record_match(
        self,
        db: AsyncSession,
        reservation: Reservation,
        winners: list[str],
        rejected: list[ReservationApplication],
    ) -> None:
        await self._outbox.add(
            db,
            events.chat_open(
                reservation.id,
                reservation.guest_id,
                winners,
                f"Reservation {reservation.id}",
            ),
        )
        await self._outbox.add(
            db,
            events.notification(
                reservation.guest_id,
                AccountKind.GUEST.value,
                "order_matched",
                {"reservation_id": reservation.id, "cast_ids": winners},
            ),
        )
        for cast_id in winners:
            await self._outbox.add(
                db,
                events.notification(
                    cast_id,
                    AccountKind.CAST.value,
                    "application_approved",
                    {"reservation_id": reservation.id},
                ),
            )
        for application in rejected:
            await self._outbox.add(
                db,
                events.notification(
                    application.cast_id,
                    AccountKind.CAST.value,
                    "application_rejected",
                    {
                        "reservation_id": reservation.id,
                        "reason": application.rejection_reason,
                    },
                ),
            )
        await self._outbox.add(db, events.ranking_invalidate(reservation.location))


def _base_shares(outstanding: list[PointTransaction], winners: list[str]) -> list[int]:
    """Each winner's cut of the held points, in winner order.

    Per-cast holds (counterparty = cast) pay each winner its own share; a lump
    hold is split evenly across the winners.
    """
    per_cast: dict[str, int] = defaultdict(int)
    earmarked = True
    for tx in outstanding:
        if tx.counterparty_type != AccountKind.CAST or tx.counterparty_id not in winners:
            earmarked = False
            break
        per_cast[tx.counterparty_id] += -tx.amount
    if earmarked:
        return [per_cast.get(cast_id, 0) for cast_id in winners]
    held = -sum(tx.amount for tx in outstanding)
    return split_evenly(held, len(winners))


def _used_shares(base: list[int], elapsed: int, scheduled: int) -> list[int]:
    """Part of each held share the session actually used.

    A session that ran its full length (or longer) uses the whole hold; an
    early finish uses base * elapsed // scheduled per share and the rest is
    refunded.
    """
    if scheduled <= 0 or elapsed >= scheduled:
        return list(base)
    return [share * elapsed // scheduled for share in base]
