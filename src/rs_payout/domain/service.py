"""PayoutService — turns cast points into processor payouts.

Lifecycle of an instant payout:
  request  -> cast row locked, eligibility priced, processor called,
              CastPayout(processing) + Payment(pending) written
  callback -> Payment locked by processor_ref; success debits the cast and
              marks both paid, failure marks both failed. Terminal rows make
              replays a no-op.

Points leave the cast's balance only when the processor confirms the payout;
until then they count as in flight and are excluded from what can be
requested again.

All methods run inside the caller's transaction; PayoutApplicationService
owns commit/rollback.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.rs_common.datetime_utils import (
    add_months,
    month_end,
    month_start,
    previous_weekday,
    to_local,
    utc_now,
)
from src.rs_common.enums import (
    AccountKind,
    PaymentStatus,
    PayoutStatus,
    PayoutType,
    PointTransactionType,
)
from src.rs_common.errors import (
    BelowMinimumError,
    InsufficientEligibleFundsError,
    PayoutAccountNotReadyError,
    PayoutNotFoundError,
)
from src.rs_common.id_generator import generate_id
from src.rs_common.points import apply_ratio, points_to_currency
from src.rs_ledger.domain.models import Account, AccountRef
from src.rs_ledger.domain.repository import LedgerRepositoryProtocol
from src.rs_ledger.domain.service import PointLedger
from src.rs_outbox.domain import events
from src.rs_outbox.domain.repository import OutboxRepositoryProtocol
from src.rs_payout.domain.fees import fee_rate_bps, quote_payout
from src.rs_payout.domain.models import CastPayout, Payment, PayoutSummary
from src.rs_payout.domain.processor import (
    PAYOUT_FAILED_STATUSES,
    PAYOUT_PAID,
    PaymentProcessor,
    ProcessorEvent,
)
from src.rs_payout.domain.repository import PayoutRepositoryProtocol

logger = logging.getLogger(__name__)

EARNING_TYPES = [PointTransactionType.TRANSFER.value, PointTransactionType.GIFT.value]
PAYMENT_METHOD = "processor_payout"
RECENT_PAYOUTS_LIMIT = 10

# webhook event types
EVENT_PAYOUT_PAID = "payout.paid"
EVENT_PAYOUT_FAILED = "payout.failed"
EVENT_PAYOUT_CANCELED = "payout.canceled"
EVENT_ACCOUNT_UPDATED = "account.updated"


class PayoutService:
    def __init__(
        self,
        repo: PayoutRepositoryProtocol,
        ledger_repo: LedgerRepositoryProtocol,
        processor: PaymentProcessor,
        outbox: OutboxRepositoryProtocol | None = None,
    ) -> None:
        self._repo = repo
        self._ledger_repo = ledger_repo
        self._ledger = PointLedger(ledger_repo)
        self._processor = processor
        self._outbox = outbox

    async def aclose(self) -> None:
        await self._processor.aclose()

    # ------------------------------------------------------------------
    # Summary / eligibility
    # ------------------------------------------------------------------

    async def build_summary(
        self,
        db: AsyncSession,
        cast_id: str,
        now: datetime | None = None,
        lock: bool = False,
    ) -> PayoutSummary:
        cast = await self._ledger.get_account(db, AccountRef.cast(cast_id), for_update=lock)
        return await self._summarize(db, cast, now or utc_now())

    async def _summarize(
        self, db: AsyncSession, cast: Account, now: datetime
    ) -> PayoutSummary:
        in_flight = await self._repo.sum_in_flight(db, cast.id)
        unsettled = max(0, cast.points - in_flight)
        period_start = month_start(now)
        earnings = await self._ledger_repo.sum_credits(db, cast.ref, EARNING_TYPES, period_start)
        committed = await self._repo.sum_instant_committed(db, cast.id, period_start)
        cap = max(0, apply_ratio(earnings, settings.INSTANT_MAX_RATIO_BPS) - committed)
        eligible = min(unsettled, cap)
        recent = await self._repo.list_recent(db, cast.id, RECENT_PAYOUTS_LIMIT)
        return PayoutSummary(
            cast_id=cast.id,
            balance_points=cast.points,
            in_flight_points=in_flight,
            unsettled_points=unsettled,
            unsettled_amount=points_to_currency(unsettled),
            period_start=period_start,
            period_earnings=earnings,
            instant_committed=committed,
            instant_eligible_points=eligible,
            instant_eligible_amount=points_to_currency(eligible),
            fee_rate_bps=fee_rate_bps(cast.grade),
            payouts_enabled=cast.payouts_enabled,
            recent_payouts=recent,
        )

    # ------------------------------------------------------------------
    # Instant payout
    # ------------------------------------------------------------------

    @staticmethod
    def check_minimum(amount: int) -> None:
        if amount < settings.INSTANT_MIN_POINTS:
            raise BelowMinimumError(amount, settings.INSTANT_MIN_POINTS)

    async def prepare_instant_payout(
        self,
        db: AsyncSession,
        cast_id: str,
        amount: int,
        memo: str | None,
        requested_by: str,
        now: datetime | None = None,
    ) -> tuple[CastPayout, str]:
        """Validate and price an instant payout under the cast row lock.

        Returns the unsaved payout and the cast's processor account. Nothing
        is written and the processor is not called.
        """
        self.check_minimum(amount)
        moment = now or utc_now()
        cast = await self._ledger.get_account(db, AccountRef.cast(cast_id), for_update=True)
        summary = await self._summarize(db, cast, moment)
        if amount > summary.instant_eligible_points:
            raise InsufficientEligibleFundsError(amount, summary.instant_eligible_points)
        if not cast.payout_account_ref or not cast.payouts_enabled:
            raise PayoutAccountNotReadyError(cast_id)

        quote = quote_payout(amount, cast.grade)
        payout = CastPayout(
            id=generate_id(),
            cast_id=cast_id,
            type=PayoutType.INSTANT.value,
            status=PayoutStatus.REQUESTED.value,
            amount=quote.amount,
            fee_rate_bps=quote.fee_rate_bps,
            fee=quote.fee,
            net_points=quote.net_points,
            net_amount=quote.net_amount,
            currency=quote.currency,
            closing_month=to_local(moment).date().replace(day=1),
            memo=memo,
            requested_by=requested_by,
        )
        return payout, cast.payout_account_ref

    async def submit(
        self, db: AsyncSession, payout: CastPayout, account_ref: str
    ) -> tuple[CastPayout, Payment]:
        """Send a priced payout to the processor and record it as processing.

        Processor errors propagate before anything is written.
        """
        result = await self._processor.create_payout(
            account_ref=account_ref,
            amount=payout.net_amount,
            currency=payout.currency,
            metadata={"cast_payout_id": payout.id, "cast_id": payout.cast_id},
            idempotency_key=payout.id,
        )
        payout.status = PayoutStatus.PROCESSING.value
        payout.processor_ref = result.id
        if payout.created_at is None:
            saved = await self._repo.insert_payout(db, payout)
        else:
            await self._repo.mark_processing(db, payout.id, result.id)
            saved = payout
        payment = await self._repo.insert_payment(
            db,
            Payment(
                id=generate_id(),
                user_id=payout.cast_id,
                user_type=AccountKind.CAST.value,
                cast_payout_id=payout.id,
                amount=payout.net_amount,
                currency=payout.currency,
                status=PaymentStatus.PENDING.value,
                payment_method=PAYMENT_METHOD,
                processor_ref=result.id,
                processor_account_ref=account_ref,
                metadata={"processor_status": result.status},
            ),
        )
        logger.info(
            "Payout %s submitted for cast %s: %d points -> %d %s (ref=%s)",
            payout.id,
            payout.cast_id,
            payout.amount,
            payout.net_amount,
            payout.currency,
            result.id,
        )
        return saved, payment

    async def record_failed_request(
        self, db: AsyncSession, payout: CastPayout, reason: str
    ) -> CastPayout:
        """Persist a payout that never reached `processing` so it is visible and reconcilable."""
        payout.status = PayoutStatus.FAILED.value
        payout.failure_reason = reason
        payout.failed_at = utc_now()
        if payout.created_at is None:
            return await self._repo.insert_payout(db, payout)
        await self._repo.mark_failed(db, payout.id, reason, payout.failed_at)
        return payout

    # ------------------------------------------------------------------
    # Processor outcomes
    # ------------------------------------------------------------------

    async def handle_event(self, db: AsyncSession, event: ProcessorEvent) -> str:
        obj = event.object
        if event.type == EVENT_PAYOUT_PAID:
            return await self.apply_outcome(
                db, str(obj.get("id")), _metadata_payout_id(obj), succeeded=True
            )
        if event.type in (EVENT_PAYOUT_FAILED, EVENT_PAYOUT_CANCELED):
            reason = obj.get("failure_message") or obj.get("failure_code") or event.type
            return await self.apply_outcome(
                db,
                str(obj.get("id")),
                _metadata_payout_id(obj),
                succeeded=False,
                failure_reason=str(reason),
            )
        if event.type == EVENT_ACCOUNT_UPDATED:
            cast = await self._ledger_repo.set_payouts_enabled(
                db, str(obj.get("id")), bool(obj.get("payouts_enabled"))
            )
            if cast is None:
                logger.warning("account.updated for unknown processor account %s", obj.get("id"))
                return "unmatched"
            logger.info("Cast %s payouts_enabled=%s", cast.id, cast.payouts_enabled)
            return "account_synced"
        logger.info("Ignoring processor event %s (%s)", event.id, event.type)
        return "ignored"

    async def apply_outcome(
        self,
        db: AsyncSession,
        processor_ref: str,
        payout_id_hint: str | None,
        succeeded: bool,
        failure_reason: str | None = None,
    ) -> str:
        """Finalize a payout from a processor outcome. Idempotent.

        Returns "paid", "failed", "duplicate" or "unmatched".
        """
        payment = await self._repo.get_payment_by_processor_ref(db, processor_ref, for_update=True)
        if payment is None:
            payment = await self._adopt_orphan(db, processor_ref, payout_id_hint)
            if payment is None:
                return "unmatched"
        if payment.is_terminal:
            logger.info(
                "Processor outcome replay ignored: ref=%s status=%s", processor_ref, payment.status
            )
            return "duplicate"
        if payment.cast_payout_id is None:
            logger.warning("Payment %s has no payout link; ref=%s", payment.id, processor_ref)
            return "unmatched"

        payout = await self._repo.get_payout(db, payment.cast_payout_id, for_update=True)
        if payout is None:
            raise PayoutNotFoundError(payment.cast_payout_id)
        now = utc_now()
        if succeeded:
            await self._ledger.debit(
                db,
                AccountRef.cast(payout.cast_id),
                payout.amount,
                f"Payout {payout.id}",
                cast_payout_id=payout.id,
            )
            await self._repo.mark_paid(db, payout.id, now)
            await self._repo.mark_payment_paid(db, payment.id, now)
            logger.info(
                "Payout %s paid: %d points debited from cast %s",
                payout.id,
                payout.amount,
                payout.cast_id,
            )
            await self._notify(db, payout, "payout_paid")
            return "paid"

        reason = failure_reason or "processor_failed"
        if not payout.is_terminal:
            await self._repo.mark_failed(db, payout.id, reason, now)
        await self._repo.mark_payment_failed(db, payment.id, reason, now)
        logger.warning("Payout %s failed: %s", payout.id, reason)
        await self._notify(db, payout, "payout_failed", reason=reason)
        return "failed"

    async def _notify(
        self, db: AsyncSession, payout: CastPayout, kind: str, **extra: Any
    ) -> None:
        if self._outbox is None:
            return
        data = {"cast_payout_id": payout.id, "amount": payout.amount, **extra}
        await self._outbox.add(
            db, events.notification(payout.cast_id, AccountKind.CAST.value, kind, data)
        )

    async def _adopt_orphan(
        self, db: AsyncSession, processor_ref: str, payout_id_hint: str | None
    ) -> Payment | None:
        """Link an outcome whose request never recorded a Payment (e.g. a timed-out request)."""
        if not payout_id_hint:
            logger.warning("Unmatched processor outcome: ref=%s (no payout metadata)", processor_ref)
            return None
        payout = await self._repo.get_payout(db, payout_id_hint, for_update=True)
        if payout is None:
            logger.warning(
                "Unmatched processor outcome: ref=%s payout=%s not found", processor_ref, payout_id_hint
            )
            return None
        if payout.status == PayoutStatus.PAID:
            logger.info("Processor outcome for already paid payout %s ignored", payout.id)
            return None
        cast = await self._ledger_repo.get_account(db, AccountRef.cast(payout.cast_id))
        logger.info("Adopting processor ref %s for payout %s", processor_ref, payout.id)
        return await self._repo.insert_payment(
            db,
            Payment(
                id=generate_id(),
                user_id=payout.cast_id,
                user_type=AccountKind.CAST.value,
                cast_payout_id=payout.id,
                amount=payout.net_amount,
                currency=payout.currency,
                status=PaymentStatus.PENDING.value,
                payment_method=PAYMENT_METHOD,
                processor_ref=processor_ref,
                processor_account_ref=cast.payout_account_ref if cast else None,
                metadata={"adopted": True},
            ),
        )

    async def poll_outcome(self, db: AsyncSession, payout: CastPayout) -> str:
        """Ask the processor about a processing payout and apply what it reports."""
        payment = await self._repo.get_payment_by_payout(db, payout.id)
        if payment is None or payment.processor_ref is None or payment.processor_account_ref is None:
            logger.warning("Payout %s is processing without a payment record", payout.id)
            return "unmatched"
        remote = await self._processor.retrieve_payout(
            payment.processor_ref, payment.processor_account_ref
        )
        if remote.status == PAYOUT_PAID:
            return await self.apply_outcome(db, remote.id, payout.id, succeeded=True)
        if remote.status in PAYOUT_FAILED_STATUSES:
            return await self.apply_outcome(
                db,
                remote.id,
                payout.id,
                succeeded=False,
                failure_reason=remote.failure_message or remote.status,
            )
        return "pending"

    # ------------------------------------------------------------------
    # Scheduled payouts
    # ------------------------------------------------------------------

    async def close_monthly_period(
        self, db: AsyncSession, period_end: date, requested_by: str
    ) -> list[CastPayout]:
        """Create one scheduled payout per cast for the month containing `period_end`."""
        closing_month = period_end.replace(day=1)
        due = previous_weekday(
            month_end(add_months(closing_month, settings.SCHEDULED_PAYOUT_OFFSET_MONTHS))
        )
        created: list[CastPayout] = []
        for cast in await self._ledger_repo.list_casts_with_points(db, settings.INSTANT_MIN_POINTS):
            if await self._repo.scheduled_exists(db, cast.id, closing_month):
                continue
            amount = cast.points - await self._repo.sum_in_flight(db, cast.id)
            if amount < settings.INSTANT_MIN_POINTS:
                continue
            quote = quote_payout(amount, cast.grade)
            created.append(
                await self._repo.insert_payout(
                    db,
                    CastPayout(
                        id=generate_id(),
                        cast_id=cast.id,
                        type=PayoutType.SCHEDULED.value,
                        status=PayoutStatus.REQUESTED.value,
                        amount=quote.amount,
                        fee_rate_bps=quote.fee_rate_bps,
                        fee=quote.fee,
                        net_points=quote.net_points,
                        net_amount=quote.net_amount,
                        currency=quote.currency,
                        closing_month=closing_month,
                        scheduled_payout_date=due,
                        requested_by=requested_by,
                    ),
                )
            )
        logger.info(
            "Closed period %s: %d scheduled payouts due %s", closing_month, len(created), due
        )
        return created

    async def prepare_scheduled_dispatch(
        self, db: AsyncSession, payout_id: str
    ) -> tuple[CastPayout, str] | None:
        """Lock a due scheduled payout. None when it was already handled."""
        payout = await self._repo.get_payout(db, payout_id, for_update=True)
        if payout is None or payout.status != PayoutStatus.REQUESTED:
            return None
        cast = await self._ledger.get_account(db, AccountRef.cast(payout.cast_id), for_update=True)
        if not cast.payout_account_ref or not cast.payouts_enabled:
            raise PayoutAccountNotReadyError(cast.id)
        if cast.points < payout.amount:
            # balance moved since the period closed; the payout no longer fits
            raise InsufficientEligibleFundsError(payout.amount, cast.points)
        return payout, cast.payout_account_ref

    async def lock_payout(self, db: AsyncSession, payout_id: str) -> CastPayout:
        payout = await self._repo.get_payout(db, payout_id, for_update=True)
        if payout is None:
            raise PayoutNotFoundError(payout_id)
        return payout

    async def list_stale_processing(
        self, db: AsyncSession, older_than: timedelta, limit: int = 100
    ) -> list[CastPayout]:
        return await self._repo.list_stale_processing(db, utc_now() - older_than, limit)

    async def list_due_scheduled(
        self, db: AsyncSession, run_date: date, limit: int = 100
    ) -> list[CastPayout]:
        return await self._repo.list_due_scheduled(db, run_date, limit)


def _metadata_payout_id(obj: dict[str, Any]) -> str | None:
    metadata = obj.get("metadata") or {}
    value = metadata.get("cast_payout_id") if isinstance(metadata, dict) else None
    return str(value) if value else None
