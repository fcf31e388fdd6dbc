"""PayoutApplicationService — transaction boundary around PayoutService.

Instant request: one transaction covering the cast lock, the processor call
and the CastPayout/Payment rows. A processor rejection rolls everything back.
A processor timeout rolls back too, then records the payout as `failed` in a
fresh transaction, because the processor may still have executed it and a
late callback must find something to reconcile against.

Batch jobs (reconcile, dispatch) commit per payout so one failure never
blocks the rest of the batch.
"""

import logging
from datetime import date, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from src.rs_common.actor import Actor
from src.rs_common.datetime_utils import to_local, utc_now
from src.rs_common.enums import ActorRole
from src.rs_common.errors import AppError, PayoutAccountNotReadyError, ProcessorTimeoutError
from src.rs_ledger.infrastructure.persistence import LedgerRepository
from src.rs_outbox.infrastructure.persistence import OutboxRepository
from src.rs_payout.application.schemas import (
    BatchResult,
    ClosePeriodResponse,
    InstantPayoutResponse,
    PaymentResponse,
    PayoutResponse,
    PayoutSummaryResponse,
    WebhookAck,
)
from src.rs_payout.domain.models import CastPayout
from src.rs_payout.domain.service import PayoutService
from src.rs_payout.infrastructure.persistence import PayoutRepository
from src.rs_payout.infrastructure.processor import HttpPaymentProcessor
from src.rs_payout.infrastructure.webhook import parse_event, verify_signature

logger = logging.getLogger(__name__)

TIMEOUT_REASON = "processor_timeout"
ACCOUNT_NOT_READY_REASON = "payout_account_not_ready"


def build_payout_service() -> PayoutService:
    return PayoutService(
        repo=PayoutRepository(),
        ledger_repo=LedgerRepository(),
        processor=HttpPaymentProcessor(),
        outbox=OutboxRepository(),
    )


class PayoutApplicationService:
    def __init__(self, service: PayoutService | None = None) -> None:
        self._service = service or build_payout_service()

    async def aclose(self) -> None:
        await self._service.aclose()

    async def get_summary(self, db: AsyncSession, actor: Actor) -> PayoutSummaryResponse:
        actor.require(ActorRole.CAST)
        summary = await self._service.build_summary(db, actor.id)
        return PayoutSummaryResponse.from_domain(summary)

    async def request_instant_payout(
        self, db: AsyncSession, actor: Actor, amount: int, memo: str | None
    ) -> InstantPayoutResponse:
        actor.require(ActorRole.CAST)
        payout = None
        try:
            payout, account_ref = await self._service.prepare_instant_payout(
                db, actor.id, amount, memo, requested_by=str(actor)
            )
            saved, payment = await self._service.submit(db, payout, account_ref)
            await db.commit()
        except ProcessorTimeoutError:
            await db.rollback()
            if payout is not None:
                await self._record_timeout(db, payout)
            raise
        except Exception:
            await db.rollback()
            raise
        return InstantPayoutResponse(
            payout=PayoutResponse.from_domain(saved),
            payment=PaymentResponse.from_domain(payment),
        )

    async def _record_timeout(self, db: AsyncSession, payout: CastPayout) -> None:
        try:
            await self._service.record_failed_request(db, payout, TIMEOUT_REASON)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.exception("Could not record timed-out payout %s", payout.id)
            return
        logger.warning("Payout %s for cast %s timed out at the processor", payout.id, payout.cast_id)

    async def handle_webhook(
        self, db: AsyncSession, payload: bytes, signature_header: str | None
    ) -> WebhookAck:
        verify_signature(payload, signature_header)
        event = parse_event(payload)
        try:
            outcome = await self._service.handle_event(db, event)
            await db.commit()
        except Exception:
            await db.rollback()
            logger.error("Processor event %s (%s) failed", event.id, event.type, exc_info=True)
            raise
        return WebhookAck(event_id=event.id, outcome=outcome)

    async def reconcile_stale_payouts(
        self, db: AsyncSession, actor: Actor, older_than: timedelta, limit: int = 100
    ) -> BatchResult:
        actor.require(ActorRole.ADMIN, ActorRole.SYSTEM)
        stale = await self._service.list_stale_processing(db, older_than, limit)
        outcomes: dict[str, str] = {}
        for payout in stale:
            try:
                outcomes[payout.id] = await self._service.poll_outcome(db, payout)
                await db.commit()
            except AppError as exc:
                await db.rollback()
                logger.warning("Reconcile of payout %s skipped: %s", payout.id, exc.message)
                outcomes[payout.id] = "error"
        logger.info("Reconciled %d stale payouts", len(stale))
        return BatchResult(processed=len(stale), outcomes=outcomes)

    async def close_monthly_period(
        self, db: AsyncSession, actor: Actor, period_end: date
    ) -> ClosePeriodResponse:
        actor.require(ActorRole.ADMIN, ActorRole.SYSTEM)
        try:
            created = await self._service.close_monthly_period(db, period_end, str(actor))
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return ClosePeriodResponse(
            closing_month=period_end.replace(day=1).isoformat(),
            created=[PayoutResponse.from_domain(p) for p in created],
        )

    async def dispatch_due_payouts(
        self, db: AsyncSession, actor: Actor, run_date: date | None = None, limit: int = 100
    ) -> BatchResult:
        actor.require(ActorRole.ADMIN, ActorRole.SYSTEM)
        run_date = run_date or to_local(utc_now()).date()
        due = await self._service.list_due_scheduled(db, run_date, limit)
        await db.commit()
        outcomes: dict[str, str] = {}
        for candidate in due:
            outcomes[candidate.id] = await self._dispatch_one(db, candidate.id)
        logger.info("Dispatched scheduled payouts for %s: %s", run_date, outcomes)
        return BatchResult(processed=len(due), outcomes=outcomes)

    async def _dispatch_one(self, db: AsyncSession, payout_id: str) -> str:
        try:
            prepared = await self._service.prepare_scheduled_dispatch(db, payout_id)
            if prepared is None:
                await db.rollback()
                return "skipped"
            payout, account_ref = prepared
            await self._service.submit(db, payout, account_ref)
            await db.commit()
            return "processing"
        except AppError as exc:
            await db.rollback()
            reason = _failure_reason(exc)
            logger.warning("Scheduled payout %s not dispatched: %s", payout_id, reason)
        except Exception:
            await db.rollback()
            raise
        return await self._mark_failed(db, payout_id, reason)

    async def _mark_failed(self, db: AsyncSession, payout_id: str, reason: str) -> str:
        try:
            payout = await self._service.lock_payout(db, payout_id)
            await self._service.record_failed_request(db, payout, reason)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return "failed"


def _failure_reason(exc: AppError) -> str:
    if isinstance(exc, ProcessorTimeoutError):
        return TIMEOUT_REASON
    if isinstance(exc, PayoutAccountNotReadyError):
        return ACCOUNT_NOT_READY_REASON
    return exc.message
