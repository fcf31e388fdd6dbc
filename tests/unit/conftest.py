"""In-memory Protocol implementations for engine-level unit tests.

Each fake keeps the same contract as its PostgreSQL repository: guarded
debits return None, conditional status updates return None when the row is
no longer pending, and reads hand out copies so nothing is persisted until
the service saves it.
"""

import copy
from datetime import date, datetime
from typing import Any
from unittest.mock import AsyncMock

import pytest

from src.rs_common.datetime_utils import utc_now
from src.rs_common.enums import AccountKind, PaymentStatus, PayoutStatus
from src.rs_ledger.domain.models import Account, AccountRef, PointTransaction
from src.rs_ledger.domain.service import PointLedger
from src.rs_outbox.domain.events import OutboxEvent
from src.rs_payout.domain.models import CastPayout, Payment
from src.rs_payout.domain.processor import ProcessorAccount, ProcessorPayout
from src.rs_payout.domain.service import PayoutService
from src.rs_reservation.domain.engine import MatchingEngine
from src.rs_reservation.domain.models import Reservation, ReservationApplication
from src.rs_settlement.domain.pricing import DefaultPricingPolicy


class InMemoryLedgerRepository:
    def __init__(self) -> None:
        self.accounts: dict[tuple[AccountKind, str], Account] = {}
        self.transactions: list[PointTransaction] = []
        self._next_tx_id = 1

    def add_guest(self, guest_id: str, points: int = 0, grade_points: int = 0) -> Account:
        account = Account(
            kind=AccountKind.GUEST,
            id=guest_id,
            nickname=guest_id,
            points=points,
            grade_points=grade_points,
            grade=None,
            version=0,
        )
        self.accounts[(AccountKind.GUEST, guest_id)] = account
        return account

    def add_cast(
        self,
        cast_id: str,
        points: int = 0,
        grade_points: int = 3000,
        grade: str | None = "beginner",
        payout_account_ref: str | None = None,
        payouts_enabled: bool = False,
    ) -> Account:
        account = Account(
            kind=AccountKind.CAST,
            id=cast_id,
            nickname=cast_id,
            points=points,
            grade_points=grade_points,
            grade=grade,
            version=0,
            payout_account_ref=payout_account_ref,
            payouts_enabled=payouts_enabled,
        )
        self.accounts[(AccountKind.CAST, cast_id)] = account
        return account

    def account(self, ref: AccountRef) -> Account:
        return self.accounts[(ref.kind, ref.id)]

    def points(self, ref: AccountRef) -> int:
        return self.account(ref).points

    async def get_account(
        self, db: Any, ref: AccountRef, for_update: bool = False
    ) -> Account | None:
        account = self.accounts.get((ref.kind, ref.id))
        return copy.copy(account) if account else None

    async def debit_points(self, db: Any, ref: AccountRef, amount: int) -> Account | None:
        account = self.accounts.get((ref.kind, ref.id))
        if account is None or account.points < amount:
            return None
        account.points -= amount
        account.version += 1
        return copy.copy(account)

    async def credit_points(self, db: Any, ref: AccountRef, amount: int) -> Account | None:
        account = self.accounts.get((ref.kind, ref.id))
        if account is None:
            return None
        account.points += amount
        account.version += 1
        return copy.copy(account)

    async def add_grade_points(self, db: Any, ref: AccountRef, amount: int) -> None:
        account = self.accounts.get((ref.kind, ref.id))
        if account is not None:
            account.grade_points += amount

    async def set_payouts_enabled(
        self, db: Any, payout_account_ref: str, enabled: bool
    ) -> Account | None:
        for account in self.accounts.values():
            if account.kind == AccountKind.CAST and account.payout_account_ref == payout_account_ref:
                account.payouts_enabled = enabled
                return copy.copy(account)
        return None

    async def insert_transaction(self, db: Any, tx: PointTransaction) -> PointTransaction:
        stored = copy.copy(tx)
        stored.id = self._next_tx_id
        stored.created_at = utc_now()
        self._next_tx_id += 1
        self.transactions.append(stored)
        return copy.copy(stored)

    async def list_outstanding_pending(
        self, db: Any, reservation_id: str, for_update: bool = False
    ) -> list[PointTransaction]:
        return [
            copy.copy(tx)
            for tx in self.transactions
            if tx.reservation_id == reservation_id and tx.type == "pending" and tx.consumed_at is None
        ]

    async def mark_consumed(
        self, db: Any, transaction_ids: list[int], consumed_at: datetime
    ) -> int:
        count = 0
        for tx in self.transactions:
            if tx.id in transaction_ids and tx.consumed_at is None:
                tx.consumed_at = consumed_at
                count += 1
        return count

    async def list_transactions(
        self,
        db: Any,
        ref: AccountRef,
        cursor_id: int | None,
        limit: int,
        tx_type: str | None,
    ) -> list[PointTransaction]:
        rows = [
            tx
            for tx in self.transactions
            if tx.account_type == ref.kind.value
            and tx.account_id == ref.id
            and (cursor_id is None or (tx.id or 0) < cursor_id)
            and (tx_type is None or tx.type == tx_type)
        ]
        rows.sort(key=lambda tx: tx.id or 0, reverse=True)
        return [copy.copy(tx) for tx in rows[:limit]]

    async def sum_credits(
        self, db: Any, ref: AccountRef, tx_types: list[str], since: datetime
    ) -> int:
        return sum(
            tx.amount
            for tx in self.transactions
            if tx.account_type == ref.kind.value
            and tx.account_id == ref.id
            and tx.type in tx_types
            and tx.amount > 0
            and tx.created_at is not None
            and tx.created_at >= since
        )

    async def list_casts_with_points(self, db: Any, min_points: int) -> list[Account]:
        return sorted(
            (
                copy.copy(a)
                for a in self.accounts.values()
                if a.kind == AccountKind.CAST and a.points >= min_points
            ),
            key=lambda a: a.id,
        )


class InMemoryReservationRepository:
    def __init__(self) -> None:
        self.reservations: dict[str, Reservation] = {}
        self.applications: dict[str, ReservationApplication] = {}
        self.locked: list[str] = []

    async def insert_reservation(self, db: Any, reservation: Reservation) -> Reservation:
        stored = copy.deepcopy(reservation)
        stored.created_at = stored.updated_at = utc_now()
        self.reservations[stored.id] = stored
        return copy.deepcopy(stored)

    async def get_reservation(
        self, db: Any, reservation_id: str, for_update: bool = False
    ) -> Reservation | None:
        if for_update:
            self.locked.append(reservation_id)
        stored = self.reservations.get(reservation_id)
        return copy.deepcopy(stored) if stored else None

    async def save_reservation(self, db: Any, reservation: Reservation) -> None:
        self.reservations[reservation.id] = copy.deepcopy(reservation)

    async def insert_application(
        self, db: Any, application: ReservationApplication
    ) -> ReservationApplication | None:
        for existing in self.applications.values():
            if (existing.reservation_id, existing.cast_id) == (
                application.reservation_id,
                application.cast_id,
            ):
                return None
        self.applications[application.id] = copy.deepcopy(application)
        return copy.deepcopy(application)

    async def get_application(
        self, db: Any, application_id: str
    ) -> ReservationApplication | None:
        stored = self.applications.get(application_id)
        return copy.deepcopy(stored) if stored else None

    async def approve_application(
        self, db: Any, application_id: str, approved_by: str, now: datetime
    ) -> ReservationApplication | None:
        stored = self.applications.get(application_id)
        if stored is None or stored.status != "pending":
            return None
        stored.status = "approved"
        stored.approved_by = approved_by
        stored.approved_at = now
        return copy.deepcopy(stored)

    async def reject_application(
        self, db: Any, application_id: str, rejected_by: str, reason: str, now: datetime
    ) -> ReservationApplication | None:
        stored = self.applications.get(application_id)
        if stored is None or stored.status != "pending":
            return None
        self._reject(stored, rejected_by, reason, now)
        return copy.deepcopy(stored)

    async def reject_pending(
        self, db: Any, reservation_id: str, rejected_by: str, reason: str, now: datetime
    ) -> list[ReservationApplication]:
        rejected = []
        for stored in self.applications.values():
            if stored.reservation_id == reservation_id and stored.status == "pending":
                self._reject(stored, rejected_by, reason, now)
                rejected.append(copy.deepcopy(stored))
        return rejected

    async def list_applications(
        self, db: Any, reservation_id: str, status: str | None = None
    ) -> list[ReservationApplication]:
        return [
            copy.deepcopy(a)
            for a in self.applications.values()
            if a.reservation_id == reservation_id and (status is None or a.status == status)
        ]

    @staticmethod
    def _reject(
        stored: ReservationApplication, rejected_by: str, reason: str, now: datetime
    ) -> None:
        stored.status = "rejected"
        stored.rejected_by = rejected_by
        stored.rejection_reason = reason
        stored.rejected_at = now


class InMemoryOutboxRepository:
    def __init__(self) -> None:
        self.events: list[OutboxEvent] = []

    async def add(self, db: Any, event: OutboxEvent) -> None:
        event.id = len(self.events) + 1
        self.events.append(event)

    async def claim_pending(self, db: Any, limit: int) -> list[OutboxEvent]:
        return [e for e in self.events if e.status == "pending"][:limit]

    async def mark_delivered(self, db: Any, event_id: int) -> None:
        event = self.events[event_id - 1]
        event.status = "delivered"
        event.attempts += 1

    async def mark_failed(self, db: Any, event_id: int, error: str, give_up: bool) -> None:
        event = self.events[event_id - 1]
        event.status = "failed" if give_up else "pending"
        event.attempts += 1
        event.last_error = error

    def of_kind(self, kind: str) -> list[OutboxEvent]:
        return [e for e in self.events if e.payload.get("type") == kind]


class InMemoryPayoutRepository:
    def __init__(self) -> None:
        self.payouts: dict[str, CastPayout] = {}
        self.payments: dict[str, Payment] = {}

    async def insert_payout(self, db: Any, payout: CastPayout) -> CastPayout:
        stored = copy.deepcopy(payout)
        stored.created_at = stored.updated_at = utc_now()
        self.payouts[stored.id] = stored
        return copy.deepcopy(stored)

    async def get_payout(
        self, db: Any, payout_id: str, for_update: bool = False
    ) -> CastPayout | None:
        stored = self.payouts.get(payout_id)
        return copy.deepcopy(stored) if stored else None

    async def sum_in_flight(self, db: Any, cast_id: str) -> int:
        return sum(
            p.amount
            for p in self.payouts.values()
            if p.cast_id == cast_id and p.status in (PayoutStatus.REQUESTED, PayoutStatus.PROCESSING)
        )

    async def sum_instant_committed(self, db: Any, cast_id: str, since: datetime) -> int:
        return sum(
            p.amount
            for p in self.payouts.values()
            if p.cast_id == cast_id
            and p.type == "instant"
            and p.status != PayoutStatus.FAILED
            and p.created_at is not None
            and p.created_at >= since
        )

    async def list_recent(self, db: Any, cast_id: str, limit: int) -> list[CastPayout]:
        rows = [p for p in self.payouts.values() if p.cast_id == cast_id]
        rows.sort(key=lambda p: (p.created_at, p.id), reverse=True)
        return [copy.deepcopy(p) for p in rows[:limit]]

    async def mark_processing(self, db: Any, payout_id: str, processor_ref: str) -> None:
        stored = self.payouts[payout_id]
        if stored.status == PayoutStatus.REQUESTED:
            stored.status = PayoutStatus.PROCESSING.value
            stored.processor_ref = processor_ref
            stored.updated_at = utc_now()

    async def mark_paid(self, db: Any, payout_id: str, paid_at: datetime) -> None:
        stored = self.payouts[payout_id]
        if stored.status != PayoutStatus.PAID:
            stored.status = PayoutStatus.PAID.value
            stored.paid_at = paid_at
            stored.failure_reason = None

    async def mark_failed(
        self, db: Any, payout_id: str, reason: str, failed_at: datetime
    ) -> None:
        stored = self.payouts[payout_id]
        if stored.status in (PayoutStatus.REQUESTED, PayoutStatus.PROCESSING):
            stored.status = PayoutStatus.FAILED.value
            stored.failure_reason = reason
            stored.failed_at = failed_at

    async def list_stale_processing(
        self, db: Any, updated_before: datetime, limit: int
    ) -> list[CastPayout]:
        rows = [
            p
            for p in self.payouts.values()
            if p.status == PayoutStatus.PROCESSING
            and p.updated_at is not None
            and p.updated_at < updated_before
        ]
        return [copy.deepcopy(p) for p in rows[:limit]]

    async def list_due_scheduled(self, db: Any, run_date: date, limit: int) -> list[CastPayout]:
        rows = [
            p
            for p in self.payouts.values()
            if p.type == "scheduled"
            and p.status == PayoutStatus.REQUESTED
            and p.scheduled_payout_date is not None
            and p.scheduled_payout_date <= run_date
        ]
        return [copy.deepcopy(p) for p in rows[:limit]]

    async def scheduled_exists(self, db: Any, cast_id: str, closing_month: date) -> bool:
        return any(
            p.cast_id == cast_id and p.type == "scheduled" and p.closing_month == closing_month
            for p in self.payouts.values()
        )

    async def insert_payment(self, db: Any, payment: Payment) -> Payment:
        stored = copy.deepcopy(payment)
        stored.created_at = utc_now()
        self.payments[stored.id] = stored
        return copy.deepcopy(stored)

    async def get_payment_by_processor_ref(
        self, db: Any, processor_ref: str, for_update: bool = False
    ) -> Payment | None:
        for payment in self.payments.values():
            if payment.processor_ref == processor_ref:
                return copy.deepcopy(payment)
        return None

    async def get_payment_by_payout(self, db: Any, payout_id: str) -> Payment | None:
        for payment in self.payments.values():
            if payment.cast_payout_id == payout_id:
                return copy.deepcopy(payment)
        return None

    async def mark_payment_paid(self, db: Any, payment_id: str, paid_at: datetime) -> None:
        stored = self.payments[payment_id]
        if stored.status == PaymentStatus.PENDING:
            stored.status = PaymentStatus.PAID.value
            stored.paid_at = paid_at

    async def mark_payment_failed(
        self, db: Any, payment_id: str, reason: str, failed_at: datetime
    ) -> None:
        stored = self.payments[payment_id]
        if stored.status == PaymentStatus.PENDING:
            stored.status = PaymentStatus.FAILED.value
            stored.failure_reason = reason
            stored.failed_at = failed_at


class FakeProcessor:
    """Records calls; `error` makes the next create_payout raise."""

    def __init__(self) -> None:
        self.created: list[dict[str, Any]] = []
        self.remote_status: dict[str, str] = {}
        self.error: Exception | None = None
        self.closed = False

    async def create_payout(
        self,
        account_ref: str,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> ProcessorPayout:
        if self.error is not None:
            raise self.error
        self.created.append(
            {
                "account_ref": account_ref,
                "amount": amount,
                "currency": currency,
                "metadata": metadata,
                "idempotency_key": idempotency_key,
            }
        )
        ref = f"po_{len(self.created)}"
        self.remote_status[ref] = "pending"
        return ProcessorPayout(id=ref, status="pending", amount=amount, currency=currency, metadata=metadata)

    async def retrieve_payout(self, payout_ref: str, account_ref: str) -> ProcessorPayout:
        status = self.remote_status.get(payout_ref, "pending")
        return ProcessorPayout(
            id=payout_ref,
            status=status,
            amount=0,
            currency="jpy",
            failure_message="account_closed" if status == "failed" else None,
        )

    async def retrieve_account(self, account_ref: str) -> ProcessorAccount:
        return ProcessorAccount(id=account_ref, payouts_enabled=True)

    async def aclose(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def ledger_repo() -> InMemoryLedgerRepository:
    return InMemoryLedgerRepository()


@pytest.fixture
def ledger(ledger_repo: InMemoryLedgerRepository) -> PointLedger:
    return PointLedger(ledger_repo)


@pytest.fixture
def reservation_repo() -> InMemoryReservationRepository:
    return InMemoryReservationRepository()


@pytest.fixture
def outbox() -> InMemoryOutboxRepository:
    return InMemoryOutboxRepository()


@pytest.fixture
def engine(
    reservation_repo: InMemoryReservationRepository,
    ledger: PointLedger,
    outbox: InMemoryOutboxRepository,
) -> MatchingEngine:
    return MatchingEngine(
        repo=reservation_repo,
        ledger=ledger,
        pricing=DefaultPricingPolicy(),
        outbox=outbox,
    )


@pytest.fixture
def payout_repo() -> InMemoryPayoutRepository:
    return InMemoryPayoutRepository()


@pytest.fixture
def processor() -> FakeProcessor:
    return FakeProcessor()


@pytest.fixture
def payout_service(
    payout_repo: InMemoryPayoutRepository,
    ledger_repo: InMemoryLedgerRepository,
    processor: FakeProcessor,
    outbox: InMemoryOutboxRepository,
) -> PayoutService:
    return PayoutService(
        repo=payout_repo, ledger_repo=ledger_repo, processor=processor, outbox=outbox
    )
