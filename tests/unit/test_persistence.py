"""Tests for the raw-SQL repositories with a mocked AsyncSession."""

import json
from datetime import UTC, date, datetime
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.rs_common.errors import InternalError
from src.rs_ledger.domain.models import AccountRef, PointTransaction
from src.rs_ledger.infrastructure.persistence import LedgerRepository
from src.rs_payout.domain.models import CastPayout, Payment
from src.rs_payout.infrastructure.persistence import PayoutRepository
from src.rs_reservation.domain.models import Reservation, ReservationApplication
from src.rs_reservation.infrastructure.persistence import ReservationRepository

NOW = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


def _make_row(**fields) -> MagicMock:
    row = MagicMock()
    for name, value in fields.items():
        setattr(row, name, value)
    return row


def _db_returning(*, one=None, many=None, rowcount: int = 0) -> AsyncMock:
    result = MagicMock()
    result.fetchone.return_value = one
    result.fetchall.return_value = many or []
    result.rowcount = rowcount
    db = AsyncMock()
    db.execute.return_value = result
    return db


def _sql(db: AsyncMock) -> str:
    return str(db.execute.call_args[0][0])


def _params(db: AsyncMock) -> dict:
    return db.execute.call_args[0][1]


def _account_row(**overrides) -> MagicMock:
    fields = dict(
        id="c1",
        nickname="Mio",
        points=12000,
        grade_points=9000,
        grade="gold",
        version=3,
        payout_account_ref="acct_1",
        payouts_enabled=True,
        created_at=NOW,
        updated_at=NOW,
    )
    fields.update(overrides)
    return _make_row(**fields)


def _tx_row(**overrides) -> MagicMock:
    fields = dict(
        id=10,
        account_type="guest",
        account_id="g1",
        type="pending",
        amount=-12000,
        balance_after=38000,
        counterparty_type=None,
        counterparty_id=None,
        reservation_id="r1",
        cast_payout_id=None,
        description="hold",
        consumed_at=None,
        created_at=NOW,
    )
    fields.update(overrides)
    return _make_row(**fields)


class TestLedgerRepository:
    async def test_get_cast_account(self) -> None:
        db = _db_returning(one=_account_row())
        account = await LedgerRepository().get_account(db, AccountRef.cast("c1"))
        assert account is not None
        assert (account.points, account.grade, account.payouts_enabled) == (12000, "gold", True)
        assert "FROM casts" in _sql(db)
        assert "FOR UPDATE" not in _sql(db)

    async def test_get_guest_account_for_update(self) -> None:
        db = _db_returning(one=_account_row(id="g1", payout_account_ref=None, payouts_enabled=False))
        await LedgerRepository().get_account(db, AccountRef.guest("g1"), for_update=True)
        assert "FROM guests" in _sql(db)
        assert "FOR UPDATE" in _sql(db)

    async def test_missing_account(self) -> None:
        db = _db_returning(one=None)
        assert await LedgerRepository().get_account(db, AccountRef.guest("x")) is None

    async def test_debit_is_guarded(self) -> None:
        db = _db_returning(one=None)
        assert await LedgerRepository().debit_points(db, AccountRef.guest("g1"), 500) is None
        assert "points >= :amount" in _sql(db)
        assert _params(db) == {"id": "g1", "amount": 500}

    async def test_credit_returns_account(self) -> None:
        db = _db_returning(one=_account_row(points=13000))
        account = await LedgerRepository().credit_points(db, AccountRef.cast("c1"), 1000)
        assert account is not None and account.points == 13000

    async def test_insert_transaction(self) -> None:
        db = _db_returning(one=_tx_row())
        tx = await LedgerRepository().insert_transaction(
            db,
            PointTransaction(
                id=None,
                account_type="guest",
                account_id="g1",
                type="pending",
                amount=-12000,
                balance_after=38000,
                reservation_id="r1",
                description="hold",
            ),
        )
        assert tx.id == 10
        assert _params(db)["reservation_id"] == "r1"

    async def test_insert_transaction_no_row(self) -> None:
        db = _db_returning(one=None)
        with pytest.raises(InternalError):
            await LedgerRepository().insert_transaction(
                db, PointTransaction(None, "guest", "g1", "gift", -1, 0)
            )

    async def test_outstanding_pending_locks(self) -> None:
        db = _db_returning(many=[_tx_row(), _tx_row(id=11, amount=-3000)])
        rows = await LedgerRepository().list_outstanding_pending(db, "r1", for_update=True)
        assert [r.id for r in rows] == [10, 11]
        assert "consumed_at IS NULL" in _sql(db)
        assert "FOR UPDATE" in _sql(db)

    async def test_mark_consumed_empty_skips_query(self) -> None:
        db = _db_returning()
        assert await LedgerRepository().mark_consumed(db, [], NOW) == 0
        db.execute.assert_not_awaited()

    async def test_mark_consumed_rowcount(self) -> None:
        db = _db_returning(rowcount=2)
        assert await LedgerRepository().mark_consumed(db, [10, 11], NOW) == 2

    async def test_list_transactions_params(self) -> None:
        db = _db_returning(many=[_tx_row()])
        await LedgerRepository().list_transactions(db, AccountRef.guest("g1"), 50, 20, "gift")
        assert _params(db) == {
            "account_type": "guest",
            "account_id": "g1",
            "cursor_id": 50,
            "tx_type": "gift",
            "limit": 20,
        }

    async def test_sum_credits(self) -> None:
        db = _db_returning(one=_make_row(total=40000))
        total = await LedgerRepository().sum_credits(
            db, AccountRef.cast("c1"), ["transfer", "gift"], NOW
        )
        assert total == 40000
        assert "amount > 0" in _sql(db)

    async def test_set_payouts_enabled_unknown(self) -> None:
        db = _db_returning(one=None)
        assert await LedgerRepository().set_payouts_enabled(db, "acct_x", True) is None


def _reservation_row(**overrides) -> MagicMock:
    fields = dict(
        id="r1",
        guest_id="g1",
        type="pishatto",
        duration_minutes=60,
        scheduled_at=NOW,
        location="tokyo",
        active=False,
        cast_id="c1",
        cast_ids=["c1", "c2"],
        started_at=None,
        ended_at=None,
        points_earned=None,
        points_shortfall=0,
        cancelled_at=None,
        created_at=NOW,
        updated_at=NOW,
    )
    fields.update(overrides)
    return _make_row(**fields)


def _application_row(**overrides) -> MagicMock:
    fields = dict(
        id="a1",
        reservation_id="r1",
        cast_id="c1",
        status="pending",
        applied_at=NOW,
        approved_at=None,
        approved_by=None,
        rejected_at=None,
        rejected_by=None,
        rejection_reason=None,
    )
    fields.update(overrides)
    return _make_row(**fields)


class TestReservationRepository:
    async def test_get_reservation_maps_winners(self) -> None:
        db = _db_returning(one=_reservation_row())
        reservation = await ReservationRepository().get_reservation(db, "r1", for_update=True)
        assert reservation is not None
        assert reservation.winners == ["c1", "c2"]
        assert "FOR UPDATE" in _sql(db)

    async def test_null_cast_ids(self) -> None:
        db = _db_returning(one=_reservation_row(cast_ids=None, cast_id=None))
        reservation = await ReservationRepository().get_reservation(db, "r1")
        assert reservation is not None and reservation.winners == []

    async def test_insert_reservation(self) -> None:
        db = _db_returning(one=_reservation_row(type="standard", active=True, cast_ids=[]))
        saved = await ReservationRepository().insert_reservation(
            db, Reservation(id="r1", guest_id="g1", type="standard", duration_minutes=60, scheduled_at=NOW)
        )
        assert saved.active is True
        assert _params(db)["type"] == "standard"

    async def test_save_reservation(self) -> None:
        db = _db_returning()
        reservation = Reservation(
            id="r1",
            guest_id="g1",
            type="standard",
            duration_minutes=60,
            scheduled_at=NOW,
            cast_id="c1",
            cast_ids=["c1"],
            points_earned=12000,
        )
        await ReservationRepository().save_reservation(db, reservation)
        assert _params(db)["cast_ids"] == ["c1"]
        assert _params(db)["points_earned"] == 12000

    async def test_duplicate_application_returns_none(self) -> None:
        db = _db_returning(one=None)
        result = await ReservationRepository().insert_application(
            db, ReservationApplication(id="a2", reservation_id="r1", cast_id="c1", status="pending")
        )
        assert result is None
        assert "ON CONFLICT" in _sql(db)

    async def test_approve_only_pending(self) -> None:
        db = _db_returning(one=None)
        assert await ReservationRepository().approve_application(db, "a1", "admin", NOW) is None
        assert "status = 'pending'" in _sql(db)

    async def test_reject_pending_returns_rows(self) -> None:
        db = _db_returning(
            many=[_application_row(status="rejected", rejection_reason="Reservation cancelled")]
        )
        rejected = await ReservationRepository().reject_pending(
            db, "r1", "admin", "Reservation cancelled", NOW
        )
        assert [a.rejection_reason for a in rejected] == ["Reservation cancelled"]

    async def test_list_applications_status_filter(self) -> None:
        db = _db_returning(many=[_application_row()])
        await ReservationRepository().list_applications(db, "r1", "pending")
        assert _params(db) == {"reservation_id": "r1", "status": "pending"}


def _payout_row(**overrides) -> MagicMock:
    fields = dict(
        id="p1",
        cast_id="c1",
        type="instant",
        status="processing",
        amount=10000,
        fee_rate_bps=500,
        fee=500,
        net_points=9500,
        net_amount=11400,
        currency="jpy",
        closing_month=date(2026, 10, 1),
        scheduled_payout_date=None,
        processor_ref="po_1",
        memo=None,
        failure_reason=None,
        metadata='{"source": "app"}',
        requested_by="cast:c1",
        created_at=NOW,
        updated_at=NOW,
        paid_at=None,
        failed_at=None,
    )
    fields.update(overrides)
    return _make_row(**fields)


def _payment_row(**overrides) -> MagicMock:
    fields = dict(
        id="pm1",
        user_id="c1",
        user_type="cast",
        cast_payout_id="p1",
        amount=11400,
        currency="jpy",
        status="pending",
        payment_method="processor_payout",
        processor_ref="po_1",
        processor_account_ref="acct_1",
        metadata={"processor_status": "pending"},
        failure_reason=None,
        paid_at=None,
        failed_at=None,
        created_at=NOW,
    )
    fields.update(overrides)
    return _make_row(**fields)


class TestPayoutRepository:
    async def test_insert_payout_serializes_metadata(self) -> None:
        db = _db_returning(one=_payout_row())
        payout = CastPayout(
            id="p1",
            cast_id="c1",
            type="instant",
            status="processing",
            amount=10000,
            fee_rate_bps=500,
            fee=500,
            net_points=9500,
            net_amount=11400,
            currency="jpy",
            metadata={"source": "app"},
        )
        saved = await PayoutRepository().insert_payout(db, payout)
        assert json.loads(_params(db)["metadata"]) == {"source": "app"}
        assert saved.metadata == {"source": "app"}
        assert saved.created_at == NOW

    async def test_insert_payout_no_row(self) -> None:
        db = _db_returning(one=None)
        with pytest.raises(InternalError):
            await PayoutRepository().insert_payout(
                db, CastPayout("p1", "c1", "instant", "requested", 1, 0, 0, 1, 1, "jpy")
            )

    async def test_get_payout_null_metadata(self) -> None:
        db = _db_returning(one=_payout_row(metadata=None))
        payout = await PayoutRepository().get_payout(db, "p1", for_update=True)
        assert payout is not None and payout.metadata == {}
        assert "FOR UPDATE" in _sql(db)

    async def test_sum_in_flight(self) -> None:
        db = _db_returning(one=_make_row(total=15000))
        assert await PayoutRepository().sum_in_flight(db, "c1") == 15000
        assert "'requested', 'processing'" in _sql(db)

    async def test_mark_paid_guard(self) -> None:
        db = _db_returning()
        await PayoutRepository().mark_paid(db, "p1", NOW)
        assert "status <> 'paid'" in _sql(db)

    async def test_mark_failed_only_open(self) -> None:
        db = _db_returning()
        await PayoutRepository().mark_failed(db, "p1", "processor_timeout", NOW)
        assert "('requested', 'processing')" in _sql(db)
        assert _params(db)["reason"] == "processor_timeout"

    async def test_scheduled_exists(self) -> None:
        db = _db_returning(one=_make_row(exists=1))
        assert await PayoutRepository().scheduled_exists(db, "c1", date(2026, 9, 1)) is True
        db = _db_returning(one=None)
        assert await PayoutRepository().scheduled_exists(db, "c1", date(2026, 9, 1)) is False

    async def test_list_due_scheduled(self) -> None:
        db = _db_returning(many=[_payout_row(type="scheduled", status="requested")])
        due = await PayoutRepository().list_due_scheduled(db, date(2026, 10, 30), 50)
        assert [p.type for p in due] == ["scheduled"]
        assert _params(db) == {"run_date": date(2026, 10, 30), "limit": 50}

    async def test_insert_payment(self) -> None:
        db = _db_returning(one=_payment_row())
        payment = await PayoutRepository().insert_payment(
            db,
            Payment(
                id="pm1",
                user_id="c1",
                user_type="cast",
                amount=11400,
                currency="jpy",
                status="pending",
                payment_method="processor_payout",
                processor_ref="po_1",
                cast_payout_id="p1",
                metadata={"processor_status": "pending"},
            ),
        )
        assert payment.metadata == {"processor_status": "pending"}
        assert json.loads(_params(db)["metadata"]) == {"processor_status": "pending"}

    async def test_payment_by_ref_for_update(self) -> None:
        db = _db_returning(one=_payment_row(status="paid"))
        payment = await PayoutRepository().get_payment_by_processor_ref(db, "po_1", for_update=True)
        assert payment is not None and payment.is_terminal
        assert "FOR UPDATE" in _sql(db)

    async def test_mark_payment_failed_only_pending(self) -> None:
        db = _db_returning()
        await PayoutRepository().mark_payment_failed(db, "pm1", "account_closed", NOW)
        assert "status = 'pending'" in _sql(db)
