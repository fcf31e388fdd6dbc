"""PayoutRepository — raw SQL over cast_payouts / payments.

Status transitions are conditional on the current status so a late or
replayed writer never moves a terminal row.

Transaction ownership: the CALLER commits or rolls back.
"""

import json
from datetime import date, datetime
from typing import Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.rs_common.errors import InternalError
from src.rs_payout.domain.models import CastPayout, Payment

_PAYOUT_COLUMNS = """
    id, cast_id, type, status, amount, fee_rate_bps, fee, net_points, net_amount,
    currency, closing_month, scheduled_payout_date, processor_ref, memo,
    failure_reason, metadata, requested_by, created_at, updated_at, paid_at, failed_at
"""

_PAYMENT_COLUMNS = """
    id, user_id, user_type, cast_payout_id, amount, currency, status, payment_method,
    processor_ref, processor_account_ref, metadata, failure_reason, paid_at, failed_at,
    created_at
"""

# ---------------------------------------------------------------------------
# SQL: cast_payouts
# ---------------------------------------------------------------------------

_INSERT_PAYOUT_SQL = text(f"""
    INSERT INTO cast_payouts
        (id, cast_id, type, status, amount, fee_rate_bps, fee, net_points, net_amount,
         currency, closing_month, scheduled_payout_date, processor_ref, memo,
         failure_reason, metadata, requested_by, failed_at)
    VALUES
        (:id, :cast_id, :type, :status, :amount, :fee_rate_bps, :fee, :net_points, :net_amount,
         :currency, :closing_month, :scheduled_payout_date, :processor_ref, :memo,
         :failure_reason, CAST(:metadata AS JSONB), :requested_by, :failed_at)
    RETURNING {_PAYOUT_COLUMNS}
""")

_GET_PAYOUT_SQL = text(f"SELECT {_PAYOUT_COLUMNS} FROM cast_payouts WHERE id = :id")

_GET_PAYOUT_FOR_UPDATE_SQL = text(
    f"SELECT {_PAYOUT_COLUMNS} FROM cast_payouts WHERE id = :id FOR UPDATE"
)

_SUM_IN_FLIGHT_SQL = text("""
    SELECT COALESCE(SUM(amount), 0) AS total
    FROM cast_payouts
    WHERE cast_id = :cast_id
      AND status IN ('requested', 'processing')
""")

_SUM_INSTANT_COMMITTED_SQL = text("""
    SELECT COALESCE(SUM(amount), 0) AS total
    FROM cast_payouts
    WHERE cast_id = :cast_id
      AND type = 'instant'
      AND status <> 'failed'
      AND created_at >= :since
""")

_LIST_RECENT_SQL = text(f"""
    SELECT {_PAYOUT_COLUMNS}
    FROM cast_payouts
    WHERE cast_id = :cast_id
    ORDER BY created_at DESC, id DESC
    LIMIT :limit
""")

_MARK_PROCESSING_SQL = text("""
    UPDATE cast_payouts
    SET status = 'processing',
        processor_ref = :processor_ref,
        updated_at = NOW()
    WHERE id = :id AND status = 'requested'
""")

_MARK_PAID_SQL = text("""
    UPDATE cast_payouts
    SET status = 'paid',
        paid_at = :paid_at,
        failure_reason = NULL,
        updated_at = NOW()
    WHERE id = :id AND status <> 'paid'
""")

_MARK_FAILED_SQL = text("""
    UPDATE cast_payouts
    SET status = 'failed',
        failure_reason = :reason,
        failed_at = :failed_at,
        updated_at = NOW()
    WHERE id = :id AND status IN ('requested', 'processing')
""")

_LIST_STALE_PROCESSING_SQL = text(f"""
    SELECT {_PAYOUT_COLUMNS}
    FROM cast_payouts
    WHERE status = 'processing'
      AND updated_at < :updated_before
    ORDER BY updated_at
    LIMIT :limit
""")

_LIST_DUE_SCHEDULED_SQL = text(f"""
    SELECT {_PAYOUT_COLUMNS}
    FROM cast_payouts
    WHERE type = 'scheduled'
      AND status = 'requested'
      AND scheduled_payout_date <= :run_date
    ORDER BY scheduled_payout_date, id
    LIMIT :limit
""")

_SCHEDULED_EXISTS_SQL = text("""
    SELECT 1
    FROM cast_payouts
    WHERE cast_id = :cast_id
      AND type = 'scheduled'
      AND closing_month = :closing_month
    LIMIT 1
""")

# ---------------------------------------------------------------------------
# SQL: payments
# ---------------------------------------------------------------------------

_INSERT_PAYMENT_SQL = text(f"""
    INSERT INTO payments
        (id, user_id, user_type, cast_payout_id, amount, currency, status, payment_method,
         processor_ref, processor_account_ref, metadata)
    VALUES
        (:id, :user_id, :user_type, :cast_payout_id, :amount, :currency, :status, :payment_method,
         :processor_ref, :processor_account_ref, CAST(:metadata AS JSONB))
    RETURNING {_PAYMENT_COLUMNS}
""")

_GET_PAYMENT_BY_REF_SQL = text(
    f"SELECT {_PAYMENT_COLUMNS} FROM payments WHERE processor_ref = :processor_ref"
)

_GET_PAYMENT_BY_REF_FOR_UPDATE_SQL = text(
    f"SELECT {_PAYMENT_COLUMNS} FROM payments WHERE processor_ref = :processor_ref FOR UPDATE"
)

_GET_PAYMENT_BY_PAYOUT_SQL = text(f"""
    SELECT {_PAYMENT_COLUMNS}
    FROM payments
    WHERE cast_payout_id = :cast_payout_id
    ORDER BY created_at DESC
    LIMIT 1
""")

_MARK_PAYMENT_PAID_SQL = text("""
    UPDATE payments
    SET status = 'paid',
        paid_at = :paid_at,
        updated_at = NOW()
    WHERE id = :id AND status = 'pending'
""")

_MARK_PAYMENT_FAILED_SQL = text("""
    UPDATE payments
    SET status = 'failed',
        failure_reason = :reason,
        failed_at = :failed_at,
        updated_at = NOW()
    WHERE id = :id AND status = 'pending'
""")


def _json_column(value: Any) -> dict[str, Any]:
    if value is None:
        return {}
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


def _row_to_payout(row: object) -> CastPayout:
    return CastPayout(
        id=str(row.id),  # type: ignore[attr-defined]
        cast_id=str(row.cast_id),  # type: ignore[attr-defined]
        type=row.type,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        amount=row.amount,  # type: ignore[attr-defined]
        fee_rate_bps=row.fee_rate_bps,  # type: ignore[attr-defined]
        fee=row.fee,  # type: ignore[attr-defined]
        net_points=row.net_points,  # type: ignore[attr-defined]
        net_amount=row.net_amount,  # type: ignore[attr-defined]
        currency=row.currency,  # type: ignore[attr-defined]
        closing_month=row.closing_month,  # type: ignore[attr-defined]
        scheduled_payout_date=row.scheduled_payout_date,  # type: ignore[attr-defined]
        processor_ref=row.processor_ref,  # type: ignore[attr-defined]
        memo=row.memo,  # type: ignore[attr-defined]
        failure_reason=row.failure_reason,  # type: ignore[attr-defined]
        metadata=_json_column(row.metadata),  # type: ignore[attr-defined]
        requested_by=row.requested_by,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
        paid_at=row.paid_at,  # type: ignore[attr-defined]
        failed_at=row.failed_at,  # type: ignore[attr-defined]
    )


def _row_to_payment(row: object) -> Payment:
    return Payment(
        id=str(row.id),  # type: ignore[attr-defined]
        user_id=str(row.user_id),  # type: ignore[attr-defined]
        user_type=row.user_type,  # type: ignore[attr-defined]
        cast_payout_id=row.cast_payout_id,  # type: ignore[attr-defined]
        amount=row.amount,  # type: ignore[attr-defined]
        currency=row.currency,  # type: ignore[attr-defined]
        status=row.status,  # type: ignore[attr-defined]
        payment_method=row.payment_method,  # type: ignore[attr-defined]
        processor_ref=row.processor_ref,  # type: ignore[attr-defined]
        processor_account_ref=row.processor_account_ref,  # type: ignore[attr-defined]
        metadata=_json_column(row.metadata),  # type: ignore[attr-defined]
        failure_reason=row.failure_reason,  # type: ignore[attr-defined]
        paid_at=row.paid_at,  # type: ignore[attr-defined]
        failed_at=row.failed_at,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


class PayoutRepository:
    # --- cast_payouts ---

    async def insert_payout(self, db: AsyncSession, payout: CastPayout) -> CastPayout:
        result = await db.execute(
            _INSERT_PAYOUT_SQL,
            {
                "id": payout.id,
                "cast_id": payout.cast_id,
                "type": payout.type,
                "status": payout.status,
                "amount": payout.amount,
                "fee_rate_bps": payout.fee_rate_bps,
                "fee": payout.fee,
                "net_points": payout.net_points,
                "net_amount": payout.net_amount,
                "currency": payout.currency,
                "closing_month": payout.closing_month,
                "scheduled_payout_date": payout.scheduled_payout_date,
                "processor_ref": payout.processor_ref,
                "memo": payout.memo,
                "failure_reason": payout.failure_reason,
                "metadata": json.dumps(payout.metadata),
                "requested_by": payout.requested_by,
                "failed_at": payout.failed_at,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("cast_payouts insert returned no rows")
        return _row_to_payout(row)

    async def get_payout(
        self, db: AsyncSession, payout_id: str, for_update: bool = False
    ) -> CastPayout | None:
        sql = _GET_PAYOUT_FOR_UPDATE_SQL if for_update else _GET_PAYOUT_SQL
        result = await db.execute(sql, {"id": payout_id})
        row = result.fetchone()
        return _row_to_payout(row) if row else None

    async def sum_in_flight(self, db: AsyncSession, cast_id: str) -> int:
        result = await db.execute(_SUM_IN_FLIGHT_SQL, {"cast_id": cast_id})
        row = result.fetchone()
        return int(row.total) if row else 0  # type: ignore[attr-defined]

    async def sum_instant_committed(
        self, db: AsyncSession, cast_id: str, since: datetime
    ) -> int:
        result = await db.execute(
            _SUM_INSTANT_COMMITTED_SQL, {"cast_id": cast_id, "since": since}
        )
        row = result.fetchone()
        return int(row.total) if row else 0  # type: ignore[attr-defined]

    async def list_recent(
        self, db: AsyncSession, cast_id: str, limit: int
    ) -> list[CastPayout]:
        result = await db.execute(_LIST_RECENT_SQL, {"cast_id": cast_id, "limit": limit})
        return [_row_to_payout(row) for row in result.fetchall()]

    async def mark_processing(
        self, db: AsyncSession, payout_id: str, processor_ref: str
    ) -> None:
        await db.execute(_MARK_PROCESSING_SQL, {"id": payout_id, "processor_ref": processor_ref})

    async def mark_paid(self, db: AsyncSession, payout_id: str, paid_at: datetime) -> None:
        await db.execute(_MARK_PAID_SQL, {"id": payout_id, "paid_at": paid_at})

    async def mark_failed(
        self, db: AsyncSession, payout_id: str, reason: str, failed_at: datetime
    ) -> None:
        await db.execute(
            _MARK_FAILED_SQL, {"id": payout_id, "reason": reason, "failed_at": failed_at}
        )

    async def list_stale_processing(
        self, db: AsyncSession, updated_before: datetime, limit: int
    ) -> list[CastPayout]:
        result = await db.execute(
            _LIST_STALE_PROCESSING_SQL, {"updated_before": updated_before, "limit": limit}
        )
        return [_row_to_payout(row) for row in result.fetchall()]

    async def list_due_scheduled(
        self, db: AsyncSession, run_date: date, limit: int
    ) -> list[CastPayout]:
        result = await db.execute(_LIST_DUE_SCHEDULED_SQL, {"run_date": run_date, "limit": limit})
        return [_row_to_payout(row) for row in result.fetchall()]

    async def scheduled_exists(
        self, db: AsyncSession, cast_id: str, closing_month: date
    ) -> bool:
        result = await db.execute(
            _SCHEDULED_EXISTS_SQL, {"cast_id": cast_id, "closing_month": closing_month}
        )
        return result.fetchone() is not None

    # --- payments ---

    async def insert_payment(self, db: AsyncSession, payment: Payment) -> Payment:
        result = await db.execute(
            _INSERT_PAYMENT_SQL,
            {
                "id": payment.id,
                "user_id": payment.user_id,
                "user_type": payment.user_type,
                "cast_payout_id": payment.cast_payout_id,
                "amount": payment.amount,
                "currency": payment.currency,
                "status": payment.status,
                "payment_method": payment.payment_method,
                "processor_ref": payment.processor_ref,
                "processor_account_ref": payment.processor_account_ref,
                "metadata": json.dumps(payment.metadata),
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("payments insert returned no rows")
        return _row_to_payment(row)

    async def get_payment_by_processor_ref(
        self, db: AsyncSession, processor_ref: str, for_update: bool = False
    ) -> Payment | None:
        sql = _GET_PAYMENT_BY_REF_FOR_UPDATE_SQL if for_update else _GET_PAYMENT_BY_REF_SQL
        result = await db.execute(sql, {"processor_ref": processor_ref})
        row = result.fetchone()
        return _row_to_payment(row) if row else None

    async def get_payment_by_payout(
        self, db: AsyncSession, payout_id: str
    ) -> Payment | None:
        result = await db.execute(_GET_PAYMENT_BY_PAYOUT_SQL, {"cast_payout_id": payout_id})
        row = result.fetchone()
        return _row_to_payment(row) if row else None

    async def mark_payment_paid(
        self, db: AsyncSession, payment_id: str, paid_at: datetime
    ) -> None:
        await db.execute(_MARK_PAYMENT_PAID_SQL, {"id": payment_id, "paid_at": paid_at})

    async def mark_payment_failed(
        self, db: AsyncSession, payment_id: str, reason: str, failed_at: datetime
    ) -> None:
        await db.execute(
            _MARK_PAYMENT_FAILED_SQL,
            {"id": payment_id, "reason": reason, "failed_at": failed_at},
        )
