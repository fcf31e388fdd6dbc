"""LedgerRepository — concrete implementation of LedgerRepositoryProtocol.

Guests and casts live in separate tables with the same balance columns, so
every account statement is prepared once per AccountKind. Balance mutations
are atomic PostgreSQL UPDATE ... RETURNING; a result of 0 rows means the
guard failed (missing account or insufficient points).

Transaction ownership: the CALLER commits or rolls back.
"""

from datetime import datetime

from sqlalchemy import TextClause, text
from sqlalchemy.ext.asyncio import AsyncSession

from src.rs_common.enums import AccountKind
from src.rs_common.errors import InternalError
from src.rs_ledger.domain.models import Account, AccountRef, PointTransaction

_ACCOUNT_TABLES = {AccountKind.GUEST: "guests", AccountKind.CAST: "casts"}

_ACCOUNT_COLUMNS = {
    AccountKind.GUEST: (
        "id, nickname, points, grade_points, grade, version,"
        " NULL AS payout_account_ref, FALSE AS payouts_enabled, created_at, updated_at"
    ),
    AccountKind.CAST: (
        "id, nickname, points, grade_points, grade, version,"
        " payout_account_ref, payouts_enabled, created_at, updated_at"
    ),
}


def _per_kind(template: str) -> dict[AccountKind, TextClause]:
    return {
        kind: text(template.format(table=table, columns=_ACCOUNT_COLUMNS[kind]))
        for kind, table in _ACCOUNT_TABLES.items()
    }


# ---------------------------------------------------------------------------
# SQL: account reads and mutations
# ---------------------------------------------------------------------------

_GET_ACCOUNT_SQL = _per_kind("SELECT {columns} FROM {table} WHERE id = :id")

_GET_ACCOUNT_FOR_UPDATE_SQL = _per_kind("SELECT {columns} FROM {table} WHERE id = :id FOR UPDATE")

_DEBIT_SQL = _per_kind("""
    UPDATE {table}
    SET points = points - :amount,
        version = version + 1,
        updated_at = NOW()
    WHERE id = :id AND points >= :amount
    RETURNING {columns}
""")

_CREDIT_SQL = _per_kind("""
    UPDATE {table}
    SET points = points + :amount,
        version = version + 1,
        updated_at = NOW()
    WHERE id = :id
    RETURNING {columns}
""")

_ADD_GRADE_POINTS_SQL = _per_kind("""
    UPDATE {table}
    SET grade_points = grade_points + :amount,
        updated_at = NOW()
    WHERE id = :id
""")

_SET_PAYOUTS_ENABLED_SQL = text(f"""
    UPDATE casts
    SET payouts_enabled = :enabled,
        updated_at = NOW()
    WHERE payout_account_ref = :payout_account_ref
    RETURNING {_ACCOUNT_COLUMNS[AccountKind.CAST]}
""")

_LIST_CASTS_WITH_POINTS_SQL = text(f"""
    SELECT {_ACCOUNT_COLUMNS[AccountKind.CAST]}
    FROM casts
    WHERE points >= :min_points
    ORDER BY id
""")

# ---------------------------------------------------------------------------
# SQL: point_transactions
# ---------------------------------------------------------------------------

_TX_COLUMNS = """
    id, account_type, account_id, type, amount, balance_after,
    counterparty_type, counterparty_id, reservation_id, cast_payout_id,
    description, consumed_at, created_at
"""

_INSERT_TX_SQL = text(f"""
    INSERT INTO point_transactions
        (account_type, account_id, type, amount, balance_after,
         counterparty_type, counterparty_id, reservation_id, cast_payout_id, description)
    VALUES
        (:account_type, :account_id, :type, :amount, :balance_after,
         :counterparty_type, :counterparty_id, :reservation_id, :cast_payout_id, :description)
    RETURNING {_TX_COLUMNS}
""")

_LIST_OUTSTANDING_PENDING_SQL = text(f"""
    SELECT {_TX_COLUMNS}
    FROM point_transactions
    WHERE reservation_id = :reservation_id
      AND type = 'pending'
      AND consumed_at IS NULL
    ORDER BY id
""")

_LIST_OUTSTANDING_PENDING_FOR_UPDATE_SQL = text(f"""
    SELECT {_TX_COLUMNS}
    FROM point_transactions
    WHERE reservation_id = :reservation_id
      AND type = 'pending'
      AND consumed_at IS NULL
    ORDER BY id
    FOR UPDATE
""")

_MARK_CONSUMED_SQL = text("""
    UPDATE point_transactions
    SET consumed_at = :consumed_at
    WHERE id = ANY(:ids) AND consumed_at IS NULL
""")

_LIST_TX_SQL = text(f"""
    SELECT {_TX_COLUMNS}
    FROM point_transactions
    WHERE account_type = :account_type
      AND account_id = :account_id
      AND (CAST(:cursor_id AS BIGINT) IS NULL OR id < :cursor_id)
      AND (CAST(:tx_type AS VARCHAR) IS NULL OR type = :tx_type)
    ORDER BY id DESC
    LIMIT :limit
""")

_SUM_CREDITS_SQL = text("""
    SELECT COALESCE(SUM(amount), 0) AS total
    FROM point_transactions
    WHERE account_type = :account_type
      AND account_id = :account_id
      AND type = ANY(:tx_types)
      AND amount > 0
      AND created_at >= :since
""")


def _row_to_account(kind: AccountKind, row: object) -> Account:
    return Account(
        kind=kind,
        id=str(row.id),  # type: ignore[attr-defined]
        nickname=row.nickname,  # type: ignore[attr-defined]
        points=row.points,  # type: ignore[attr-defined]
        grade_points=row.grade_points,  # type: ignore[attr-defined]
        grade=row.grade,  # type: ignore[attr-defined]
        version=row.version,  # type: ignore[attr-defined]
        payout_account_ref=row.payout_account_ref,  # type: ignore[attr-defined]
        payouts_enabled=bool(row.payouts_enabled),  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        updated_at=row.updated_at,  # type: ignore[attr-defined]
    )


def _row_to_tx(row: object) -> PointTransaction:
    return PointTransaction(
        id=row.id,  # type: ignore[attr-defined]
        account_type=row.account_type,  # type: ignore[attr-defined]
        account_id=row.account_id,  # type: ignore[attr-defined]
        type=row.type,  # type: ignore[attr-defined]
        amount=row.amount,  # type: ignore[attr-defined]
        balance_after=row.balance_after,  # type: ignore[attr-defined]
        counterparty_type=row.counterparty_type,  # type: ignore[attr-defined]
        counterparty_id=row.counterparty_id,  # type: ignore[attr-defined]
        reservation_id=row.reservation_id,  # type: ignore[attr-defined]
        cast_payout_id=row.cast_payout_id,  # type: ignore[attr-defined]
        description=row.description,  # type: ignore[attr-defined]
        consumed_at=row.consumed_at,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
    )


class LedgerRepository:
    """Concrete repository — all balance operations atomic at the SQL level."""

    async def get_account(
        self, db: AsyncSession, ref: AccountRef, for_update: bool = False
    ) -> Account | None:
        sql = _GET_ACCOUNT_FOR_UPDATE_SQL if for_update else _GET_ACCOUNT_SQL
        result = await db.execute(sql[ref.kind], {"id": ref.id})
        row = result.fetchone()
        return _row_to_account(ref.kind, row) if row else None

    async def debit_points(
        self, db: AsyncSession, ref: AccountRef, amount: int
    ) -> Account | None:
        result = await db.execute(_DEBIT_SQL[ref.kind], {"id": ref.id, "amount": amount})
        row = result.fetchone()
        return _row_to_account(ref.kind, row) if row else None

    async def credit_points(
        self, db: AsyncSession, ref: AccountRef, amount: int
    ) -> Account | None:
        result = await db.execute(_CREDIT_SQL[ref.kind], {"id": ref.id, "amount": amount})
        row = result.fetchone()
        return _row_to_account(ref.kind, row) if row else None

    async def add_grade_points(
        self, db: AsyncSession, ref: AccountRef, amount: int
    ) -> None:
        await db.execute(_ADD_GRADE_POINTS_SQL[ref.kind], {"id": ref.id, "amount": amount})

    async def set_payouts_enabled(
        self, db: AsyncSession, payout_account_ref: str, enabled: bool
    ) -> Account | None:
        result = await db.execute(
            _SET_PAYOUTS_ENABLED_SQL,
            {"payout_account_ref": payout_account_ref, "enabled": enabled},
        )
        row = result.fetchone()
        return _row_to_account(AccountKind.CAST, row) if row else None

    async def insert_transaction(
        self, db: AsyncSession, tx: PointTransaction
    ) -> PointTransaction:
        result = await db.execute(
            _INSERT_TX_SQL,
            {
                "account_type": tx.account_type,
                "account_id": tx.account_id,
                "type": tx.type,
                "amount": tx.amount,
                "balance_after": tx.balance_after,
                "counterparty_type": tx.counterparty_type,
                "counterparty_id": tx.counterparty_id,
                "reservation_id": tx.reservation_id,
                "cast_payout_id": tx.cast_payout_id,
                "description": tx.description,
            },
        )
        row = result.fetchone()
        if row is None:
            raise InternalError("point_transactions insert returned no rows")
        return _row_to_tx(row)

    async def list_outstanding_pending(
        self, db: AsyncSession, reservation_id: str, for_update: bool = False
    ) -> list[PointTransaction]:
        sql = _LIST_OUTSTANDING_PENDING_FOR_UPDATE_SQL if for_update else _LIST_OUTSTANDING_PENDING_SQL
        result = await db.execute(sql, {"reservation_id": reservation_id})
        return [_row_to_tx(row) for row in result.fetchall()]

    async def mark_consumed(
        self, db: AsyncSession, transaction_ids: list[int], consumed_at: datetime
    ) -> int:
        if not transaction_ids:
            return 0
        result = await db.execute(
            _MARK_CONSUMED_SQL, {"ids": transaction_ids, "consumed_at": consumed_at}
        )
        return result.rowcount  # type: ignore[attr-defined, no-any-return]

    async def list_transactions(
        self,
        db: AsyncSession,
        ref: AccountRef,
        cursor_id: int | None,
        limit: int,
        tx_type: str | None,
    ) -> list[PointTransaction]:
        result = await db.execute(
            _LIST_TX_SQL,
            {
                "account_type": ref.kind.value,
                "account_id": ref.id,
                "cursor_id": cursor_id,
                "tx_type": tx_type,
                "limit": limit,
            },
        )
        return [_row_to_tx(row) for row in result.fetchall()]

    async def sum_credits(
        self, db: AsyncSession, ref: AccountRef, tx_types: list[str], since: datetime
    ) -> int:
        result = await db.execute(
            _SUM_CREDITS_SQL,
            {
                "account_type": ref.kind.value,
                "account_id": ref.id,
                "tx_types": tx_types,
                "since": since,
            },
        )
        row = result.fetchone()
        return int(row.total) if row else 0  # type: ignore[attr-defined]

    async def list_casts_with_points(
        self, db: AsyncSession, min_points: int
    ) -> list[Account]:
        result = await db.execute(_LIST_CASTS_WITH_POINTS_SQL, {"min_points": min_points})
        return [_row_to_account(AccountKind.CAST, row) for row in result.fetchall()]
