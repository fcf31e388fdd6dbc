"""Repository Protocol — dependency inversion for testability.

Unit tests inject an in-memory implementation conforming to this Protocol.
Infrastructure layer provides the PostgreSQL implementation.
"""

from datetime import datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.rs_ledger.domain.models import Account, AccountRef, PointTransaction


class LedgerRepositoryProtocol(Protocol):
    async def get_account(
        self, db: AsyncSession, ref: AccountRef, for_update: bool = False
    ) -> Account | None: ...

    async def debit_points(
        self, db: AsyncSession, ref: AccountRef, amount: int
    ) -> Account | None:
        """Guarded debit. None when the account is missing or points < amount."""
        ...

    async def credit_points(
        self, db: AsyncSession, ref: AccountRef, amount: int
    ) -> Account | None: ...

    async def add_grade_points(
        self, db: AsyncSession, ref: AccountRef, amount: int
    ) -> None: ...

    async def set_payouts_enabled(
        self, db: AsyncSession, payout_account_ref: str, enabled: bool
    ) -> Account | None: ...

    async def insert_transaction(
        self, db: AsyncSession, tx: PointTransaction
    ) -> PointTransaction: ...

    async def list_outstanding_pending(
        self, db: AsyncSession, reservation_id: str, for_update: bool = False
    ) -> list[PointTransaction]: ...

    async def mark_consumed(
        self, db: AsyncSession, transaction_ids: list[int], consumed_at: datetime
    ) -> int: ...

    async def list_transactions(
        self,
        db: AsyncSession,
        ref: AccountRef,
        cursor_id: int | None,
        limit: int,
        tx_type: str | None,
    ) -> list[PointTransaction]: ...

    async def sum_credits(
        self, db: AsyncSession, ref: AccountRef, tx_types: list[str], since: datetime
    ) -> int: ...

    async def list_casts_with_points(
        self, db: AsyncSession, min_points: int
    ) -> list[Account]: ...
