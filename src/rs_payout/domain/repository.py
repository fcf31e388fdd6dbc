"""Repository Protocol for cast_payouts and payments."""

from datetime import date, datetime
from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.rs_payout.domain.models import CastPayout, Payment


class PayoutRepositoryProtocol(Protocol):
    # --- cast_payouts ---

    async def insert_payout(self, db: AsyncSession, payout: CastPayout) -> CastPayout: ...

    async def get_payout(
        self, db: AsyncSession, payout_id: str, for_update: bool = False
    ) -> CastPayout | None: ...

    async def sum_in_flight(self, db: AsyncSession, cast_id: str) -> int:
        """Points of requested/processing payouts not yet debited."""
        ...

    async def sum_instant_committed(
        self, db: AsyncSession, cast_id: str, since: datetime
    ) -> int:
        """Points of non-failed instant payouts created since `since`."""
        ...

    async def list_recent(
        self, db: AsyncSession, cast_id: str, limit: int
    ) -> list[CastPayout]: ...

    async def mark_processing(
        self, db: AsyncSession, payout_id: str, processor_ref: str
    ) -> None: ...

    async def mark_paid(self, db: AsyncSession, payout_id: str, paid_at: datetime) -> None: ...

    async def mark_failed(
        self, db: AsyncSession, payout_id: str, reason: str, failed_at: datetime
    ) -> None: ...

    async def list_stale_processing(
        self, db: AsyncSession, updated_before: datetime, limit: int
    ) -> list[CastPayout]: ...

    async def list_due_scheduled(
        self, db: AsyncSession, run_date: date, limit: int
    ) -> list[CastPayout]: ...

    async def scheduled_exists(
        self, db: AsyncSession, cast_id: str, closing_month: date
    ) -> bool: ...

    # --- payments ---

    async def insert_payment(self, db: AsyncSession, payment: Payment) -> Payment: ...

    async def get_payment_by_processor_ref(
        self, db: AsyncSession, processor_ref: str, for_update: bool = False
    ) -> Payment | None: ...

    async def get_payment_by_payout(
        self, db: AsyncSession, payout_id: str
    ) -> Payment | None: ...

    async def mark_payment_paid(
        self, db: AsyncSession, payment_id: str, paid_at: datetime
    ) -> None: ...

    async def mark_payment_failed(
        self, db: AsyncSession, payment_id: str, reason: str, failed_at: datetime
    ) -> None: ...
