"""Outbox repository Protocol."""

from typing import Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from src.rs_outbox.domain.events import OutboxEvent


class OutboxRepositoryProtocol(Protocol):
    async def add(self, db: AsyncSession, event: OutboxEvent) -> None: ...

    async def claim_pending(self, db: AsyncSession, limit: int) -> list[OutboxEvent]: ...

    async def mark_delivered(self, db: AsyncSession, event_id: int) -> None: ...

    async def mark_failed(
        self, db: AsyncSession, event_id: int, error: str, give_up: bool
    ) -> None: ...
