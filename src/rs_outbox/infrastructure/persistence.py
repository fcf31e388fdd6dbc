"""OutboxRepository — outbox_events rows written inside the caller's transaction."""

import json

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from src.rs_outbox.domain.events import OutboxEvent

_INSERT_SQL = text("""
    INSERT INTO outbox_events (event_type, payload)
    VALUES (:event_type, CAST(:payload AS JSONB))
""")

# SKIP LOCKED lets several relays drain the table without double delivery
_CLAIM_PENDING_SQL = text("""
    SELECT id, event_type, payload, status, attempts, last_error, created_at, delivered_at
    FROM outbox_events
    WHERE status = 'pending'
    ORDER BY id
    LIMIT :limit
    FOR UPDATE SKIP LOCKED
""")

_MARK_DELIVERED_SQL = text("""
    UPDATE outbox_events
    SET status = 'delivered',
        attempts = attempts + 1,
        delivered_at = NOW()
    WHERE id = :id
""")

_MARK_FAILED_SQL = text("""
    UPDATE outbox_events
    SET status = CASE WHEN :give_up THEN 'failed' ELSE 'pending' END,
        attempts = attempts + 1,
        last_error = :error
    WHERE id = :id
""")


def _row_to_event(row: object) -> OutboxEvent:
    payload = row.payload  # type: ignore[attr-defined]
    if isinstance(payload, str):
        payload = json.loads(payload)
    return OutboxEvent(
        id=row.id,  # type: ignore[attr-defined]
        event_type=row.event_type,  # type: ignore[attr-defined]
        payload=payload,
        status=row.status,  # type: ignore[attr-defined]
        attempts=row.attempts,  # type: ignore[attr-defined]
        last_error=row.last_error,  # type: ignore[attr-defined]
        created_at=row.created_at,  # type: ignore[attr-defined]
        delivered_at=row.delivered_at,  # type: ignore[attr-defined]
    )


class OutboxRepository:
    async def add(self, db: AsyncSession, event: OutboxEvent) -> None:
        await db.execute(
            _INSERT_SQL,
            {"event_type": event.event_type, "payload": json.dumps(event.payload)},
        )

    async def claim_pending(self, db: AsyncSession, limit: int) -> list[OutboxEvent]:
        result = await db.execute(_CLAIM_PENDING_SQL, {"limit": limit})
        return [_row_to_event(row) for row in result.fetchall()]

    async def mark_delivered(self, db: AsyncSession, event_id: int) -> None:
        await db.execute(_MARK_DELIVERED_SQL, {"id": event_id})

    async def mark_failed(
        self, db: AsyncSession, event_id: int, error: str, give_up: bool
    ) -> None:
        await db.execute(
            _MARK_FAILED_SQL, {"id": event_id, "error": error[:500], "give_up": give_up}
        )
