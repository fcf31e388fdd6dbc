"""Side-effect intents recorded in the same transaction as the state change.

The relay delivers them after commit; a failed delivery never undoes the
financial outcome that produced it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

NOTIFICATION = "notification"
CHAT_OPEN = "chat.open"
RANKING_INVALIDATE = "ranking.invalidate"

EVENT_TYPES = (NOTIFICATION, CHAT_OPEN, RANKING_INVALIDATE)


@dataclass
class OutboxEvent:
    event_type: str
    payload: dict[str, Any]
    id: int | None = None
    status: str = "pending"
    attempts: int = 0
    last_error: str | None = None
    created_at: datetime | None = None
    delivered_at: datetime | None = None


def notification(
    user_id: str, user_type: str, kind: str, data: dict[str, Any] | None = None
) -> OutboxEvent:
    return OutboxEvent(
        NOTIFICATION,
        {"user_id": user_id, "user_type": user_type, "type": kind, "data": data or {}},
    )


def chat_open(
    reservation_id: str, guest_id: str, cast_ids: list[str], group_name: str
) -> OutboxEvent:
    """One chat group per reservation plus one guest/cast chat per winner."""
    return OutboxEvent(
        CHAT_OPEN,
        {
            "reservation_id": reservation_id,
            "guest_id": guest_id,
            "cast_ids": list(cast_ids),
            "group_name": group_name,
        },
    )


def ranking_invalidate(region: str | None) -> OutboxEvent:
    return OutboxEvent(RANKING_INVALIDATE, {"region": region or "all"})


@dataclass
class DeliveryReport:
    delivered: int = 0
    failed: int = 0
    errors: list[str] = field(default_factory=list)
