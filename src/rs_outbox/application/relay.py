"""OutboxRelay — delivers committed side-effect intents, best effort.

Runs after the request's transaction commits (FastAPI BackgroundTasks) and on
demand from the admin API. Each event is delivered independently; a failure
is recorded on the row and retried on the next run until OUTBOX_MAX_ATTEMPTS.
"""

import logging

import httpx
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.rs_common.database import async_session_factory
from src.rs_common.errors import InternalError
from src.rs_common.redis_client import get_redis
from src.rs_outbox.domain.events import (
    CHAT_OPEN,
    NOTIFICATION,
    RANKING_INVALIDATE,
    DeliveryReport,
    OutboxEvent,
)
from src.rs_outbox.domain.repository import OutboxRepositoryProtocol
from src.rs_outbox.infrastructure.collaborators import (
    HttpMessagingClient,
    Messaging,
    Notifier,
    RankingCache,
    RedisNotifier,
    RedisRankingCache,
)
from src.rs_outbox.infrastructure.persistence import OutboxRepository

logger = logging.getLogger(__name__)

# expected collaborator failures; anything else is also logged with its traceback
_DELIVERY_ERRORS = (httpx.HTTPError, RedisError, KeyError, ValueError)


class OutboxRelay:
    def __init__(
        self,
        notifier: Notifier,
        messaging: Messaging,
        ranking: RankingCache,
        repo: OutboxRepositoryProtocol | None = None,
        max_attempts: int | None = None,
    ) -> None:
        self._notifier = notifier
        self._messaging = messaging
        self._ranking = ranking
        self._repo: OutboxRepositoryProtocol = repo or OutboxRepository()
        self._max_attempts = max_attempts or settings.OUTBOX_MAX_ATTEMPTS

    async def deliver_pending(
        self, db: AsyncSession, limit: int | None = None
    ) -> DeliveryReport:
        report = DeliveryReport()
        try:
            events = await self._repo.claim_pending(db, limit or settings.OUTBOX_BATCH_SIZE)
            for event in events:
                if event.id is None:
                    raise InternalError(f"Claimed outbox event has no id: {event.event_type}")
                try:
                    await self.dispatch(event)
                except Exception as exc:
                    # one bad event must not roll back the ones already delivered
                    give_up = event.attempts + 1 >= self._max_attempts
                    logger.warning(
                        "Outbox event %d (%s) delivery failed, attempt %d%s: %s",
                        event.id,
                        event.event_type,
                        event.attempts + 1,
                        " (giving up)" if give_up else "",
                        exc,
                        exc_info=not isinstance(exc, _DELIVERY_ERRORS),
                    )
                    error = str(exc) or type(exc).__name__
                    await self._repo.mark_failed(db, event.id, error, give_up)
                    report.failed += 1
                    report.errors.append(f"{event.id}: {exc}")
                else:
                    await self._repo.mark_delivered(db, event.id)
                    report.delivered += 1
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return report

    async def dispatch(self, event: OutboxEvent) -> None:
        payload = event.payload
        if event.event_type == NOTIFICATION:
            await self._notifier.notify(
                payload["user_id"], payload["user_type"], payload["type"], payload.get("data", {})
            )
        elif event.event_type == CHAT_OPEN:
            group_id = await self._messaging.ensure_chat_group(
                payload["reservation_id"], payload["cast_ids"], payload["group_name"]
            )
            for cast_id in payload["cast_ids"]:
                await self._messaging.create_chat(
                    payload["guest_id"], cast_id, payload["reservation_id"], group_id
                )
        elif event.event_type == RANKING_INVALIDATE:
            await self._ranking.invalidate(payload["region"])
        else:
            raise ValueError(f"Unknown outbox event type: {event.event_type}")


async def deliver_outbox() -> None:
    """BackgroundTasks entry point: drain the outbox in a fresh session."""
    messaging = HttpMessagingClient()
    try:
        redis = await get_redis()
        relay = OutboxRelay(
            notifier=RedisNotifier(redis),
            messaging=messaging,
            ranking=RedisRankingCache(redis),
        )
        async with async_session_factory() as session:
            report = await relay.deliver_pending(session)
    except Exception:
        # runs after the response is sent; nothing upstream can handle it
        logger.exception("Outbox relay run failed")
        return
    finally:
        await messaging.aclose()
    if report.failed:
        logger.warning("Outbox relay: %d delivered, %d failed", report.delivered, report.failed)
