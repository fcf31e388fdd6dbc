"""Admin trigger for the outbox relay (normally run after each mutating request)."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.rs_common.actor import Actor
from src.rs_common.database import get_db_session
from src.rs_common.redis_client import get_redis
from src.rs_common.response import ApiResponse, success_response
from src.rs_gateway.auth.dependencies import require_admin
from src.rs_outbox.application.relay import OutboxRelay
from src.rs_outbox.infrastructure.collaborators import (
    HttpMessagingClient,
    RedisNotifier,
    RedisRankingCache,
)

router = APIRouter(prefix="/admin/outbox", tags=["admin"])


@router.post("/deliver")
async def deliver(
    actor: Annotated[Actor, Depends(require_admin)],
    db: Annotated[AsyncSession, Depends(get_db_session)],
    request: Request,
    limit: int = Query(100, ge=1, le=1000),
) -> ApiResponse:
    redis = await get_redis()
    messaging = HttpMessagingClient()
    relay = OutboxRelay(
        notifier=RedisNotifier(redis),
        messaging=messaging,
        ranking=RedisRankingCache(redis),
    )
    try:
        report = await relay.deliver_pending(db, limit)
    finally:
        await messaging.aclose()
    return success_response(
        {"delivered": report.delivered, "failed": report.failed, "errors": report.errors},
        request,
    )
