"""Clients for the external side-effect collaborators.

- notifications: Redis pub/sub, one channel per recipient
- ranking cache: Redis keys ranking:{region}:*, dropped so the ranking
  service recomputes lazily
- messaging: REST service owning chat groups and chats
"""

import json
import logging
from typing import Any, Protocol

import httpx
import redis.asyncio as aioredis

from config.settings import settings

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def notify(
        self, user_id: str, user_type: str, kind: str, data: dict[str, Any]
    ) -> None: ...


class RankingCache(Protocol):
    async def invalidate(self, region: str) -> int: ...


class Messaging(Protocol):
    async def ensure_chat_group(
        self, reservation_id: str, cast_ids: list[str], name: str
    ) -> str: ...

    async def create_chat(
        self, guest_id: str, cast_id: str, reservation_id: str, group_id: str
    ) -> str: ...


class RedisNotifier:
    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    async def notify(
        self, user_id: str, user_type: str, kind: str, data: dict[str, Any]
    ) -> None:
        channel = f"notifications:{user_type}:{user_id}"
        message = json.dumps({"type": kind, "data": data})
        receivers = await self._redis.publish(channel, message)
        logger.debug("Published %s to %s (%d receivers)", kind, channel, receivers)


class RedisRankingCache:
    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    async def invalidate(self, region: str) -> int:
        keys = [key async for key in self._redis.scan_iter(match=f"ranking:{region}:*")]
        if not keys:
            return 0
        return int(await self._redis.delete(*keys))


class HttpMessagingClient:
    """REST client for the messaging service. Both calls are idempotent server-side."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=settings.MESSAGING_API_BASE,
            timeout=settings.MESSAGING_TIMEOUT_SECONDS,
        )

    async def ensure_chat_group(
        self, reservation_id: str, cast_ids: list[str], name: str
    ) -> str:
        resp = await self._client.put(
            f"/chat-groups/{reservation_id}",
            json={"name": name, "cast_ids": cast_ids},
        )
        resp.raise_for_status()
        return str(resp.json()["id"])

    async def create_chat(
        self, guest_id: str, cast_id: str, reservation_id: str, group_id: str
    ) -> str:
        resp = await self._client.post(
            "/chats",
            json={
                "guest_id": guest_id,
                "cast_id": cast_id,
                "reservation_id": reservation_id,
                "group_id": group_id,
            },
        )
        resp.raise_for_status()
        return str(resp.json()["id"])

    async def aclose(self) -> None:
        await self._client.aclose()
