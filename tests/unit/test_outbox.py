"""Tests for the outbox: event builders, relay delivery and collaborator clients."""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from src.rs_common.errors import InternalError
from src.rs_outbox.application.relay import OutboxRelay
from src.rs_outbox.domain import events
from src.rs_outbox.infrastructure.collaborators import (
    HttpMessagingClient,
    RedisNotifier,
    RedisRankingCache,
)
from src.rs_outbox.infrastructure.persistence import OutboxRepository


@pytest.fixture
def notifier() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def messaging() -> AsyncMock:
    mock = AsyncMock()
    mock.ensure_chat_group.return_value = "grp_1"
    return mock


@pytest.fixture
def ranking() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def relay(notifier, messaging, ranking, outbox) -> OutboxRelay:
    return OutboxRelay(notifier, messaging, ranking, repo=outbox, max_attempts=2)


class TestEventBuilders:
    def test_ranking_defaults_to_all(self) -> None:
        assert events.ranking_invalidate(None).payload == {"region": "all"}

    def test_notification_payload(self) -> None:
        event = events.notification("c1", "cast", "payout_paid", {"amount": 1})
        assert event.event_type == events.NOTIFICATION
        assert event.payload["type"] == "payout_paid"
        assert event.status == "pending"


class TestOutboxRelay:
    async def test_delivers_every_kind(
        self, relay: OutboxRelay, outbox, notifier, messaging, ranking, db
    ) -> None:
        await outbox.add(db, events.notification("g1", "guest", "order_matched", {"x": 1}))
        await outbox.add(db, events.chat_open("r1", "g1", ["c1", "c2"], "Reservation r1"))
        await outbox.add(db, events.ranking_invalidate("tokyo"))

        report = await relay.deliver_pending(db)

        assert (report.delivered, report.failed) == (3, 0)
        notifier.notify.assert_awaited_once_with("g1", "guest", "order_matched", {"x": 1})
        messaging.ensure_chat_group.assert_awaited_once_with("r1", ["c1", "c2"], "Reservation r1")
        assert messaging.create_chat.await_count == 2
        ranking.invalidate.assert_awaited_once_with("tokyo")
        assert all(e.status == "delivered" for e in outbox.events)
        db.commit.assert_awaited_once()

    async def test_failure_is_retried_then_given_up(
        self, relay: OutboxRelay, outbox, notifier, db
    ) -> None:
        notifier.notify.side_effect = RedisConnectionError("down")
        await outbox.add(db, events.notification("g1", "guest", "order_matched"))

        first = await relay.deliver_pending(db)
        assert first.failed == 1
        assert outbox.events[0].status == "pending"
        assert outbox.events[0].last_error == "down"

        second = await relay.deliver_pending(db)
        assert second.failed == 1
        assert outbox.events[0].status == "failed"

        third = await relay.deliver_pending(db)
        assert (third.delivered, third.failed) == (0, 0)

    async def test_one_failure_does_not_block_others(
        self, relay: OutboxRelay, outbox, messaging, db
    ) -> None:
        request = httpx.Request("PUT", "http://messaging.test/chat-groups/r1")
        messaging.ensure_chat_group.side_effect = httpx.ConnectError("refused", request=request)
        await outbox.add(db, events.chat_open("r1", "g1", ["c1"], "Reservation r1"))
        await outbox.add(db, events.ranking_invalidate(None))

        report = await relay.deliver_pending(db)

        assert (report.delivered, report.failed) == (1, 1)
        assert report.errors[0].startswith("1:")

    async def test_unknown_event_type_fails(self, relay: OutboxRelay, outbox, db) -> None:
        await outbox.add(db, events.OutboxEvent("mystery", {}))
        report = await relay.deliver_pending(db)
        assert report.failed == 1

    async def test_unexpected_error_keeps_earlier_deliveries(
        self, relay: OutboxRelay, outbox, notifier, ranking, db
    ) -> None:
        ranking.invalidate.return_value = None
        notifier.notify.side_effect = TypeError("bad payload shape")
        await outbox.add(db, events.ranking_invalidate("tokyo"))
        await outbox.add(db, events.notification("g1", "guest", "order_matched"))

        report = await relay.deliver_pending(db)

        assert (report.delivered, report.failed) == (1, 1)
        assert outbox.events[0].status == "delivered"
        assert outbox.events[1].last_error == "bad payload shape"
        db.commit.assert_awaited_once()
        db.rollback.assert_not_awaited()

    async def test_claimed_event_without_id(self, notifier, messaging, ranking, db) -> None:
        repo = AsyncMock()
        repo.claim_pending.return_value = [events.ranking_invalidate("tokyo")]
        relay = OutboxRelay(notifier, messaging, ranking, repo=repo)
        with pytest.raises(InternalError):
            await relay.deliver_pending(db)
        ranking.invalidate.assert_not_awaited()
        db.rollback.assert_awaited_once()

    async def test_repository_error_rolls_back(self, notifier, messaging, ranking, db) -> None:
        repo = AsyncMock()
        repo.claim_pending.side_effect = RuntimeError("db gone")
        relay = OutboxRelay(notifier, messaging, ranking, repo=repo)
        with pytest.raises(RuntimeError):
            await relay.deliver_pending(db)
        db.rollback.assert_awaited_once()


class TestCollaborators:
    async def test_redis_notifier_channel(self) -> None:
        redis = AsyncMock()
        redis.publish.return_value = 1
        await RedisNotifier(redis).notify("c1", "cast", "payout_paid", {"amount": 100})
        channel, message = redis.publish.await_args.args
        assert channel == "notifications:cast:c1"
        assert json.loads(message) == {"type": "payout_paid", "data": {"amount": 100}}

    async def test_ranking_invalidate_deletes_region_keys(self) -> None:
        async def scan_iter(match: str):
            assert match == "ranking:tokyo:*"
            for key in ("ranking:tokyo:daily", "ranking:tokyo:monthly"):
                yield key

        redis = MagicMock()
        redis.scan_iter = scan_iter
        redis.delete = AsyncMock(return_value=2)
        assert await RedisRankingCache(redis).invalidate("tokyo") == 2
        redis.delete.assert_awaited_once_with("ranking:tokyo:daily", "ranking:tokyo:monthly")

    async def test_ranking_invalidate_nothing_cached(self) -> None:
        async def scan_iter(match: str):
            return
            yield

        redis = MagicMock()
        redis.scan_iter = scan_iter
        redis.delete = AsyncMock()
        assert await RedisRankingCache(redis).invalidate("all") == 0
        redis.delete.assert_not_awaited()

    async def test_messaging_client(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.method == "PUT":
                return httpx.Response(200, json={"id": "grp_9"})
            return httpx.Response(201, json={"id": 77})

        client = HttpMessagingClient(
            httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://m.test")
        )
        group_id = await client.ensure_chat_group("r1", ["c1"], "Reservation r1")
        chat_id = await client.create_chat("g1", "c1", "r1", group_id)
        await client.aclose()

        assert (group_id, chat_id) == ("grp_9", "77")
        assert seen[0].url.path == "/chat-groups/r1"
        assert json.loads(seen[1].content)["group_id"] == "grp_9"

    async def test_messaging_error_status_raises(self) -> None:
        client = HttpMessagingClient(
            httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(500)),
                base_url="http://m.test",
            )
        )
        with pytest.raises(httpx.HTTPStatusError):
            await client.create_chat("g1", "c1", "r1", "grp")


class TestOutboxRepository:
    async def test_add_serializes_payload(self) -> None:
        db = AsyncMock()
        await OutboxRepository().add(db, events.ranking_invalidate("osaka"))
        params = db.execute.call_args[0][1]
        assert params["event_type"] == "ranking.invalidate"
        assert json.loads(params["payload"]) == {"region": "osaka"}

    async def test_claim_pending_decodes_json_text(self) -> None:
        row = MagicMock()
        row.id = 5
        row.event_type = "notification"
        row.payload = '{"user_id": "g1"}'
        row.status = "pending"
        row.attempts = 0
        row.last_error = None
        row.created_at = None
        row.delivered_at = None
        db = AsyncMock()
        result = MagicMock()
        result.fetchall.return_value = [row]
        db.execute.return_value = result

        [event] = await OutboxRepository().claim_pending(db, 10)

        assert event.id == 5
        assert event.payload == {"user_id": "g1"}
        assert db.execute.call_args[0][1] == {"limit": 10}

    async def test_mark_failed_truncates_error(self) -> None:
        db = AsyncMock()
        await OutboxRepository().mark_failed(db, 1, "x" * 900, give_up=True)
        params = db.execute.call_args[0][1]
        assert len(params["error"]) == 500
        assert params["give_up"] is True
