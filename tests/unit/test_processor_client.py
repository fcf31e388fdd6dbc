"""Tests for HttpPaymentProcessor using httpx.MockTransport."""

import httpx
import pytest

from src.rs_common.errors import ProcessorError, ProcessorTimeoutError
from src.rs_payout.infrastructure.processor import HttpPaymentProcessor


def _processor(handler) -> HttpPaymentProcessor:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url="https://processor.test"
    )
    return HttpPaymentProcessor(client=client)


class TestCreatePayout:
    async def test_transfer_then_payout(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.path == "/v1/transfers":
                return httpx.Response(200, json={"id": "tr_1"})
            return httpx.Response(
                200,
                json={
                    "id": "po_1",
                    "status": "pending",
                    "amount": 11400,
                    "currency": "jpy",
                    "metadata": {"cast_payout_id": "p1"},
                },
            )

        processor = _processor(handler)
        result = await processor.create_payout(
            account_ref="acct_1",
            amount=11400,
            currency="jpy",
            metadata={"cast_payout_id": "p1"},
            idempotency_key="p1",
        )
        await processor.aclose()

        assert result.id == "po_1"
        assert result.metadata == {"cast_payout_id": "p1"}
        transfer, payout = seen
        assert transfer.headers["Idempotency-Key"] == "p1:transfer"
        assert b"destination=acct_1" in transfer.content
        assert b"metadata%5Bcast_payout_id%5D=p1" in transfer.content
        assert payout.headers["Idempotency-Key"] == "p1:payout"
        assert payout.headers["Stripe-Account"] == "acct_1"

    async def test_error_message_from_body(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": {"message": "Insufficient funds"}})

        processor = _processor(handler)
        with pytest.raises(ProcessorError) as exc_info:
            await processor.create_payout("acct_1", 100, "jpy", {}, "k")
        assert "Insufficient funds" in exc_info.value.message
        assert exc_info.value.code == 5003

    async def test_non_json_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="unavailable")

        with pytest.raises(ProcessorError, match="HTTP 503"):
            await _processor(handler).create_payout("acct_1", 100, "jpy", {}, "k")

    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ProcessorTimeoutError):
            await _processor(handler).create_payout("acct_1", 100, "jpy", {}, "k")

    async def test_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(ProcessorError) as exc_info:
            await _processor(handler).create_payout("acct_1", 100, "jpy", {}, "k")
        assert not isinstance(exc_info.value, ProcessorTimeoutError)


class TestRetrieve:
    async def test_retrieve_payout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/v1/payouts/po_9"
            assert request.headers["Stripe-Account"] == "acct_1"
            return httpx.Response(
                200, json={"id": "po_9", "status": "failed", "failure_message": "closed"}
            )

        remote = await _processor(handler).retrieve_payout("po_9", "acct_1")
        assert (remote.status, remote.failure_message) == ("failed", "closed")

    async def test_retrieve_account(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"id": "acct_1", "payouts_enabled": True})

        account = await _processor(handler).retrieve_account("acct_1")
        assert account.payouts_enabled is True
