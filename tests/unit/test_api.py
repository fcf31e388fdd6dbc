"""HTTP-level tests: auth, error envelope and request validation.

The DB session dependency is replaced with an AsyncMock and the ledger
router's service is rebuilt over in-memory repositories, so no database or
Redis is needed.
"""

import json
import time
from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient

from src.main import app
from src.rs_common.database import get_db_session
from src.rs_common.enums import ActorRole
from src.rs_gateway.auth.jwt_handler import create_access_token
from src.rs_ledger.api import router as ledger_router
from src.rs_ledger.application.service import LedgerApplicationService


def _auth(actor_id: str, role: ActorRole) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(actor_id, role)}"}


@pytest.fixture(autouse=True)
def mock_db():
    session = AsyncMock()

    async def _override():
        yield session

    app.dependency_overrides[get_db_session] = _override
    yield session
    app.dependency_overrides.clear()


@pytest.fixture
def ledger_api(monkeypatch, ledger_repo, outbox):
    ledger_repo.add_guest("g1", points=10000)
    ledger_repo.add_cast("c1")
    monkeypatch.setattr(
        ledger_router, "_service", LedgerApplicationService(repo=ledger_repo, outbox=outbox)
    )
    monkeypatch.setattr(ledger_router, "deliver_outbox", AsyncMock())
    return ledger_repo


async def test_health(client: AsyncClient) -> None:
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


async def test_missing_token_is_401(client: AsyncClient) -> None:
    resp = await client.get("/api/v1/ledger/balance")
    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"


async def test_garbage_token_is_401(client: AsyncClient) -> None:
    resp = await client.get(
        "/api/v1/payouts/summary", headers={"Authorization": "Bearer not-a-jwt"}
    )
    assert resp.status_code == 401


async def test_wrong_role_uses_error_envelope(client: AsyncClient) -> None:
    resp = await client.get("/api/v1/payouts/summary", headers=_auth("g1", ActorRole.GUEST))
    assert resp.status_code == 403
    body = resp.json()
    assert body["code"] == 1002
    assert body["data"] is None


async def test_admin_routes_reject_casts(client: AsyncClient) -> None:
    resp = await client.post(
        "/api/v1/admin/payouts/close-period",
        json={"period_end": "2026-09-30"},
        headers=_auth("c1", ActorRole.CAST),
    )
    assert resp.status_code == 403


async def test_balance(client: AsyncClient, ledger_api) -> None:
    resp = await client.get("/api/v1/ledger/balance", headers=_auth("g1", ActorRole.GUEST))
    assert resp.status_code == 200
    body = resp.json()
    assert body["code"] == 0
    assert body["data"]["points_display"] == "10,000 pt"


async def test_gift_insufficient_points(client: AsyncClient, ledger_api, mock_db) -> None:
    resp = await client.post(
        "/api/v1/ledger/gifts",
        json={"cast_id": "c1", "points": 20000},
        headers=_auth("g1", ActorRole.GUEST),
    )
    assert resp.status_code == 422
    assert resp.json()["code"] == 2001
    mock_db.rollback.assert_awaited_once()


async def test_gift_validation(client: AsyncClient, ledger_api) -> None:
    resp = await client.post(
        "/api/v1/ledger/gifts",
        json={"cast_id": "c1", "points": 0},
        headers=_auth("g1", ActorRole.GUEST),
    )
    assert resp.status_code == 422


async def test_gift_success(client: AsyncClient, ledger_api) -> None:
    resp = await client.post(
        "/api/v1/ledger/gifts",
        json={"cast_id": "c1", "points": 2500, "message": "Thanks"},
        headers=_auth("g1", ActorRole.GUEST),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["guest_balance"] == 7500
    ledger_router.deliver_outbox.assert_awaited_once()


async def test_webhook_bad_signature(client: AsyncClient) -> None:
    payload = json.dumps({"id": "evt_1", "type": "payout.paid", "data": {"object": {"id": "po"}}})
    resp = await client.post(
        "/api/v1/webhooks/processor",
        content=payload,
        headers={"Stripe-Signature": f"t={int(time.time())},v1=deadbeef"},
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == 5001


async def test_webhook_missing_signature(client: AsyncClient) -> None:
    resp = await client.post("/api/v1/webhooks/processor", content=b"{}")
    assert resp.status_code == 400
    assert resp.json()["code"] == 5001


async def test_create_reservation_validation(client: AsyncClient) -> None:
    resp = await client.post(
        "/api/v1/reservations",
        json={"type": "vip", "duration_minutes": 60, "scheduled_at": "2026-03-10T19:00:00+09:00"},
        headers=_auth("g1", ActorRole.GUEST),
    )
    assert resp.status_code == 422
