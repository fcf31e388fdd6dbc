"""HTTP client for the payment processor (Stripe Connect style API).

A payout to a cast is two calls: a transfer from the platform balance to
the connected account, then a payout from that account to its bank. Both
carry an idempotency key derived from the CastPayout id, so a retried
request never moves money twice.

Transport failures are mapped to ProcessorError / ProcessorTimeoutError;
callers never see httpx exceptions.
"""

import logging
from typing import Any

import httpx

from config.settings import settings
from src.rs_common.errors import ProcessorError, ProcessorTimeoutError
from src.rs_payout.domain.processor import ProcessorAccount, ProcessorPayout

logger = logging.getLogger(__name__)


def _form_metadata(metadata: dict[str, str]) -> dict[str, str]:
    return {f"metadata[{key}]": str(value) for key, value in metadata.items()}


def _to_payout(body: dict[str, Any]) -> ProcessorPayout:
    return ProcessorPayout(
        id=str(body["id"]),
        status=str(body.get("status", "pending")),
        amount=int(body.get("amount", 0)),
        currency=str(body.get("currency", settings.PAYOUT_CURRENCY)),
        metadata=dict(body.get("metadata") or {}),
        failure_message=body.get("failure_message"),
    )


class HttpPaymentProcessor:
    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(
            base_url=settings.PROCESSOR_API_BASE,
            timeout=settings.PROCESSOR_TIMEOUT_SECONDS,
            headers={"Authorization": f"Bearer {settings.PROCESSOR_API_KEY}"},
        )

    async def create_payout(
        self,
        account_ref: str,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> ProcessorPayout:
        await self._request(
            "POST",
            "/v1/transfers",
            data={
                "amount": str(amount),
                "currency": currency,
                "destination": account_ref,
                **_form_metadata(metadata),
            },
            headers={"Idempotency-Key": f"{idempotency_key}:transfer"},
        )
        body = await self._request(
            "POST",
            "/v1/payouts",
            data={"amount": str(amount), "currency": currency, **_form_metadata(metadata)},
            headers={
                "Idempotency-Key": f"{idempotency_key}:payout",
                "Stripe-Account": account_ref,
            },
        )
        return _to_payout(body)

    async def retrieve_payout(self, payout_ref: str, account_ref: str) -> ProcessorPayout:
        body = await self._request(
            "GET", f"/v1/payouts/{payout_ref}", headers={"Stripe-Account": account_ref}
        )
        return _to_payout(body)

    async def retrieve_account(self, account_ref: str) -> ProcessorAccount:
        body = await self._request("GET", f"/v1/accounts/{account_ref}")
        return ProcessorAccount(id=str(body["id"]), payouts_enabled=bool(body.get("payouts_enabled")))

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        data: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        try:
            resp = await self._client.request(method, path, data=data, headers=headers)
            resp.raise_for_status()
        except httpx.TimeoutException as exc:
            logger.warning("Processor %s %s timed out", method, path)
            raise ProcessorTimeoutError(f"{method} {path} timed out") from exc
        except httpx.HTTPStatusError as exc:
            detail = _error_message(exc.response)
            logger.warning(
                "Processor %s %s failed: %d %s", method, path, exc.response.status_code, detail
            )
            raise ProcessorError(detail) from exc
        except httpx.TransportError as exc:
            logger.warning("Processor %s %s transport error: %s", method, path, exc)
            raise ProcessorError(str(exc) or exc.__class__.__name__) from exc
        return resp.json()


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return f"HTTP {resp.status_code}"
