"""Payment processor port — what the payout service needs from the processor."""

from dataclasses import dataclass, field
from typing import Any, Protocol

PAYOUT_PAID = "paid"
PAYOUT_FAILED_STATUSES = ("failed", "canceled")


@dataclass(frozen=True)
class ProcessorPayout:
    id: str
    status: str                  # pending / in_transit / paid / failed / canceled
    amount: int
    currency: str
    metadata: dict[str, Any] = field(default_factory=dict)
    failure_message: str | None = None


@dataclass(frozen=True)
class ProcessorAccount:
    id: str
    payouts_enabled: bool


@dataclass(frozen=True)
class ProcessorEvent:
    id: str
    type: str
    object: dict[str, Any]


class PaymentProcessor(Protocol):
    async def create_payout(
        self,
        account_ref: str,
        amount: int,
        currency: str,
        metadata: dict[str, str],
        idempotency_key: str,
    ) -> ProcessorPayout: ...

    async def retrieve_payout(self, payout_ref: str, account_ref: str) -> ProcessorPayout: ...

    async def retrieve_account(self, account_ref: str) -> ProcessorAccount: ...

    async def aclose(self) -> None: ...
