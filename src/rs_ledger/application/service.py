"""LedgerApplicationService — balance reads, transaction history and gifts.

Gifts run in their own transaction (commit / rollback here); reads run without
an explicit transaction.
"""

from sqlalchemy.ext.asyncio import AsyncSession

from src.rs_common.actor import Actor
from src.rs_common.enums import AccountKind, ActorRole
from src.rs_common.pagination import cursor_decode, cursor_encode
from src.rs_ledger.application.schemas import (
    BalanceResponse,
    GiftResponse,
    PointTransactionItem,
    TransactionListResponse,
)
from src.rs_ledger.domain.models import AccountRef
from src.rs_ledger.domain.repository import LedgerRepositoryProtocol
from src.rs_ledger.domain.service import PointLedger
from src.rs_ledger.infrastructure.persistence import LedgerRepository
from src.rs_outbox.domain import events
from src.rs_outbox.domain.repository import OutboxRepositoryProtocol
from src.rs_outbox.infrastructure.persistence import OutboxRepository


def _own_account(actor: Actor) -> AccountRef:
    actor.require(ActorRole.GUEST, ActorRole.CAST)
    return AccountRef(AccountKind(actor.role.value), actor.id)


class LedgerApplicationService:
    def __init__(
        self,
        repo: LedgerRepositoryProtocol | None = None,
        outbox: OutboxRepositoryProtocol | None = None,
    ) -> None:
        self._repo: LedgerRepositoryProtocol = repo or LedgerRepository()
        self._ledger = PointLedger(self._repo)
        self._outbox: OutboxRepositoryProtocol = outbox or OutboxRepository()

    async def get_balance(self, db: AsyncSession, actor: Actor) -> BalanceResponse:
        account = await self._ledger.get_account(db, _own_account(actor))
        return BalanceResponse.from_account(account)

    async def list_transactions(
        self,
        db: AsyncSession,
        actor: Actor,
        cursor: str | None,
        limit: int,
        tx_type: str | None,
    ) -> TransactionListResponse:
        cursor_id = cursor_decode(cursor)
        # Fetch limit+1 to detect has_more without a COUNT(*) query
        rows = await self._repo.list_transactions(
            db, _own_account(actor), cursor_id, limit + 1, tx_type
        )
        has_more = len(rows) > limit
        page = rows[:limit]
        last_id = page[-1].id if page else None
        return TransactionListResponse(
            items=[PointTransactionItem.from_domain(tx) for tx in page],
            next_cursor=cursor_encode(last_id) if has_more and last_id is not None else None,
            has_more=has_more,
        )

    async def gift(
        self, db: AsyncSession, actor: Actor, cast_id: str, points: int, message: str | None
    ) -> GiftResponse:
        actor.require(ActorRole.GUEST)
        guest = AccountRef.guest(actor.id)
        try:
            debit_tx, credit_tx = await self._ledger.gift(
                db, guest, AccountRef.cast(cast_id), points, message or "Gift"
            )
            await self._outbox.add(
                db,
                events.notification(
                    cast_id,
                    AccountKind.CAST.value,
                    "gift_received",
                    {"guest_id": actor.id, "points": points, "message": message},
                ),
            )
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        return GiftResponse(
            guest_balance=debit_tx.balance_after,
            transactions=[
                PointTransactionItem.from_domain(debit_tx),
                PointTransactionItem.from_domain(credit_tx),
            ],
        )
