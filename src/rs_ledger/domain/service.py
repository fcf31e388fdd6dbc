"""PointLedger — the only writer of point balances and point_transactions.

Every method runs inside the caller's transaction and never commits. Balance
moves are single guarded UPDATEs; a zero-row result is a business failure
(InsufficientFunds), never clamped.

Held points for a reservation are the unconsumed `pending` rows:
held = -sum(amount). Each pending row is consumed exactly once, by settle or
by refund.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from src.rs_common.datetime_utils import utc_now
from src.rs_common.enums import PointTransactionType
from src.rs_common.errors import (
    AccountNotFoundError,
    InsufficientFundsError,
    InternalError,
    NoPendingFundsError,
)
from src.rs_ledger.domain.models import (
    Account,
    AccountRef,
    Allocation,
    PointTransaction,
    SettlementResult,
)
from src.rs_ledger.domain.repository import LedgerRepositoryProtocol

logger = logging.getLogger(__name__)


class PointLedger:
    def __init__(self, repo: LedgerRepositoryProtocol) -> None:
        self._repo = repo

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_account(
        self, db: AsyncSession, ref: AccountRef, for_update: bool = False
    ) -> Account:
        account = await self._repo.get_account(db, ref, for_update=for_update)
        if account is None:
            raise AccountNotFoundError(ref.kind.value, ref.id)
        return account

    async def held_for(self, db: AsyncSession, reservation_id: str) -> list[PointTransaction]:
        return await self._repo.list_outstanding_pending(db, reservation_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def hold(
        self,
        db: AsyncSession,
        account: AccountRef,
        amount: int,
        reservation_id: str,
        description: str,
        counterparty: AccountRef | None = None,
    ) -> PointTransaction:
        """Move `amount` from spendable points into a pending hold."""
        tx = await self._debit(
            db,
            account,
            amount,
            PointTransactionType.PENDING,
            description,
            reservation_id=reservation_id,
            counterparty=counterparty,
        )
        logger.info(
            "Held %d points from %s for reservation %s", amount, account, reservation_id
        )
        return tx

    async def settle(
        self, db: AsyncSession, reservation_id: str, allocations: list[Allocation]
    ) -> SettlementResult:
        """Release a reservation's hold to its targets.

        Allocations may use less than the held amount; the unused part goes back
        to the payer in the same step. Bonuses are charged to the payer as one
        convert debit, capped at what the payer can cover after that refund, and
        the collected amount is credited on top of the shares. Whatever could not
        be collected is reported as `shortfall` and never blocks the settlement.
        The payer's grade points grow by everything it paid.
        """
        pending = await self._repo.list_outstanding_pending(db, reservation_id, for_update=True)
        if not pending:
            raise NoPendingFundsError(reservation_id)

        held = -sum(tx.amount for tx in pending)
        allocated = sum(a.amount for a in allocations)
        if allocated > held:
            raise InternalError(
                f"Allocations ({allocated}) exceed held points ({held}) "
                f"for reservation {reservation_id}"
            )
        if any(a.amount < 0 or a.bonus < 0 for a in allocations):
            raise InternalError(f"Negative allocation for reservation {reservation_id}")

        payer = pending[0].account
        await self._repo.mark_consumed(db, [tx.id for tx in pending if tx.id is not None], utc_now())

        result = SettlementResult(entries=[], refunded=held - allocated)
        if result.refunded > 0:
            result.entries.append(
                await self._credit(
                    db,
                    payer,
                    result.refunded,
                    PointTransactionType.CONVERT,
                    "Refund of unused held points",
                    reservation_id=reservation_id,
                )
            )

        bonus_total = sum(a.bonus for a in allocations)
        if bonus_total > 0:
            account = await self.get_account(db, payer, for_update=True)
            result.surcharge_collected = min(bonus_total, account.points)
            result.shortfall = bonus_total - result.surcharge_collected
            if result.surcharge_collected > 0:
                result.entries.append(
                    await self._debit(
                        db,
                        payer,
                        result.surcharge_collected,
                        PointTransactionType.CONVERT,
                        "Settlement surcharge (extension and night bonus)",
                        reservation_id=reservation_id,
                    )
                )
            if result.shortfall:
                logger.warning(
                    "Reservation %s: %s covered %d of %d surcharge points, shortfall %d",
                    reservation_id,
                    payer,
                    result.surcharge_collected,
                    bonus_total,
                    result.shortfall,
                )

        bonuses = _cap_shares([a.bonus for a in allocations], result.surcharge_collected)
        for allocation, bonus in zip(allocations, bonuses):
            credit = allocation.amount + bonus
            if credit == 0:
                continue
            result.entries.append(
                await self._credit(
                    db,
                    allocation.account,
                    credit,
                    PointTransactionType.TRANSFER,
                    "Reservation earnings",
                    reservation_id=reservation_id,
                    counterparty=payer,
                )
            )

        paid = allocated + result.surcharge_collected
        if paid:
            await self._repo.add_grade_points(db, payer, paid)
        logger.info(
            "Settled reservation %s: held=%d used=%d refunded=%d bonus=%d targets=%d",
            reservation_id,
            held,
            allocated,
            result.refunded,
            result.surcharge_collected,
            len(allocations),
        )
        return result

    async def refund(
        self, db: AsyncSession, reservation_id: str
    ) -> PointTransaction | None:
        """Return every outstanding held point to the payer. None if nothing is held."""
        pending = await self._repo.list_outstanding_pending(db, reservation_id, for_update=True)
        if not pending:
            return None
        total = -sum(tx.amount for tx in pending)
        payer = pending[0].account
        await self._repo.mark_consumed(db, [tx.id for tx in pending if tx.id is not None], utc_now())
        tx = await self._credit(
            db,
            payer,
            total,
            PointTransactionType.CONVERT,
            "Refund of held points",
            reservation_id=reservation_id,
        )
        logger.info("Refunded %d points to %s for reservation %s", total, payer, reservation_id)
        return tx

    async def debit(
        self,
        db: AsyncSession,
        account: AccountRef,
        amount: int,
        description: str,
        cast_payout_id: str | None = None,
    ) -> PointTransaction:
        """Guarded convert debit, used when a payout is confirmed."""
        return await self._debit(
            db,
            account,
            amount,
            PointTransactionType.CONVERT,
            description,
            cast_payout_id=cast_payout_id,
        )

    async def gift(
        self,
        db: AsyncSession,
        guest: AccountRef,
        cast: AccountRef,
        amount: int,
        description: str,
    ) -> tuple[PointTransaction, PointTransaction]:
        debit_tx = await self._debit(
            db, guest, amount, PointTransactionType.GIFT, description, counterparty=cast
        )
        credit_tx = await self._credit(
            db, cast, amount, PointTransactionType.GIFT, description, counterparty=guest
        )
        await self._repo.add_grade_points(db, guest, amount)
        logger.info("Gift of %d points from %s to %s", amount, guest, cast)
        return debit_tx, credit_tx

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _debit(
        self,
        db: AsyncSession,
        account: AccountRef,
        amount: int,
        tx_type: PointTransactionType,
        description: str,
        reservation_id: str | None = None,
        cast_payout_id: str | None = None,
        counterparty: AccountRef | None = None,
    ) -> PointTransaction:
        if amount < 0:
            raise ValueError(f"amount must be >= 0, got {amount}")
        updated = await self._repo.debit_points(db, account, amount)
        if updated is None:
            current = await self._repo.get_account(db, account)
            if current is None:
                raise AccountNotFoundError(account.kind.value, account.id)
            raise InsufficientFundsError(amount, current.points)
        return await self._repo.insert_transaction(
            db,
            PointTransaction(
                id=None,
                account_type=account.kind.value,
                account_id=account.id,
                type=tx_type.value,
                amount=-amount,
                balance_after=updated.points,
                counterparty_type=counterparty.kind.value if counterparty else None,
                counterparty_id=counterparty.id if counterparty else None,
                reservation_id=reservation_id,
                cast_payout_id=cast_payout_id,
                description=description,
            ),
        )

    async def _credit(
        self,
        db: AsyncSession,
        account: AccountRef,
        amount: int,
        tx_type: PointTransactionType,
        description: str,
        reservation_id: str | None = None,
        counterparty: AccountRef | None = None,
    ) -> PointTransaction:
        updated = await self._repo.credit_points(db, account, amount)
        if updated is None:
            raise AccountNotFoundError(account.kind.value, account.id)
        return await self._repo.insert_transaction(
            db,
            PointTransaction(
                id=None,
                account_type=account.kind.value,
                account_id=account.id,
                type=tx_type.value,
                amount=amount,
                balance_after=updated.points,
                counterparty_type=counterparty.kind.value if counterparty else None,
                counterparty_id=counterparty.id if counterparty else None,
                reservation_id=reservation_id,
                description=description,
            ),
        )


def _cap_shares(shares: list[int], cap: int) -> list[int]:
    """Scale `shares` down so they sum to `cap` when they exceed it.

    Each share keeps floor(share * cap / total); the leftover points go one
    each to the earliest non-zero shares. Never raises a share.
    """
    total = sum(shares)
    if total <= cap:
        return list(shares)
    scaled = [share * cap // total for share in shares]
    leftover = cap - sum(scaled)
    for index, share in enumerate(shares):
        if leftover == 0:
            break
        if share > scaled[index]:
            scaled[index] += 1
            leftover -= 1
    return scaled
