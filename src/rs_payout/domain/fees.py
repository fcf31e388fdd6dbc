"""Payout pricing: grade-based fee in basis points, fixed point-to-currency rate."""

from dataclasses import dataclass

from config.settings import settings
from src.rs_common.enums import CastGrade
from src.rs_common.points import calculate_fee, points_to_currency

_FEE_BPS_BY_GRADE: dict[str, int] = {
    CastGrade.PLATINUM.value: 0,
    CastGrade.GOLD.value: 200,
    CastGrade.SILVER.value: 400,
}
DEFAULT_FEE_BPS = 500


def fee_rate_bps(grade: str | None) -> int:
    return _FEE_BPS_BY_GRADE.get((grade or "").lower(), DEFAULT_FEE_BPS)


@dataclass(frozen=True)
class PayoutQuote:
    amount: int
    fee_rate_bps: int
    fee: int
    net_points: int
    net_amount: int
    currency: str


def quote_payout(amount: int, grade: str | None) -> PayoutQuote:
    """fee = ceil(amount * bps / 10000); the cast receives the rest, converted and floored."""
    rate = fee_rate_bps(grade)
    fee = calculate_fee(amount, rate)
    net_points = amount - fee
    return PayoutQuote(
        amount=amount,
        fee_rate_bps=rate,
        fee=fee,
        net_points=net_points,
        net_amount=points_to_currency(net_points),
        currency=settings.PAYOUT_CURRENCY,
    )
