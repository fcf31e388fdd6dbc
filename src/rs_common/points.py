"""Integer arithmetic for the points currency.

All balances, holds, fees and bonuses are int points. Currency amounts are int
minor units (yen has none). No float, no Decimal.
"""

from config.settings import settings

BPS_DENOMINATOR = 10000


def calculate_fee(amount: int, fee_rate_bps: int) -> int:
    """Fee with ceiling division (platform never loses).

    fee = ceil(amount * fee_rate_bps / 10000)
    Using integer ceiling: (a + b - 1) // b
    """
    if amount == 0 or fee_rate_bps == 0:
        return 0
    return (amount * fee_rate_bps + BPS_DENOMINATOR - 1) // BPS_DENOMINATOR


def apply_ratio(amount: int, ratio_bps: int) -> int:
    """floor(amount * ratio_bps / 10000)."""
    return amount * ratio_bps // BPS_DENOMINATOR


def points_to_currency(points: int, rate_bps: int | None = None) -> int:
    """Convert points to currency minor units at the configured fixed rate, floored."""
    rate = settings.POINT_TO_YEN_BPS if rate_bps is None else rate_bps
    return points * rate // BPS_DENOMINATOR


def points_to_display(points: int) -> str:
    """12000 -> '12,000 pt', -500 -> '-500 pt'."""
    return f"{points:,} pt"
