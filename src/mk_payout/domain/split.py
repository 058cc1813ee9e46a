"""Split calculator: seller share and platform fee for one sale.

Pure integer arithmetic on cents. Conservation holds exactly for every input:
    seller_amount + platform_fee == gross
    total_amount == gross + delivery_fee
Delivery fees pass through to the courier and never enter the seller share.
"""
from collections.abc import Iterable
from dataclasses import dataclass

from config.settings import settings
from src.mk_common.cents import apply_bps_half_up, validate_amount


@dataclass(frozen=True)
class Split:
    seller_amount: int
    platform_fee: int
    total_amount: int


def split(gross: int, delivery_fee: int, fee_bps: int | None = None) -> Split:
    """Compute the split for one order line (default fee: PLATFORM_FEE_BPS, 10%)."""
    validate_amount(gross, "gross")
    validate_amount(delivery_fee, "delivery_fee")
    bps = settings.PLATFORM_FEE_BPS if fee_bps is None else fee_bps
    if not 0 <= bps <= 10000:
        raise ValueError(f"fee_bps must be within 0-10000, got {bps}")
    platform_fee = apply_bps_half_up(gross, bps)
    return Split(
        seller_amount=gross - platform_fee,
        platform_fee=platform_fee,
        total_amount=gross + delivery_fee,
    )


def split_cart(
    lines: Iterable[tuple[int, int]], fee_bps: int | None = None
) -> tuple[list[Split], Split]:
    """Split each (gross, delivery_fee) line and return (per_line, aggregate).

    Fees are rounded per line, so the aggregate is the sum of the line splits
    rather than a split of the summed gross.
    """
    per_line = [split(gross, delivery, fee_bps) for gross, delivery in lines]
    aggregate = Split(
        seller_amount=sum(s.seller_amount for s in per_line),
        platform_fee=sum(s.platform_fee for s in per_line),
        total_amount=sum(s.total_amount for s in per_line),
    )
    return per_line, aggregate
