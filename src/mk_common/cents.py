"""Integer arithmetic utilities for minor-unit (cents) money.

All amounts are int cents (ZAR). No float, no Decimal.
"""


def validate_amount(amount: int, field: str = "amount") -> None:
    """Reject negative money amounts."""
    if amount < 0:
        raise ValueError(f"{field} must be >= 0 cents, got {amount}")


def cents_to_display(cents: int) -> str:
    """Convert cents to display string: 105000 -> 'R1,050.00', -1200 -> '-R12.00'."""
    if cents < 0:
        abs_cents = -cents
        return f"-R{abs_cents // 100:,}.{abs_cents % 100:02d}"
    return f"R{cents // 100:,}.{cents % 100:02d}"


def apply_bps_half_up(amount: int, bps: int) -> int:
    """amount x bps / 10000, rounded to the nearest cent (halves round up).

    Using integer arithmetic: (a * b + 5000) // 10000
    """
    if amount == 0 or bps == 0:
        return 0
    return (amount * bps + 5000) // 10000
