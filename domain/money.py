from __future__ import annotations

from decimal import ROUND_HALF_EVEN, Decimal, localcontext

_CENT = Decimal("0.01")


def money(value: float | int | str | Decimal) -> float:
    """Quantise a coin amount to cents, rounding half to even."""

    amount = Decimal(str(value))
    with localcontext() as ctx:
        # Quantising needs every integer digit plus the two cent digits.
        ctx.prec = max(ctx.prec, amount.adjusted() + 3)
        return float(amount.quantize(_CENT, rounding=ROUND_HALF_EVEN))
