from __future__ import annotations

from decimal import MAX_EMAX, MIN_EMIN, ROUND_CEILING, ROUND_HALF_EVEN, Context, Decimal, InvalidOperation
from typing import Any, Sequence

from sub0_cre.errors import IndexOutOfRange, InvalidParameter

# Supplies are 18-decimal token amounts; 60 digits keeps exp/ln error far below
# one base unit of the 6-decimal settlement token.
PRICING_CONTEXT = Context(prec=60, rounding=ROUND_HALF_EVEN, Emax=MAX_EMAX, Emin=MIN_EMIN)


def to_decimal(value: Any, name: str = "value") -> Decimal:
    if isinstance(value, Decimal):
        out = value
    elif isinstance(value, bool):
        raise InvalidParameter(f"{name} must be numeric")
    elif isinstance(value, int):
        out = Decimal(value)
    else:
        try:
            out = Decimal(str(value).strip())
        except InvalidOperation as exc:
            raise InvalidParameter(f"{name} must be numeric, got {value!r}") from exc
    if not out.is_finite():
        raise InvalidParameter(f"{name} must be finite")
    return out


def _supplies(q: Sequence[Any]) -> list[Decimal]:
    if len(q) == 0:
        raise InvalidParameter("LMSR supply vector must not be empty")
    return [to_decimal(qi, f"q[{i}]") for i, qi in enumerate(q)]


def _liquidity(b: Any) -> Decimal:
    b_dec = to_decimal(b, "b")
    if b_dec <= 0:
        raise InvalidParameter("LMSR bParameter must be positive")
    return b_dec


def cost(q: Sequence[Any], b: Any) -> Decimal:
    """LMSR cost function ``C(q) = b * ln(sum_i exp(q_i / b))``.

    Evaluated as ``b * (m + ln(sum_i exp(q_i/b - m)))`` with ``m = max(q_i/b)``
    so large supplies do not blow up the exponentials.
    """
    ctx = PRICING_CONTEXT
    b_dec = _liquidity(b)
    scaled = [ctx.divide(qi, b_dec) for qi in _supplies(q)]
    peak = max(scaled)
    total = Decimal(0)
    for value in scaled:
        total = ctx.add(total, ctx.exp(ctx.subtract(value, peak)))
    if total <= 0:
        raise InvalidParameter("LMSR sum of exponentials must be positive")
    return ctx.multiply(b_dec, ctx.add(peak, ctx.ln(total)))


def cost_to_buy(q: Sequence[Any], outcome_index: int, quantity: Any, b: Any) -> Decimal:
    supplies = _supplies(q)
    if outcome_index < 0 or outcome_index >= len(supplies):
        raise IndexOutOfRange(
            f"LMSR outcomeIndex {outcome_index} out of range for {len(supplies)} outcomes"
        )
    qty = to_decimal(quantity, "quantity")
    after = list(supplies)
    after[outcome_index] = PRICING_CONTEXT.add(after[outcome_index], qty)
    return PRICING_CONTEXT.subtract(cost(after, b), cost(supplies, b))


def outcome_prices(q: Sequence[Any], b: Any) -> list[Decimal]:
    """Instantaneous LMSR prices; each in (0, 1), summing to 1."""
    ctx = PRICING_CONTEXT
    b_dec = _liquidity(b)
    scaled = [ctx.divide(qi, b_dec) for qi in _supplies(q)]
    peak = max(scaled)
    weights = [ctx.exp(ctx.subtract(value, peak)) for value in scaled]
    total = Decimal(0)
    for w in weights:
        total = ctx.add(total, w)
    return [ctx.divide(w, total) for w in weights]


def to_settlement_units(cost_in_outcome_units: Any, outcome_decimals: int, usdc_decimals: int) -> int:
    """Rescale an outcome-token amount to settlement-token base units, rounding up."""
    ctx = PRICING_CONTEXT
    amount = to_decimal(cost_in_outcome_units, "cost")
    scaled = ctx.multiply(amount, ctx.power(Decimal(10), usdc_decimals - outcome_decimals))
    return int(scaled.to_integral_value(rounding=ROUND_CEILING, context=ctx))
