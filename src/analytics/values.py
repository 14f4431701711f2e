from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation, localcontext
from typing import Iterable, Optional

CENT = Decimal("0.01")


def _to_decimal(raw: object) -> Optional[Decimal]:
    if raw is None or isinstance(raw, bool):
        return None
    try:
        # Go through str so binary float artifacts never reach the rounding step.
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite():
        return None
    return value


def _quantize(value: Decimal, quantum: Decimal) -> float:
    # Precision must cover every integer digit, or quantize raises InvalidOperation.
    with localcontext() as context:
        context.prec = max(context.prec, value.adjusted() - quantum.adjusted() + 2)
        result = float(value.quantize(quantum, rounding=ROUND_HALF_UP))
    return result if math.isfinite(result) else 0.0


def to_money(raw: object) -> float:
    """Normalize any numeric-like input to a 2-decimal monetary float.

    ``None``, booleans, unparseable strings and non-finite values all become 0.0,
    as does anything too large for a float.
    Rounding is half away from zero, so ``to_money(to_money(x)) == to_money(x)``.
    """
    value = _to_decimal(raw)
    if value is None:
        return 0.0
    return _quantize(value, CENT)


def sum_money(values: Iterable[object]) -> float:
    total = Decimal("0")
    for raw in values:
        value = _to_decimal(raw)
        if value is not None:
            total += value
    return _quantize(total, CENT)


def round_half_up(value: float, digits: int = 0) -> float:
    decimal_value = _to_decimal(value)
    if decimal_value is None:
        return 0.0
    return _quantize(decimal_value, Decimal(1).scaleb(-digits))


def round_percent(value: float) -> int:
    return int(round_half_up(value, 0))
