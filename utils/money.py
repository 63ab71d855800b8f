from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Optional


def money(x) -> Decimal:
    """Always return 2-decimal Decimal with HALF_UP rounding."""
    if x is None:
        x = 0
    if not isinstance(x, Decimal):
        x = Decimal(str(x))
    return x.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def parse_amount(x: Any) -> Optional[Decimal]:
    """Parse a provider-supplied amount; None when absent or not a number."""
    if x is None or x == "":
        return None
    try:
        value = Decimal(str(x).replace(",", "").strip())
    except (InvalidOperation, ValueError):
        return None
    if not value.is_finite():
        return None
    return money(value)
