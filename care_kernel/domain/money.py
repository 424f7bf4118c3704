"""Sterling amounts held to whole pence."""

from decimal import ROUND_HALF_UP, Decimal

PENNY = Decimal("0.01")


def money(value):
    """Round to pence, half up.  None passes through for optional amounts."""
    if value is None:
        return None
    return Decimal(value).quantize(PENNY, rounding=ROUND_HALF_UP)
