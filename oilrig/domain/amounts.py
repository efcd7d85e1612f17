"""Fixed-precision amounts.

Every balance (OIL, diamonds, payout currency) is a Decimal with 8 decimal
places, matching the Numeric(30, 8) columns it is stored in.
"""

from decimal import ROUND_DOWN, ROUND_HALF_EVEN, Decimal, InvalidOperation

from oilrig.domain.outcomes import InvalidRequestError

PRECISION = Decimal("0.00000001")
ZERO = Decimal("0")

# 20 integer digits + 8 decimals fit both the column and the default context.
MAX_AMOUNT = Decimal("1e20")

US_PER_HOUR = 3600 * 1_000_000


def to_amount(value) -> Decimal:
    """Convert int/str/float/Decimal to a Decimal without binary float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(repr(value))
    return Decimal(value)


def _quantize(value, rounding) -> Decimal:
    try:
        return to_amount(value).quantize(PRECISION, rounding=rounding)
    except InvalidOperation as e:
        raise InvalidRequestError(f"Amount {value} is out of range") from e


def floor_amount(value) -> Decimal:
    """Round down to the fixed precision."""
    return _quantize(value, ROUND_DOWN)


def round_amount(value) -> Decimal:
    return _quantize(value, ROUND_HALF_EVEN)


def check_amount(value: Decimal, label: str = "Amount") -> Decimal:
    """Reject amounts that are not positive or do not fit a balance column.

    Raises:
        InvalidRequestError: non-finite, not positive, or at least MAX_AMOUNT
    """
    if not value.is_finite() or value <= 0:
        raise InvalidRequestError(f"{label} must be positive")
    if value >= MAX_AMOUNT:
        raise InvalidRequestError(f"{label} must be below {MAX_AMOUNT:f}")
    return value
