"""
Values -- fixed-point money and percent helpers.

Responsibility:
    Converts raw numeric input into Decimal, canonicalizes percentages, and
    provides division that cannot raise.  Every money or rate figure in the
    revenue engine passes through these functions before any arithmetic.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Floats never reach arithmetic: to_decimal() converts through str().
    - A percent arrives either as a fraction (0.18) or as whole points (18);
      any value > 1 is treated as points and divided by 100.  Zero stays
      zero and is never confused with "absent".
    - Division by zero yields Decimal("0"), never an exception.

Failure modes:
    - ValidationError on non-numeric, non-finite or out-of-range input.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from crm_kernel.exceptions import ValidationError

ZERO = Decimal("0")
ONE = Decimal("1")
HUNDRED = Decimal("100")


def to_decimal(value: Any, field: str = "amount") -> Decimal:
    """
    Convert an int, str, float or Decimal to a finite Decimal.

    Floats are converted through their shortest repr (0.1 -> "0.1"), never
    through binary expansion.

    Raises:
        ValidationError: bool, None, non-numeric text, NaN or infinity.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(field, value, "must be a number")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError) as exc:
            raise ValidationError(field, value, "must be a number") from exc
    if not result.is_finite():
        raise ValidationError(field, value, "must be finite")
    return result


def to_optional_decimal(value: Any, field: str = "amount") -> Decimal | None:
    """Like to_decimal() but None (or blank text) passes through as None."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    return to_decimal(value, field)


def normalize_percent(value: Any, field: str = "percent") -> Decimal | None:
    """
    Canonicalize a percentage to a fraction in [0, 1].

    Examples:
        normalize_percent(18)      -> Decimal("0.18")
        normalize_percent("0.18")  -> Decimal("0.18")
        normalize_percent(0)       -> Decimal("0")
        normalize_percent(None)    -> None

    Raises:
        ValidationError: negative, above 100 points, or non-numeric.
    """
    raw = to_optional_decimal(value, field)
    if raw is None:
        return None
    if raw < ZERO:
        raise ValidationError(field, value, "must not be negative")
    if raw > HUNDRED:
        raise ValidationError(field, value, "must be between 0 and 100")
    if raw > ONE:
        return raw / HUNDRED
    return raw


def safe_divide(numerator: Decimal, denominator: Decimal | None) -> Decimal:
    """Divide, returning zero when the denominator is zero or missing."""
    if denominator is None or denominator == ZERO:
        return ZERO
    return numerator / denominator
