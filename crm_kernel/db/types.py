"""
Module: crm_kernel.db.types
Responsibility: Precision constants and the sanctioned rounding function for
    money values.  Centralizes precision so that every model and helper uses
    identical definitions.
Architecture position: Kernel > DB.  May be imported by domain/, services/
    and crm_modules.  MUST NOT import from any of those layers.

Invariants enforced:
    - Stored precision is Numeric(38, 9); presentation precision is 2 places.
    - round_money() is the ONLY rounding function for financial values.
    - No floats anywhere: callers convert through crm_kernel.domain.values.
"""

from decimal import ROUND_HALF_UP, Decimal

MONEY_DECIMAL_PLACES = 9
PRESENTATION_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def round_money(
    value: Decimal,
    decimal_places: int = PRESENTATION_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the given number of decimal places.

    Preconditions: value is a Decimal.
    Postconditions: Returns value quantized with ROUND_HALF_UP by default,
        so 10.545 -> 10.55 and -10.545 -> -10.55.
    """
    quantum = Decimal(1).scaleb(-decimal_places)
    return value.quantize(quantum, rounding=rounding)
