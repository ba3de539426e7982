"""
Monetary Input Validation

Amounts enter the services as int / float / str / Decimal and are converted
once to Decimal. Commission amounts are whole currency units (half-up
rounding); informational rates keep two decimals.
"""
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

WHOLE_UNIT = Decimal("1")
TWO_PLACES = Decimal("0.01")
HUNDRED = Decimal("100")

# Largest value a Numeric(10, 2) column can hold
MAX_AMOUNT = Decimal("99999999.99")


def to_decimal(value: Any) -> Decimal:
    """Convert a numeric input to Decimal without float artefacts"""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise InvalidOperation(f"Boolean is not an amount: {value!r}")
    return Decimal(str(value))


def round_currency(value: Decimal) -> Decimal:
    """Round to whole currency units, halves away from zero"""
    return value.quantize(WHOLE_UNIT, rounding=ROUND_HALF_UP)


def round_rate(value: Decimal) -> Decimal:
    """Round a percentage to two decimals"""
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_number(value: Decimal) -> str:
    """Render 3.00 as "3", 2.50 as "2.5" and 150 as "150" for descriptions"""
    normalized = value.normalize()
    return format(normalized, "f")


class AmountValidator:
    """Monetary amount validation"""

    @staticmethod
    def validate(
        amount: Any,
        min_value: Decimal = Decimal("0"),
        max_value: Decimal = MAX_AMOUNT,
        allow_zero: bool = True
    ) -> tuple[bool, str | None]:
        """
        Validate monetary amount.

        Args:
            amount: Amount to validate
            min_value: Minimum allowed value
            max_value: Maximum allowed value
            allow_zero: Whether exactly zero is accepted

        Returns:
            Tuple of (is_valid, error_message)
        """
        try:
            value = to_decimal(amount)
        except (InvalidOperation, ValueError, TypeError):
            return False, f"Amount is not a number: {amount!r}"

        if not value.is_finite():
            return False, "Amount must be a finite number"

        if value == 0 and not allow_zero:
            return False, "Amount must be greater than zero"

        if value < min_value:
            return False, f"Amount must be at least {min_value}"

        if value > max_value:
            return False, f"Amount cannot exceed {max_value}"

        if value != value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP):
            return False, "Amount cannot have more than 2 decimal places"

        return True, None
