"""
Input Validation Utilities

ולידציה לערכים כספיים, קריאות מונה וטקסט חופשי.
כל הערכים המספריים עוברים דרך Decimal — אף פעם לא float.
"""
import re
from decimal import Decimal, InvalidOperation
from typing import Any

# מגבלות סבירות: מונה משאבה ותשלום בודד
MAX_METER_READING = Decimal("9999999999.999")
MAX_PAYMENT_AMOUNT = Decimal("99999999.99")

MONEY_PLACES = 2
VOLUME_PLACES = 3

_MULTI_SPACE_RE = re.compile(r" +")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def to_decimal(value: Any) -> Decimal:
    """
    המרת ערך מספרי ל-Decimal מדויק.

    float מומר דרך str כדי לא לגרור את שגיאת הייצוג הבינארי
    (Decimal(0.1) != Decimal("0.1")).

    Raises:
        ValueError: לערך שאינו מספר סופי
    """
    if isinstance(value, bool):
        raise ValueError("Boolean is not a number")
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise ValueError(f"Invalid number: {value!r}")
    if not result.is_finite():
        raise ValueError(f"Invalid number: {value!r}")
    return result


def _decimal_places(value: Decimal) -> int:
    exponent = value.normalize().as_tuple().exponent
    return max(0, -exponent) if isinstance(exponent, int) else 0


class AmountValidator:
    """Monetary amount validation"""

    @staticmethod
    def validate(
        amount: Decimal,
        max_value: Decimal = MAX_PAYMENT_AMOUNT,
    ) -> tuple[bool, str | None]:
        """
        Validate a payment amount: strictly positive, max 2 decimal places.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if amount <= 0:
            return False, "Amount must be greater than zero"

        if amount > max_value:
            return False, f"Amount cannot exceed {max_value}"

        if _decimal_places(amount) > MONEY_PLACES:
            return False, "Amount cannot have more than 2 decimal places"

        return True, None


class VolumeValidator:
    """Meter reading / liter quantity validation"""

    @staticmethod
    def validate(
        value: Decimal,
        max_value: Decimal = MAX_METER_READING,
    ) -> tuple[bool, str | None]:
        """
        Validate a non-negative volume with at most 3 decimal places.

        Returns:
            Tuple of (is_valid, error_message)
        """
        if value < 0:
            return False, "Value cannot be negative"

        if value > max_value:
            return False, f"Value cannot exceed {max_value}"

        if _decimal_places(value) > VOLUME_PLACES:
            return False, "Value cannot have more than 3 decimal places"

        return True, None


class TextSanitizer:
    """Text sanitization for safe storage"""

    @staticmethod
    def sanitize(text: str | None, max_length: int = 1000) -> str:
        """
        Sanitize text input for safe storage.

        Note: This does NOT HTML escape - that should be done at display time.
        This function only:
        - Trims whitespace
        - Removes null bytes and control characters
        - Collapses repeated spaces
        - Enforces max length
        """
        if not text:
            return ""

        sanitized = _CONTROL_CHARS_RE.sub("", text.strip())
        sanitized = _MULTI_SPACE_RE.sub(" ", sanitized)
        return sanitized[:max_length]


# Pydantic field validators for reuse
def amount_validator(v: Any) -> Decimal:
    """Pydantic field validator for payment amounts"""
    amount = to_decimal(v)
    is_valid, error = AmountValidator.validate(amount)
    if not is_valid:
        raise ValueError(error)
    return amount


def volume_validator(v: Any) -> Decimal | None:
    """Pydantic field validator for optional readings / quantities"""
    if v is None:
        return None
    volume = to_decimal(v)
    is_valid, error = VolumeValidator.validate(volume)
    if not is_valid:
        raise ValueError(error)
    return volume


def sanitized_text_validator(v: str | None, max_length: int = 1000) -> str | None:
    """Pydantic field validator for free text"""
    if v is None:
        return None
    return TextSanitizer.sanitize(v, max_length=max_length)
