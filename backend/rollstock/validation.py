from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

from .errors import ValidationError
from .models import WIDTH_OPTIONS


LENGTH_QUANT = Decimal("0.01")
MONEY_QUANT = Decimal("0.01")
RATE_QUANT = Decimal("0.0001")

# Maximum single roll length in meters; anything longer is a data entry error
MAX_ROLL_LENGTH = Decimal("100000")


def to_decimal(value: Any, field: str) -> Decimal:
    """
    Strict numeric coercion.

    Accepts int, float, Decimal and plain numeric strings. Rejects bools,
    blanks and scientific notation strings ("1e5"), like the integer rules
    for API payloads.
    """
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", field=field)
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be a number", field=field)
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain number (scientific notation not allowed)", field=field)
        try:
            result = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number", field=field)
    else:
        raise ValidationError(f"{field} must be a number", field=field)

    if not result.is_finite():
        raise ValidationError(f"{field} must be a finite number", field=field)
    return result


def quantize(value: Decimal, quant: Decimal) -> Decimal:
    return value.quantize(quant, rounding=ROUND_HALF_UP)


def coerce_width(value: Any) -> int:
    if isinstance(value, bool):
        raise ValidationError("width_inches must be an integer", field="width_inches")
    try:
        width = int(str(value).strip()) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        raise ValidationError("width_inches must be an integer", field="width_inches")
    if isinstance(value, float) and value != width:
        raise ValidationError("width_inches must be an integer", field="width_inches")
    if width not in WIDTH_OPTIONS:
        options = ", ".join(str(w) for w in WIDTH_OPTIONS)
        raise ValidationError(
            f"width_inches must be one of {options} (got {value})", field="width_inches"
        )
    return width


def coerce_length(value: Any, field: str = "length", *, allow_zero: bool = False) -> Decimal:
    """Meters, 2 decimals. Positive unless allow_zero."""
    length = quantize(to_decimal(value, field), LENGTH_QUANT)
    if length < 0 or (length == 0 and not allow_zero):
        qualifier = "non-negative" if allow_zero else "positive"
        raise ValidationError(f"{field} must be {qualifier}", field=field)
    if length > MAX_ROLL_LENGTH:
        raise ValidationError(f"{field} cannot exceed {MAX_ROLL_LENGTH} meters", field=field)
    return length


def coerce_money(value: Any, field: str, *, quant: Decimal = MONEY_QUANT, default=None) -> Decimal:
    """Non-negative amount; None -> default when one is given."""
    if value is None and default is not None:
        return quantize(Decimal(default), quant)
    amount = quantize(to_decimal(value, field), quant)
    if amount < 0:
        raise ValidationError(f"{field} cannot be negative", field=field)
    return amount


def coerce_positive_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"{field} must be a positive integer", field=field)
    if isinstance(value, float) and not value.is_integer():
        raise ValidationError(f"{field} must be an integer, not a decimal", field=field)
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a positive integer", field=field)
    if number <= 0:
        raise ValidationError(f"{field} must be a positive integer", field=field)
    return number


def require_reference(value: Any, field: str, max_length: int = 64) -> str:
    """Non-empty opaque reference such as an order line or shipment id."""
    if value is None:
        raise ValidationError(f"{field} is required", field=field)
    ref = str(value).strip()
    if not ref:
        raise ValidationError(f"{field} is required", field=field)
    if len(ref) > max_length:
        raise ValidationError(f"{field} cannot exceed {max_length} characters", field=field)
    return ref


def optional_text(value: Any, field: str, max_length: int = 255) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field} cannot exceed {max_length} characters", field=field)
    return text
