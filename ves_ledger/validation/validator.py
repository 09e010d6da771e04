"""
Input Validation for Layer Operations

A non-positive amount or rate reaching the layer engine is a caller bug,
not a recoverable state. Validation turns such input into a typed error
BEFORE anything is read or written.

IMPORTANT: Validation NEVER silently fixes input.
No clamping, no absolute values, no default rates.
"""

from decimal import Decimal, InvalidOperation
from typing import Union

Number = Union[Decimal, int, float, str]


class LayerValidationError(ValueError):
    """Base class for rejected layer-operation input."""

    error_code = "invalid_input"


class InvalidAmountError(LayerValidationError):
    """Inflow or outflow amount is not a positive, finite number."""

    error_code = "invalid_amount"


class InvalidRateError(LayerValidationError):
    """Exchange rate is not a positive, finite number."""

    error_code = "invalid_rate"


class InvalidAccountError(LayerValidationError):
    """Account identifier is missing or blank."""

    error_code = "invalid_account"


def to_decimal(value: Number) -> Decimal:
    """
    Convert to Decimal without binary-float noise.

    Floats go through str() so 0.1 becomes Decimal('0.1'),
    not Decimal('0.1000000000000000055511151231257827...').
    """
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("bool is not a number")
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def _positive(value: Number, error_cls: type[LayerValidationError], label: str) -> Decimal:
    try:
        number = to_decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise error_cls(f"{label} must be a number, got {value!r}")

    if not number.is_finite():
        raise error_cls(f"{label} must be finite, got {value!r}")
    if number <= 0:
        raise error_cls(f"{label} must be greater than 0, got {value!r}")
    return number


def validate_amount(value: Number, label: str = "amount_ves") -> Decimal:
    """Return the amount as Decimal or raise InvalidAmountError."""
    return _positive(value, InvalidAmountError, label)


def validate_rate(value: Number, label: str = "exchange_rate") -> Decimal:
    """Return the rate as Decimal or raise InvalidRateError."""
    return _positive(value, InvalidRateError, label)


def validate_account_id(value: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidAccountError(f"bank_account_id must be a non-empty string, got {value!r}")
    return value.strip()
