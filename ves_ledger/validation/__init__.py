from ves_ledger.validation.validator import (
    InvalidAccountError,
    InvalidAmountError,
    InvalidRateError,
    LayerValidationError,
    to_decimal,
    validate_account_id,
    validate_amount,
    validate_rate,
)

__all__ = [
    "InvalidAccountError",
    "InvalidAmountError",
    "InvalidRateError",
    "LayerValidationError",
    "to_decimal",
    "validate_account_id",
    "validate_amount",
    "validate_rate",
]
