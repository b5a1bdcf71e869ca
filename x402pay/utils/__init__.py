"""Utility functions for x402pay."""

from x402pay.utils.exceptions import (
    EnvelopeDecodeError,
    ErrorCategory,
    X402Error,
    X402ErrorCode,
    is_user_rejection,
    sanitize_error_message,
    wrap_wallet_error,
)
from x402pay.utils.validation import (
    format_units,
    to_atomic_units,
    validate_amount,
    validate_recipient,
)

__all__ = [
    "EnvelopeDecodeError",
    "ErrorCategory",
    "X402Error",
    "X402ErrorCode",
    "is_user_rejection",
    "sanitize_error_message",
    "wrap_wallet_error",
    "format_units",
    "to_atomic_units",
    "validate_amount",
    "validate_recipient",
]
