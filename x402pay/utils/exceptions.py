"""
Exception hierarchy and error classification for x402pay.

Provides:
- X402Error with a stable error code taxonomy
- Error categorization (validation, wallet, network)
- Wrapping of raw wallet/RPC failures at builder boundaries
- Safe error message formatting (no sensitive data leak)
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Any

from loguru import logger


class ErrorCategory(Enum):
    """Error categories for classification."""
    VALIDATION = "validation"
    WALLET = "wallet"
    CHAIN = "chain"
    NETWORK = "network"
    PAYMENT = "payment"
    TIMEOUT = "timeout"
    FATAL = "fatal"


class X402ErrorCode(str, Enum):
    """Stable error codes surfaced to callers."""
    WALLET_NOT_FOUND = "WALLET_NOT_FOUND"
    WALLET_NOT_CONNECTED = "WALLET_NOT_CONNECTED"
    WALLET_NOT_SUPPORTED = "WALLET_NOT_SUPPORTED"
    WALLET_CONNECTION_REJECTED = "WALLET_CONNECTION_REJECTED"
    WALLET_CONNECTION_FAILED = "WALLET_CONNECTION_FAILED"
    WALLET_CONNECTION_TIMEOUT = "WALLET_CONNECTION_TIMEOUT"
    CHAIN_NOT_SUPPORTED = "CHAIN_NOT_SUPPORTED"
    CHAIN_SWITCH_REJECTED = "CHAIN_SWITCH_REJECTED"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    SIGNATURE_REJECTED = "SIGNATURE_REJECTED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    PAYMENT_TIMEOUT = "PAYMENT_TIMEOUT"
    NETWORK_ERROR = "NETWORK_ERROR"
    INVALID_CONFIG = "INVALID_CONFIG"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_RECIPIENT = "INVALID_RECIPIENT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


_CATEGORY_BY_CODE: dict[X402ErrorCode, ErrorCategory] = {
    X402ErrorCode.WALLET_NOT_FOUND: ErrorCategory.WALLET,
    X402ErrorCode.WALLET_NOT_CONNECTED: ErrorCategory.WALLET,
    X402ErrorCode.WALLET_NOT_SUPPORTED: ErrorCategory.WALLET,
    X402ErrorCode.WALLET_CONNECTION_REJECTED: ErrorCategory.WALLET,
    X402ErrorCode.WALLET_CONNECTION_FAILED: ErrorCategory.WALLET,
    X402ErrorCode.WALLET_CONNECTION_TIMEOUT: ErrorCategory.TIMEOUT,
    X402ErrorCode.CHAIN_NOT_SUPPORTED: ErrorCategory.CHAIN,
    X402ErrorCode.CHAIN_SWITCH_REJECTED: ErrorCategory.CHAIN,
    X402ErrorCode.INSUFFICIENT_BALANCE: ErrorCategory.PAYMENT,
    X402ErrorCode.SIGNATURE_REJECTED: ErrorCategory.WALLET,
    X402ErrorCode.PAYMENT_FAILED: ErrorCategory.PAYMENT,
    X402ErrorCode.PAYMENT_TIMEOUT: ErrorCategory.TIMEOUT,
    X402ErrorCode.NETWORK_ERROR: ErrorCategory.NETWORK,
    X402ErrorCode.INVALID_CONFIG: ErrorCategory.VALIDATION,
    X402ErrorCode.INVALID_AMOUNT: ErrorCategory.VALIDATION,
    X402ErrorCode.INVALID_RECIPIENT: ErrorCategory.VALIDATION,
    X402ErrorCode.UNKNOWN_ERROR: ErrorCategory.FATAL,
}


class X402Error(Exception):
    """Base exception for all x402pay errors."""

    def __init__(
        self,
        message: str,
        code: X402ErrorCode | str = X402ErrorCode.UNKNOWN_ERROR,
        details: dict[str, Any] | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = X402ErrorCode(code)
        self.category = _CATEGORY_BY_CODE[self.code]
        self.details = details or {}
        if cause is not None:
            self.details.setdefault("cause", cause)
            self.__cause__ = cause

    def to_dict(self) -> dict[str, Any]:
        details = {k: (str(v) if isinstance(v, BaseException) else v) for k, v in self.details.items()}
        return {
            "error": self.code.value,
            "message": self.message,
            "category": self.category.value,
            "details": details,
        }

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"


class EnvelopeDecodeError(ValueError):
    """Raised when an x402 header cannot be decoded into a JSON object."""


_REJECTION_MARKERS = ("user rejected", "rejected", "denied", "cancelled", "canceled")


def is_user_rejection(exc: BaseException) -> bool:
    """True when a wallet error means the user declined the request."""
    if getattr(exc, "code", None) == 4001:
        return True
    text = str(exc).lower()
    return any(marker in text for marker in _REJECTION_MARKERS)


def wrap_wallet_error(
    exc: BaseException,
    *,
    action: str,
    rejected_code: X402ErrorCode = X402ErrorCode.SIGNATURE_REJECTED,
    fallback_code: X402ErrorCode = X402ErrorCode.PAYMENT_FAILED,
) -> X402Error:
    """
    Re-wrap a raw wallet or RPC error into the x402pay taxonomy.

    X402Error instances pass through unchanged. The original exception is
    retained as the cause.
    """
    if isinstance(exc, X402Error):
        return exc
    if is_user_rejection(exc):
        logger.warning(f"{action}: rejected by user")
        return X402Error(f"{action} rejected by user", rejected_code, cause=exc)
    message = sanitize_error_message(str(exc)) or type(exc).__name__
    logger.warning(f"{action} failed: {message}")
    return X402Error(f"{action} failed: {message}", fallback_code, cause=exc)


_SENSITIVE_PATTERNS = [
    re.compile(r"(api[_-]?key|token|secret|password|auth)[=:]\s*['\"]?([^\s'\"]+)['\"]?", re.IGNORECASE),
    re.compile(r"bearer\s+[a-zA-Z0-9\-._~+/]+=*", re.IGNORECASE),
    re.compile(r"(seed|mnemonic|private[_ ]?key)\s*[=:]\s*\S+", re.IGNORECASE),
]


def sanitize_error_message(message: str, replacement: str = "[REDACTED]") -> str:
    """Remove sensitive information from error messages."""
    sanitized = message
    for pattern in _SENSITIVE_PATTERNS:
        sanitized = pattern.sub(replacement, sanitized)
    return sanitized
