"""
Error Recovery Module

Error taxonomy for the transfer pipeline and the bounded
retry-with-backoff primitive used by submissions.
"""

from .errors import (
    ErrorCategory,
    ErrorContext,
    SmartPayError,
    RecoverableError,
    UnrecoverableError,
    InvalidAddress,
    InvalidAmount,
    InvalidMemo,
    InvalidMessage,
    InsufficientBalance,
    PreflightFailed,
    TransactionTooLarge,
    FetchError,
    BalanceUnknown,
    SignerError,
    UserRejected,
    AuthenticatorError,
    SubmissionFailed,
    ConfirmationTimeout,
    SubmissionInProgress,
    ConfigurationError,
    describe_error,
    is_retryable,
)
from .retry import RetryConfig, retry_with_backoff

__all__ = [
    # Errors
    "ErrorCategory",
    "ErrorContext",
    "SmartPayError",
    "RecoverableError",
    "UnrecoverableError",
    "InvalidAddress",
    "InvalidAmount",
    "InvalidMemo",
    "InvalidMessage",
    "InsufficientBalance",
    "PreflightFailed",
    "TransactionTooLarge",
    "FetchError",
    "BalanceUnknown",
    "SignerError",
    "UserRejected",
    "AuthenticatorError",
    "SubmissionFailed",
    "ConfirmationTimeout",
    "SubmissionInProgress",
    "ConfigurationError",
    "describe_error",
    "is_retryable",
    # Retry
    "RetryConfig",
    "retry_with_backoff",
]
