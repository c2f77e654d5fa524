"""
Error Classification

Every failure surfaced by the transfer pipeline is one of the classes below.
Each carries an ErrorCategory and a recoverable flag so that retry wrappers
and the HTTP layer can decide what to do without string matching.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class ErrorCategory(str, Enum):
    """Categories of errors for retry and reporting decisions."""

    VALIDATION = "validation"         # Bad user input, resolved locally
    PREFLIGHT = "preflight"           # On-ledger precondition not met
    FETCH = "fetch"                   # Ledger read failed
    SIGNER = "signer"                 # Passkey portal / authenticator
    SUBMISSION = "submission"         # Ledger rejected or failed to accept tx
    TIMEOUT = "timeout"               # Confirmation never arrived
    BUSY = "busy"                     # Another action holds the wallet
    CONFIGURATION = "configuration"   # Missing or inconsistent settings
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = True
    suggested_action: Optional[str] = None
    signature: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


class SmartPayError(Exception):
    """Base class for all domain errors."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = False
    code: str = "error"

    def __init__(
        self,
        message: str,
        *,
        logs: Optional[Sequence[str]] = None,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.logs: List[str] = list(logs or [])
        self.context = context or ErrorContext(
            category=self.category,
            recoverable=self.recoverable,
        )

    def __str__(self) -> str:
        if not self.logs:
            return self.message
        return self.message + "\n\nProgram logs:\n" + "\n".join(self.logs)


class RecoverableError(SmartPayError):
    """Transient failures that a retry may clear."""

    recoverable = True


class UnrecoverableError(SmartPayError):
    """Failures that a blind retry cannot fix."""

    recoverable = False


# Validation (local, never retried)
class InvalidAddress(UnrecoverableError):
    category = ErrorCategory.VALIDATION
    code = "invalid_address"


class InvalidAmount(UnrecoverableError):
    category = ErrorCategory.VALIDATION
    code = "invalid_amount"


class InvalidMemo(UnrecoverableError):
    category = ErrorCategory.VALIDATION
    code = "invalid_memo"


class InvalidMessage(UnrecoverableError):
    category = ErrorCategory.VALIDATION
    code = "invalid_message"


class InsufficientBalance(UnrecoverableError):
    """Requested amount exceeds what the sender holds."""

    category = ErrorCategory.VALIDATION
    code = "insufficient_balance"

    def __init__(
        self,
        message: str = "Insufficient balance",
        required: Optional[str] = None,
        available: Optional[str] = None,
        token: Optional[str] = None,
    ):
        super().__init__(
            message,
            context=ErrorContext(
                category=self.category,
                recoverable=False,
                suggested_action="Add funds to the wallet or reduce the amount",
                details={"required": required, "available": available, "token": token},
            ),
        )
        self.required = required
        self.available = available


# On-ledger preconditions
class PreflightFailed(UnrecoverableError):
    """A live ledger read showed the transfer cannot succeed."""

    category = ErrorCategory.PREFLIGHT
    code = "preflight_failed"

    def __init__(self, reason: str, detail: Optional[str] = None):
        message = reason if not detail else f"{reason}\n{detail}"
        super().__init__(message)
        self.reason = reason
        self.detail = detail


class TransactionTooLarge(UnrecoverableError):
    category = ErrorCategory.PREFLIGHT
    code = "transaction_too_large"

    def __init__(self, size: int, limit: int):
        super().__init__(f"Transaction is {size} bytes, above the {limit} byte limit")
        self.size = size
        self.limit = limit


# Reads
class FetchError(RecoverableError):
    category = ErrorCategory.FETCH
    code = "fetch_failed"


class BalanceUnknown(FetchError):
    """The cached balance was not loaded when a send was requested."""

    code = "balance_unknown"


# Signer side (terminal for automatic retry)
class SignerError(UnrecoverableError):
    category = ErrorCategory.SIGNER
    code = "signer_error"


class UserRejected(SignerError):
    code = "user_rejected"

    def __init__(self, message: str = "The request was rejected in the authenticator"):
        super().__init__(message)


class AuthenticatorError(SignerError):
    code = "authenticator_error"


# Submission
class SubmissionFailed(RecoverableError):
    """The ledger refused or failed the transaction."""

    category = ErrorCategory.SUBMISSION
    code = "submission_failed"

    def __init__(
        self,
        message: str,
        *,
        logs: Optional[Sequence[str]] = None,
        signature: Optional[str] = None,
    ):
        super().__init__(
            message,
            logs=logs,
            context=ErrorContext(
                category=self.category,
                recoverable=True,
                signature=signature,
            ),
        )
        self.signature = signature


class ConfirmationTimeout(RecoverableError):
    category = ErrorCategory.TIMEOUT
    code = "confirmation_timeout"

    def __init__(self, signature: str, timeout_s: float):
        super().__init__(
            f"Transaction {signature} was not confirmed within {timeout_s:.0f}s",
            context=ErrorContext(
                category=self.category,
                recoverable=True,
                signature=signature,
                suggested_action="Check the explorer before sending again",
            ),
        )
        self.signature = signature


class SubmissionInProgress(UnrecoverableError):
    category = ErrorCategory.BUSY
    code = "submission_in_progress"

    def __init__(self, wallet: str):
        super().__init__(f"Another action is already running for {wallet}")
        self.wallet = wallet


class ConfigurationError(UnrecoverableError):
    category = ErrorCategory.CONFIGURATION
    code = "configuration_error"


def is_retryable(error: BaseException) -> bool:
    """Default retry predicate for orchestrated submissions.

    Signer-side failures and bad input are terminal. Everything else,
    preflight and the live balance check included, goes back through the
    retry loop.
    """
    if isinstance(error, SignerError):
        return False
    if isinstance(error, SmartPayError) and error.category == ErrorCategory.VALIDATION:
        return isinstance(error, InsufficientBalance)
    return True


def describe_error(error: BaseException) -> str:
    """Render an error for a user or operator, ledger logs included."""
    if isinstance(error, SmartPayError):
        return str(error)
    message = str(error) or error.__class__.__name__
    logs = getattr(error, "logs", None)
    if isinstance(logs, (list, tuple)) and logs:
        return message + "\n\nProgram logs:\n" + "\n".join(str(line) for line in logs)
    return message
