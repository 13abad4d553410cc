"""
Error Classification

Defines error types for transaction submission.
Errors are classified as recoverable (the client retries internally, within
bounded limits) or unrecoverable (surfaced to the caller as-is).
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

import httpx


class ErrorCategory(str, Enum):
    """Categories of errors for recovery decisions."""

    VALIDATION = "validation"                  # Malformed intent, caught before any network call
    NETWORK = "network"                        # Timeouts, connection resets, 5xx
    RATE_LIMIT = "rate_limit"                  # HTTP 429 from the node
    SEQUENCE_MISMATCH = "sequence_mismatch"    # Stale or duplicate sequence number
    REJECTED = "rejected"                      # Node refused the transaction (4xx)
    CHAIN_EXECUTION = "chain_execution"        # Included, but the contract aborted
    EXPIRATION = "expiration"                  # No confirmation before expiration
    SIGNING = "signing"                        # Signer capability failed
    NOT_FOUND = "not_found"                    # Resource, book or order absent on chain
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Additional context about an error."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = True
    retry_after_seconds: Optional[float] = None
    suggested_action: Optional[str] = None
    http_status: Optional[int] = None
    error_code: Optional[str] = None
    tx_hash: Optional[str] = None
    sequence_number: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)


class LaminarError(Exception):
    """Base class for every error raised by the client."""

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(self, message: str, context: Optional[ErrorContext] = None):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext(category=self.category)


class RecoverableError(LaminarError):
    """
    Base class for errors that can be retried.

    These errors are transient:
    - Network issues
    - Rate limits
    - Sequence number desync
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        retry_after: Optional[float] = None,
        context: Optional[ErrorContext] = None,
    ):
        self.category = category
        self.retry_after = retry_after
        super().__init__(
            message,
            context or ErrorContext(
                category=category,
                recoverable=True,
                retry_after_seconds=retry_after,
            ),
        )


class UnrecoverableError(LaminarError):
    """
    Base class for errors that must not be retried automatically.

    Retrying the identical transaction would fail identically, or the outcome
    is unknown and a blind retry could duplicate the action.
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        context: Optional[ErrorContext] = None,
    ):
        self.category = category
        super().__init__(
            message,
            context or ErrorContext(category=category, recoverable=False),
        )


# Specific recoverable errors
class NetworkError(RecoverableError):
    """Transport failure talking to the node (timeout, reset, 5xx)."""

    def __init__(
        self,
        message: str = "Network error",
        http_status: Optional[int] = None,
        attempts: Optional[int] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.NETWORK,
            context=ErrorContext(
                category=ErrorCategory.NETWORK,
                recoverable=True,
                http_status=http_status,
                suggested_action="Retry with exponential backoff",
                details={"attempts": attempts} if attempts is not None else {},
            ),
        )
        self.http_status = http_status
        self.attempts = attempts


class RateLimitError(NetworkError):
    """Node answered HTTP 429."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        retry_after: Optional[float] = None,
        attempts: Optional[int] = None,
    ):
        super().__init__(message, http_status=429, attempts=attempts)
        self.category = ErrorCategory.RATE_LIMIT
        self.retry_after = retry_after
        self.context.category = ErrorCategory.RATE_LIMIT
        self.context.retry_after_seconds = retry_after
        self.context.suggested_action = "Wait before retrying"


class SequenceMismatchError(RecoverableError):
    """The chain rejected the transaction because its sequence number is stale or reused."""

    def __init__(
        self,
        message: str = "Sequence number mismatch",
        error_code: Optional[str] = None,
        sequence_number: Optional[int] = None,
        http_status: Optional[int] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.SEQUENCE_MISMATCH,
            context=ErrorContext(
                category=ErrorCategory.SEQUENCE_MISMATCH,
                recoverable=True,
                http_status=http_status,
                error_code=error_code,
                sequence_number=sequence_number,
                suggested_action="Resync the sequence number and resubmit",
            ),
        )
        self.error_code = error_code
        self.sequence_number = sequence_number


# Specific unrecoverable errors
class ValidationError(UnrecoverableError):
    """Intent is malformed or semantically invalid; no network call was made."""

    def __init__(self, message: str, field_name: Optional[str] = None, value: Any = None):
        super().__init__(
            message,
            category=ErrorCategory.VALIDATION,
            context=ErrorContext(
                category=ErrorCategory.VALIDATION,
                recoverable=False,
                suggested_action="Fix the request parameters",
                details={"field": field_name, "value": value} if field_name else {},
            ),
        )
        self.field_name = field_name


class NodeRejectedError(UnrecoverableError):
    """The node refused the request with a non-retryable 4xx."""

    def __init__(
        self,
        message: str,
        http_status: Optional[int] = None,
        error_code: Optional[str] = None,
        vm_error_code: Optional[int] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.REJECTED,
            context=ErrorContext(
                category=ErrorCategory.REJECTED,
                recoverable=False,
                http_status=http_status,
                error_code=error_code,
                details={"vm_error_code": vm_error_code} if vm_error_code is not None else {},
            ),
        )
        self.http_status = http_status
        self.error_code = error_code
        self.vm_error_code = vm_error_code


class ChainExecutionError(UnrecoverableError):
    """Transaction was included but the contract logic aborted it."""

    def __init__(
        self,
        message: str = "Transaction execution failed",
        tx_hash: Optional[str] = None,
        vm_status: Optional[str] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.CHAIN_EXECUTION,
            context=ErrorContext(
                category=ErrorCategory.CHAIN_EXECUTION,
                recoverable=False,
                tx_hash=tx_hash,
                suggested_action="Review order parameters and account balances",
                details={"vm_status": vm_status} if vm_status else {},
            ),
        )
        self.tx_hash = tx_hash
        self.vm_status = vm_status


class ExpirationError(UnrecoverableError):
    """
    No confirmation was observed before the transaction expired.

    The outcome is indeterminate: query account or order state before retrying.
    """

    def __init__(
        self,
        message: str = "Transaction expired before confirmation",
        tx_hash: Optional[str] = None,
        expiration_timestamp_secs: Optional[int] = None,
    ):
        super().__init__(
            message,
            category=ErrorCategory.EXPIRATION,
            context=ErrorContext(
                category=ErrorCategory.EXPIRATION,
                recoverable=False,
                tx_hash=tx_hash,
                suggested_action="Query order state before resubmitting",
                details={"expiration_timestamp_secs": expiration_timestamp_secs},
            ),
        )
        self.tx_hash = tx_hash


class SigningError(UnrecoverableError):
    """The signer could not produce a signature."""

    def __init__(self, message: str = "Signing failed"):
        super().__init__(message, category=ErrorCategory.SIGNING)


class NotFoundError(UnrecoverableError):
    """A resource, order book or order the caller asked for does not exist."""

    def __init__(self, message: str = "Not found", resource: Optional[str] = None):
        super().__init__(
            message,
            category=ErrorCategory.NOT_FOUND,
            context=ErrorContext(
                category=ErrorCategory.NOT_FOUND,
                recoverable=False,
                details={"resource": resource} if resource else {},
            ),
        )
        self.resource = resource


class SequencerError(LaminarError):
    """Misuse of the sequencer contract (e.g. releasing a number twice)."""


def classify_error(error: BaseException) -> ErrorContext:
    """
    Classify an exception and return its error context.

    Known client errors carry their own context; httpx failures are mapped by
    type, everything else by message patterns.
    """
    if isinstance(error, LaminarError):
        return error.context

    if isinstance(error, httpx.TimeoutException):
        return ErrorContext(
            category=ErrorCategory.NETWORK,
            recoverable=True,
            suggested_action="Retry with longer timeout",
        )

    if isinstance(error, httpx.TransportError):
        return ErrorContext(
            category=ErrorCategory.NETWORK,
            recoverable=True,
            suggested_action="Check network connectivity",
        )

    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        if status == 429:
            return ErrorContext(
                category=ErrorCategory.RATE_LIMIT,
                recoverable=True,
                http_status=status,
                suggested_action="Wait before retrying",
            )
        if status >= 500:
            return ErrorContext(
                category=ErrorCategory.NETWORK,
                recoverable=True,
                http_status=status,
            )
        return ErrorContext(
            category=ErrorCategory.REJECTED,
            recoverable=False,
            http_status=status,
        )

    message = str(error).lower()

    sequence_patterns = [
        "sequence_number_too_old",
        "sequence_number_too_new",
        "sequence number",
        "invalid_transaction_update",
    ]
    if any(p in message for p in sequence_patterns):
        return ErrorContext(
            category=ErrorCategory.SEQUENCE_MISMATCH,
            recoverable=True,
            suggested_action="Resync the sequence number and resubmit",
        )

    network_patterns = [
        "connection",
        "network",
        "unreachable",
        "refused",
        "timed out",
        "timeout",
    ]
    if any(p in message for p in network_patterns):
        return ErrorContext(
            category=ErrorCategory.NETWORK,
            recoverable=True,
            suggested_action="Check network connectivity",
        )

    return ErrorContext(
        category=ErrorCategory.UNKNOWN,
        recoverable=False,
    )
