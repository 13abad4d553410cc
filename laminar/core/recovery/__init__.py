"""
Error classification and retry policy for the Laminar client.
"""

from .errors import (
    ChainExecutionError,
    ErrorCategory,
    ErrorContext,
    ExpirationError,
    LaminarError,
    NetworkError,
    NodeRejectedError,
    NotFoundError,
    RateLimitError,
    RecoverableError,
    SequenceMismatchError,
    SequencerError,
    SigningError,
    UnrecoverableError,
    ValidationError,
    classify_error,
)
from .strategies import RetryConfig, RetryStrategy

__all__ = [
    # Errors
    "ErrorCategory",
    "ErrorContext",
    "LaminarError",
    "RecoverableError",
    "UnrecoverableError",
    "NetworkError",
    "RateLimitError",
    "SequenceMismatchError",
    "ValidationError",
    "NodeRejectedError",
    "ChainExecutionError",
    "ExpirationError",
    "SigningError",
    "NotFoundError",
    "SequencerError",
    "classify_error",
    # Strategies
    "RetryConfig",
    "RetryStrategy",
]
