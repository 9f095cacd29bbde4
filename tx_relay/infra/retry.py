"""
Retry Logic Helper Module

Provides the inter-run backoff policy for the outbox worker and structured
logging with correlation IDs for transaction tracing.
"""

import logging
import uuid
import contextvars
from enum import Enum
from typing import Optional

from ..errors import ConfigurationError, TxRelayError

logger = logging.getLogger(__name__)

# Context variable for correlation ID (task-local under asyncio)
_correlation_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    'correlation_id', default=None
)


def generate_correlation_id() -> str:
    """Generate a unique correlation ID for transaction tracing."""
    return uuid.uuid4().hex[:12]


def get_correlation_id() -> Optional[str]:
    """Get the current correlation ID from context."""
    return _correlation_id.get()


def set_correlation_id(correlation_id: Optional[str]) -> contextvars.Token:
    """Set the correlation ID in context. Returns token for reset."""
    return _correlation_id.set(correlation_id)


class CorrelationContext:
    """
    Context manager for correlation ID scoping.

    Usage:
        with CorrelationContext("outbox") as cid:
            log_with_correlation(logging.INFO, "Submitting", "submit")
    """

    def __init__(self, prefix: Optional[str] = None):
        """
        Initialize correlation context.

        Args:
            prefix: Optional prefix for the correlation ID (e.g., "outbox", "watch")
        """
        self.correlation_id = generate_correlation_id()
        if prefix:
            self.correlation_id = f"{prefix}_{self.correlation_id}"
        self._token: Optional[contextvars.Token] = None

    def __enter__(self) -> str:
        self._token = set_correlation_id(self.correlation_id)
        return self.correlation_id

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self._token is not None:
            _correlation_id.reset(self._token)


class CorrelationIdFilter(logging.Filter):
    """Stamp records with the active correlation ID ("-" outside any scope)"""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "correlation_id", None) is None:
            record.correlation_id = get_correlation_id() or "-"
        return True


def log_with_correlation(
    level: int,
    message: str,
    operation_name: str,
    attempt: Optional[int] = None,
    max_retries: Optional[int] = None,
    **extra
):
    """
    Log message with correlation ID and structured context.

    Args:
        level: Logging level (logging.INFO, logging.WARNING, etc.)
        message: Log message
        operation_name: Name of the operation being executed
        attempt: Current attempt number (1-indexed)
        max_retries: Maximum number of retries
        **extra: Additional context fields
    """
    cid = get_correlation_id()

    parts = []
    if cid:
        parts.append(f"[{cid}]")
    parts.append(f"[{operation_name}]")
    if attempt is not None and max_retries is not None:
        parts.append(f"[{attempt}/{max_retries}]")
    parts.append(message)

    extra_context = {
        "correlation_id": cid,
        "operation": operation_name,
        "attempt": attempt,
        "max_retries": max_retries,
        **extra
    }

    logger.log(level, " ".join(parts), extra=extra_context)


def is_recoverable(error: Exception) -> bool:
    """Whether a later attempt could succeed where this one failed"""
    if isinstance(error, TxRelayError):
        return error.recoverable
    return False


class BackoffPolicy(Enum):
    """Delay growth between worker runs that hit transient failures"""
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"

    @classmethod
    def parse(cls, name: str) -> "BackoffPolicy":
        try:
            return cls(name.lower())
        except ValueError:
            raise ConfigurationError.invalid("OUTBOX_BACKOFF", f"unknown policy {name!r}") from None


def backoff_delay(
    policy: BackoffPolicy,
    base_delay: float,
    failure_streak: int,
    max_delay: float,
) -> float:
    """
    Delay before the next run

    Args:
        policy: Growth policy
        base_delay: Delay after a clean run
        failure_streak: Consecutive runs that hit transient failures
        max_delay: Upper bound

    Returns:
        base (streak 0); then fixed: base, linear: base * (streak + 1),
        exponential: base * 2 ** streak; capped at max_delay
    """
    if failure_streak <= 0 or policy == BackoffPolicy.FIXED:
        delay = base_delay
    elif policy == BackoffPolicy.LINEAR:
        delay = base_delay * (failure_streak + 1)
    else:
        # Cap the exponent, the result is clamped anyway
        delay = base_delay * (2 ** min(failure_streak, 32))
    return min(delay, max_delay)
