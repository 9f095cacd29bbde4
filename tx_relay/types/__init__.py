"""
Type definitions for TX Relay
"""

from .result import RpcResult, RpcOutcome, SigningResult, SigningStatus
from .outbox import (
    FeePreset,
    PendingTransaction,
    FailedTransaction,
    OutboxEvent,
    OutboxEventType,
    RunReport,
)
from .status import ConfirmationStatus, StatusEvent

__all__ = [
    # Results
    "RpcResult",
    "RpcOutcome",
    "SigningResult",
    "SigningStatus",
    # Outbox
    "FeePreset",
    "PendingTransaction",
    "FailedTransaction",
    "OutboxEvent",
    "OutboxEventType",
    "RunReport",
    # Confirmation
    "ConfirmationStatus",
    "StatusEvent",
]
