"""
Confirmation status definitions
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ConfirmationStatus(Enum):
    """Commitment levels of a submitted transaction, plus terminal outcomes"""
    SUBMITTED = "submitted"
    PROCESSED = "processed"
    CONFIRMED = "confirmed"
    FINALIZED = "finalized"
    FAILED = "failed"
    TIMEOUT = "timeout"

    @property
    def rank(self) -> int:
        """Position on the happy path; terminal failures rank above everything"""
        return _RANKS[self]

    @property
    def is_terminal(self) -> bool:
        return self in (ConfirmationStatus.FINALIZED, ConfirmationStatus.FAILED, ConfirmationStatus.TIMEOUT)

    @classmethod
    def from_rpc(cls, value: Optional[str]) -> Optional["ConfirmationStatus"]:
        """Map an RPC `confirmationStatus` string to a commitment level"""
        if value in ("processed", "confirmed", "finalized"):
            return cls(value)
        return None


_RANKS = {
    ConfirmationStatus.SUBMITTED: 0,
    ConfirmationStatus.PROCESSED: 1,
    ConfirmationStatus.CONFIRMED: 2,
    ConfirmationStatus.FINALIZED: 3,
    ConfirmationStatus.FAILED: 4,
    ConfirmationStatus.TIMEOUT: 4,
}


@dataclass(frozen=True)
class StatusEvent:
    """One emitted status for a signature"""
    signature: str
    status: ConfirmationStatus
    error: Optional[Any] = None
    slot: Optional[int] = None

    def __str__(self) -> str:
        sig_display = f"{self.signature[:16]}..." if len(self.signature) > 16 else self.signature
        if self.error is not None:
            return f"StatusEvent({self.status.value}, {sig_display}, error={self.error})"
        return f"StatusEvent({self.status.value}, {sig_display})"
