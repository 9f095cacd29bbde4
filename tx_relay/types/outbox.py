"""
Outbox type definitions
"""

import time
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, AsyncIterator, Optional


class FeePreset(Enum):
    """
    Priority tiers controlling compute-budget instruction parameters

    value: (micro-lamports per compute unit, compute unit limit)
    """
    NORMAL = (0, 200_000)
    FAST = (500, 250_000)
    EXPRESS = (5_000, 300_000)

    @property
    def micro_lamports_per_cu(self) -> int:
        return self.value[0]

    @property
    def compute_units(self) -> int:
        return self.value[1]

    @classmethod
    def parse(cls, name: str) -> "FeePreset":
        """Resolve preset by (case-insensitive) name"""
        try:
            return cls[name.upper()]
        except KeyError:
            raise ValueError(f"Unknown fee preset: {name}") from None


@dataclass
class PendingTransaction:
    """
    Unit of work in the outbox

    Attributes:
        id: Opaque unique identifier, stable for the life of the row
        to_address: Recipient address (base58)
        amount: Amount in SOL
        memo: Optional memo text
        fee_preset: Priority tier
        created_at: Creation time (epoch seconds), ordering/display only
        retries: Failed submission attempts so far
        signed_tx: Signed transaction bytes, attached on first attempt
        signature: Signature of signed_tx (base58)
    """
    id: str
    to_address: str
    amount: Decimal
    memo: Optional[str] = None
    fee_preset: FeePreset = FeePreset.NORMAL
    created_at: float = field(default_factory=time.time)
    retries: int = 0
    signed_tx: Optional[bytes] = field(default=None, repr=False)
    signature: Optional[str] = None

    @classmethod
    def create(
        cls,
        to_address: str,
        amount: Decimal,
        memo: Optional[str] = None,
        fee_preset: FeePreset = FeePreset.NORMAL,
        tx_id: Optional[str] = None,
    ) -> "PendingTransaction":
        """Create a new pending transaction with a fresh id"""
        return cls(
            id=tx_id or uuid.uuid4().hex,
            to_address=to_address,
            amount=Decimal(str(amount)),
            memo=memo or None,
            fee_preset=fee_preset,
        )

    @property
    def is_signed(self) -> bool:
        return self.signed_tx is not None


@dataclass(frozen=True)
class FailedTransaction:
    """Permanently failed record, kept after removal from the active outbox"""
    id: str
    to_address: str
    amount: Decimal
    memo: Optional[str]
    fee_preset: FeePreset
    created_at: float
    retries: int
    reason: str
    signature: Optional[str] = None
    failed_at: float = field(default_factory=time.time)


class OutboxEventType(Enum):
    """Worker outcome events"""
    SUBMITTED = "submitted"
    RETRY_SCHEDULED = "retry_scheduled"
    PERMANENTLY_FAILED = "permanently_failed"


@dataclass
class OutboxEvent:
    """
    Worker outcome for one row

    Attributes:
        type: Event type
        tx_id: Outbox row id
        signature: Transaction signature when known
        retries: Retry counter after this outcome
        reason: Failure reason (PERMANENTLY_FAILED / RETRY_SCHEDULED)
        statuses: Lazy confirmation status stream (SUBMITTED only)
    """
    type: OutboxEventType
    tx_id: str
    signature: Optional[str] = None
    retries: int = 0
    reason: Optional[str] = None
    statuses: Optional[AsyncIterator[Any]] = field(default=None, repr=False, compare=False)


@dataclass
class RunReport:
    """Summary of one worker run"""
    submitted: int = 0
    retried: int = 0
    failed: int = 0
    skipped_in_flight: int = 0
    # Attempts aborted before an outcome could be recorded
    errors: int = 0

    @property
    def had_transient_failures(self) -> bool:
        return self.retried > 0 or self.errors > 0

    @property
    def processed(self) -> int:
        return self.submitted + self.retried + self.failed
