"""
TX Relay - Resilient Solana transaction submission

Provides:
- Failover JSON-RPC client over an ordered endpoint list
- Durable outbox of pending transfers with a bounded retry counter
- Background worker that drains the outbox
- Confirmation monitor streaming commitment levels per signature
"""

from .client import RelayClient
from .types import (
    FeePreset,
    PendingTransaction,
    FailedTransaction,
    OutboxEvent,
    OutboxEventType,
    RunReport,
    RpcResult,
    RpcOutcome,
    SigningResult,
    SigningStatus,
    ConfirmationStatus,
    StatusEvent,
)
from .errors import (
    TxRelayError,
    RpcError,
    AllEndpointsUnavailable,
    RpcApplicationError,
    TransactionError,
    SignerError,
    DuplicateId,
    NotFound,
    ConfigurationError,
    ErrorCode,
)
from .infra import FailoverRpcClient, LocalSigner, Signer, TxBuilder
from .outbox import OutboxStore
from .modules import ConfirmationMonitor, OutboxWorker, WorkerConfig

__version__ = "0.1.0"

__all__ = [
    # Client
    "RelayClient",
    # Components
    "FailoverRpcClient",
    "OutboxStore",
    "OutboxWorker",
    "WorkerConfig",
    "ConfirmationMonitor",
    "TxBuilder",
    "Signer",
    "LocalSigner",
    # Types
    "FeePreset",
    "PendingTransaction",
    "FailedTransaction",
    "OutboxEvent",
    "OutboxEventType",
    "RunReport",
    "RpcResult",
    "RpcOutcome",
    "SigningResult",
    "SigningStatus",
    "ConfirmationStatus",
    "StatusEvent",
    # Errors
    "TxRelayError",
    "RpcError",
    "AllEndpointsUnavailable",
    "RpcApplicationError",
    "TransactionError",
    "SignerError",
    "DuplicateId",
    "NotFound",
    "ConfigurationError",
    "ErrorCode",
]
