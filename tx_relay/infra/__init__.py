"""
Infrastructure layer for TX Relay

Provides:
- FailoverRpcClient: JSON-RPC over an ordered endpoint list
- Signer: Signing authority boundary (LocalSigner reference implementation)
- TxBuilder: Instruction encoding, transaction assembly and signing
- Retry helpers: backoff policy and correlation IDs
"""

from .rpc import FailoverRpcClient, RpcClientConfig
from .solana_signer import (
    Signer,
    LocalSigner,
    create_signer,
)
from .tx_builder import (
    TxBuilder,
    TxBuilderConfig,
    compute_budget_instructions,
    memo_instruction,
    transfer_instruction,
    sol_to_lamports,
)
from .retry import (
    BackoffPolicy,
    backoff_delay,
    CorrelationContext,
    CorrelationIdFilter,
    is_recoverable,
)

__all__ = [
    "FailoverRpcClient",
    "RpcClientConfig",
    "Signer",
    "LocalSigner",
    "create_signer",
    "TxBuilder",
    "TxBuilderConfig",
    "compute_budget_instructions",
    "memo_instruction",
    "transfer_instruction",
    "sol_to_lamports",
    "BackoffPolicy",
    "backoff_delay",
    "CorrelationContext",
    "CorrelationIdFilter",
    "is_recoverable",
]
