"""
Error definitions for TX Relay
"""

from .exceptions import (
    ErrorCode,
    TxRelayError,
    RpcError,
    AllEndpointsUnavailable,
    RpcApplicationError,
    TransactionError,
    SignerError,
    OutboxError,
    DuplicateId,
    NotFound,
    ConfigurationError,
)

__all__ = [
    "ErrorCode",
    "TxRelayError",
    "RpcError",
    "AllEndpointsUnavailable",
    "RpcApplicationError",
    "TransactionError",
    "SignerError",
    "OutboxError",
    "DuplicateId",
    "NotFound",
    "ConfigurationError",
]
