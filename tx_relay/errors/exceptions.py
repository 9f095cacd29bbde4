"""
Exception definitions for TX Relay
"""

from enum import Enum
from typing import Any, List, Optional


class ErrorCode(Enum):
    """
    Unified error codes for the submission pipeline

    1xxx - RPC errors
    2xxx - Transaction errors
    6xxx - Signer errors
    8xxx - Outbox errors
    9xxx - Configuration errors
    """
    # RPC errors (recoverable)
    RPC_CONNECTION_FAILED = "1001"
    RPC_TIMEOUT = "1002"
    RPC_RATE_LIMITED = "1003"
    RPC_INVALID_RESPONSE = "1004"
    RPC_HTTP_ERROR = "1005"
    RPC_ALL_ENDPOINTS_UNAVAILABLE = "1006"

    # RPC application error (not recoverable, failover would not change it)
    RPC_APPLICATION_ERROR = "1101"

    # Transaction errors
    TX_SEND_FAILED = "2002"
    TX_INVALID_AMOUNT = "2006"
    TX_RETRY_CAP_EXCEEDED = "2007"

    # Signer errors
    SIGNER_NOT_CONFIGURED = "6001"
    SIGNER_FAILED = "6002"
    SIGNER_UNAVAILABLE = "6004"
    SIGNER_REJECTED = "6005"
    SIGNER_HARDWARE_ERROR = "6006"

    # Outbox errors
    OUTBOX_DUPLICATE_ID = "8001"
    OUTBOX_NOT_FOUND = "8002"

    # Configuration errors
    CONFIG_INVALID = "9001"
    CONFIG_MISSING = "9002"


class TxRelayError(Exception):
    """
    Base exception for all TX relay errors

    Attributes:
        message: Human-readable error message
        code: Error code for programmatic handling
        recoverable: Whether the error might succeed on retry
        original_error: The underlying exception if any
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        recoverable: bool = False,
        original_error: Optional[Exception] = None,
        details: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.recoverable = recoverable
        self.original_error = original_error
        self.details = details or {}

    def __str__(self) -> str:
        return f"[{self.code.value}] {self.message}"

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code.value}, message={self.message!r})"

    @property
    def should_retry(self) -> bool:
        """Indicate if the operation should be retried"""
        return self.recoverable


class RpcError(TxRelayError):
    """
    Transient RPC failure against a single endpoint

    Raised (or collected) when:
    - Connection to RPC endpoint fails
    - Request times out
    - Rate limit is hit
    - Endpoint answers with a non-200 status
    - Invalid response received
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.RPC_CONNECTION_FAILED,
        original_error: Optional[Exception] = None,
        endpoint: Optional[str] = None,
    ):
        super().__init__(
            message,
            code,
            recoverable=True,
            original_error=original_error,
            details={"endpoint": endpoint} if endpoint else None,
        )
        self.endpoint = endpoint

    @classmethod
    def connection_failed(cls, endpoint: str, error: Exception = None) -> "RpcError":
        return cls(
            f"Failed to connect to RPC endpoint: {endpoint}",
            ErrorCode.RPC_CONNECTION_FAILED,
            original_error=error,
            endpoint=endpoint,
        )

    @classmethod
    def timeout(cls, endpoint: str, timeout_seconds: float) -> "RpcError":
        return cls(
            f"RPC request timed out after {timeout_seconds}s",
            ErrorCode.RPC_TIMEOUT,
            endpoint=endpoint,
        )

    @classmethod
    def rate_limited(cls, endpoint: str) -> "RpcError":
        return cls(
            "RPC rate limit exceeded",
            ErrorCode.RPC_RATE_LIMITED,
            endpoint=endpoint,
        )

    @classmethod
    def http_status(cls, endpoint: str, status_code: int) -> "RpcError":
        return cls(
            f"HTTP error {status_code}",
            ErrorCode.RPC_HTTP_ERROR,
            endpoint=endpoint,
        )

    @classmethod
    def invalid_response(cls, endpoint: str, reason: str) -> "RpcError":
        return cls(
            f"Invalid RPC response: {reason}",
            ErrorCode.RPC_INVALID_RESPONSE,
            endpoint=endpoint,
        )


class AllEndpointsUnavailable(RpcError):
    """
    Every configured endpoint failed transiently

    The one RPC failure callers should retry later, not immediately.
    """

    def __init__(self, errors: Optional[List[RpcError]] = None):
        errors = list(errors or [])
        tried = ", ".join(e.endpoint for e in errors if e.endpoint) or "none"
        super().__init__(
            f"All RPC endpoints unavailable (tried: {tried})",
            ErrorCode.RPC_ALL_ENDPOINTS_UNAVAILABLE,
            original_error=errors[-1] if errors else None,
        )
        self.errors = errors


class RpcApplicationError(TxRelayError):
    """
    Well-formed JSON-RPC error response - not recoverable

    Raised when:
    - The method itself failed (insufficient funds, invalid instruction,
      blockhash not found, ...)
    """

    def __init__(
        self,
        message: str,
        rpc_code: Optional[int] = None,
        data: Any = None,
        endpoint: Optional[str] = None,
    ):
        super().__init__(
            f"RPC error: {message}",
            ErrorCode.RPC_APPLICATION_ERROR,
            recoverable=False,
            details={"rpc_error_code": rpc_code, "rpc_error_data": data, "endpoint": endpoint},
        )
        self.rpc_code = rpc_code
        self.data = data
        self.endpoint = endpoint


class TransactionError(TxRelayError):
    """
    Transaction building / submission errors

    Raised when:
    - The intent cannot be encoded (bad amount, bad address)
    - Transaction send fails
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.TX_SEND_FAILED,
        signature: Optional[str] = None,
        recoverable: bool = False,
    ):
        super().__init__(
            message,
            code,
            recoverable=recoverable,
            details={"signature": signature},
        )
        self.signature = signature

    @classmethod
    def send_failed(cls, error: str) -> "TransactionError":
        return cls(f"Failed to send transaction: {error}", ErrorCode.TX_SEND_FAILED)

    @classmethod
    def invalid_amount(cls, amount: Any, reason: str) -> "TransactionError":
        return cls(f"Invalid amount {amount}: {reason}", ErrorCode.TX_INVALID_AMOUNT)

    @classmethod
    def retry_cap_exceeded(cls, tx_id: str, retries: int) -> "TransactionError":
        return cls(
            f"Retry cap exceeded for {tx_id} after {retries} attempts",
            ErrorCode.TX_RETRY_CAP_EXCEEDED,
        )


class SignerError(TxRelayError):
    """
    Signing-related errors - never retried by the pipeline

    Raised when:
    - No signer configured
    - Signing authority unavailable, rejected the request, or hit a
      hardware error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.SIGNER_FAILED,
    ):
        super().__init__(message, code, recoverable=False)

    @classmethod
    def not_configured(cls) -> "SignerError":
        return cls(
            "No signer configured. Provide a seed or keypair file.",
            ErrorCode.SIGNER_NOT_CONFIGURED,
        )

    @classmethod
    def failed(cls, reason: str) -> "SignerError":
        return cls(f"Signing failed: {reason}", ErrorCode.SIGNER_FAILED)

    @classmethod
    def unavailable(cls, reason: str) -> "SignerError":
        return cls(f"Signing authority unavailable: {reason}", ErrorCode.SIGNER_UNAVAILABLE)

    @classmethod
    def rejected(cls, reason: str) -> "SignerError":
        return cls(f"Signing request rejected: {reason}", ErrorCode.SIGNER_REJECTED)

    @classmethod
    def hardware_error(cls, reason: str) -> "SignerError":
        return cls(f"Signing hardware error: {reason}", ErrorCode.SIGNER_HARDWARE_ERROR)


class OutboxError(TxRelayError):
    """Outbox store errors"""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        tx_id: Optional[str] = None,
    ):
        super().__init__(message, code, recoverable=False, details={"tx_id": tx_id})
        self.tx_id = tx_id


class DuplicateId(OutboxError):
    """A row with the same id is already queued"""

    def __init__(self, tx_id: str):
        super().__init__(f"Outbox already contains {tx_id}", ErrorCode.OUTBOX_DUPLICATE_ID, tx_id)


class NotFound(OutboxError):
    """The row is absent (already removed, e.g. by a concurrent success)"""

    def __init__(self, tx_id: str):
        super().__init__(f"Outbox row not found: {tx_id}", ErrorCode.OUTBOX_NOT_FOUND, tx_id)


class ConfigurationError(TxRelayError):
    """
    Configuration-related errors

    Raised when:
    - Required configuration is missing
    - Configuration values are invalid
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.CONFIG_INVALID,
    ):
        super().__init__(message, code, recoverable=False)

    @classmethod
    def missing(cls, param: str) -> "ConfigurationError":
        return cls(f"Missing required configuration: {param}", ErrorCode.CONFIG_MISSING)

    @classmethod
    def invalid(cls, param: str, reason: str) -> "ConfigurationError":
        return cls(f"Invalid configuration '{param}': {reason}", ErrorCode.CONFIG_INVALID)
