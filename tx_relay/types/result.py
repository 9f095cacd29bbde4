"""
Result type definitions for RPC calls and signing requests

Both are tagged results: an outcome enum plus the payload that belongs to
it. Callers branch on the outcome instead of catching exceptions for the
expected failure classes.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from ..errors import AllEndpointsUnavailable, RpcApplicationError, RpcError


class RpcOutcome(Enum):
    """Outcome of a failover RPC call"""
    OK = "ok"
    APPLICATION_ERROR = "application_error"  # terminal, JSON-RPC error object
    ALL_ENDPOINTS_UNAVAILABLE = "all_endpoints_unavailable"  # transient everywhere


@dataclass
class RpcResult:
    """
    Failover RPC call result

    Attributes:
        outcome: Which variant this is
        result: JSON-RPC `result` field (OK only)
        endpoint: Endpoint that produced the answer (OK / APPLICATION_ERROR)
        error_code: JSON-RPC error code (APPLICATION_ERROR only)
        error_message: JSON-RPC error message (APPLICATION_ERROR only)
        error_data: JSON-RPC error data (APPLICATION_ERROR only)
        errors: Per-endpoint transient errors, in attempt order
    """
    outcome: RpcOutcome
    result: Any = None
    endpoint: Optional[str] = None
    error_code: Optional[int] = None
    error_message: Optional[str] = None
    error_data: Any = None
    errors: List[RpcError] = field(default_factory=list)

    @property
    def is_ok(self) -> bool:
        return self.outcome == RpcOutcome.OK

    @property
    def is_application_error(self) -> bool:
        return self.outcome == RpcOutcome.APPLICATION_ERROR

    @property
    def is_unavailable(self) -> bool:
        return self.outcome == RpcOutcome.ALL_ENDPOINTS_UNAVAILABLE

    @property
    def transient(self) -> bool:
        """Whether retrying later could change the outcome"""
        return self.is_unavailable

    @classmethod
    def ok(cls, result: Any, endpoint: Optional[str] = None, **kwargs) -> "RpcResult":
        return cls(outcome=RpcOutcome.OK, result=result, endpoint=endpoint, **kwargs)

    @classmethod
    def application_error(
        cls,
        code: Optional[int],
        message: str,
        data: Any = None,
        endpoint: Optional[str] = None,
        **kwargs
    ) -> "RpcResult":
        return cls(
            outcome=RpcOutcome.APPLICATION_ERROR,
            endpoint=endpoint,
            error_code=code,
            error_message=message,
            error_data=data,
            **kwargs
        )

    @classmethod
    def unavailable(cls, errors: List[RpcError]) -> "RpcResult":
        return cls(outcome=RpcOutcome.ALL_ENDPOINTS_UNAVAILABLE, errors=list(errors))

    def unwrap(self) -> Any:
        """
        Return the result or raise the typed error for this outcome

        Raises:
            RpcApplicationError: APPLICATION_ERROR outcome
            AllEndpointsUnavailable: ALL_ENDPOINTS_UNAVAILABLE outcome
        """
        if self.outcome == RpcOutcome.OK:
            return self.result
        if self.outcome == RpcOutcome.APPLICATION_ERROR:
            raise RpcApplicationError(
                self.error_message or "unknown error",
                rpc_code=self.error_code,
                data=self.error_data,
                endpoint=self.endpoint,
            )
        raise AllEndpointsUnavailable(self.errors)

    def __str__(self) -> str:
        if self.is_ok:
            return f"RpcResult(OK, endpoint={self.endpoint})"
        if self.is_application_error:
            return f"RpcResult(APPLICATION_ERROR, code={self.error_code}, message={self.error_message})"
        return f"RpcResult(ALL_ENDPOINTS_UNAVAILABLE, attempts={len(self.errors)})"


class SigningStatus(Enum):
    """Signing authority answer"""
    SUCCESS = "success"
    UNAVAILABLE = "unavailable"
    REJECTED = "rejected"
    HARDWARE_ERROR = "hardware_error"


@dataclass
class SigningResult:
    """
    Signing request result

    Attributes:
        status: Signing status
        signature: 64-byte ed25519 signature (SUCCESS only)
        error: Failure description
    """
    status: SigningStatus
    signature: Optional[bytes] = None
    error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status == SigningStatus.SUCCESS

    @classmethod
    def success(cls, signature: bytes) -> "SigningResult":
        return cls(status=SigningStatus.SUCCESS, signature=signature)

    @classmethod
    def unavailable(cls, error: str) -> "SigningResult":
        return cls(status=SigningStatus.UNAVAILABLE, error=error)

    @classmethod
    def rejected(cls, error: str = "User denied signing request") -> "SigningResult":
        return cls(status=SigningStatus.REJECTED, error=error)

    @classmethod
    def hardware_error(cls, error: str) -> "SigningResult":
        return cls(status=SigningStatus.HARDWARE_ERROR, error=error)
