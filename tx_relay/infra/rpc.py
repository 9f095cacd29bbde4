"""
Failover RPC Client for Solana

Provides a JSON-RPC interface over an ordered endpoint list with:
- Strict in-order failover on transient failures
- No failover on JSON-RPC application errors
- Bounded per-attempt timeout
- Typed results instead of exceptions for expected failures
"""

from __future__ import annotations

import base64
import itertools
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import httpx

from ..errors import RpcError, ConfigurationError
from ..types import RpcResult
from ..config import config as global_config

logger = logging.getLogger(__name__)


@dataclass
class RpcClientConfig:
    """
    RPC client runtime configuration

    Allows per-client overrides while pulling defaults from the global
    config (tx_relay.config.RpcConfig).

    Usage:
        # Use all defaults from environment
        client = FailoverRpcClient(endpoints)

        # Override specific settings
        config = RpcClientConfig(timeout_seconds=5)
        client = FailoverRpcClient(endpoints, config=config)
    """
    timeout_seconds: float = None
    commitment: str = None

    def __post_init__(self):
        """Apply defaults from global config for any unset values"""
        if self.timeout_seconds is None:
            self.timeout_seconds = global_config.rpc.timeout_seconds
        if self.commitment is None:
            self.commitment = global_config.rpc.commitment


class FailoverRpcClient:
    """
    Solana JSON-RPC client with ordered endpoint failover

    Every call starts at the first endpoint. HTTP 5xx/429/other non-200
    answers, connection errors, timeouts and unparseable bodies move on to
    the next endpoint. A JSON-RPC `error` object is returned as-is: another
    endpoint would give the same deterministic answer.

    Usage:
        rpc = FailoverRpcClient([
            "https://primary-rpc.example.com",
            "https://backup-rpc.example.com",
        ])

        result = await rpc.call("getSlot", [])
        if result.is_ok:
            slot = result.result
    """

    def __init__(
        self,
        endpoint: Union[str, List[str]],
        config: Optional[RpcClientConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize RPC client

        Args:
            endpoint: RPC endpoint URL or ordered list of URLs (blanks are skipped)
            config: RPC configuration options
            transport: Optional httpx transport (tests, proxies)

        Raises:
            ConfigurationError: No usable endpoint
        """
        endpoints = [endpoint] if isinstance(endpoint, str) else list(endpoint)
        self._endpoints = [url.strip() for url in endpoints if url and url.strip()]
        if not self._endpoints:
            raise ConfigurationError.missing("RPC endpoint")

        self._config = config or RpcClientConfig()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._request_ids = itertools.count(1)

    @property
    def endpoints(self) -> List[str]:
        """Endpoints in failover order"""
        return list(self._endpoints)

    @property
    def commitment(self) -> str:
        """Default commitment level"""
        return self._config.commitment

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the pooled HTTP client"""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._config.timeout_seconds,
                headers={"Content-Type": "application/json", "Accept": "application/json"},
                transport=self._transport,
            )
        return self._client

    async def _attempt(
        self,
        endpoint: str,
        body: Dict[str, Any],
        timeout: float,
    ) -> Union[RpcResult, RpcError]:
        """
        Single request against one endpoint

        Returns:
            RpcResult for a definitive answer, RpcError for a transient failure
        """
        client = self._get_client()

        try:
            response = await client.post(endpoint, json=body, timeout=timeout)
        except httpx.TimeoutException:
            return RpcError.timeout(endpoint, timeout)
        except httpx.RequestError as e:
            return RpcError.connection_failed(endpoint, e)

        if response.status_code == 429:
            return RpcError.rate_limited(endpoint)
        if response.status_code != 200:
            return RpcError.http_status(endpoint, response.status_code)

        try:
            payload = response.json()
        except ValueError:
            return RpcError.invalid_response(endpoint, "body is not JSON")

        if not isinstance(payload, dict):
            return RpcError.invalid_response(endpoint, "body is not a JSON object")

        error = payload.get("error")
        if error is not None:
            if isinstance(error, dict):
                return RpcResult.application_error(
                    error.get("code"),
                    error.get("message", str(error)),
                    data=error.get("data"),
                    endpoint=endpoint,
                )
            return RpcResult.application_error(None, str(error), endpoint=endpoint)

        if "result" not in payload:
            return RpcError.invalid_response(endpoint, "neither result nor error present")

        return RpcResult.ok(payload["result"], endpoint=endpoint)

    async def call(
        self,
        method: str,
        params: Union[List[Any], Dict[str, Any]],
        timeout: Optional[float] = None,
    ) -> RpcResult:
        """
        Make JSON-RPC call with failover

        Args:
            method: RPC method name
            params: RPC parameters (array or object)
            timeout: Optional per-attempt timeout override

        Returns:
            RpcResult - OK, APPLICATION_ERROR, or ALL_ENDPOINTS_UNAVAILABLE
        """
        body = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params,
        }
        timeout_val = timeout or self._config.timeout_seconds
        errors: List[RpcError] = []

        for endpoint in self._endpoints:
            outcome = await self._attempt(endpoint, body, timeout_val)

            if isinstance(outcome, RpcResult):
                if outcome.is_application_error:
                    logger.info(f"RPC {method} error from {endpoint}: {outcome.error_message}")
                outcome.errors = errors
                return outcome

            errors.append(outcome)
            logger.warning(f"RPC {method} failed on {endpoint}, failing over: {outcome}")

        logger.error(f"RPC {method} failed on all {len(self._endpoints)} endpoints")
        return RpcResult.unavailable(errors)

    async def get_health(self) -> str:
        """
        Health check

        Returns:
            "ok" when the first reachable endpoint is healthy

        Raises:
            RpcApplicationError, AllEndpointsUnavailable
        """
        result = await self.call("getHealth", [])
        return result.unwrap()

    async def get_latest_blockhash(
        self,
        commitment: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Get latest blockhash

        Returns:
            Dict with blockhash and lastValidBlockHeight

        Raises:
            RpcApplicationError, AllEndpointsUnavailable
            RpcError: Answer is not a blockhash object
        """
        params = [{"commitment": commitment or self.commitment}]
        result = await self.call("getLatestBlockhash", params)
        value = result.unwrap()
        info = value.get("value") if isinstance(value, dict) else None
        if not isinstance(info, dict) or not isinstance(info.get("blockhash"), str):
            raise RpcError.invalid_response(result.endpoint, f"unexpected getLatestBlockhash result {value!r}")
        return info

    async def send_transaction(
        self,
        transaction: bytes,
        skip_preflight: bool = False,
        preflight_commitment: Optional[str] = None,
    ) -> RpcResult:
        """
        Send signed transaction

        Args:
            transaction: Signed transaction bytes
            skip_preflight: Skip preflight simulation
            preflight_commitment: Preflight commitment level

        Returns:
            RpcResult whose result is the transaction signature (base58)
        """
        tx_data = base64.b64encode(transaction).decode("ascii")

        params = [
            tx_data,
            {
                "skipPreflight": skip_preflight,
                "preflightCommitment": preflight_commitment or self.commitment,
                "encoding": "base64",
            },
        ]
        return await self.call("sendTransaction", params)

    async def get_signature_statuses(
        self,
        signatures: List[str],
        search_transaction_history: bool = True,
    ) -> RpcResult:
        """
        Query confirmation status for signatures

        Returns:
            RpcResult whose result is {"context": ..., "value": [status | None, ...]}
        """
        params = [
            list(signatures),
            {"searchTransactionHistory": search_transaction_history},
        ]
        return await self.call("getSignatureStatuses", params)

    async def aclose(self):
        """Close HTTP client"""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    def __repr__(self) -> str:
        return f"FailoverRpcClient(endpoints={self._endpoints})"
