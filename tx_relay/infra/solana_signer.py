"""
Transaction signing abstractions

The pipeline hands raw message bytes and a derivation path to a signing
authority and gets back a SigningResult. Private key material stays on the
authority's side of this boundary.
"""

from __future__ import annotations

import json
import os
import logging
from typing import Dict, Optional, Protocol, runtime_checkable

import base58
from solders.keypair import Keypair

from ..errors import SignerError, ConfigurationError
from ..types import SigningResult
from ..config import config as global_config

logger = logging.getLogger(__name__)


@runtime_checkable
class Signer(Protocol):
    """
    Protocol for signing authorities (secure enclave, hardware wallet, local key)

    Implementations must provide:
    - pubkey(): Public key (base58) for a derivation path
    - sign(): Sign message bytes for a derivation path
    """

    def pubkey(self, derivation_path: Optional[str] = None) -> str:
        """Public key (base58) for the derivation path"""
        ...

    async def sign(self, message: bytes, derivation_path: Optional[str] = None) -> SigningResult:
        """
        Sign message bytes

        Args:
            message: Serialized transaction message
            derivation_path: Key derivation path (authority default if None)

        Returns:
            SigningResult with a 64-byte signature or a typed failure
        """
        ...


class LocalSigner:
    """
    Local signer backed by solders keypairs

    With a seed, a keypair is derived per derivation path (BIP44,
    m/44'/501'/account'/change'). With a single keypair, every path maps to
    that keypair.

    Usage:
        signer = LocalSigner(Keypair())
        result = await signer.sign(message_bytes)

        signer = LocalSigner.from_seed(seed_bytes)
        result = await signer.sign(message_bytes, "m/44'/501'/1'/0'")
    """

    def __init__(
        self,
        keypair: Optional[Keypair] = None,
        seed: Optional[bytes] = None,
        default_path: Optional[str] = None,
    ):
        """
        Initialize with a keypair or a derivation seed

        Args:
            keypair: solders.keypair.Keypair instance
            seed: Seed bytes for derivation-path signing
            default_path: Path used when callers pass none
        """
        if keypair is None and seed is None:
            raise SignerError.not_configured()

        self._keypair = keypair
        self._seed = seed
        self._default_path = default_path or global_config.signer.derivation_path
        self._derived: Dict[str, Keypair] = {}

    def _keypair_for(self, derivation_path: Optional[str]) -> Keypair:
        if self._seed is None:
            return self._keypair

        path = derivation_path or self._default_path
        keypair = self._derived.get(path)
        if keypair is None:
            keypair = Keypair.from_seed_and_derivation_path(self._seed, path)
            self._derived[path] = keypair
        return keypair

    def pubkey(self, derivation_path: Optional[str] = None) -> str:
        """Public key as base58 string"""
        try:
            return str(self._keypair_for(derivation_path).pubkey())
        except (ValueError, TypeError) as e:
            raise SignerError.failed(f"cannot derive key for {derivation_path}: {e}") from e

    async def sign(self, message: bytes, derivation_path: Optional[str] = None) -> SigningResult:
        """Sign message bytes"""
        try:
            keypair = self._keypair_for(derivation_path)
        except (ValueError, TypeError) as e:
            return SigningResult.hardware_error(f"cannot derive key for {derivation_path}: {e}")

        signature = keypair.sign_message(message)
        return SigningResult.success(bytes(signature))

    @classmethod
    def from_seed(cls, seed: bytes, default_path: Optional[str] = None) -> "LocalSigner":
        """Create derivation-path signer from seed bytes"""
        return cls(seed=seed, default_path=default_path)

    @classmethod
    def from_bytes(cls, secret_key: bytes) -> "LocalSigner":
        """Create signer from secret key bytes (64 bytes)"""
        return cls(Keypair.from_bytes(secret_key))

    @classmethod
    def from_base58(cls, secret_key: str) -> "LocalSigner":
        """Create signer from base58 secret key"""
        return cls.from_bytes(base58.b58decode(secret_key))

    @classmethod
    def from_file(cls, path: str) -> "LocalSigner":
        """
        Create signer from keypair file

        Supports:
        - JSON array format (Solana CLI): [1,2,3,...]
        - Raw bytes file (64 bytes)
        """
        with open(path, "rb") as f:
            content = f.read()

        try:
            data = json.loads(content.decode("utf-8"))
            if isinstance(data, list):
                return cls.from_bytes(bytes(data))
        except (json.JSONDecodeError, UnicodeDecodeError):
            pass

        if len(content) == 64:
            return cls.from_bytes(content)

        raise ConfigurationError.invalid("keypair_file", f"Cannot parse keypair file: {path}")


def create_signer(
    keypair: Optional[Keypair] = None,
    keypair_path: Optional[str] = None,
    seed: Optional[bytes] = None,
) -> Signer:
    """
    Create signer based on configuration

    Priority:
    1. keypair: Use LocalSigner with provided keypair
    2. seed: Derivation-path LocalSigner
    3. keypair_path: Load keypair from file
    4. Environment: SIGNER_SEED_HEX, then SOLANA_KEYPAIR_PATH

    Raises:
        SignerError: If no valid signer configuration found
    """
    if keypair is not None:
        return LocalSigner(keypair)

    if seed is not None:
        return LocalSigner.from_seed(seed)

    if keypair_path is not None:
        return LocalSigner.from_file(keypair_path)

    if global_config.signer.seed_hex:
        try:
            return LocalSigner.from_seed(bytes.fromhex(global_config.signer.seed_hex))
        except (ValueError, TypeError) as e:
            raise ConfigurationError.invalid("SIGNER_SEED_HEX", str(e)) from e

    if global_config.signer.keypair_path and os.path.isfile(global_config.signer.keypair_path):
        return LocalSigner.from_file(global_config.signer.keypair_path)

    raise SignerError.not_configured()
