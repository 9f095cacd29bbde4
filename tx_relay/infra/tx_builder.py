"""
Transaction builder

Provides utilities for:
- Encoding compute budget, memo and transfer instructions
- Building versioned transfer transactions for outbox rows
- Signing through the signing authority boundary
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from solders.compute_budget import set_compute_unit_limit, set_compute_unit_price
from solders.hash import Hash, ParseHashError
from solders.instruction import Instruction
from solders.message import MessageV0, to_bytes_versioned
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import VersionedTransaction

from .rpc import FailoverRpcClient
from .solana_signer import Signer
from ..types import FeePreset, PendingTransaction, SigningStatus
from ..errors import RpcError, SignerError, TransactionError
from ..config import config as global_config

logger = logging.getLogger(__name__)

MEMO_PROGRAM_ID = Pubkey.from_string("MemoSq4gqABAXKb96qnH8TysNcWxMyWCqXgDLGmfcHr")
LAMPORTS_PER_SOL = 1_000_000_000


def sol_to_lamports(amount: Decimal) -> int:
    """
    Convert SOL amount to lamports

    Raises:
        TransactionError: negative, non-numeric, or finer than one lamport
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise TransactionError.invalid_amount(amount, "not a number") from None

    if not value.is_finite():
        raise TransactionError.invalid_amount(amount, "not a number")
    if value < 0:
        raise TransactionError.invalid_amount(amount, "must not be negative")

    lamports = value * LAMPORTS_PER_SOL
    if lamports != lamports.to_integral_value():
        raise TransactionError.invalid_amount(amount, "finer than one lamport")
    return int(lamports)


def compute_budget_instructions(preset: FeePreset) -> List[Instruction]:
    """
    Compute budget instructions for a fee preset

    SetComputeUnitLimit is always present; SetComputeUnitPrice only when the
    preset carries a priority fee.
    """
    instructions = [set_compute_unit_limit(preset.compute_units)]
    if preset.micro_lamports_per_cu > 0:
        instructions.append(set_compute_unit_price(preset.micro_lamports_per_cu))
    return instructions


def memo_instruction(text: str) -> Instruction:
    """Memo program instruction: UTF-8 bytes, no accounts"""
    return Instruction(
        program_id=MEMO_PROGRAM_ID,
        accounts=[],
        data=text.encode("utf-8"),
    )


def transfer_instruction(from_address: str, to_address: str, lamports: int) -> Instruction:
    """System program transfer"""
    try:
        from_pubkey = Pubkey.from_string(from_address)
        to_pubkey = Pubkey.from_string(to_address)
    except ValueError as e:
        raise TransactionError.send_failed(f"invalid address: {e}") from e

    return transfer(TransferParams(from_pubkey=from_pubkey, to_pubkey=to_pubkey, lamports=lamports))


def message_bytes(message: MessageV0) -> bytes:
    """Versioned message bytes, the payload a signer signs"""
    return to_bytes_versioned(message)


def assemble(message: MessageV0, signature: bytes) -> Tuple[bytes, str]:
    """
    Attach the fee payer signature

    Returns:
        (signed_tx_bytes, signature_base58)
    """
    sig = Signature.from_bytes(signature)
    signed_tx = VersionedTransaction.populate(message, [sig])
    return bytes(signed_tx), str(sig)


@dataclass
class TxBuilderConfig:
    """
    Transaction builder runtime configuration

    Per-builder overrides, defaults pulled from the global config.
    """
    derivation_path: str = None
    commitment: str = None

    def __post_init__(self):
        """Apply defaults from global config for any unset values"""
        if self.derivation_path is None:
            self.derivation_path = global_config.signer.derivation_path
        if self.commitment is None:
            self.commitment = global_config.rpc.commitment


class TxBuilder:
    """
    Transfer transaction builder

    Handles:
    - Instruction encoding for an outbox row (compute budget, transfer, memo)
    - Fetching the recent blockhash through the failover client
    - Signing via the signing authority

    Usage:
        builder = TxBuilder(rpc, signer)
        signed_bytes, signature = await builder.build_and_sign(pending_tx)
    """

    def __init__(
        self,
        rpc: FailoverRpcClient,
        signer: Signer,
        config: Optional[TxBuilderConfig] = None,
    ):
        self._rpc = rpc
        self._signer = signer
        self._config = config or TxBuilderConfig()

    @property
    def pubkey(self) -> str:
        """Fee payer public key"""
        return self._signer.pubkey(self._config.derivation_path)

    def instructions(self, tx: PendingTransaction, payer: str) -> List[Instruction]:
        """Encode all instructions for a pending transaction, in submission order"""
        all_instructions = compute_budget_instructions(tx.fee_preset)
        all_instructions.append(
            transfer_instruction(payer, tx.to_address, sol_to_lamports(tx.amount))
        )
        if tx.memo:
            all_instructions.append(memo_instruction(tx.memo))
        return all_instructions

    def build_message(
        self,
        tx: PendingTransaction,
        recent_blockhash: str,
        payer: Optional[str] = None,
    ) -> MessageV0:
        """
        Compile the transaction message (no address lookup tables)

        Raises:
            TransactionError: Blockhash is not a valid hash
        """
        payer = payer or self.pubkey
        try:
            blockhash = Hash.from_string(recent_blockhash)
        except (ParseHashError, ValueError) as e:
            raise TransactionError.send_failed(f"invalid blockhash {recent_blockhash!r}: {e}") from e
        return MessageV0.try_compile(
            Pubkey.from_string(payer),
            self.instructions(tx, payer),
            [],
            blockhash,
        )

    async def sign(self, message: MessageV0) -> Tuple[bytes, str]:
        """
        Sign a compiled message through the signing authority

        Returns:
            (signed_tx_bytes, signature_base58)

        Raises:
            SignerError: Signing authority did not produce a signature
        """
        result = await self._signer.sign(message_bytes(message), self._config.derivation_path)

        if result.status == SigningStatus.SUCCESS:
            return assemble(message, result.signature)
        if result.status == SigningStatus.UNAVAILABLE:
            raise SignerError.unavailable(result.error or "no response")
        if result.status == SigningStatus.REJECTED:
            raise SignerError.rejected(result.error or "rejected")
        if result.status == SigningStatus.HARDWARE_ERROR:
            raise SignerError.hardware_error(result.error or "unknown")
        raise SignerError.failed(f"unexpected signing status {result.status}")

    async def build_and_sign(
        self,
        tx: PendingTransaction,
        recent_blockhash: Optional[str] = None,
    ) -> Tuple[bytes, str]:
        """
        Build and sign a pending transaction in one call

        Raises:
            AllEndpointsUnavailable: Blockhash fetch failed on every endpoint
            RpcError: Blockhash answer was malformed
            RpcApplicationError: Blockhash fetch rejected
            TransactionError: Intent cannot be encoded
            SignerError: Signing failed
        """
        if recent_blockhash is None:
            blockhash_info = await self._rpc.get_latest_blockhash(self._config.commitment)
            recent_blockhash = blockhash_info["blockhash"]
            try:
                Hash.from_string(recent_blockhash)
            except (ParseHashError, ValueError):
                # Node misbehaviour, another attempt may get a good answer
                raise RpcError.invalid_response(None, f"malformed blockhash {recent_blockhash!r}") from None

        if not recent_blockhash:
            raise TransactionError.send_failed("Failed to get recent blockhash")

        message = self.build_message(tx, recent_blockhash)
        signed_tx, signature = await self.sign(message)
        logger.debug(f"Signed {tx.id} -> {signature}")
        return signed_tx, signature
