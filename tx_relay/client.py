"""
RelayClient - Unified entry point for queued SOL transfers

Wires the failover RPC client, outbox store, signer, transaction builder,
confirmation monitor and outbox worker together by explicit construction.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import List, Optional, Union, TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from solders.keypair import Keypair

from .config import MonitorConfig
from .config import config as global_config
from .errors import ConfigurationError
from .infra import (
    FailoverRpcClient,
    RpcClientConfig,
    Signer,
    TxBuilder,
    TxBuilderConfig,
    create_signer,
    sol_to_lamports,
)
from .modules import ConfirmationMonitor, OutboxWorker, WorkerConfig
from .outbox import OutboxStore
from .types import FeePreset, PendingTransaction

logger = logging.getLogger(__name__)


class RelayClient:
    """
    Resilient transaction relay client

    Provides:
    - send: Queue a transfer and wake the worker
    - outbox: Durable outbox store
    - worker: Background outbox drain loop
    - monitor: Confirmation status streams

    Usage:
        # Endpoints, database and signer from environment
        async with await RelayClient.connect() as client:
            client.start()
            tx = await client.send("9xQe...", Decimal("0.25"), memo="rent")

            async for event in client.worker.events():
                ...

        # Or wire parts explicitly
        store = await OutboxStore.open("sqlite+aiosqlite:///:memory:")
        client = RelayClient(
            rpc_url=["https://primary.example.com", "https://backup.example.com"],
            store=store,
            signer=my_signer,
        )
    """

    def __init__(
        self,
        rpc_url: Optional[Union[str, List[str]]] = None,
        store: Optional[OutboxStore] = None,
        signer: Optional[Signer] = None,
        keypair: Optional["Keypair"] = None,
        keypair_path: Optional[str] = None,
        rpc_config: Optional[RpcClientConfig] = None,
        tx_config: Optional[TxBuilderConfig] = None,
        monitor_config: Optional[MonitorConfig] = None,
        worker_config: Optional[WorkerConfig] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize RelayClient

        Args:
            rpc_url: Endpoint URL or ordered list (default: RPC_PRIMARY/SECONDARY/TERTIARY)
            store: Opened outbox store (see connect())
            signer: Signing authority; built from keypair/keypair_path/env if omitted
            keypair: Optional Keypair for local signing
            keypair_path: Optional path to keypair file
            rpc_config: Optional RPC configuration
            tx_config: Optional transaction builder configuration
            monitor_config: Optional confirmation monitor configuration
            worker_config: Optional outbox worker configuration
            transport: Optional httpx transport (tests, proxies)
        """
        self._rpc = FailoverRpcClient(
            rpc_url or global_config.rpc.endpoints,
            config=rpc_config,
            transport=transport,
        )

        self._signer = signer or create_signer(keypair=keypair, keypair_path=keypair_path)
        self._tx_builder = TxBuilder(self._rpc, self._signer, config=tx_config)
        self._monitor = ConfirmationMonitor(self._rpc, config=monitor_config)

        self._store = store
        self._worker_config = worker_config
        self._worker: Optional[OutboxWorker] = None
        self._task: Optional[asyncio.Task] = None

    @classmethod
    async def connect(cls, db_url: Optional[str] = None, **kwargs) -> "RelayClient":
        """Open the outbox store (default: OUTBOX_DB_URL) and build a client around it"""
        store = await OutboxStore.open(db_url)
        return cls(store=store, **kwargs)

    @property
    def rpc(self) -> FailoverRpcClient:
        """Access to failover RPC client"""
        return self._rpc

    @property
    def signer(self) -> Signer:
        """Access to signer"""
        return self._signer

    @property
    def tx_builder(self) -> TxBuilder:
        """Access to transaction builder"""
        return self._tx_builder

    @property
    def pubkey(self) -> str:
        """Fee payer public key"""
        return self._tx_builder.pubkey

    @property
    def monitor(self) -> ConfirmationMonitor:
        """Confirmation monitor"""
        return self._monitor

    @property
    def outbox(self) -> OutboxStore:
        """Outbox store"""
        if self._store is None:
            raise ConfigurationError.missing("outbox store (use RelayClient.connect())")
        return self._store

    @property
    def worker(self) -> OutboxWorker:
        """
        Outbox worker

        Provides:
        - run_once(): Process eligible rows once
        - run_forever(): Background loop (see start())
        - trigger(): Wake the loop
        - events(): Outcome event subscription
        """
        if self._worker is None:
            self._worker = OutboxWorker(
                self.outbox,
                self._rpc,
                self._tx_builder,
                self._monitor,
                config=self._worker_config,
            )
        return self._worker

    async def send(
        self,
        to_address: str,
        amount: Union[Decimal, str, int],
        memo: Optional[str] = None,
        fee_preset: Union[FeePreset, str] = FeePreset.NORMAL,
        tx_id: Optional[str] = None,
    ) -> PendingTransaction:
        """
        Queue a SOL transfer

        Args:
            to_address: Recipient address
            amount: Amount in SOL
            memo: Optional memo
            fee_preset: Priority tier (or its name)
            tx_id: Optional caller-chosen id

        Returns:
            The stored outbox row

        Raises:
            TransactionError: Amount cannot be sent
            DuplicateId: tx_id already queued
        """
        if isinstance(fee_preset, str):
            try:
                fee_preset = FeePreset.parse(fee_preset)
            except ValueError as e:
                raise ConfigurationError.invalid("fee_preset", str(e)) from e

        # Reject bad amounts before they reach the outbox
        sol_to_lamports(amount)
        amount = Decimal(str(amount))

        tx = PendingTransaction.create(to_address, amount, memo=memo, fee_preset=fee_preset, tx_id=tx_id)
        stored = await self.outbox.enqueue(tx)
        self.worker.trigger()
        return stored

    def start(self) -> asyncio.Task:
        """Start the outbox worker in the background"""
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.worker.run_forever())
        return self._task

    async def stop(self):
        """Stop the background worker"""
        if self._task is None:
            return
        self.worker.stop()
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def aclose(self):
        """Stop the worker and release connections"""
        await self.stop()
        await self._rpc.aclose()
        if self._store is not None:
            await self._store.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    def __repr__(self) -> str:
        return f"RelayClient(endpoints={self._rpc.endpoints})"
