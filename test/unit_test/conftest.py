"""
Shared fixtures for unit tests

Everything runs offline: HTTP goes through httpx.MockTransport and the
outbox lives in an in-memory SQLite database.
"""

import base64
import json
import sys
from pathlib import Path
from typing import Callable, Dict, List

import httpx
import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction
from sqlalchemy.pool import StaticPool

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from tx_relay.config import MonitorConfig
from tx_relay.infra import FailoverRpcClient, LocalSigner, RpcClientConfig, TxBuilder
from tx_relay.modules import ConfirmationMonitor, OutboxWorker, WorkerConfig
from tx_relay.outbox import OutboxStore

PRIMARY = "https://primary.example.com"
SECONDARY = "https://secondary.example.com"
TERTIARY = "https://tertiary.example.com"
ENDPOINTS = [PRIMARY, SECONDARY, TERTIARY]

BLOCKHASH = str(Hash.default())


def rpc_ok(result, request_id=1) -> httpx.Response:
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": request_id, "result": result})


def rpc_error(code: int, message: str, request_id=1) -> httpx.Response:
    return httpx.Response(
        200,
        json={"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}},
    )


def rpc_method(request: httpx.Request) -> str:
    return json.loads(request.content)["method"]


def rpc_params(request: httpx.Request):
    return json.loads(request.content)["params"]


def blockhash_ok(request: httpx.Request) -> httpx.Response:
    return rpc_ok({"context": {"slot": 1}, "value": {"blockhash": BLOCKHASH, "lastValidBlockHeight": 100}})


def echo_signature(request: httpx.Request) -> httpx.Response:
    """sendTransaction answer: the fee payer signature of the submitted bytes"""
    tx = VersionedTransaction.from_bytes(base64.b64decode(rpc_params(request)[0]))
    return rpc_ok(str(tx.signatures[0]))


def status_entry(level=None, err=None, slot=1):
    if level is None and err is None:
        return None
    return {"slot": slot, "confirmations": None, "err": err, "confirmationStatus": level or "processed"}


def statuses_ok(entry) -> httpx.Response:
    return rpc_ok({"context": {"slot": 1}, "value": [entry]})


class FakeCluster:
    """
    Scripted JSON-RPC backend keyed by endpoint host and method

    handlers maps (host, method) or method to a callable returning an
    httpx.Response; every request is recorded in calls.
    """

    def __init__(self):
        self.handlers: Dict = {}
        self.calls: List[httpx.Request] = []

    def on(self, method: str, handler: Callable[[httpx.Request], httpx.Response], host: str = None):
        self.handlers[(host, method) if host else method] = handler

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request)
        method = rpc_method(request)
        handler = self.handlers.get((request.url.host, method)) or self.handlers.get(method)
        if handler is None:
            return httpx.Response(500)
        return handler(request)

    def calls_for(self, method: str) -> List[httpx.Request]:
        return [r for r in self.calls if rpc_method(r) == method]

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self)


@pytest.fixture
def cluster():
    return FakeCluster()


@pytest.fixture
async def rpc(cluster):
    client = FailoverRpcClient(
        ENDPOINTS,
        config=RpcClientConfig(timeout_seconds=1.0, commitment="confirmed"),
        transport=cluster.transport,
    )
    yield client
    await client.aclose()


@pytest.fixture
async def store():
    outbox = await OutboxStore.open("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    yield outbox
    await outbox.close()


@pytest.fixture
def signer():
    return LocalSigner(Keypair())


@pytest.fixture
def recipient() -> str:
    return str(Pubkey.new_unique())


@pytest.fixture
def monitor_config():
    return MonitorConfig(
        poll_interval=0.01,
        poll_backoff=1.0,
        max_poll_interval=0.01,
        timeout=2.0,
        max_polls=0,
    )


@pytest.fixture
def monitor(rpc, monitor_config):
    return ConfirmationMonitor(rpc, config=monitor_config)


@pytest.fixture
def worker_config():
    return WorkerConfig(
        retry_cap=5,
        concurrency=4,
        run_interval=0.05,
        backoff="exponential",
        max_run_interval=0.2,
        skip_preflight=False,
        preflight_commitment="confirmed",
    )


@pytest.fixture
def worker(store, rpc, signer, monitor, worker_config):
    builder = TxBuilder(rpc, signer)
    return OutboxWorker(store, rpc, builder, monitor, config=worker_config)
