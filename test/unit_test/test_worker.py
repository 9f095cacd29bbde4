"""
Test Outbox Worker

Runs the worker against a scripted RPC backend and an in-memory outbox.
"""

import asyncio
import base64
from decimal import Decimal

import httpx
import pytest
from solders.keypair import Keypair

from tx_relay.errors import ConfigurationError
from tx_relay.infra import BackoffPolicy, TxBuilder
from tx_relay.modules import OutboxWorker, WorkerConfig
from tx_relay.types import OutboxEventType, PendingTransaction, SigningResult

from conftest import blockhash_ok, echo_signature, rpc_error, rpc_ok, rpc_params, statuses_ok, status_entry


def make_tx(recipient, amount="0.25", **kwargs) -> PendingTransaction:
    return PendingTransaction.create(recipient, Decimal(amount), **kwargs)


class RejectingSigner:
    """Signing authority that always refuses"""

    def __init__(self):
        self._keypair = Keypair()
        self.requests = 0

    def pubkey(self, derivation_path=None) -> str:
        return str(self._keypair.pubkey())

    async def sign(self, message, derivation_path=None) -> SigningResult:
        self.requests += 1
        return SigningResult.rejected("User denied signing request")


async def next_event(stream, timeout=2.0):
    return await asyncio.wait_for(stream.__anext__(), timeout=timeout)


def test_worker_config_validation():
    with pytest.raises(ConfigurationError):
        WorkerConfig(retry_cap=0)
    with pytest.raises(ConfigurationError):
        WorkerConfig(concurrency=0)
    with pytest.raises(ConfigurationError):
        WorkerConfig(backoff="sometimes")

    assert WorkerConfig(backoff="LINEAR").backoff == BackoffPolicy.LINEAR


@pytest.mark.asyncio
async def test_success_removes_row_and_emits_submitted(worker, store, cluster, recipient):
    cluster.on("getLatestBlockhash", blockhash_ok)
    cluster.on("sendTransaction", echo_signature)
    events = worker.events()

    tx = make_tx(recipient, memo="hello")
    await store.enqueue(tx)
    report = await worker.run_once()

    assert report.submitted == 1
    assert report.retried == 0
    assert report.failed == 0
    assert await store.get_all() == []

    event = await next_event(events)
    assert event.type == OutboxEventType.SUBMITTED
    assert event.tx_id == tx.id
    assert event.signature == echo_signature(cluster.calls_for("sendTransaction")[0]).json()["result"]
    assert event.statuses is not None
    await events.aclose()


@pytest.mark.asyncio
async def test_submitted_event_streams_confirmation(worker, store, cluster, recipient):
    cluster.on("getLatestBlockhash", blockhash_ok)
    cluster.on("sendTransaction", echo_signature)
    cluster.on("getSignatureStatuses", lambda r: statuses_ok(status_entry("finalized")))
    events = worker.events()

    await store.enqueue(make_tx(recipient))
    await worker.run_once()
    event = await next_event(events)

    statuses = [e.status.value async for e in event.statuses]
    assert statuses == ["submitted", "finalized"]
    await events.aclose()


@pytest.mark.asyncio
async def test_transient_failure_increments_and_keeps_row(worker, store, cluster, recipient):
    """All endpoints down for sendTransaction: row stays with retries + 1"""
    cluster.on("getLatestBlockhash", blockhash_ok)
    events = worker.events()

    tx = make_tx(recipient)
    await store.enqueue(tx)
    report = await worker.run_once()

    assert report.retried == 1
    assert report.had_transient_failures
    row = await store.get(tx.id)
    assert row.retries == 1
    assert row.is_signed

    event = await next_event(events)
    assert event.type == OutboxEventType.RETRY_SCHEDULED
    assert event.retries == 1
    assert event.signature == row.signature
    await events.aclose()


@pytest.mark.asyncio
async def test_retry_resubmits_identical_bytes(worker, store, cluster, recipient):
    """Retries reuse the first signed bytes, so the signature never changes"""
    cluster.on("getLatestBlockhash", blockhash_ok)
    tx = make_tx(recipient)
    await store.enqueue(tx)

    await worker.run_once()
    await worker.run_once()
    signature = (await store.get(tx.id)).signature

    cluster.on("sendTransaction", echo_signature)
    events = worker.events()
    report = await worker.run_once()

    assert report.submitted == 1
    payloads = {rpc_params(r)[0] for r in cluster.calls_for("sendTransaction")}
    assert len(payloads) == 1
    assert len(cluster.calls_for("getLatestBlockhash")) == 1

    event = await next_event(events)
    assert event.signature == signature
    assert event.retries == 2
    await events.aclose()


@pytest.mark.asyncio
async def test_row_over_cap_is_failed_without_submission(worker, store, cluster, recipient):
    """10 increments with cap 5: permanently failed, never attempted"""
    events = worker.events()
    tx = make_tx(recipient)
    await store.enqueue(tx)
    for _ in range(10):
        await store.increment_retries(tx.id)

    report = await worker.run_once()

    assert report.failed == 1
    assert cluster.calls == []
    assert await store.get_all() == []
    failed = await store.get_failed()
    assert failed[0].id == tx.id
    assert failed[0].retries == 10
    assert "Retry cap exceeded" in failed[0].reason

    event = await next_event(events)
    assert event.type == OutboxEventType.PERMANENTLY_FAILED

    # Gone for good
    report = await worker.run_once()
    assert report.processed == 0
    await events.aclose()


@pytest.mark.asyncio
async def test_reaching_cap_fails_in_same_run(store, rpc, signer, monitor, cluster, recipient):
    config = WorkerConfig(retry_cap=2, concurrency=1, run_interval=0.05, max_run_interval=0.1)
    worker = OutboxWorker(store, rpc, TxBuilder(rpc, signer), monitor, config=config)
    cluster.on("getLatestBlockhash", blockhash_ok)

    tx = make_tx(recipient)
    await store.enqueue(tx)

    first = await worker.run_once()
    second = await worker.run_once()

    assert first.retried == 1
    assert second.failed == 1
    assert second.retried == 0
    assert await store.get_all() == []
    assert (await store.get_failed())[0].retries == 2


@pytest.mark.asyncio
async def test_application_error_is_terminal(worker, store, cluster, recipient):
    cluster.on("getLatestBlockhash", blockhash_ok)
    cluster.on("sendTransaction", lambda r: rpc_error(-32002, "Attempt to debit an account but found no record of a prior credit"))

    tx = make_tx(recipient)
    await store.enqueue(tx)
    report = await worker.run_once()

    assert report.failed == 1
    assert len(cluster.calls_for("sendTransaction")) == 1
    failed = await store.get_failed()
    assert "prior credit" in failed[0].reason
    assert failed[0].retries == 0


@pytest.mark.asyncio
async def test_signing_failure_is_terminal(store, rpc, monitor, worker_config, cluster, recipient):
    cluster.on("getLatestBlockhash", blockhash_ok)
    signer = RejectingSigner()
    worker = OutboxWorker(store, rpc, TxBuilder(rpc, signer), monitor, config=worker_config)

    tx = make_tx(recipient)
    await store.enqueue(tx)
    report = await worker.run_once()

    assert report.failed == 1
    assert signer.requests == 1
    assert cluster.calls_for("sendTransaction") == []
    assert "rejected" in (await store.get_failed())[0].reason


@pytest.mark.asyncio
async def test_blockhash_unavailable_is_transient(worker, store, cluster, recipient):
    tx = make_tx(recipient)
    await store.enqueue(tx)

    report = await worker.run_once()

    assert report.retried == 1
    row = await store.get(tx.id)
    assert row.retries == 1
    assert not row.is_signed


@pytest.mark.asyncio
async def test_invalid_amount_is_terminal(worker, store, cluster, recipient):
    cluster.on("getLatestBlockhash", blockhash_ok)
    tx = make_tx(recipient, amount="0.0000000001")
    await store.enqueue(tx)

    report = await worker.run_once()

    assert report.failed == 1
    assert cluster.calls_for("sendTransaction") == []


@pytest.mark.asyncio
async def test_in_flight_row_is_not_submitted_twice(worker, store, cluster, recipient):
    """Overlapping runs skip a row whose attempt is still pending"""
    gate = asyncio.Event()

    async def slow_send(request):
        await gate.wait()
        return echo_signature(request)

    cluster.on("getLatestBlockhash", blockhash_ok)
    cluster.on("sendTransaction", slow_send)

    tx = make_tx(recipient)
    await store.enqueue(tx)

    first = asyncio.create_task(worker.run_once())
    for _ in range(200):
        if cluster.calls_for("sendTransaction"):
            break
        await asyncio.sleep(0.01)
    assert tx.id in worker.in_flight

    second = await worker.run_once()
    assert second.skipped_in_flight == 1
    assert second.processed == 0

    gate.set()
    report = await asyncio.wait_for(first, timeout=2.0)
    assert report.submitted == 1
    assert len(cluster.calls_for("sendTransaction")) == 1
    assert worker.in_flight == set()


@pytest.mark.asyncio
async def test_concurrency_bound(store, rpc, signer, monitor, cluster, recipient):
    config = WorkerConfig(retry_cap=5, concurrency=2, run_interval=0.05, max_run_interval=0.1)
    worker = OutboxWorker(store, rpc, TxBuilder(rpc, signer), monitor, config=config)
    active = 0
    peak = 0

    async def counting_send(request):
        nonlocal active, peak
        active += 1
        peak = max(peak, active)
        await asyncio.sleep(0.02)
        active -= 1
        return echo_signature(request)

    cluster.on("getLatestBlockhash", blockhash_ok)
    cluster.on("sendTransaction", counting_send)
    for _ in range(6):
        await store.enqueue(make_tx(recipient))

    report = await worker.run_once()

    assert report.submitted == 6
    assert peak <= 2


@pytest.mark.asyncio
async def test_row_removed_while_signing_is_skipped(store, rpc, monitor, worker_config, cluster, recipient):
    cluster.on("getLatestBlockhash", blockhash_ok)
    keypair = Keypair()

    class RacingSigner:
        def pubkey(self, derivation_path=None):
            return str(keypair.pubkey())

        async def sign(self, message, derivation_path=None):
            # Another component finished the row meanwhile
            for row in await store.get_all():
                await store.remove(row.id)
            return SigningResult.success(bytes(keypair.sign_message(message)))

    worker = OutboxWorker(store, rpc, TxBuilder(rpc, RacingSigner()), monitor, config=worker_config)
    await store.enqueue(make_tx(recipient))

    report = await worker.run_once()

    assert report.processed == 0
    assert cluster.calls_for("sendTransaction") == []
    assert await store.get_failed() == []


@pytest.mark.asyncio
async def test_run_forever_picks_up_new_rows(worker, store, cluster, recipient):
    cluster.on("getLatestBlockhash", blockhash_ok)
    cluster.on("sendTransaction", echo_signature)
    events = worker.events()

    task = asyncio.create_task(worker.run_forever())
    try:
        await asyncio.sleep(0.01)
        tx = make_tx(recipient)
        await store.enqueue(tx)

        event = await next_event(events)
        assert event.type == OutboxEventType.SUBMITTED
        assert event.tx_id == tx.id
    finally:
        worker.stop()
        await asyncio.wait_for(task, timeout=2.0)
        await events.aclose()


@pytest.mark.asyncio
async def test_run_forever_backs_off_on_transient_failures(worker, store, cluster, recipient):
    cluster.on("getLatestBlockhash", blockhash_ok)
    await store.enqueue(make_tx(recipient))

    task = asyncio.create_task(worker.run_forever())
    try:
        for _ in range(200):
            if worker.failure_streak >= 1:
                break
            await asyncio.sleep(0.01)
        assert worker.failure_streak >= 1
        assert worker.next_delay() > worker.config.run_interval
    finally:
        worker.stop()
        await asyncio.wait_for(task, timeout=2.0)


@pytest.mark.asyncio
async def test_cancelled_run_leaves_rows_consistent(worker, store, cluster, recipient):
    gate = asyncio.Event()

    async def stuck_send(request):
        await gate.wait()
        return echo_signature(request)

    cluster.on("getLatestBlockhash", blockhash_ok)
    cluster.on("sendTransaction", stuck_send)
    tx = make_tx(recipient)
    await store.enqueue(tx)

    task = asyncio.create_task(worker.run_once())
    for _ in range(200):
        if cluster.calls_for("sendTransaction"):
            break
        await asyncio.sleep(0.01)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    row = await store.get(tx.id)
    assert row.retries == 0
    assert row.is_signed
    assert worker.in_flight == set()


@pytest.mark.asyncio
async def test_overlapping_runs_with_capped_rows_submit_once(worker, store, cluster, recipient):
    """Failing capped rows must not open a window for a second run to claim the rest"""
    gate = asyncio.Event()

    async def slow_send(request):
        await gate.wait()
        return echo_signature(request)

    async def release():
        await asyncio.sleep(0.05)
        gate.set()

    cluster.on("getLatestBlockhash", blockhash_ok)
    cluster.on("sendTransaction", slow_send)

    oldest = make_tx(recipient)
    await store.enqueue(oldest)
    capped = [make_tx(recipient) for _ in range(2)]
    for tx in capped:
        await store.enqueue(tx)
        for _ in range(worker.config.retry_cap):
            await store.increment_retries(tx.id)

    first, second, _ = await asyncio.wait_for(
        asyncio.gather(worker.run_once(), worker.run_once(), release()),
        timeout=5.0,
    )

    assert len(cluster.calls_for("sendTransaction")) == 1
    assert first.submitted + second.submitted == 1
    assert first.failed + second.failed == 2
    assert sorted(r.id for r in await store.get_failed()) == sorted(tx.id for tx in capped)
    assert await store.get_all() == []
    assert worker.in_flight == set()


@pytest.mark.asyncio
@pytest.mark.parametrize("answer", [
    {"context": {"slot": 1}, "value": {"blockhash": "not-a-hash", "lastValidBlockHeight": 1}},
    {"context": {"slot": 1}, "value": None},
    "garbage",
])
async def test_malformed_blockhash_answer_counts_against_cap(worker, store, cluster, recipient, answer):
    cluster.on("getLatestBlockhash", lambda r: rpc_ok(answer))
    tx = make_tx(recipient)
    await store.enqueue(tx)

    reports = [await worker.run_once() for _ in range(worker.config.retry_cap)]

    assert [r.retried for r in reports[:-1]] == [1] * (worker.config.retry_cap - 1)
    assert reports[-1].failed == 1
    assert await store.get_all() == []
    failed = await store.get_failed()
    assert failed[0].retries == worker.config.retry_cap
    assert "malformed" in failed[0].reason or "unexpected" in failed[0].reason
    assert cluster.calls_for("sendTransaction") == []


@pytest.mark.asyncio
async def test_signer_exception_counts_against_cap(store, rpc, monitor, cluster, recipient):
    keypair = Keypair()

    class BrokenSigner:
        def pubkey(self, derivation_path=None):
            return str(keypair.pubkey())

        async def sign(self, message, derivation_path=None):
            raise RuntimeError("device driver crashed")

    config = WorkerConfig(retry_cap=2, concurrency=1, run_interval=0.05, max_run_interval=0.1)
    worker = OutboxWorker(store, rpc, TxBuilder(rpc, BrokenSigner()), monitor, config=config)
    cluster.on("getLatestBlockhash", blockhash_ok)
    tx = make_tx(recipient)
    await store.enqueue(tx)

    first = await worker.run_once()
    second = await worker.run_once()

    assert first.retried == 1
    assert first.had_transient_failures
    assert second.failed == 1
    failed = await store.get_failed()
    assert failed[0].id == tx.id
    assert "device driver crashed" in failed[0].reason
    assert worker.in_flight == set()
