"""
Outbox Worker

Background loop that drains the outbox: signs each row once, submits the
signed bytes through the failover client and records the outcome.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import AsyncIterator, List, Optional, Set

from ..config import config as global_config
from ..errors import ConfigurationError, NotFound, TransactionError, TxRelayError
from ..infra.retry import (
    BackoffPolicy,
    CorrelationContext,
    backoff_delay,
    is_recoverable,
    log_with_correlation,
)
from ..infra.rpc import FailoverRpcClient
from ..infra.tx_builder import TxBuilder
from ..outbox import OutboxStore
from ..types import OutboxEvent, OutboxEventType, PendingTransaction, RunReport
from .monitor import ConfirmationMonitor

logger = logging.getLogger(__name__)


@dataclass
class WorkerConfig:
    """
    Outbox worker runtime configuration

    Per-worker overrides, defaults pulled from the global config
    (tx_relay.config.OutboxConfig / TxConfig).
    """
    retry_cap: int = None
    concurrency: int = None
    run_interval: float = None
    backoff: BackoffPolicy = None
    max_run_interval: float = None
    skip_preflight: bool = None
    preflight_commitment: str = None

    def __post_init__(self):
        """Apply defaults from global config for any unset values"""
        outbox = global_config.outbox
        if self.retry_cap is None:
            self.retry_cap = outbox.retry_cap
        if self.concurrency is None:
            self.concurrency = outbox.concurrency
        if self.run_interval is None:
            self.run_interval = outbox.run_interval
        if self.backoff is None:
            self.backoff = outbox.backoff
        if isinstance(self.backoff, str):
            self.backoff = BackoffPolicy.parse(self.backoff)
        if self.max_run_interval is None:
            self.max_run_interval = outbox.max_run_interval
        if self.skip_preflight is None:
            self.skip_preflight = global_config.tx.skip_preflight
        if self.preflight_commitment is None:
            self.preflight_commitment = global_config.tx.preflight_commitment

        if self.retry_cap < 1:
            raise ConfigurationError.invalid("OUTBOX_RETRY_CAP", "must be at least 1")
        if self.concurrency < 1:
            raise ConfigurationError.invalid("OUTBOX_CONCURRENCY", "must be at least 1")


class OutboxWorker:
    """
    Outbox drain loop

    Per row and run:
    - Rows at the retry cap are moved to the failed table
    - Unsigned rows are built and signed once; the signed bytes are stored
      so every later attempt resubmits the same transaction
    - Submission success removes the row and hands the signature to the
      confirmation monitor
    - All endpoints unavailable bumps the retry counter
    - RPC application errors and signing failures fail the row at once

    A row is never in flight twice: rows claimed by a run are skipped by
    any overlapping run until their outcome is recorded.

    Usage:
        worker = OutboxWorker(store, rpc, builder, monitor)

        report = await worker.run_once()

        # Or in the background
        task = asyncio.create_task(worker.run_forever())
        worker.trigger()  # connectivity regained
    """

    def __init__(
        self,
        store: OutboxStore,
        rpc: FailoverRpcClient,
        builder: TxBuilder,
        monitor: ConfirmationMonitor,
        config: Optional[WorkerConfig] = None,
    ):
        self._store = store
        self._rpc = rpc
        self._builder = builder
        self._monitor = monitor
        self._config = config or WorkerConfig()

        self._in_flight: Set[str] = set()
        self._wake = asyncio.Event()
        self._running = False
        self._failure_streak = 0
        self._subscribers: List[asyncio.Queue] = []

    @property
    def config(self) -> WorkerConfig:
        return self._config

    @property
    def in_flight(self) -> Set[str]:
        """Ids currently being submitted"""
        return set(self._in_flight)

    @property
    def failure_streak(self) -> int:
        """Consecutive runs that hit transient failures"""
        return self._failure_streak

    # =========================================================================
    # Events
    # =========================================================================

    def events(self) -> AsyncIterator[OutboxEvent]:
        """
        Subscribe to worker outcome events

        The subscription starts at call time; events emitted before it are
        not replayed.
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.append(queue)
        return self._drain(queue)

    async def _drain(self, queue: asyncio.Queue) -> AsyncIterator[OutboxEvent]:
        try:
            while True:
                yield await queue.get()
        finally:
            if queue in self._subscribers:
                self._subscribers.remove(queue)

    def _emit(self, event: OutboxEvent):
        for queue in list(self._subscribers):
            queue.put_nowait(event)

    # =========================================================================
    # Outcomes
    # =========================================================================

    async def _fail(self, tx: PendingTransaction, reason: str, report: RunReport):
        try:
            record = await self._store.mark_failed(tx.id, reason)
        except NotFound:
            log_with_correlation(logging.INFO, f"{tx.id} already gone, nothing to fail", "fail")
            return

        report.failed += 1
        log_with_correlation(logging.ERROR, f"{tx.id} permanently failed: {reason}", "fail")
        self._emit(OutboxEvent(
            type=OutboxEventType.PERMANENTLY_FAILED,
            tx_id=tx.id,
            signature=record.signature,
            retries=record.retries,
            reason=reason,
        ))

    async def _retry(self, tx: PendingTransaction, reason: str, report: RunReport):
        try:
            updated = await self._store.increment_retries(tx.id)
        except NotFound:
            log_with_correlation(logging.INFO, f"{tx.id} already gone, nothing to retry", "retry")
            return

        cap = self._config.retry_cap
        if updated.retries >= cap:
            cap_error = TransactionError.retry_cap_exceeded(tx.id, updated.retries)
            await self._fail(updated, f"{cap_error.message}: {reason}", report)
            return

        report.retried += 1
        log_with_correlation(
            logging.WARNING,
            f"{tx.id} will be retried next run: {reason}",
            "retry",
            attempt=updated.retries,
            max_retries=cap,
        )
        self._emit(OutboxEvent(
            type=OutboxEventType.RETRY_SCHEDULED,
            tx_id=tx.id,
            signature=updated.signature,
            retries=updated.retries,
            reason=reason,
        ))

    async def _succeed(self, tx: PendingTransaction, signature: str, report: RunReport):
        try:
            await self._store.remove(tx.id)
        except NotFound:
            log_with_correlation(logging.INFO, f"{tx.id} already removed", "submit")
            return

        report.submitted += 1
        log_with_correlation(logging.INFO, f"{tx.id} submitted: {signature}", "submit")
        self._emit(OutboxEvent(
            type=OutboxEventType.SUBMITTED,
            tx_id=tx.id,
            signature=signature,
            retries=tx.retries,
            statuses=self._monitor.watch(signature),
        ))

    # =========================================================================
    # Runs
    # =========================================================================

    async def _process(self, tx: PendingTransaction, report: RunReport):
        """Single submission attempt for one row"""
        cfg = self._config

        with CorrelationContext("outbox"):
            log_with_correlation(
                logging.INFO,
                f"Submitting {tx.id}: {tx.amount} SOL -> {tx.to_address}",
                "submit",
                attempt=tx.retries + 1,
                max_retries=cfg.retry_cap,
            )

            try:
                if not tx.is_signed:
                    signed_tx, signature = await self._builder.build_and_sign(tx)
                    tx = await self._store.attach_signed(tx.id, signed_tx, signature)

                result = await self._rpc.send_transaction(
                    tx.signed_tx,
                    skip_preflight=cfg.skip_preflight,
                    preflight_commitment=cfg.preflight_commitment,
                )
            except NotFound:
                log_with_correlation(logging.INFO, f"{tx.id} removed while signing", "submit")
                return
            except TxRelayError as e:
                if is_recoverable(e):
                    await self._retry(tx, str(e), report)
                else:
                    await self._fail(tx, str(e), report)
                return
            except Exception as e:
                # Unexpected failures still count against the retry cap
                logger.exception(f"Unexpected error submitting {tx.id}")
                await self._retry(tx, f"unexpected error: {e!r}", report)
                return

            if result.is_ok:
                if result.result and result.result != tx.signature:
                    logger.warning(f"Node returned signature {result.result}, expected {tx.signature}")
                await self._succeed(tx, tx.signature or result.result, report)
            elif result.is_application_error:
                await self._fail(tx, f"RPC error {result.error_code}: {result.error_message}", report)
            else:
                await self._retry(tx, f"all {len(result.errors)} endpoints unavailable", report)

    async def run_once(self) -> RunReport:
        """
        Process every eligible row once

        Returns:
            RunReport with per-outcome counts
        """
        cfg = self._config
        report = RunReport()
        rows = await self._store.get_all()

        # No await between reading the rows and claiming them
        capped: List[PendingTransaction] = []
        eligible: List[PendingTransaction] = []
        for tx in rows:
            if tx.id in self._in_flight:
                report.skipped_in_flight += 1
                continue
            self._in_flight.add(tx.id)
            if tx.retries >= cfg.retry_cap:
                capped.append(tx)
            else:
                eligible.append(tx)

        semaphore = asyncio.Semaphore(cfg.concurrency)

        async def attempt(tx: PendingTransaction):
            async with semaphore:
                await self._process(tx, report)

        try:
            for tx in capped:
                cap_error = TransactionError.retry_cap_exceeded(tx.id, tx.retries)
                await self._fail(tx, cap_error.message, report)

            results = await asyncio.gather(*(attempt(tx) for tx in eligible), return_exceptions=True)
            for tx, result in zip(eligible, results):
                if isinstance(result, Exception):
                    report.errors += 1
                    logger.error(f"Outbox attempt for {tx.id} aborted: {result!r}")
                elif isinstance(result, BaseException):
                    raise result
        finally:
            for tx in capped + eligible:
                self._in_flight.discard(tx.id)

        if report.processed or report.skipped_in_flight or report.errors:
            logger.info(
                f"Outbox run: {report.submitted} submitted, {report.retried} retried, "
                f"{report.failed} failed, {report.errors} aborted, "
                f"{report.skipped_in_flight} in flight"
            )
        return report

    def trigger(self):
        """Wake the background loop for an immediate run"""
        self._wake.set()

    def stop(self):
        """Ask the background loop to exit after the current run"""
        self._running = False
        self._wake.set()

    def next_delay(self) -> float:
        """Delay before the next scheduled run"""
        cfg = self._config
        return backoff_delay(cfg.backoff, cfg.run_interval, self._failure_streak, cfg.max_run_interval)

    async def _watch_store(self):
        """Trigger a run whenever a new id shows up in the outbox"""
        known: Optional[Set[str]] = None
        async for snapshot in self._store.subscribe():
            ids = {tx.id for tx in snapshot}
            if known is not None and ids - known:
                self.trigger()
            known = ids

    async def run_forever(self):
        """
        Run until stop() or cancellation

        Waits between runs for a trigger, a newly enqueued row, or the
        backoff delay, whichever comes first.
        """
        self._running = True
        watcher = asyncio.create_task(self._watch_store())
        logger.info("Outbox worker started")

        try:
            while self._running:
                self._wake.clear()
                try:
                    report = await self.run_once()
                    if report.had_transient_failures:
                        self._failure_streak += 1
                    else:
                        self._failure_streak = 0
                except Exception as e:
                    logger.exception(f"Outbox run aborted: {e}")
                    self._failure_streak += 1

                if not self._running:
                    break

                try:
                    await asyncio.wait_for(self._wake.wait(), timeout=self.next_delay())
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            watcher.cancel()
            await asyncio.gather(watcher, return_exceptions=True)
            logger.info("Outbox worker stopped")
