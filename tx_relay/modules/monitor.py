"""
Confirmation Monitor

Turns a submitted signature into a stream of commitment-level events by
polling getSignatureStatuses through the failover client.
"""

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, Optional

from ..config import MonitorConfig
from ..config import config as global_config
from ..infra.rpc import FailoverRpcClient
from ..infra.retry import log_with_correlation
from ..types import ConfirmationStatus, StatusEvent

logger = logging.getLogger(__name__)


class ConfirmationMonitor:
    """
    Signature status watcher

    Each watch() call starts its own poll loop. Status events come out in
    commitment order: submitted, processed, confirmed, finalized. failed can
    end the stream from any of them, and timeout ends it once the wall-clock
    budget (or poll budget) is spent. Transient RPC failures while polling
    are logged and polled again on the next tick.

    Usage:
        monitor = ConfirmationMonitor(rpc)

        async for event in monitor.watch(signature):
            print(event.status)
    """

    def __init__(
        self,
        rpc: FailoverRpcClient,
        config: Optional[MonitorConfig] = None,
    ):
        self._rpc = rpc
        self._config = config or global_config.monitor

    @property
    def config(self) -> MonitorConfig:
        return self._config

    async def _poll(self, signature: str) -> Optional[StatusEvent]:
        """
        One status query

        Returns:
            StatusEvent for an observed level or on-chain failure, None when
            the signature is not visible yet or the query failed
        """
        result = await self._rpc.get_signature_statuses([signature])

        if not result.is_ok:
            log_with_correlation(
                logging.WARNING if result.is_unavailable else logging.INFO,
                f"Status query failed, polling again: {result}",
                "poll",
                signature=signature,
            )
            return None

        value = result.result.get("value") if isinstance(result.result, dict) else None
        if not isinstance(value, list) or not value:
            logger.debug(f"Malformed status response for {signature}: {result.result}")
            return None

        entry: Optional[Dict[str, Any]] = value[0]
        if not isinstance(entry, dict):
            # Not seen by the cluster yet
            return None

        slot = entry.get("slot")
        if entry.get("err") is not None:
            return StatusEvent(signature, ConfirmationStatus.FAILED, error=entry["err"], slot=slot)

        level = ConfirmationStatus.from_rpc(entry.get("confirmationStatus"))
        if level is None:
            return None
        return StatusEvent(signature, level, slot=slot)

    async def watch(
        self,
        signature: str,
        timeout: Optional[float] = None,
    ) -> AsyncIterator[StatusEvent]:
        """
        Stream status events for a signature

        Args:
            signature: Transaction signature (base58)
            timeout: Wall-clock budget override (seconds)

        Yields:
            StatusEvent, starting with SUBMITTED; the stream completes after
            FINALIZED, FAILED or TIMEOUT
        """
        cfg = self._config
        budget = cfg.timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        deadline = loop.time() + budget
        interval = cfg.poll_interval
        polls = 0

        last = ConfirmationStatus.SUBMITTED
        yield StatusEvent(signature, last)

        while True:
            remaining = deadline - loop.time()
            if remaining <= 0 or (cfg.max_polls and polls >= cfg.max_polls):
                break

            polls += 1
            try:
                event = await asyncio.wait_for(self._poll(signature), timeout=remaining)
            except asyncio.TimeoutError:
                break

            if event is not None:
                if event.status == ConfirmationStatus.FAILED:
                    log_with_correlation(
                        logging.WARNING,
                        f"Transaction {signature} failed on-chain: {event.error}",
                        "watch",
                    )
                    yield event
                    return

                if event.status.rank > last.rank:
                    last = event.status
                    log_with_correlation(logging.INFO, f"{signature} -> {last.value}", "watch")
                    yield event
                    if last == ConfirmationStatus.FINALIZED:
                        return

            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            await asyncio.sleep(min(interval, remaining))
            interval = min(interval * cfg.poll_backoff, cfg.max_poll_interval)

        log_with_correlation(
            logging.WARNING,
            f"Transaction {signature} timeout after {polls} polls. Last status: {last.value}",
            "watch",
        )
        yield StatusEvent(signature, ConfirmationStatus.TIMEOUT)

    async def confirm(
        self,
        signature: str,
        commitment: ConfirmationStatus = ConfirmationStatus.CONFIRMED,
        timeout: Optional[float] = None,
    ) -> Optional[bool]:
        """
        Wait until a signature reaches a commitment level

        Returns:
            True if the level was reached
            False if the transaction failed on-chain
            None if timeout (never landed or status unknown)
        """
        stream = self.watch(signature, timeout=timeout)
        try:
            async for event in stream:
                if event.status == ConfirmationStatus.FAILED:
                    return False
                if event.status == ConfirmationStatus.TIMEOUT:
                    return None
                if event.status.rank >= commitment.rank:
                    return True
        finally:
            await stream.aclose()
        return None
