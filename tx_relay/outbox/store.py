"""
Durable outbox store

SQLAlchemy (async) table of transactions awaiting submission. Every
operation runs in its own DB transaction under an in-process lock that
covers store I/O only, so readers never observe a half-updated row and
change notifications follow commit order.
"""

from __future__ import annotations

import asyncio
import logging
import time
from decimal import Decimal
from typing import AsyncIterator, List, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .models import Base, FailedRow, OutboxRow
from ..errors import DuplicateId, NotFound
from ..types import FailedTransaction, FeePreset, PendingTransaction
from ..config import config as global_config

logger = logging.getLogger(__name__)


def _to_entity(row: OutboxRow) -> PendingTransaction:
    return PendingTransaction(
        id=row.id,
        to_address=row.to_address,
        amount=Decimal(row.amount),
        memo=row.memo,
        fee_preset=FeePreset[row.fee_preset],
        created_at=row.created_at,
        retries=row.retries,
        signed_tx=row.signed_tx,
        signature=row.signature,
    )


def _to_failed_entity(row: FailedRow) -> FailedTransaction:
    return FailedTransaction(
        id=row.id,
        to_address=row.to_address,
        amount=Decimal(row.amount),
        memo=row.memo,
        fee_preset=FeePreset[row.fee_preset],
        created_at=row.created_at,
        retries=row.retries,
        reason=row.reason,
        signature=row.signature,
        failed_at=row.failed_at,
    )


class OutboxStore:
    """
    Outbox CRUD surface with a live subscription

    Usage:
        store = await OutboxStore.open("sqlite+aiosqlite:///tx_outbox.db")

        await store.enqueue(PendingTransaction.create(to, Decimal("0.5")))
        rows = await store.get_all()

        async for snapshot in store.subscribe():
            ...
    """

    def __init__(self, engine: AsyncEngine):
        self._engine = engine
        self._sessions = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        self._lock = asyncio.Lock()
        self._changed = asyncio.Condition()
        self._version = 0
        self._snapshot: List[PendingTransaction] = []

    @classmethod
    async def open(cls, db_url: Optional[str] = None, **engine_kwargs) -> "OutboxStore":
        """Create engine and schema"""
        engine = create_async_engine(db_url or global_config.outbox.db_url, **engine_kwargs)
        store = cls(engine)
        await store.create_schema()
        return store

    async def create_schema(self):
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self):
        await self._engine.dispose()

    async def _read_all(self) -> List[PendingTransaction]:
        async with self._sessions() as session:
            stmt = select(OutboxRow).order_by(OutboxRow.created_at, OutboxRow.id)
            result = await session.execute(stmt)
            return [_to_entity(row) for row in result.scalars().all()]

    async def _publish(self):
        """Refresh the snapshot after a commit; caller holds self._lock"""
        snapshot = await self._read_all()
        async with self._changed:
            self._snapshot = snapshot
            self._version += 1
            self._changed.notify_all()

    async def enqueue(self, tx: PendingTransaction) -> PendingTransaction:
        """
        Insert a new row with retries = 0

        Raises:
            DuplicateId: A row with tx.id already exists
        """
        row = OutboxRow(
            id=tx.id,
            to_address=tx.to_address,
            amount=str(tx.amount),
            memo=tx.memo,
            fee_preset=tx.fee_preset.name,
            created_at=tx.created_at,
            retries=0,
            signed_tx=None,
            signature=None,
        )
        async with self._lock:
            try:
                async with self._sessions() as session:
                    async with session.begin():
                        if await session.get(OutboxRow, tx.id) is not None:
                            raise DuplicateId(tx.id)
                        session.add(row)
            except IntegrityError as e:
                raise DuplicateId(tx.id) from e
            await self._publish()

        logger.info(f"Enqueued {tx.id}: {tx.amount} SOL -> {tx.to_address} ({tx.fee_preset.name})")
        return _to_entity(row)

    async def get_all(self) -> List[PendingTransaction]:
        """All active rows, oldest first"""
        async with self._lock:
            return await self._read_all()

    async def get(self, tx_id: str) -> Optional[PendingTransaction]:
        async with self._lock:
            async with self._sessions() as session:
                row = await session.get(OutboxRow, tx_id)
                return _to_entity(row) if row is not None else None

    async def subscribe(self) -> AsyncIterator[List[PendingTransaction]]:
        """
        Live view of the active rows

        Yields the current rows first, then a fresh snapshot after every
        committed mutation. Snapshots are conflated: a slow consumer skips
        intermediate states but never sees a torn one.
        """
        async with self._lock:
            snapshot = await self._read_all()
            seen = self._version
        yield snapshot

        while True:
            async with self._changed:
                await self._changed.wait_for(lambda: self._version > seen)
                snapshot = self._snapshot
                seen = self._version
            yield snapshot

    async def increment_retries(self, tx_id: str) -> PendingTransaction:
        """
        Atomically add one to the retry counter

        Raises:
            NotFound: Row already removed
        """
        async with self._lock:
            async with self._sessions() as session:
                async with session.begin():
                    result = await session.execute(
                        update(OutboxRow)
                        .where(OutboxRow.id == tx_id)
                        .values(retries=OutboxRow.retries + 1)
                    )
                    if result.rowcount == 0:
                        raise NotFound(tx_id)
                    row = await session.get(OutboxRow, tx_id, populate_existing=True)
                    updated = _to_entity(row)
            await self._publish()

        logger.debug(f"Retries for {tx_id} -> {updated.retries}")
        return updated

    async def attach_signed(self, tx_id: str, signed_tx: bytes, signature: str) -> PendingTransaction:
        """
        Store the signed bytes for a row

        The first attachment wins; later submissions reuse those exact bytes.

        Raises:
            NotFound: Row already removed
        """
        async with self._lock:
            async with self._sessions() as session:
                async with session.begin():
                    row = await session.get(OutboxRow, tx_id)
                    if row is None:
                        raise NotFound(tx_id)
                    if row.signed_tx is None:
                        row.signed_tx = signed_tx
                        row.signature = signature
                    updated = _to_entity(row)
            await self._publish()
        return updated

    async def remove(self, tx_id: str):
        """
        Delete a row on terminal success

        Raises:
            NotFound: Row already removed
        """
        async with self._lock:
            async with self._sessions() as session:
                async with session.begin():
                    result = await session.execute(delete(OutboxRow).where(OutboxRow.id == tx_id))
                    if result.rowcount == 0:
                        raise NotFound(tx_id)
            await self._publish()

        logger.info(f"Removed {tx_id} from outbox")

    async def mark_failed(self, tx_id: str, reason: str) -> FailedTransaction:
        """
        Move a row to the permanently failed table in one transaction

        Raises:
            NotFound: Row already removed
        """
        async with self._lock:
            async with self._sessions() as session:
                async with session.begin():
                    row = await session.get(OutboxRow, tx_id)
                    if row is None:
                        raise NotFound(tx_id)
                    failed = FailedRow(
                        id=row.id,
                        to_address=row.to_address,
                        amount=row.amount,
                        memo=row.memo,
                        fee_preset=row.fee_preset,
                        created_at=row.created_at,
                        retries=row.retries,
                        reason=reason,
                        signature=row.signature,
                        failed_at=time.time(),
                    )
                    # An id can fail again after being re-enqueued
                    failed = await session.merge(failed)
                    await session.delete(row)
                    record = _to_failed_entity(failed)
            await self._publish()

        logger.warning(f"Outbox row {tx_id} permanently failed after {record.retries} retries: {reason}")
        return record

    async def get_failed(self) -> List[FailedTransaction]:
        """Permanently failed records, oldest failure first"""
        async with self._lock:
            async with self._sessions() as session:
                result = await session.execute(select(FailedRow).order_by(FailedRow.failed_at))
                return [_to_failed_entity(row) for row in result.scalars().all()]
