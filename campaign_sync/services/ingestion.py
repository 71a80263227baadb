"""Watermark-based ingestion of the monitored program's transactions."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_sync.config import settings
from campaign_sync.models.database import IngestedTransaction
from campaign_sync.onchain.event_decoder import EventDecoder
from campaign_sync.onchain.ledger import LedgerError, LedgerTransaction, SignatureInfo, SolanaLedgerClient
from campaign_sync.services.database import run_in_transaction
from campaign_sync.services.errors import DataIntegrityError
from campaign_sync.services.event_handlers import EventDispatcher

logger = logging.getLogger(__name__)


class TransactionIngestor:
    def __init__(
        self,
        ledger: SolanaLedgerClient,
        dispatcher: EventDispatcher,
        session_factory: Callable[[], AsyncSession],
        decoder: Optional[EventDecoder] = None,
        program_id: Optional[str] = None,
        page_size: Optional[int] = None,
        trailing_window: Optional[int] = None,
        chunk_size: Optional[int] = None,
        concurrency: Optional[int] = None,
        fetch_delay_seconds: Optional[float] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.ledger = ledger
        self.dispatcher = dispatcher
        self.session_factory = session_factory
        self.program_id = str(program_id or settings.program_id)
        self.decoder = decoder or EventDecoder(self.program_id)
        self.page_size = page_size or settings.signature_page_size
        self.trailing_window = settings.signature_trailing_window if trailing_window is None else trailing_window
        self.chunk_size = chunk_size or settings.transaction_fetch_chunk_size
        self.concurrency = concurrency or settings.transaction_fetch_concurrency
        self.fetch_delay_seconds = (
            settings.transaction_fetch_delay_seconds if fetch_delay_seconds is None else fetch_delay_seconds
        )
        self.max_attempts = max_attempts or settings.write_conflict_max_retries
        self.backoff_seconds = (
            settings.write_conflict_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self.sleep = sleep

    async def latest_watermark(self) -> Optional[IngestedTransaction]:
        async with self.session_factory() as db:
            result = await db.execute(
                select(IngestedTransaction)
                .order_by(IngestedTransaction.block_slot.desc(), IngestedTransaction.id.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def is_recorded(self, signature: str) -> bool:
        async with self.session_factory() as db:
            result = await db.execute(
                select(IngestedTransaction.id).where(IngestedTransaction.signature == signature)
            )
            return result.scalar_one_or_none() is not None

    async def discover_signatures(self, until: Optional[str] = None) -> list[SignatureInfo]:
        """Successful signatures newer than ``until``, newest first."""
        discovered: list[SignatureInfo] = []
        seen: set[str] = set()
        before: Optional[str] = None
        while True:
            page = await self.ledger.list_signatures(
                self.program_id,
                before=before,
                until=until,
                limit=self.page_size,
            )
            if not page:
                break
            for info in page:
                seen.add(info.signature)
                if info.err is None and info.signature != until:
                    discovered.append(info)
            if until is not None and until in seen:
                break
            if len(page) < self.page_size:
                break
            before = page[-1].signature
        return discovered

    def select_batch(self, newest_first: list[SignatureInfo]) -> list[SignatureInfo]:
        """Drop the trailing window of most recent signatures, oldest first."""
        batch = list(newest_first)
        if self.trailing_window > 0 and len(batch) > self.trailing_window:
            batch = batch[self.trailing_window :]
        batch.reverse()
        return batch

    async def fetch_transactions(self, signatures: list[SignatureInfo]) -> list[LedgerTransaction]:
        semaphore = asyncio.Semaphore(max(self.concurrency, 1))

        async def _fetch(info: SignatureInfo) -> Optional[LedgerTransaction]:
            async with semaphore:
                return await self.ledger.get_transaction(info.signature)

        transactions: list[LedgerTransaction] = []
        for start in range(0, len(signatures), self.chunk_size):
            if start and self.fetch_delay_seconds:
                await self.sleep(self.fetch_delay_seconds)
            chunk = signatures[start : start + self.chunk_size]
            results = await asyncio.gather(*(_fetch(info) for info in chunk))
            for info, tx in zip(chunk, results):
                if tx is None:
                    raise LedgerError(f"Transaction {info.signature} not returned by RPC")
                transactions.append(tx)
        return transactions

    async def handle_transaction(self, tx: LedgerTransaction) -> bool:
        """Apply one transaction's events atomically. False if already ingested."""

        async def _apply(db: AsyncSession) -> bool:
            existing = await db.execute(
                select(IngestedTransaction.id).where(IngestedTransaction.signature == tx.signature)
            )
            if existing.scalar_one_or_none() is not None:
                return False
            for event in self.decoder.decode_logs(tx.log_messages):
                await self.dispatcher.dispatch(db, event)
            db.add(
                IngestedTransaction(
                    signature=tx.signature,
                    block_slot=tx.slot,
                    block_time=tx.block_time,
                )
            )
            await db.flush()
            return True

        return await run_in_transaction(
            self.session_factory,
            _apply,
            max_attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
            sleep=self.sleep,
            label=f"ingest {tx.signature[:12]}",
        )

    async def sync_once(self) -> dict:
        watermark = await self.latest_watermark()
        until = watermark.signature if watermark is not None else None
        discovered = await self.discover_signatures(until)
        summary = {"discovered": len(discovered), "applied": 0, "skipped": 0, "failed": 0}
        if not discovered:
            return summary

        batch = self.select_batch(discovered)
        logger.info("Ingesting %s of %s new transactions", len(batch), len(discovered))
        for tx in await self.fetch_transactions(batch):
            try:
                applied = await self.handle_transaction(tx)
            except DataIntegrityError as exc:
                summary["failed"] += 1
                logger.error("Transaction %s rolled back: %s", tx.signature, exc)
                continue
            except IntegrityError as exc:
                if await self.is_recorded(tx.signature):
                    summary["skipped"] += 1
                    logger.info("Transaction %s ingested concurrently, skipping", tx.signature)
                else:
                    summary["failed"] += 1
                    logger.error("Transaction %s rolled back on constraint violation: %s", tx.signature, exc.orig)
                continue
            if applied:
                summary["applied"] += 1
            else:
                summary["skipped"] += 1
        return summary

    async def sync_new_transactions(self) -> dict:
        """Run passes until nothing new is discovered or a pass makes no progress."""
        totals = {"passes": 0, "discovered": 0, "applied": 0, "skipped": 0, "failed": 0}
        while True:
            summary = await self.sync_once()
            totals["passes"] += 1
            for key in ("discovered", "applied", "skipped", "failed"):
                totals[key] += summary[key]
            if summary["discovered"] == 0:
                break
            if summary["applied"] == 0:
                # Nothing recorded, so the watermark did not move.
                break
        return totals
