"""Wiring of the sync components and the three job bodies."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from campaign_sync.config import Settings, rpc_url_safe, settings as default_settings
from campaign_sync.onchain.idl import ProgramIdl
from campaign_sync.onchain.ledger import SolanaLedgerClient
from campaign_sync.onchain.wallet import OperatorWallet
from campaign_sync.services.claims import ClaimAutomation
from campaign_sync.services.database import create_session_factory, run_in_transaction
from campaign_sync.services.event_handlers import EventDispatcher
from campaign_sync.services.fund_reconciler import FundReconciler
from campaign_sync.services.ingestion import TransactionIngestor
from campaign_sync.services.price_oracle import GeckoTerminalOracle
from campaign_sync.services.status import reconcile_all_statuses
from campaign_sync.services.token_issuer import TokenIssuer

logger = logging.getLogger(__name__)


@dataclass
class SyncComponents:
    session_factory: Callable[[], AsyncSession]
    ledger: SolanaLedgerClient
    ingestor: TransactionIngestor
    claims: ClaimAutomation
    fund_reconciler: FundReconciler
    token_issuer: Optional[TokenIssuer] = None
    clock: Callable[[], int] = lambda: int(time.time())
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep

    async def close(self) -> None:
        await self.ledger.close()


def load_operator_wallet(config: Settings) -> Optional[OperatorWallet]:
    if not config.operator_private_key:
        logger.warning("OPERATOR_PRIVATE_KEY not set; token issuance and claim updates are disabled")
        return None
    return OperatorWallet(config.operator_private_key)


def build_components(
    config: Optional[Settings] = None,
    session_factory: Optional[Callable[[], AsyncSession]] = None,
    ledger: Optional[SolanaLedgerClient] = None,
    wallet: Optional[OperatorWallet] = None,
    clock: Optional[Callable[[], int]] = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> SyncComponents:
    config = config or default_settings
    clock = clock or (lambda: int(time.time()))
    session_factory = session_factory or create_session_factory(config.database_url)
    ledger = ledger or SolanaLedgerClient(config.solana_rpc_url, commitment=config.commitment)
    wallet = wallet or load_operator_wallet(config)
    idl = ProgramIdl.load()
    logger.info("Monitoring program %s via %s", config.program_id, rpc_url_safe(config.solana_rpc_url))

    claims = ClaimAutomation(
        ledger,
        oracle=GeckoTerminalOracle(config.geckoterminal_url, config.price_oracle_timeout_seconds),
        wallet=wallet,
        session_factory=session_factory,
        program_id=config.program_id,
        idl=idl,
        max_attempts=config.write_conflict_max_retries,
        sleep=sleep,
    )
    dispatcher = EventDispatcher(
        ledger,
        claims=claims,
        program_id=config.program_id,
        index_offset=config.campaign_index_offset,
        clock=clock,
    )
    ingestor = TransactionIngestor(
        ledger,
        dispatcher,
        session_factory,
        program_id=config.program_id,
        page_size=config.signature_page_size,
        trailing_window=config.signature_trailing_window,
        chunk_size=config.transaction_fetch_chunk_size,
        concurrency=config.transaction_fetch_concurrency,
        fetch_delay_seconds=config.transaction_fetch_delay_seconds,
        max_attempts=config.write_conflict_max_retries,
        backoff_seconds=config.write_conflict_backoff_seconds,
        sleep=sleep,
    )
    fund_reconciler = FundReconciler(
        ledger,
        session_factory,
        program_id=config.program_id,
        max_attempts=config.write_conflict_max_retries,
        backoff_seconds=config.write_conflict_backoff_seconds,
        sleep=sleep,
    )
    token_issuer = None
    if wallet is not None:
        token_issuer = TokenIssuer(
            ledger,
            wallet,
            session_factory,
            program_id=config.program_id,
            idl=idl,
            batch_size=config.token_issuance_batch_size,
            slippage_bps=config.token_issuance_slippage_bps,
            max_attempts=config.write_conflict_max_retries,
            backoff_seconds=config.write_conflict_backoff_seconds,
            clock=clock,
            sleep=sleep,
        )
    return SyncComponents(
        session_factory=session_factory,
        ledger=ledger,
        ingestor=ingestor,
        claims=claims,
        fund_reconciler=fund_reconciler,
        token_issuer=token_issuer,
        clock=clock,
        sleep=sleep,
    )


async def run_status_reconciliation(components: SyncComponents) -> dict:
    async def _work(db: AsyncSession) -> dict:
        return await reconcile_all_statuses(db, components.clock())

    return await run_in_transaction(
        components.session_factory,
        _work,
        sleep=components.sleep,
        label="status-reconcile",
    )


async def run_ingest_cycle(components: SyncComponents) -> dict:
    """Ingest new transactions, re-derive every status, then update claims."""
    ingested = await components.ingestor.sync_new_transactions()
    statuses = await run_status_reconciliation(components)
    claims: dict = {"status": "disabled"}
    if components.claims.wallet is not None:
        claims = await components.claims.run_claim_updates()
    logger.info("Ingest cycle: %s; statuses %s; claims %s", ingested, statuses, claims)
    return {"ingested": ingested, "statuses": statuses, "claims": claims}


async def run_fund_reconciliation(components: SyncComponents) -> dict:
    return await components.fund_reconciler.reconcile_funds()


async def run_token_issuance(components: SyncComponents) -> dict:
    if components.token_issuer is None:
        return {"status": "disabled"}
    return await components.token_issuer.process_pending_campaigns()
