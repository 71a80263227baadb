"""Launch pump.fun tokens for campaigns that reached their goal."""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from solders.keypair import Keypair
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_sync.config import settings
from campaign_sync.models.database import Campaign, ProcessState, ProcessStatus
from campaign_sync.onchain.accounts import AccountDecoder
from campaign_sync.onchain.addresses import (
    find_associated_token_address,
    find_bonding_curve_address,
    find_campaign_address,
    find_config_address,
    find_metadata_address,
    find_treasury_address,
    to_pubkey,
)
from campaign_sync.onchain.idl import ProgramIdl
from campaign_sync.onchain.instructions import (
    LaunchpadInstructions,
    PumpFunAccounts,
    TokenLaunchAccounts,
    create_token_account,
    pump_fun_buy,
    transfer_tokens,
)
from campaign_sync.onchain.ledger import SolanaLedgerClient
from campaign_sync.onchain.wallet import OperatorWallet
from campaign_sync.services.bonding_curve import BPS_DENOMINATOR, calc_out_token_amount
from campaign_sync.services.database import run_in_transaction
from campaign_sync.services.errors import CampaignAccountMissing, DataIntegrityError
from campaign_sync.services.status import is_eligible_for_issuance, set_process_status

logger = logging.getLogger(__name__)


@dataclass
class IssuanceResult:
    signature: str
    mint: str
    max_sol_cost: int
    token_amount: int


class TokenIssuer:
    def __init__(
        self,
        ledger: SolanaLedgerClient,
        wallet: OperatorWallet,
        session_factory: Callable[[], AsyncSession],
        program_id: Optional[str] = None,
        idl: Optional[ProgramIdl] = None,
        batch_size: Optional[int] = None,
        slippage_bps: Optional[int] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        clock: Optional[Callable[[], int]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.ledger = ledger
        self.wallet = wallet
        self.session_factory = session_factory
        self.program_id = to_pubkey(program_id or settings.program_id)
        idl = idl or ProgramIdl.load()
        self.accounts = AccountDecoder(idl)
        self.instructions = LaunchpadInstructions(self.program_id, idl)
        self.batch_size = batch_size or settings.token_issuance_batch_size
        self.slippage_bps = settings.token_issuance_slippage_bps if slippage_bps is None else slippage_bps
        self.max_attempts = max_attempts or settings.write_conflict_max_retries
        self.backoff_seconds = (
            settings.write_conflict_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self.clock = clock or (lambda: int(time.time()))
        self.sleep = sleep
        self.pump = PumpFunAccounts(
            program_id=to_pubkey(settings.pump_fun_program_id),
            global_state=to_pubkey(settings.pump_fun_global),
            fee_recipient=to_pubkey(settings.fee_recipient),
            mint_authority=to_pubkey(settings.pump_fun_mint_authority),
            event_authority=to_pubkey(settings.pump_fun_event_authority),
        )
        self.metadata_program = to_pubkey(settings.metaplex_metadata_program_id)

    async def process_pending_campaigns(self) -> dict:
        now = self.clock()

        async def _load(db: AsyncSession) -> list[tuple[str, int, Optional[Campaign]]]:
            result = await db.execute(
                select(ProcessStatus)
                .where(ProcessStatus.status == ProcessState.PENDING.value)
                .order_by(ProcessStatus.updated_at, ProcessStatus.id)
                .limit(self.batch_size)
            )
            pending = []
            for row in result.scalars().all():
                campaign = (
                    await db.execute(
                        select(Campaign).where(
                            Campaign.creator == row.creator,
                            Campaign.campaign_index == row.campaign_index,
                        )
                    )
                ).scalar_one_or_none()
                pending.append((row.creator, row.campaign_index, campaign))
            return pending

        pending = await self._transaction(_load, "issuance-load")
        summary = {"pending": len(pending), "created": 0, "skipped": 0, "failed": 0}
        for creator, campaign_index, campaign in pending:
            if campaign is None:
                logger.warning("Campaign not found for pending process %s/%s", creator, campaign_index)
                summary["skipped"] += 1
                continue
            if not is_eligible_for_issuance(campaign, now):
                logger.info("Campaign %s/%s no longer eligible for token creation", creator, campaign_index)
                summary["skipped"] += 1
                continue
            try:
                await self.create_token_for_campaign(campaign)
            except Exception as exc:
                logger.exception("Token creation failed for campaign %s/%s: %s", creator, campaign_index, exc)
                await self._mark_failed(creator, campaign_index)
                summary["failed"] += 1
                continue
            summary["created"] += 1
        return summary

    async def create_token_for_campaign(self, campaign: Campaign) -> IssuanceResult:
        """Create, buy and custody the campaign token in one transaction.

        COMPLETED is written later, when the resulting token-created event is
        ingested.
        """
        operator = self.wallet.pubkey
        creator = to_pubkey(campaign.creator)
        campaign_address = find_campaign_address(self.program_id, creator, campaign.campaign_index)
        config_address = find_config_address(self.program_id)

        campaign_account = await self.ledger.get_account(campaign_address)
        if campaign_account is None:
            raise CampaignAccountMissing(str(campaign_address), campaign.creator, campaign.campaign_index)
        config_account = await self.ledger.get_account(config_address)
        if config_account is None:
            raise DataIntegrityError(f"Program config account {config_address} not found")
        config = self.accounts.config(config_account.data)

        rent = await self.ledger.get_minimum_balance(len(campaign_account.data))
        available = campaign_account.lamports - rent
        fee = available * config.protocol_fee_bps // BPS_DENOMINATOR
        max_sol_cost = available - fee
        if max_sol_cost <= 0:
            raise DataIntegrityError(
                f"Campaign {campaign.creator}/{campaign.campaign_index} has no spendable balance"
            )
        token_amount = calc_out_token_amount(max_sol_cost, self.slippage_bps)

        mint_keypair = Keypair()
        mint = mint_keypair.pubkey()
        bonding_curve = find_bonding_curve_address(self.pump.program_id, mint)
        launch = TokenLaunchAccounts(
            operator=operator,
            config=config_address,
            treasury=find_treasury_address(self.program_id),
            creator=creator,
            campaign=campaign_address,
            mint=mint,
            bonding_curve=bonding_curve,
            associated_bonding_curve=find_associated_token_address(bonding_curve, mint),
            associated_operator=find_associated_token_address(operator, mint),
            associated_campaign=find_associated_token_address(campaign_address, mint),
            metadata=find_metadata_address(self.metadata_program, mint),
            metadata_program=self.metadata_program,
        )
        logger.info(
            "Creating token %s for campaign %s/%s (max cost %s lamports, %s tokens)",
            mint,
            campaign.creator,
            campaign.campaign_index,
            max_sol_cost,
            token_amount,
        )

        instructions = [
            self.instructions.create_token(launch, self.pump, self.slippage_bps),
            create_token_account(operator, operator, mint),
            pump_fun_buy(launch, self.pump, token_amount, max_sol_cost),
            create_token_account(operator, campaign_address, mint),
            transfer_tokens(launch.associated_operator, launch.associated_campaign, operator, token_amount),
        ]
        signature = await self.ledger.send_transaction(instructions, [self.wallet.keypair, mint_keypair])
        logger.info("Token created for campaign %s/%s: %s", campaign.creator, campaign.campaign_index, signature)
        return IssuanceResult(
            signature=signature,
            mint=str(mint),
            max_sol_cost=max_sol_cost,
            token_amount=token_amount,
        )

    async def _mark_failed(self, creator: str, campaign_index: int) -> None:
        async def _fail(db: AsyncSession) -> None:
            await set_process_status(db, creator, campaign_index, ProcessState.FAILED)

        try:
            await self._transaction(_fail, "issuance-fail")
        except Exception as exc:
            logger.error("Could not mark campaign %s/%s FAILED: %s", creator, campaign_index, exc)

    async def _transaction(self, work, label: str):
        return await run_in_transaction(
            self.session_factory,
            work,
            max_attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
            exponential=True,
            sleep=self.sleep,
            label=label,
        )
