"""Market-cap driven claimable-amount automation."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_sync.config import settings
from campaign_sync.models.database import Campaign, SellProgress
from campaign_sync.onchain.accounts import AccountDecoder
from campaign_sync.onchain.addresses import find_campaign_address, find_config_address, to_pubkey
from campaign_sync.onchain.idl import ProgramIdl
from campaign_sync.onchain.instructions import LaunchpadInstructions
from campaign_sync.onchain.ledger import SolanaLedgerClient
from campaign_sync.onchain.wallet import OperatorWallet
from campaign_sync.services.database import run_in_transaction
from campaign_sync.services.errors import CampaignAccountMissing, DataIntegrityError
from campaign_sync.services.price_oracle import GeckoTerminalOracle

logger = logging.getLogger(__name__)

# Evaluated top-down; the first threshold reached wins.
CLAIM_TIERS = (
    (Decimal(5_000_000), 20),
    (Decimal(2_000_000), 40),
    (Decimal(1_000_000), 30),
    (Decimal(500_000), 10),
)


def claim_percentage(market_cap: Decimal) -> int:
    market_cap = Decimal(str(market_cap))
    for threshold, percentage in CLAIM_TIERS:
        if market_cap >= threshold:
            return percentage
    return 0


def compute_claim_amount(total_bought: int, total_claimed: int, market_cap: Decimal) -> int:
    amount = int(total_bought) * claim_percentage(market_cap) // 100
    remaining = max(int(total_bought) - int(total_claimed), 0)
    return min(amount, remaining)


@dataclass
class ClaimQuote:
    creator: str
    campaign_index: int
    campaign_address: str
    mint: str
    total_token_bought: int
    total_claimed: int
    market_cap: Decimal
    claim_amount: int


class ClaimAutomation:
    def __init__(
        self,
        ledger: SolanaLedgerClient,
        oracle: Optional[GeckoTerminalOracle] = None,
        wallet: Optional[OperatorWallet] = None,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        program_id: Optional[str] = None,
        idl: Optional[ProgramIdl] = None,
        max_attempts: int = 3,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        self.ledger = ledger
        self.oracle = oracle or GeckoTerminalOracle()
        self.wallet = wallet
        self.session_factory = session_factory
        self.program_id = to_pubkey(program_id or settings.program_id)
        idl = idl or ProgramIdl.load()
        self.accounts = AccountDecoder(idl)
        self.instructions = LaunchpadInstructions(self.program_id, idl)
        self.max_attempts = max_attempts
        self.sleep = sleep

    async def quote(self, campaign: Campaign) -> ClaimQuote:
        """Read the campaign account and price its mint. Nothing is submitted."""
        address = find_campaign_address(self.program_id, campaign.creator, campaign.campaign_index)
        account = await self.ledger.get_account(address)
        if account is None:
            raise CampaignAccountMissing(str(address), campaign.creator, campaign.campaign_index)
        state = self.accounts.campaign(account.data)
        mint = state.mint or campaign.mint
        if not mint:
            raise DataIntegrityError(
                f"Campaign {campaign.creator}/{campaign.campaign_index} has no mint on-chain"
            )
        market_cap = await self.oracle.get_market_cap(mint)
        return ClaimQuote(
            creator=campaign.creator,
            campaign_index=campaign.campaign_index,
            campaign_address=str(address),
            mint=mint,
            total_token_bought=state.total_token_bought,
            total_claimed=state.total_claimed,
            market_cap=market_cap,
            claim_amount=compute_claim_amount(state.total_token_bought, state.total_claimed, market_cap),
        )

    async def update_claim(self, campaign: Campaign, progress: SellProgress) -> Optional[str]:
        """Quote, submit ``update_claimable_amount`` when it changed, and persist.

        Returns the submitted signature, or None when the on-chain amount was
        already current.
        """
        if self.wallet is None:
            raise RuntimeError("Claim updates require an operator wallet")
        quote = await self.quote(campaign)
        signature = None
        if quote.claim_amount != int(progress.claimable_amount or 0):
            instruction = self.instructions.update_claimable_amount(
                operator=self.wallet.pubkey,
                config=find_config_address(self.program_id),
                campaign=to_pubkey(quote.campaign_address),
                creator=to_pubkey(campaign.creator),
                mint=to_pubkey(quote.mint),
                amount=quote.claim_amount,
            )
            signature = await self.ledger.send_transaction([instruction], [self.wallet.keypair])
            logger.info(
                "Claimable amount for %s/%s set to %s (market cap %s USD): %s",
                campaign.creator,
                campaign.campaign_index,
                quote.claim_amount,
                quote.market_cap,
                signature,
            )

        async def _persist(db: AsyncSession) -> None:
            row = await get_sell_progress(db, campaign.creator, campaign.campaign_index)
            if row is None:
                return
            row.market_cap = quote.market_cap
            row.claimable_amount = quote.claim_amount
            row.mint = quote.mint

        await self._transaction(_persist, "claim-update")
        return signature

    async def run_claim_updates(self) -> dict:
        if self.session_factory is None:
            raise RuntimeError("Claim updates require a session factory")

        async def _load(db: AsyncSession) -> list[tuple[Campaign, SellProgress]]:
            result = await db.execute(
                select(Campaign, SellProgress).join(
                    SellProgress,
                    (SellProgress.creator == Campaign.creator)
                    & (SellProgress.campaign_index == Campaign.campaign_index),
                )
            )
            return [(campaign, progress) for campaign, progress in result.all()]

        pairs = await self._transaction(_load, "claim-load")
        summary = {"checked": 0, "submitted": 0, "failed": 0}
        for campaign, progress in pairs:
            summary["checked"] += 1
            try:
                signature = await self.update_claim(campaign, progress)
            except Exception as exc:
                summary["failed"] += 1
                logger.warning(
                    "Claim update skipped for %s/%s: %s",
                    campaign.creator,
                    campaign.campaign_index,
                    exc,
                )
                continue
            if signature:
                summary["submitted"] += 1
        return summary

    async def _transaction(self, work, label: str):
        kwargs = {"max_attempts": self.max_attempts, "label": label}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        return await run_in_transaction(self.session_factory, work, **kwargs)


async def get_sell_progress(db: AsyncSession, creator: str, campaign_index: int) -> Optional[SellProgress]:
    result = await db.execute(
        select(SellProgress).where(
            SellProgress.creator == creator,
            SellProgress.campaign_index == campaign_index,
        )
    )
    return result.scalar_one_or_none()
