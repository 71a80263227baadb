"""Apply decoded launchpad events to the persisted campaign state.

Handlers run inside the transactional scope opened for one ledger transaction
and never commit themselves. Raising from a handler rolls back every write made
for that transaction.
"""
from __future__ import annotations

import logging
import time
from decimal import Decimal
from typing import Awaitable, Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_sync.config import settings
from campaign_sync.models.database import Campaign, ProcessState, ProcessStatus, SellProgress
from campaign_sync.onchain.addresses import campaign_index_from_ordinal, find_campaign_address, to_pubkey
from campaign_sync.onchain.event_decoder import DecodedEvent
from campaign_sync.onchain.ledger import SolanaLedgerClient
from campaign_sync.services.claims import ClaimAutomation, get_sell_progress
from campaign_sync.services.errors import CampaignAccountMissing, DataIntegrityError, SellProgressMissing
from campaign_sync.services.price_oracle import PriceOracleError
from campaign_sync.services.status import LAMPORTS_PER_SOL, reconcile_campaign_status, set_process_status

logger = logging.getLogger(__name__)

__all__ = [
    "CampaignAccountMissing",
    "DataIntegrityError",
    "EventDispatcher",
    "SellProgressMissing",
]

Handler = Callable[[AsyncSession, dict], Awaitable[None]]


async def get_campaign(db: AsyncSession, creator: str, campaign_index: int) -> Optional[Campaign]:
    result = await db.execute(
        select(Campaign).where(
            Campaign.creator == creator,
            Campaign.campaign_index == campaign_index,
        )
    )
    return result.scalar_one_or_none()


class EventDispatcher:
    def __init__(
        self,
        ledger: SolanaLedgerClient,
        claims: Optional[ClaimAutomation] = None,
        program_id: Optional[str] = None,
        index_offset: Optional[int] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.ledger = ledger
        self.claims = claims
        self.program_id = to_pubkey(program_id or settings.program_id)
        self.index_offset = settings.campaign_index_offset if index_offset is None else index_offset
        self.clock = clock or (lambda: int(time.time()))
        self.handlers: dict[str, Handler] = {
            "CreatedCampaignEvent": self.on_campaign_created,
            "CreatedCampaignTokenEvent": self.on_campaign_token_created,
            "SoldCampaignTokenEvent": self.on_campaign_token_sold,
            "ClaimableTokenAmountUpdatedEvent": self.on_claimable_amount_updated,
            "ClaimedTokenEvent": self.on_token_claimed,
            "ClaimedFundEvent": self.on_fund_claimed,
            "DonatedFundEvent": self.on_fund_donated,
        }

    async def dispatch(self, db: AsyncSession, event: DecodedEvent) -> None:
        handler = self.handlers.get(event.name)
        if handler is None:
            logger.debug("Ignoring unhandled event %s", event.name)
            return
        await handler(db, event.data)

    def _key(self, data: dict) -> tuple[str, int]:
        return str(data["creator"]), campaign_index_from_ordinal(data["campaign_index"], self.index_offset)

    async def on_campaign_created(self, db: AsyncSession, data: dict) -> None:
        creator, campaign_index = self._key(data)
        address = find_campaign_address(self.program_id, creator, campaign_index)
        balance = await self.ledger.get_net_balance(address)
        if balance is None:
            raise CampaignAccountMissing(str(address), creator, campaign_index)

        campaign = Campaign(
            creator=creator,
            campaign_index=campaign_index,
            name=data.get("name"),
            symbol=data.get("symbol"),
            metadata_uri=data.get("uri"),
            donation_goal=Decimal(int(data.get("donation_goal") or 0)) / Decimal(LAMPORTS_PER_SOL),
            deposit_deadline=int(data.get("deposit_deadline") or 0),
            trade_deadline=int(data.get("trade_deadline") or 0),
            created_timestamp=int(data.get("timestamp") or 0),
            total_fund_raised=balance,
        )
        db.add(campaign)
        await db.flush()
        logger.info("Campaign %s/%s created at %s (raised %s)", creator, campaign_index, address, balance)

    async def on_campaign_token_created(self, db: AsyncSession, data: dict) -> None:
        creator, campaign_index = self._key(data)
        campaign = await get_campaign(db, creator, campaign_index)
        if campaign is None:
            logger.info("Token created for unknown campaign %s/%s, skipping", creator, campaign_index)
            return
        mint = str(data["mint"])
        campaign.mint = mint
        await set_process_status(db, creator, campaign_index, ProcessState.COMPLETED, mint=mint)
        logger.info("Campaign %s/%s completed with mint %s", creator, campaign_index, mint)

    async def on_campaign_token_sold(self, db: AsyncSession, data: dict) -> None:
        creator, campaign_index = self._key(data)
        for model in (Campaign, ProcessStatus, SellProgress):
            await db.execute(
                delete(model).where(
                    model.creator == creator,
                    model.campaign_index == campaign_index,
                )
            )
        logger.info("Campaign %s/%s sold out, records removed", creator, campaign_index)

    async def on_claimable_amount_updated(self, db: AsyncSession, data: dict) -> None:
        creator, campaign_index = self._key(data)
        campaign = await get_campaign(db, creator, campaign_index)
        if campaign is None:
            logger.info("Claimable update for unknown campaign %s/%s, skipping", creator, campaign_index)
            return

        progress = await get_sell_progress(db, creator, campaign_index)
        market_cap: Optional[Decimal] = None
        if self.claims is not None:
            try:
                market_cap = (await self.claims.quote(campaign)).market_cap
            except (PriceOracleError, DataIntegrityError) as exc:
                logger.warning("Market cap unavailable for %s/%s: %s", creator, campaign_index, exc)

        mint = str(data["mint"])
        claimable_amount = int(data.get("claimable_amount") or 0)
        if progress is None:
            progress = SellProgress(
                creator=creator,
                campaign_index=campaign_index,
                mint=mint,
                claimable_amount=claimable_amount,
                market_cap=market_cap if market_cap is not None else Decimal(0),
            )
            db.add(progress)
            await db.flush()
            return
        progress.mint = mint
        progress.claimable_amount = claimable_amount
        if market_cap is not None:
            progress.market_cap = market_cap

    async def on_token_claimed(self, db: AsyncSession, data: dict) -> None:
        creator, campaign_index = self._key(data)
        progress = await get_sell_progress(db, creator, campaign_index)
        if progress is None:
            raise SellProgressMissing(creator, campaign_index)
        progress.claimable_amount = int(data.get("amount") or 0)

    async def on_fund_claimed(self, db: AsyncSession, data: dict) -> None:
        creator, campaign_index = self._key(data)
        campaign = await get_campaign(db, creator, campaign_index)
        if campaign is not None:
            campaign.total_fund_raised = 0

    async def on_fund_donated(self, db: AsyncSession, data: dict) -> None:
        missing = [
            name
            for name in ("creator", "campaign_index", "donated_amount", "timestamp")
            if data.get(name) in (None, "")
        ]
        if missing:
            logger.warning("Donation event missing %s, skipping", ", ".join(missing))
            return

        creator, campaign_index = self._key(data)
        campaign = await get_campaign(db, creator, campaign_index)
        if campaign is None:
            logger.info("Donation for unknown campaign %s/%s ignored", creator, campaign_index)
            return
        campaign.total_fund_raised = int(campaign.total_fund_raised or 0) + int(data["donated_amount"])
        campaign.last_donation_timestamp = int(data["timestamp"])
        await db.flush()
        await reconcile_campaign_status(db, campaign, self.clock())
