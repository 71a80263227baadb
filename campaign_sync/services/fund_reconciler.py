"""Reconcile stored campaign funds against on-chain balances and prune empties."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_sync.config import settings
from campaign_sync.models.database import Campaign, ProcessState, ProcessStatus, SellProgress
from campaign_sync.onchain.addresses import find_campaign_address, to_pubkey
from campaign_sync.onchain.ledger import SolanaLedgerClient
from campaign_sync.services.database import run_in_transaction
from campaign_sync.services.status import get_process_status

logger = logging.getLogger(__name__)


class FundReconciler:
    def __init__(
        self,
        ledger: SolanaLedgerClient,
        session_factory: Callable[[], AsyncSession],
        program_id: Optional[str] = None,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.ledger = ledger
        self.session_factory = session_factory
        self.program_id = to_pubkey(program_id or settings.program_id)
        self.max_attempts = max_attempts or settings.write_conflict_max_retries
        self.backoff_seconds = (
            settings.write_conflict_backoff_seconds if backoff_seconds is None else backoff_seconds
        )
        self.sleep = sleep

    async def reconcile_funds(self) -> dict:
        return await run_in_transaction(
            self.session_factory,
            self._reconcile,
            max_attempts=self.max_attempts,
            backoff_seconds=self.backoff_seconds,
            exponential=True,
            sleep=self.sleep,
            label="fund-reconcile",
        )

    async def _reconcile(self, db: AsyncSession) -> dict:
        summary = {"updated": 0, "deleted": 0, "skipped": 0}
        result = await db.execute(select(Campaign))
        for campaign in result.scalars().all():
            status = await get_process_status(db, campaign.creator, campaign.campaign_index)
            if _is_protected(campaign, status):
                summary["skipped"] += 1
                continue

            address = find_campaign_address(self.program_id, campaign.creator, campaign.campaign_index)
            net = await self.ledger.get_net_balance(address)
            if net is None:
                logger.info("Campaign account %s not found on-chain", address)
                net = 0

            if net <= 0:
                if await self._delete_if_unprotected(db, campaign.creator, campaign.campaign_index):
                    summary["deleted"] += 1
                else:
                    summary["skipped"] += 1
                continue

            if campaign.total_fund_raised != net:
                logger.debug(
                    "Campaign %s/%s funds %s -> %s",
                    campaign.creator,
                    campaign.campaign_index,
                    campaign.total_fund_raised,
                    net,
                )
                campaign.total_fund_raised = net
            summary["updated"] += 1
        logger.info(
            "Fund reconciliation: %s updated, %s deleted, %s skipped",
            summary["updated"],
            summary["deleted"],
            summary["skipped"],
        )
        return summary

    async def _delete_if_unprotected(self, db: AsyncSession, creator: str, campaign_index: int) -> bool:
        """Delete a zero-fund campaign after re-reading its latest state."""
        campaign = (
            await db.execute(
                select(Campaign)
                .where(Campaign.creator == creator, Campaign.campaign_index == campaign_index)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        status = (
            await db.execute(
                select(ProcessStatus)
                .where(ProcessStatus.creator == creator, ProcessStatus.campaign_index == campaign_index)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if campaign is None or _is_protected(campaign, status):
            logger.info("Preserving campaign %s/%s", creator, campaign_index)
            return False

        for model in (SellProgress, ProcessStatus, Campaign):
            await db.execute(
                delete(model).where(model.creator == creator, model.campaign_index == campaign_index)
            )
        logger.info("Deleted zero-fund campaign %s/%s", creator, campaign_index)
        return True


def _is_protected(campaign: Campaign, status: Optional[ProcessStatus]) -> bool:
    if campaign.mint:
        return True
    return status is not None and status.status == ProcessState.COMPLETED.value
