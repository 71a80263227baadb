"""Derived campaign status.

The status of a campaign is a function of its persisted funding figures and
the wall clock. It is stored in ``process_statuses`` so the token issuer can
pick up PENDING campaigns, but it is always re-derived with
:func:`derive_status` before anything acts on it. COMPLETED is terminal.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campaign_sync.models.database import Campaign, ProcessState, ProcessStatus

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000


def raised_units(total_fund_raised: int) -> Decimal:
    return Decimal(int(total_fund_raised or 0)) / Decimal(LAMPORTS_PER_SOL)


def derive_status(
    campaign: Campaign,
    now: int,
    current: Optional[Union[ProcessState, str]] = None,
) -> ProcessState:
    if current is not None and ProcessState(current) is ProcessState.COMPLETED:
        return ProcessState.COMPLETED
    if campaign.mint:
        return ProcessState.COMPLETED

    raised = raised_units(campaign.total_fund_raised)
    goal = Decimal(campaign.donation_goal or 0)
    deadline = int(campaign.deposit_deadline or 0)
    if raised >= goal and deadline >= now:
        return ProcessState.PENDING
    if raised < goal and deadline < now:
        return ProcessState.FAILED
    return ProcessState.RAISING


def is_eligible_for_issuance(campaign: Campaign, now: int) -> bool:
    return derive_status(campaign, now) is ProcessState.PENDING


async def get_process_status(db: AsyncSession, creator: str, campaign_index: int) -> Optional[ProcessStatus]:
    result = await db.execute(
        select(ProcessStatus).where(
            ProcessStatus.creator == creator,
            ProcessStatus.campaign_index == campaign_index,
        )
    )
    return result.scalar_one_or_none()


async def set_process_status(
    db: AsyncSession,
    creator: str,
    campaign_index: int,
    status: ProcessState,
    mint: Optional[str] = None,
) -> ProcessStatus:
    """Upsert a status row. A COMPLETED row is never moved to another state."""
    row = await get_process_status(db, creator, campaign_index)
    if row is None:
        row = ProcessStatus(
            creator=creator,
            campaign_index=campaign_index,
            status=status.value,
            mint=mint,
        )
        db.add(row)
        await db.flush()
        return row
    if row.status == ProcessState.COMPLETED.value and status is not ProcessState.COMPLETED:
        return row
    row.status = status.value
    if mint:
        row.mint = mint
    return row


async def reconcile_campaign_status(db: AsyncSession, campaign: Campaign, now: int) -> ProcessState:
    row = await get_process_status(db, campaign.creator, campaign.campaign_index)
    current = row.status if row is not None else None
    if current == ProcessState.COMPLETED.value:
        return ProcessState.COMPLETED

    status = derive_status(campaign, now, current)
    if row is None:
        db.add(
            ProcessStatus(
                creator=campaign.creator,
                campaign_index=campaign.campaign_index,
                status=status.value,
                mint=campaign.mint,
            )
        )
        await db.flush()
    elif row.status != status.value:
        logger.info(
            "Campaign %s/%s status %s -> %s",
            campaign.creator,
            campaign.campaign_index,
            row.status,
            status.value,
        )
        row.status = status.value
        if campaign.mint:
            row.mint = campaign.mint
    return status


async def reconcile_all_statuses(db: AsyncSession, now: int) -> dict:
    result = await db.execute(select(Campaign))
    counts: dict[str, int] = {}
    for campaign in result.scalars().all():
        status = await reconcile_campaign_status(db, campaign, now)
        counts[status.value] = counts.get(status.value, 0) + 1
    return counts
