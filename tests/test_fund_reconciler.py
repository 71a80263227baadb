from decimal import Decimal

import pytest
from solders.pubkey import Pubkey
from sqlalchemy import select

from campaign_sync.models.database import Campaign, ProcessStatus, SellProgress
from campaign_sync.onchain.addresses import find_campaign_address
from campaign_sync.services.fund_reconciler import FundReconciler

PROGRAM_ID = "GwAWdhc8NuRVCRn4guyXz7UGaQHCwnnVppBKMtZmxVM2"
CREATOR = str(Pubkey.new_unique())
SOL = 1_000_000_000


class DummyLedger:
    def __init__(self, balances):
        self.balances = balances
        self.requested = []

    async def get_net_balance(self, address):
        self.requested.append(str(address))
        return self.balances.get(str(address))


def _address(index: int) -> str:
    return str(find_campaign_address(PROGRAM_ID, CREATOR, index))


async def _seed(session_factory, *rows) -> None:
    async with session_factory() as db:
        async with db.begin():
            db.add_all(rows)


def _campaign(index: int, raised: int = SOL, mint=None) -> Campaign:
    return Campaign(
        creator=CREATOR,
        campaign_index=index,
        donation_goal=Decimal("10"),
        deposit_deadline=1,
        trade_deadline=2,
        total_fund_raised=raised,
        mint=mint,
    )


@pytest.mark.asyncio
async def test_updates_funds_from_net_balance(session_factory) -> None:
    await _seed(session_factory, _campaign(0, raised=SOL))
    ledger = DummyLedger({_address(0): 3 * SOL})

    summary = await FundReconciler(ledger, session_factory, program_id=PROGRAM_ID).reconcile_funds()

    assert summary == {"updated": 1, "deleted": 0, "skipped": 0}
    async with session_factory() as db:
        campaign = (await db.execute(select(Campaign))).scalar_one()
    assert campaign.total_fund_raised == 3 * SOL


@pytest.mark.asyncio
async def test_zero_or_missing_balance_deletes_unprotected_campaign(session_factory) -> None:
    await _seed(
        session_factory,
        _campaign(0),
        _campaign(1),
        ProcessStatus(creator=CREATOR, campaign_index=0, status="FAILED"),
        SellProgress(creator=CREATOR, campaign_index=0, mint="Mint111"),
    )
    ledger = DummyLedger({_address(0): 0})

    summary = await FundReconciler(ledger, session_factory, program_id=PROGRAM_ID).reconcile_funds()

    assert summary["deleted"] == 2
    async with session_factory() as db:
        for model in (Campaign, ProcessStatus, SellProgress):
            assert (await db.execute(select(model))).scalars().all() == []


@pytest.mark.asyncio
async def test_never_deletes_completed_or_minted_campaigns(session_factory) -> None:
    await _seed(
        session_factory,
        _campaign(0),
        _campaign(1, mint="Mint111"),
        ProcessStatus(creator=CREATOR, campaign_index=0, status="COMPLETED"),
    )
    ledger = DummyLedger({})

    summary = await FundReconciler(ledger, session_factory, program_id=PROGRAM_ID).reconcile_funds()

    assert summary == {"updated": 0, "deleted": 0, "skipped": 2}
    assert ledger.requested == []
    async with session_factory() as db:
        assert len((await db.execute(select(Campaign))).scalars().all()) == 2


@pytest.mark.asyncio
async def test_state_is_rechecked_before_delete(session_factory) -> None:
    await _seed(session_factory, _campaign(0))

    class CompletingLedger(DummyLedger):
        async def get_net_balance(self, address):
            # The token-created event lands while the balance is being read.
            async with session_factory() as db:
                async with db.begin():
                    db.add(ProcessStatus(creator=CREATOR, campaign_index=0, status="COMPLETED"))
            return 0

    reconciler = FundReconciler(CompletingLedger({}), session_factory, program_id=PROGRAM_ID)
    summary = await reconciler.reconcile_funds()

    assert summary["deleted"] == 0
    async with session_factory() as db:
        assert len((await db.execute(select(Campaign))).scalars().all()) == 1
