from decimal import Decimal
from types import SimpleNamespace

import pytest
from solders.pubkey import Pubkey
from sqlalchemy import select

from campaign_sync.models.database import Campaign, ProcessStatus, SellProgress
from campaign_sync.onchain.addresses import find_campaign_address
from campaign_sync.onchain.event_decoder import DecodedEvent
from campaign_sync.services.event_handlers import (
    CampaignAccountMissing,
    EventDispatcher,
    SellProgressMissing,
)
from campaign_sync.services.price_oracle import PriceOracleError

PROGRAM_ID = "GwAWdhc8NuRVCRn4guyXz7UGaQHCwnnVppBKMtZmxVM2"
CREATOR = str(Pubkey.new_unique())
MINT = str(Pubkey.new_unique())
NOW = 1_700_000_000
SOL = 1_000_000_000


class DummyLedger:
    def __init__(self, balances=None):
        self.balances = balances or {}
        self.requested = []

    async def get_net_balance(self, address):
        self.requested.append(str(address))
        return self.balances.get(str(address))


class DummyClaims:
    def __init__(self, market_cap=None, error=None):
        self.market_cap = market_cap
        self.error = error
        self.quoted = []

    async def quote(self, campaign):
        self.quoted.append(campaign.key)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(market_cap=self.market_cap)


def _dispatcher(ledger=None, claims=None) -> EventDispatcher:
    return EventDispatcher(
        ledger or DummyLedger(),
        claims=claims,
        program_id=PROGRAM_ID,
        index_offset=1,
        clock=lambda: NOW,
    )


def _created(ordinal: int = 1) -> DecodedEvent:
    return DecodedEvent(
        "CreatedCampaignEvent",
        {
            "creator": CREATOR,
            "campaign_index": ordinal,
            "name": "Moon Fund",
            "symbol": "MOON",
            "uri": "https://example.com/moon.json",
            "donation_goal": 10 * SOL,
            "deposit_deadline": NOW + 3600,
            "trade_deadline": NOW + 7200,
            "timestamp": NOW - 60,
        },
    )


async def _seed_campaign(db, index: int = 0, raised: int = 0, mint=None) -> Campaign:
    campaign = Campaign(
        creator=CREATOR,
        campaign_index=index,
        donation_goal=Decimal("10"),
        deposit_deadline=NOW + 3600,
        trade_deadline=NOW + 7200,
        total_fund_raised=raised,
        mint=mint,
    )
    db.add(campaign)
    await db.flush()
    return campaign


@pytest.mark.asyncio
async def test_campaign_created_uses_corrected_index_and_net_balance(db_session) -> None:
    address = str(find_campaign_address(PROGRAM_ID, CREATOR, 0))
    ledger = DummyLedger({address: 2 * SOL})
    await _dispatcher(ledger).dispatch(db_session, _created(ordinal=1))

    campaign = (await db_session.execute(select(Campaign))).scalar_one()
    assert campaign.campaign_index == 0
    assert campaign.total_fund_raised == 2 * SOL
    assert campaign.donation_goal == Decimal("10")
    assert campaign.metadata_uri == "https://example.com/moon.json"
    assert ledger.requested == [address]


@pytest.mark.asyncio
async def test_campaign_created_without_account_raises(db_session) -> None:
    with pytest.raises(CampaignAccountMissing):
        await _dispatcher(DummyLedger()).dispatch(db_session, _created())


@pytest.mark.asyncio
async def test_donation_for_unknown_campaign_is_noop(db_session) -> None:
    event = DecodedEvent(
        "DonatedFundEvent",
        {"donor": CREATOR, "creator": CREATOR, "campaign_index": 5, "donated_amount": SOL, "timestamp": NOW},
    )
    await _dispatcher().dispatch(db_session, event)
    assert (await db_session.execute(select(Campaign))).scalars().all() == []
    assert (await db_session.execute(select(ProcessStatus))).scalars().all() == []


@pytest.mark.asyncio
async def test_donation_increments_funds_and_reconciles_status(db_session) -> None:
    campaign = await _seed_campaign(db_session, raised=9 * SOL)
    event = DecodedEvent(
        "DonatedFundEvent",
        {"donor": CREATOR, "creator": CREATOR, "campaign_index": 1, "donated_amount": 2 * SOL, "timestamp": NOW},
    )
    await _dispatcher().dispatch(db_session, event)

    assert campaign.total_fund_raised == 11 * SOL
    assert campaign.last_donation_timestamp == NOW
    status = (await db_session.execute(select(ProcessStatus))).scalar_one()
    assert status.status == "PENDING"


@pytest.mark.asyncio
async def test_donation_with_missing_fields_is_skipped(db_session) -> None:
    campaign = await _seed_campaign(db_session, raised=SOL)
    event = DecodedEvent("DonatedFundEvent", {"creator": CREATOR, "campaign_index": 1, "timestamp": NOW})
    await _dispatcher().dispatch(db_session, event)
    assert campaign.total_fund_raised == SOL


@pytest.mark.asyncio
async def test_token_created_marks_completed(db_session) -> None:
    campaign = await _seed_campaign(db_session, raised=11 * SOL)
    event = DecodedEvent(
        "CreatedCampaignTokenEvent",
        {"creator": CREATOR, "campaign_index": 1, "mint": MINT, "timestamp": NOW},
    )
    await _dispatcher().dispatch(db_session, event)

    assert campaign.mint == MINT
    status = (await db_session.execute(select(ProcessStatus))).scalar_one()
    assert status.status == "COMPLETED"
    assert status.mint == MINT


@pytest.mark.asyncio
async def test_token_sold_removes_all_records(db_session) -> None:
    await _seed_campaign(db_session, mint=MINT)
    db_session.add(ProcessStatus(creator=CREATOR, campaign_index=0, status="COMPLETED", mint=MINT))
    db_session.add(SellProgress(creator=CREATOR, campaign_index=0, mint=MINT, claimable_amount=5))
    await db_session.flush()

    event = DecodedEvent(
        "SoldCampaignTokenEvent",
        {"creator": CREATOR, "campaign_index": 1, "mint": MINT, "timestamp": NOW},
    )
    await _dispatcher().dispatch(db_session, event)

    for model in (Campaign, ProcessStatus, SellProgress):
        assert (await db_session.execute(select(model))).scalars().all() == []


@pytest.mark.asyncio
async def test_claimable_update_creates_then_keeps_market_cap_on_oracle_failure(db_session) -> None:
    await _seed_campaign(db_session, mint=MINT)
    event = DecodedEvent(
        "ClaimableTokenAmountUpdatedEvent",
        {"creator": CREATOR, "campaign_index": 1, "mint": MINT, "claimable_amount": 400, "timestamp": NOW},
    )
    await _dispatcher(claims=DummyClaims(market_cap=Decimal("2500000"))).dispatch(db_session, event)
    progress = (await db_session.execute(select(SellProgress))).scalar_one()
    assert progress.claimable_amount == 400
    assert progress.market_cap == Decimal("2500000")

    event.data["claimable_amount"] = 600
    failing = DummyClaims(error=PriceOracleError("rate limited"))
    await _dispatcher(claims=failing).dispatch(db_session, event)
    assert progress.claimable_amount == 600
    assert progress.market_cap == Decimal("2500000")
    assert failing.quoted == [(CREATOR, 0)]


@pytest.mark.asyncio
async def test_claimable_update_survives_missing_campaign_account(db_session) -> None:
    await _seed_campaign(db_session, mint=MINT)
    db_session.add(
        SellProgress(creator=CREATOR, campaign_index=0, mint=MINT, claimable_amount=100, market_cap=Decimal("750000"))
    )
    await db_session.flush()
    event = DecodedEvent(
        "ClaimableTokenAmountUpdatedEvent",
        {"creator": CREATOR, "campaign_index": 1, "mint": MINT, "claimable_amount": 500, "timestamp": NOW},
    )
    closed = DummyClaims(error=CampaignAccountMissing("Closed111", CREATOR, 0))

    await _dispatcher(claims=closed).dispatch(db_session, event)

    progress = (await db_session.execute(select(SellProgress))).scalar_one()
    assert progress.claimable_amount == 500
    assert progress.market_cap == Decimal("750000")


@pytest.mark.asyncio
async def test_claimable_update_for_unknown_campaign_is_skipped(db_session) -> None:
    claims = DummyClaims(market_cap=Decimal("1"))
    event = DecodedEvent(
        "ClaimableTokenAmountUpdatedEvent",
        {"creator": CREATOR, "campaign_index": 1, "mint": MINT, "claimable_amount": 1, "timestamp": NOW},
    )
    await _dispatcher(claims=claims).dispatch(db_session, event)
    assert claims.quoted == []
    assert (await db_session.execute(select(SellProgress))).scalars().all() == []


@pytest.mark.asyncio
async def test_token_claimed_requires_sell_progress(db_session) -> None:
    event = DecodedEvent(
        "ClaimedTokenEvent",
        {"creator": CREATOR, "campaign_index": 1, "mint": MINT, "amount": 50, "timestamp": NOW},
    )
    with pytest.raises(SellProgressMissing):
        await _dispatcher().dispatch(db_session, event)

    db_session.add(SellProgress(creator=CREATOR, campaign_index=0, mint=MINT, claimable_amount=400))
    await db_session.flush()
    await _dispatcher().dispatch(db_session, event)
    progress = (await db_session.execute(select(SellProgress))).scalar_one()
    assert progress.claimable_amount == 50


@pytest.mark.asyncio
async def test_fund_claimed_zeroes_raised_amount(db_session) -> None:
    campaign = await _seed_campaign(db_session, raised=4 * SOL)
    event = DecodedEvent("ClaimedFundEvent", {"creator": CREATOR, "campaign_index": 1, "amount": 4, "timestamp": NOW})
    await _dispatcher().dispatch(db_session, event)
    assert campaign.total_fund_raised == 0


@pytest.mark.asyncio
async def test_unknown_event_is_ignored(db_session) -> None:
    await _dispatcher().dispatch(db_session, DecodedEvent("SomethingElse", {"campaign_index": 1}))
