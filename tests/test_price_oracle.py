from decimal import Decimal

import pytest

from campaign_sync.services.price_oracle import GeckoTerminalOracle, PriceOracleError


def _oracle(monkeypatch, payload) -> GeckoTerminalOracle:
    oracle = GeckoTerminalOracle(base_url="https://example.invalid/tokens/", timeout_seconds=1)

    async def fake_fetch(mint):
        assert mint == "Mint111"
        return payload

    monkeypatch.setattr(oracle, "fetch_token", fake_fetch)
    return oracle


@pytest.mark.asyncio
async def test_market_cap_is_read_from_attributes(monkeypatch) -> None:
    oracle = _oracle(monkeypatch, {"data": {"attributes": {"market_cap_usd": "2500000.5", "fdv_usd": "9"}}})
    assert await oracle.get_market_cap("Mint111") == Decimal("2500000.5")
    assert oracle.base_url == "https://example.invalid/tokens"


@pytest.mark.asyncio
async def test_falls_back_to_fdv(monkeypatch) -> None:
    oracle = _oracle(monkeypatch, {"data": {"attributes": {"market_cap_usd": None, "fdv_usd": "750000"}}})
    assert await oracle.get_market_cap("Mint111") == Decimal("750000")


@pytest.mark.asyncio
async def test_missing_market_cap_raises(monkeypatch) -> None:
    oracle = _oracle(monkeypatch, {"data": {"attributes": {}}})
    with pytest.raises(PriceOracleError):
        await oracle.get_market_cap("Mint111")


@pytest.mark.asyncio
async def test_garbage_market_cap_raises(monkeypatch) -> None:
    oracle = _oracle(monkeypatch, {"data": {"attributes": {"market_cap_usd": "n/a"}}})
    with pytest.raises(PriceOracleError):
        await oracle.get_market_cap("Mint111")
