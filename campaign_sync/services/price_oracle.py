"""Token market-cap lookups against GeckoTerminal."""
from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import aiohttp

from campaign_sync.config import settings

logger = logging.getLogger(__name__)


class PriceOracleError(RuntimeError):
    pass


class GeckoTerminalOracle:
    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        self.base_url = (base_url or settings.geckoterminal_url).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.price_oracle_timeout_seconds

    async def fetch_token(self, mint: str) -> dict:
        url = f"{self.base_url}/{mint}"
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url, headers={"Accept": "application/json"}) as resp:
                    if resp.status != 200:
                        raise PriceOracleError(f"GeckoTerminal returned HTTP {resp.status} for {mint}")
                    return await resp.json()
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise PriceOracleError(f"GeckoTerminal request failed for {mint}: {exc}") from exc

    async def get_market_cap(self, mint: str) -> Decimal:
        """USD market cap of ``mint``, falling back to FDV when it is not reported."""
        payload = await self.fetch_token(mint)
        attributes = ((payload or {}).get("data") or {}).get("attributes") or {}
        raw = attributes.get("market_cap_usd")
        if raw in (None, ""):
            raw = attributes.get("fdv_usd")
        if raw in (None, ""):
            raise PriceOracleError(f"No market cap reported for {mint}")
        try:
            market_cap = Decimal(str(raw))
        except InvalidOperation as exc:
            raise PriceOracleError(f"Unparseable market cap {raw!r} for {mint}") from exc
        logger.debug("Market cap for %s: %s USD", mint, market_cap)
        return market_cap
