import logging
from typing import Optional, Tuple

import httpx

from soltrader.utils.logging_utils import jlog


class MarketData:
    """Price and pool depth for a mint, from DexScreener's token pairs."""

    def __init__(self, cfg, logger: logging.Logger, client: Optional[httpx.AsyncClient] = None):
        self.cfg = cfg
        self.logger = logger
        self.client = client or httpx.AsyncClient(timeout=cfg.market.timeout_sec,
                                                  headers={"Accept": "application/json"})

    async def price_and_liquidity(self, mint: str) -> Optional[Tuple[float, float]]:
        """(price_usd, liquidity_usd) of the deepest Solana pair, or None."""
        url = f"{self.cfg.market.dexscreener_url}/{mint}"
        try:
            r = await self.client.get(url)
        except (httpx.TimeoutException, httpx.TransportError) as e:
            jlog(self.logger, "MARKET_FETCH_FAIL", logging.WARNING, mint=mint, error=repr(e))
            return None
        if r.status_code != 200:
            jlog(self.logger, "MARKET_FETCH_FAIL", logging.WARNING, mint=mint, status=r.status_code)
            return None
        try:
            pairs = r.json().get("pairs") or []
        except (ValueError, AttributeError):
            jlog(self.logger, "MARKET_DECODE_FAIL", logging.WARNING, mint=mint)
            return None

        best_liq = -1.0
        best = None
        for p in pairs:
            if (p.get("chainId") or "").lower() != "solana":
                continue
            if (p.get("baseToken") or {}).get("address") != mint:
                continue
            liq = float(((p.get("liquidity") or {}).get("usd")) or 0.0)
            if liq > best_liq:
                best_liq = liq
                best = p
        if not best:
            return None
        try:
            price = float(best.get("priceUsd") or 0.0)
        except (TypeError, ValueError):
            return None
        if price <= 0:
            return None
        return price, best_liq

    async def close(self):
        await self.client.aclose()
