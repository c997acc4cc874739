import asyncio
import logging
import random
import uuid
from typing import Dict, Optional

from soltrader.core.trader import Trader
from soltrader.data.models import FillSource, Quote, SwapResult, human_to_raw, raw_to_human
from soltrader.utils.logging_utils import jlog


class PaperTrader(Trader):
    """Quote-derived fills with injected latency, failures and slippage.

    Real quotes drive price discovery; nothing is signed or broadcast. Wallet
    balances are simulated so capital checks and full-exit trimming behave
    the same as live.
    """

    def __init__(self, cfg, logger: logging.Logger, api, rpc=None, rng: Optional[random.Random] = None,
                 sleep=asyncio.sleep, db_path: Optional[str] = None):
        super().__init__(cfg, logger, api, rpc, signer=None, sleep=sleep, db_path=db_path)
        self.rng = rng or random.Random()
        self.usdc_balance = cfg.portfolio.starting_equity_usdc
        self.token_balances: Dict[str, int] = {}
        self.native_balance = 1.0

    async def sync_positions(self, positions):
        """Rebuild the simulated wallet from restored open positions.

        Held tokens come back at their tracked size and the cost still tied up in
        them is taken out of the seed balance.
        """
        at_cost = 0.0
        for p in positions:
            decimals = await self.get_decimals(p.mint)
            self.token_balances[p.mint] = human_to_raw(p.remaining_tokens, decimals)
            at_cost += p.cost_basis_remaining()
        self.usdc_balance = self.cfg.portfolio.starting_equity_usdc - at_cost
        jlog(self.logger, "PAPER_WALLET_SYNCED", positions=len(self.token_balances),
             usdc_balance=round(self.usdc_balance, 2))

    async def get_decimals(self, mint: str) -> int:
        if self.rpc is None and mint not in self.decimals_cache:
            return 9
        return await super().get_decimals(mint)

    async def get_token_balance_raw(self, mint: str) -> int:
        return self.token_balances.get(mint, 0)

    async def get_quote_balance(self) -> float:
        return self.usdc_balance

    async def get_native_balance(self) -> float:
        return self.native_balance

    def _rand(self, lo: float, hi: float) -> float:
        return lo + self.rng.random() * (hi - lo)

    async def execute_swap(self, quote: Quote, use_bundle: bool = False, trade_type: str = "trade") -> SwapResult:
        p = self.cfg.paper
        started = self.clock()
        is_buy = quote.input_mint == self.cfg.quote_mint
        side = "buy" if is_buy else "sell"
        token_mint = quote.output_mint if is_buy else quote.input_mint

        guard = self.guards.validate_quote(quote)
        if not guard.passed:
            result = self._fail(quote, side, started, guard.reason or "Guard check failed")
            await self._log_trade(quote, result, trade_type)
            return result

        latency_ms = self._rand(p.latency_range_ms[0], p.latency_range_ms[1])
        await self.sleep(latency_ms / 1000.0)

        if self.rng.random() < p.tx_failure_probability:
            jlog(self.logger, "PAPER_TX_FAILURE", side=side, mint=token_mint)
            result = self._fail(quote, side, started, "Simulated transaction failure")
            await self._log_trade(quote, result, trade_type)
            return result

        # a real market slips a little past the quote
        slip = 1 - self._rand(0.0001, 0.0005) if p.slippage_simulation else 1.0
        fee = self._rand(0.000005, 0.0001) if p.priority_fee_simulation else 0.0

        if is_buy:
            token_raw = int(quote.out_amount * slip)
            usdc = raw_to_human(quote.in_amount, self.cfg.quote_decimals)
            token_decimals = quote.output_decimals
            self.usdc_balance -= usdc
            self.token_balances[token_mint] = self.token_balances.get(token_mint, 0) + token_raw
        else:
            token_raw = quote.in_amount
            usdc = raw_to_human(int(quote.out_amount * slip), self.cfg.quote_decimals)
            token_decimals = quote.input_decimals
            self.usdc_balance += usdc
            self.token_balances[token_mint] = max(0, self.token_balances.get(token_mint, 0) - token_raw)
        self.native_balance -= fee

        result = SwapResult(
            success=True, side=side, usdc_amount=usdc,
            token_amount=raw_to_human(token_raw, token_decimals), token_amount_raw=token_raw,
            price_impact_pct=quote.price_impact_pct, fee=fee,
            latency_ms=int((self.clock() - started) * 1000), fill_source=FillSource.SIMULATED,
            signature=f"paper-{side}-{uuid.uuid4().hex[:12]}",
        )
        await self._log_trade(quote, result, trade_type)
        jlog(self.logger, f"PAPER_{side.upper()}", mint=token_mint, usdc=round(usdc, 4),
             tokens=result.token_amount, impact=round(quote.price_impact_pct, 2),
             simulated_latency_ms=round(latency_ms), fee=round(fee, 6))
        return result

    async def close(self):
        await self.api.close()
        if self.rpc is not None:
            await self.rpc.close()
