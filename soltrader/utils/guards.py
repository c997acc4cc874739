import logging
import time
from dataclasses import dataclass
from typing import Mapping, Optional

from soltrader.data.models import Quote, SimulationResult
from soltrader.utils.logging_utils import get_logger, jlog

log = get_logger("guards")

@dataclass
class GuardResult:
    passed: bool
    reason: Optional[str] = None

PASS = GuardResult(True)


class Guards:
    """Pure entry/exit gates. No I/O and no state beyond the config they read."""

    def __init__(self, cfg):
        self.cfg = cfg

    def validate_quote(self, quote: Quote) -> GuardResult:
        g = self.cfg.guards
        if quote.price_impact_pct > g.max_route_impact_pct:
            return GuardResult(False, f"Route impact {quote.price_impact_pct:.2f}% > max {g.max_route_impact_pct}%")
        # quote slippage should never exceed what config allows
        if quote.slippage_bps > g.max_slippage_bps:
            return GuardResult(False, f"Slippage {quote.slippage_bps}bps > max {g.max_slippage_bps}bps")
        if quote.out_amount <= 0:
            return GuardResult(False, "Quote returned zero output amount")
        jlog(log, "QUOTE_GUARD_PASS", logging.DEBUG, impact=round(quote.price_impact_pct, 2),
             slippage_bps=quote.slippage_bps)
        return PASS

    def validate_simulation(self, sim: Optional[SimulationResult]) -> GuardResult:
        if sim is None:
            return GuardResult(False, "Simulation returned null")
        if sim.err is not None:
            return GuardResult(False, f"Simulation failed: {sim.err}")
        return PASS

    def check_kill_switch(self, daily_pnl_pct: float, consecutive_losses: int) -> GuardResult:
        g = self.cfg.guards
        if daily_pnl_pct <= g.daily_loss_limit_pct:
            return GuardResult(False, f"Daily loss limit hit: {daily_pnl_pct:.1f}% <= {g.daily_loss_limit_pct}%")
        if consecutive_losses >= g.consecutive_loss_limit:
            return GuardResult(False, f"Consecutive loss limit: {consecutive_losses} >= {g.consecutive_loss_limit}")
        return PASS

    def check_reentry_lockout(self, mint: str, stopped_out_tokens: Mapping[str, float],
                              now: Optional[float] = None) -> GuardResult:
        lost_at = stopped_out_tokens.get(mint)
        if lost_at is None:
            return PASS
        now = time.time() if now is None else now
        hours = (now - lost_at) / 3600.0
        lockout = self.cfg.portfolio.reentry_lockout_hours
        if hours < lockout:
            return GuardResult(False, f"Re-entry lockout: {hours:.1f}h < {lockout}h")
        return PASS
