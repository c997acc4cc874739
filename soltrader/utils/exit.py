from dataclasses import dataclass
from typing import Optional

from soltrader.core.position import ExitPlan

@dataclass
class ExitDecision:
    type: str               # "emergency", "hard_stop", "tp1", "tp2", "runner_stop", "time_stop", "plan_stop", "plan_target"
    sell_pct: float         # 0-100 of remaining tokens
    reason: str = ""

class ExitEngine:
    """Tiered exit rules: pure mapping from position metrics to a decision."""

    def __init__(self, cfg):
        self.cfg = cfg

    def __call__(self, pnl_pct, peak_pnl_pct, hold_minutes, liquidity_change_pct, tp1_hit, tp2_hit):
        return self.evaluate(pnl_pct, peak_pnl_pct, hold_minutes, liquidity_change_pct, tp1_hit, tp2_hit)

    def emergency(self, liquidity_change_pct: float) -> Optional[ExitDecision]:
        c = self.cfg.exits
        if liquidity_change_pct < c.emergency_lp_drop_pct:
            return ExitDecision("emergency", 100.0,
                                f"LP dropped {liquidity_change_pct:.1f}% in {c.emergency_lp_drop_window_minutes}m")
        return None

    def evaluate(self, pnl_pct: float, peak_pnl_pct: float, hold_minutes: float,
                 liquidity_change_pct: float, tp1_hit: bool, tp2_hit: bool) -> Optional[ExitDecision]:
        c = self.cfg.exits

        # Emergency: pool draining
        decision = self.emergency(liquidity_change_pct)
        if decision:
            return decision

        # Hard stop
        if pnl_pct <= c.hard_stop_pct:
            return ExitDecision("hard_stop", 100.0, f"Hard stop hit: {pnl_pct:.1f}% <= {c.hard_stop_pct}%")

        # TP layers: first sells a slice, second a smaller one
        if not tp1_hit and pnl_pct >= c.tp1.target_pct:
            return ExitDecision("tp1", c.tp1.sell_pct, f"TP1 hit: {pnl_pct:.1f}% >= {c.tp1.target_pct}%")
        if tp1_hit and not tp2_hit and pnl_pct >= c.tp2.target_pct:
            return ExitDecision("tp2", c.tp2.sell_pct, f"TP2 hit: {pnl_pct:.1f}% >= {c.tp2.target_pct}%")

        # Runner trailing stop after TP2
        if tp2_hit:
            drop = peak_pnl_pct - pnl_pct
            if drop >= c.runner.trailing_stop_pct:
                return ExitDecision("runner_stop", 100.0,
                                    f"Runner trailing stop: dropped {drop:.1f}% from peak {peak_pnl_pct:.1f}%")

        # Stop at breakeven once TP1 is banked
        if tp1_hit and not tp2_hit and pnl_pct <= 0:
            return ExitDecision("hard_stop", 100.0, f"Breakeven stop after TP1: PnL {pnl_pct:.1f}%")

        # Time stop: dead money
        lo, hi = c.time_stop_pnl_range_pct
        if hold_minutes >= c.time_stop_minutes and lo <= pnl_pct <= hi:
            return ExitDecision("time_stop", 100.0,
                                f"Time stop: {hold_minutes:.0f}m, PnL {pnl_pct:.1f}% in dead zone")

        return None

    def check_plan(self, plan: ExitPlan, pnl_pct: float) -> Optional[ExitDecision]:
        if pnl_pct <= -abs(plan.stop_loss_pct):
            return ExitDecision("plan_stop", 100.0, f"Plan stop: {pnl_pct:.1f}% <= -{abs(plan.stop_loss_pct)}%")
        if pnl_pct >= plan.take_profit_pct:
            return ExitDecision("plan_target", 100.0, f"Plan target: {pnl_pct:.1f}% >= {plan.take_profit_pct}%")
        return None
