import asyncio
import json
import logging
import os
import time
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from soltrader.core.portfolio import PortfolioState
from soltrader.core.position import CLOSED, OPEN, ExitPlan, Position, PositionExit
from soltrader.data.models import DecodeError, SwapResult, human_to_raw
from soltrader.utils.exit import ExitDecision, ExitEngine
from soltrader.utils.guards import Guards
from soltrader.utils.logging_utils import jlog
from soltrader.utils.retry import ApiError, ErrorKind, TransientError

Evaluator = Callable[[float, float, float, float, bool, bool], Optional[ExitDecision]]


def _stat(stats: Dict[str, Any], key: str, legacy: str):
    # files written before the key rename used snake_case
    return stats.get(key, stats.get(legacy))


class PositionManager:
    """Sole owner of positions, capital reservations and portfolio risk counters.

    Every mutation happens between awaits, so interleaved open/update tasks on
    one event loop never observe a half-applied change. Reservation and the
    per-mint in-flight mark are taken with no await between check and set, and
    released in ``finally``.
    """

    def __init__(self, cfg, logger: logging.Logger, executor, market, evaluator: Optional[Evaluator] = None,
                 exit_engine: Optional[ExitEngine] = None, guards: Optional[Guards] = None,
                 clock: Callable[[], float] = time.time):
        self.cfg = cfg
        self.logger = logger
        self.executor = executor
        self.market = market
        self.exit_engine = exit_engine or ExitEngine(cfg)
        self.evaluator = evaluator or self.exit_engine.evaluate
        self.guards = guards or Guards(cfg)
        self.clock = clock

        self.open_positions: Dict[str, Position] = {}     # mint -> position
        self.closed_positions: List[Position] = []
        self.reserved_usdc = 0.0
        self.in_flight: Set[str] = set()

        self.daily_start_equity = 0.0
        self.daily_pnl_usdc = 0.0
        self.consecutive_losses = 0
        self.last_loss_time = 0.0
        self.stopped_out_tokens: Dict[str, float] = {}

        self.lp_history: Dict[str, List[Tuple[float, float]]] = {}
        self.transient_probe_failures = 0
        self.last_quoted_impact: Optional[Dict[str, Any]] = None
        self._updating = False

    # ---------- portfolio ----------
    def portfolio_state(self) -> PortfolioState:
        open_pnl = 0.0
        exposure = 0.0
        for p in self.open_positions.values():
            value = p.remaining_tokens * p.current_price
            open_pnl += value - p.cost_basis_remaining()
            exposure += value
        equity = self.daily_start_equity + self.daily_pnl_usdc + open_pnl
        daily_pct = ((self.daily_pnl_usdc + open_pnl) / self.daily_start_equity * 100
                     if self.daily_start_equity > 0 else 0.0)
        return PortfolioState(
            equity_usdc=equity,
            open_positions=len(self.open_positions),
            open_exposure_usdc=exposure,
            daily_pnl_pct=daily_pct,
            consecutive_losses=self.consecutive_losses,
            last_loss_time=self.last_loss_time,
            stopped_out_tokens=dict(self.stopped_out_tokens),
            reserved_usdc=self.reserved_usdc,
        )

    async def init_portfolio(self):
        try:
            balance = await self.executor.get_quote_balance()
        except Exception as e:
            jlog(self.logger, "PORTFOLIO_BALANCE_FAIL", logging.WARNING, error=repr(e))
            balance = 0.0
        # restored positions already spent their cost out of the balance
        at_cost = sum(p.cost_basis_remaining() for p in self.open_positions.values())
        self.daily_start_equity = balance + at_cost
        jlog(self.logger, "PORTFOLIO_INIT", equity_usdc=round(self.daily_start_equity, 2),
             usdc_balance=round(balance, 2), open_at_cost=round(at_cost, 2))

    def reset_daily_stats(self):
        self.daily_pnl_usdc = 0.0
        self.consecutive_losses = 0
        self.last_loss_time = 0.0
        jlog(self.logger, "DAILY_STATS_RESET")

    def get_open_positions(self) -> Dict[str, Position]:
        return self.open_positions

    def get_closed_positions(self) -> List[Position]:
        return self.closed_positions

    def has_open_position(self, mint: str) -> bool:
        return mint in self.open_positions

    # ---------- entry ----------
    def _skip(self, kind: ErrorKind, mint: str, size_usdc: float, reason: str) -> None:
        jlog(self.logger, "ENTRY_SKIP", logging.WARNING, kind=kind.value, mint=mint,
             size_usdc=round(size_usdc, 2), reason=reason)
        return None

    def _pre_checks(self, mint: str, size_usdc: float, available: float) -> Optional[Tuple[ErrorKind, str]]:
        """Synchronous gates. Run again right before reserving so no await sits between check and reserve."""
        portfolio = self.portfolio_state()
        kill = self.guards.check_kill_switch(portfolio.daily_pnl_pct, self.consecutive_losses)
        if not kill.passed:
            return ErrorKind.KILL_SWITCH, kill.reason
        lockout = self.guards.check_reentry_lockout(mint, self.stopped_out_tokens, self.clock())
        if not lockout.passed:
            return ErrorKind.GUARD_REJECTION, lockout.reason
        if mint in self.in_flight:
            return ErrorKind.GUARD_REJECTION, "Entry already in flight for this mint"
        if mint in self.open_positions:
            return ErrorKind.GUARD_REJECTION, "Position already open for this mint"

        p = self.cfg.portfolio
        # in-flight entries count against the ceilings as if already filled
        count = len(self.open_positions) + len(self.in_flight)
        if count >= p.max_concurrent_positions:
            return ErrorKind.MAX_POSITIONS, f"Max concurrent positions reached: {count}/{p.max_concurrent_positions}"

        if portfolio.equity_usdc > 0:
            exposure_pct = (portfolio.open_exposure_usdc + self.reserved_usdc + size_usdc) / portfolio.equity_usdc * 100
        else:
            exposure_pct = 100.0
        if exposure_pct > p.max_open_exposure_pct:
            return ErrorKind.MAX_EXPOSURE, f"Would exceed max exposure: {exposure_pct:.1f}% > {p.max_open_exposure_pct}%"

        if available - self.reserved_usdc < size_usdc:
            return ErrorKind.CAPITAL_INSUFFICIENT, (
                f"Insufficient capital: available {available:.2f} - reserved {self.reserved_usdc:.2f} < {size_usdc:.2f}")
        return None

    def _probe_transient(self, mint: str, error: Exception) -> None:
        # let the entry through, but watch for a degraded API
        pc = self.cfg.position
        self.transient_probe_failures += 1
        jlog(self.logger, "ENTRY_PROBE_TRANSIENT", logging.WARNING, kind=ErrorKind.TRANSIENT_NETWORK.value,
             mint=mint, consecutive=self.transient_probe_failures, error=repr(error))
        if self.transient_probe_failures >= pc.transient_warn_threshold:
            jlog(self.logger, "ENTRY_PROBE_DEGRADED", logging.WARNING,
                 consecutive=self.transient_probe_failures, threshold=pc.transient_warn_threshold)
        return None

    async def _probe_entry_impact(self, mint: str, size_usdc: float) -> Optional[str]:
        """Returns a rejection reason, or None when the entry may proceed."""
        pc = self.cfg.position
        if pc.max_entry_impact_pct <= 0:
            return None
        try:
            impact = await asyncio.wait_for(
                self.executor.quote_impact(mint, size_usdc, pc.entry_probe_slippage_bps),
                timeout=pc.entry_probe_timeout_sec,
            )
        except (asyncio.TimeoutError, TransientError) as e:
            return self._probe_transient(mint, e)
        except ApiError as e:
            if e.rate_limited or (e.status or 0) >= 500:
                return self._probe_transient(mint, e)
            self.transient_probe_failures = 0
            return f"Entry probe hard fail: {e}"
        except DecodeError as e:
            self.transient_probe_failures = 0
            return f"Entry probe hard fail: {e}"

        self.transient_probe_failures = 0
        self.last_quoted_impact = {"mint": mint, "impact": impact, "timestamp": self.clock()}
        if impact > pc.max_entry_impact_pct:
            return f"Entry impact too high: {impact:.4f}% > {pc.max_entry_impact_pct}%"
        return None

    async def open_position(self, mint: str, size_usdc: float, slippage_bps: Optional[int] = None,
                            plan: Optional[ExitPlan] = None) -> Optional[Position]:
        slippage_bps = slippage_bps if slippage_bps is not None else self.cfg.position.default_slippage_bps

        # cheap rejections before any network call
        early = self._pre_checks(mint, size_usdc, available=float("inf"))
        if early:
            return self._skip(early[0], mint, size_usdc, early[1])

        try:
            available = await self.executor.get_quote_balance()
        except Exception as e:
            return self._skip(ErrorKind.CAPITAL_INSUFFICIENT, mint, size_usdc, f"Balance unavailable: {e!r}")

        rejection = await self._probe_entry_impact(mint, size_usdc)
        if rejection:
            return self._skip(ErrorKind.GUARD_REJECTION, mint, size_usdc, rejection)

        # state may have moved while we awaited: check again, then reserve with no await in between
        late = self._pre_checks(mint, size_usdc, available)
        if late:
            return self._skip(late[0], mint, size_usdc, late[1])

        self.in_flight.add(mint)
        self.reserved_usdc += size_usdc
        jlog(self.logger, "OPENING_POSITION", mint=mint, size_usdc=round(size_usdc, 2),
             reserved_usdc=round(self.reserved_usdc, 2))
        try:
            try:
                result = await self.executor.buy_token(mint, size_usdc, slippage_bps,
                                                       use_bundle=self.cfg.execution.use_bundle)
            except Exception as e:
                jlog(self.logger, "BUY_ERROR", logging.ERROR, mint=mint, error=repr(e))
                return None
        finally:
            self.in_flight.discard(mint)
            self.reserved_usdc -= size_usdc

        if not result.success:
            jlog(self.logger, "BUY_FAIL", logging.ERROR, mint=mint, error=result.error)
            return None
        if result.token_amount <= 0:
            jlog(self.logger, "BUY_EMPTY_FILL", logging.ERROR, mint=mint, signature=result.signature)
            return None

        entry_price = result.usdc_amount / result.token_amount
        position = Position(
            mint=mint,
            entry_price=entry_price,
            initial_size_usdc=result.usdc_amount,
            initial_tokens=result.token_amount,
            entry_signature=result.signature or "",
            entry_time=self.clock(),
            plan=plan,
        )
        self.open_positions[mint] = position
        jlog(self.logger, "POSITION_OPENED", id=position.id, mint=mint, usdc_spent=round(result.usdc_amount, 4),
             tokens=result.token_amount, entry_price=f"{entry_price:.4e}", fee=round(result.fee, 6),
             fill_source=result.fill_source.value, latency_ms=result.latency_ms)
        return position

    # ---------- monitoring ----------
    def _track_liquidity(self, mint: str, liquidity: float, now: float) -> float:
        ex = self.cfg.exits
        samples = self.lp_history.setdefault(mint, [])
        samples.append((now, liquidity))
        change_pct = 0.0
        window = ex.emergency_lp_drop_window_minutes * 60
        old = next((s for s in samples if now - s[0] >= window), None)
        if old is not None and old[1] > 0:
            change_pct = (liquidity - old[1]) / old[1] * 100
        cutoff = now - ex.lp_history_retention_minutes * 60
        self.lp_history[mint] = [s for s in samples if s[0] >= cutoff]
        return change_pct

    async def update_positions(self):
        if self._updating:
            jlog(self.logger, "UPDATE_SKIP_RUNNING", logging.DEBUG)
            return
        self._updating = True
        try:
            # one at a time; each update makes several round trips
            for mint, position in list(self.open_positions.items()):
                try:
                    await self.update_position(position)
                except Exception as e:
                    self.logger.exception("update failed", extra={"extra": {
                        "event": "UPDATE_FAIL", "mint": mint, "error": repr(e)}})
        finally:
            self._updating = False

    async def update_position(self, position: Position):
        snap = await self.market.price_and_liquidity(position.mint)
        if not snap:
            jlog(self.logger, "PRICE_UNAVAILABLE", logging.WARNING, mint=position.mint)
            return
        price, liquidity = snap
        now = self.clock()
        position.mark_price(price)
        lp_change = self._track_liquidity(position.mint, liquidity, now)

        decision = self.exit_engine.emergency(lp_change)
        if decision is None:
            if position.plan is not None:
                decision = self.exit_engine.check_plan(position.plan, position.current_pnl_pct)
            else:
                decision = self.evaluator(position.current_pnl_pct, position.peak_pnl_pct,
                                          position.hold_minutes(now), lp_change,
                                          position.tp1_hit, position.tp2_hit)
        if decision is None:
            return

        jlog(self.logger, "EXIT_SIGNAL", mint=position.mint, type=decision.type, sell_pct=decision.sell_pct,
             reason=decision.reason, pnl_pct=round(position.current_pnl_pct, 2))
        await self.execute_exit(position, decision.type, decision.sell_pct, decision.reason)

    # ---------- exits ----------
    def _is_full(self, sell_pct: float) -> bool:
        return sell_pct >= 100.0 - self.cfg.position.full_exit_epsilon_pct

    async def _full_exit_amount(self, position: Position, tracked_raw: int) -> int:
        try:
            onchain = await self.executor.get_token_balance_raw(position.mint)
        except Exception as e:
            jlog(self.logger, "EXIT_BALANCE_UNAVAILABLE", logging.WARNING, mint=position.mint, error=repr(e))
            return tracked_raw
        if onchain < tracked_raw:
            jlog(self.logger, "EXIT_TRIM_TO_ONCHAIN", logging.WARNING, mint=position.mint,
                 tracked_raw=tracked_raw, onchain_raw=onchain, trimmed_raw=tracked_raw - onchain)
            return onchain
        if onchain > tracked_raw:
            # extra balance is not ours to sell
            jlog(self.logger, "EXIT_ORPHAN_BALANCE", logging.WARNING, mint=position.mint,
                 tracked_raw=tracked_raw, onchain_raw=onchain, orphaned_raw=onchain - tracked_raw)
        return tracked_raw

    async def execute_exit(self, position: Position, exit_type: str, sell_pct: float, reason: str):
        mint = position.mint
        tokens_to_sell = position.remaining_tokens * (sell_pct / 100.0)
        decimals = await self.executor.get_decimals(mint)
        raw = human_to_raw(tokens_to_sell, decimals)
        full = self._is_full(sell_pct)
        if full:
            raw = await self._full_exit_amount(position, raw)

        now = self.clock()
        if raw <= 0:
            jlog(self.logger, "EXIT_SKIP_ZERO", logging.WARNING, mint=mint, type=exit_type, sell_pct=sell_pct,
                 remaining_tokens=position.remaining_tokens)
            position.exits.append(PositionExit(type=exit_type, sell_pct=sell_pct, tokens_sold=0.0,
                                               usdc_received=0.0, price=position.current_price, timestamp=now,
                                               success=False, error="skipped: zero sell amount"))
            return

        jlog(self.logger, "EXECUTING_EXIT", mint=mint, type=exit_type, sell_pct=sell_pct,
             tokens=tokens_to_sell, tokens_raw=raw)
        slippage_bps = self.cfg.position.default_slippage_bps
        try:
            result = await self.executor.sell_token(mint, raw, slippage_bps, use_bundle=self.cfg.execution.use_bundle)
        except Exception as e:
            result = SwapResult(success=False, side="sell", usdc_amount=0.0, token_amount=0.0,
                                token_amount_raw=0, error=repr(e))

        fill_price = (result.usdc_amount / result.token_amount
                      if result.success and result.token_amount > 0 else position.current_price)
        position.exits.append(PositionExit(
            type=exit_type,
            sell_pct=sell_pct,
            tokens_sold=result.token_amount if result.success else 0.0,
            usdc_received=result.usdc_amount if result.success else 0.0,
            price=fill_price,
            timestamp=self.clock(),
            signature=result.signature,
            success=result.success,
            error=result.error,
        ))

        if not result.success:
            # stays open with untouched accounting; next cycle retries
            jlog(self.logger, "EXIT_FAIL", logging.ERROR, kind=ErrorKind.EXIT_FAILURE.value, mint=mint,
                 type=exit_type, sell_pct=sell_pct, error=result.error)
            return

        position.apply_sell(result.token_amount)
        if exit_type == "tp1":
            position.tp1_hit = True
            position.stop_moved_to_breakeven = True
        elif exit_type == "tp2":
            position.tp2_hit = True

        jlog(self.logger, "EXIT_EXECUTED", mint=mint, type=exit_type, usdc_received=round(result.usdc_amount, 4),
             tokens_sold=result.token_amount, remaining_pct=round(position.remaining_pct, 1))

        if position.remaining_tokens <= 0 or full:
            self.close_position(position, reason)

    def close_position(self, position: Position, reason: str, count_stats: bool = True):
        if position.status == CLOSED:
            return
        position.status = CLOSED
        position.close_reason = reason
        pnl = position.realized_pnl_usdc()
        now = self.clock()

        if count_stats:
            self.daily_pnl_usdc += pnl
            if pnl < 0:
                self.consecutive_losses += 1
                self.last_loss_time = now
                self.stopped_out_tokens[position.mint] = now
            else:
                self.consecutive_losses = 0

        self.open_positions.pop(position.mint, None)
        self.closed_positions.append(position)
        self.lp_history.pop(position.mint, None)

        jlog(self.logger, "POSITION_CLOSED", id=position.id, mint=position.mint, reason=reason,
             pnl_usdc=round(pnl, 4), pnl_pct=round(position.current_pnl_pct, 2),
             hold_min=round(position.hold_minutes(now)), daily_pnl=round(self.daily_pnl_usdc, 4),
             consecutive_losses=self.consecutive_losses)

    # ---------- maintenance ----------
    async def check_native_replenish(self) -> bool:
        """Top up the native balance used for fees. Returns True when a top-up was executed."""
        w = self.cfg.wallet
        try:
            balance = await self.executor.get_native_balance()
            if balance >= w.min_native_balance:
                return False
            jlog(self.logger, "NATIVE_LOW", logging.WARNING, balance=round(balance, 4), min=w.min_native_balance)
            snap = await self.market.price_and_liquidity(self.cfg.native_mint)
            if not snap:
                jlog(self.logger, "NATIVE_REPLENISH_SKIP", logging.WARNING, reason="no native price")
                return False
            usdc_needed = w.native_replenish_amount * snap[0]
            if self.cfg.paper_mode:
                jlog(self.logger, "PAPER_NATIVE_REPLENISH", usdc=round(usdc_needed, 2))
                return False
            raw = human_to_raw(usdc_needed, self.cfg.quote_decimals)
            quote = await self.executor.get_quote(self.cfg.quote_mint, self.cfg.native_mint, raw,
                                                  self.cfg.position.default_slippage_bps)
            if quote is None:
                return False
            result = await self.executor.execute_swap(quote, trade_type="replenish")
            jlog(self.logger, "NATIVE_REPLENISHED", usdc=round(usdc_needed, 2), success=result.success,
                 error=result.error)
            return result.success
        except Exception as e:
            jlog(self.logger, "NATIVE_REPLENISH_FAIL", logging.WARNING, error=repr(e))
            return False

    async def force_close_all(self) -> Dict[str, Any]:
        """Recovery: sell the live on-chain balance of every open position.

        Positions with nothing on-chain are closed as ghosts without touching
        risk counters. Failed sells stay open.
        """
        summary = {"sold": 0, "ghost_closed": 0, "failed": 0, "usdc_recovered": 0.0}
        for mint, position in list(self.open_positions.items()):
            try:
                raw = await self.executor.get_token_balance_raw(mint)
            except Exception as e:
                jlog(self.logger, "FORCE_CLOSE_BALANCE_FAIL", logging.ERROR, mint=mint, error=repr(e))
                summary["failed"] += 1
                continue
            if raw <= 0:
                self.close_position(position, "force-closed (ghost: no on-chain balance)", count_stats=False)
                summary["ghost_closed"] += 1
                continue
            try:
                result = await self.executor.sell_token(mint, raw, self.cfg.position.default_slippage_bps,
                                                        trade_type="force_close")
            except Exception as e:
                result = SwapResult(success=False, side="sell", usdc_amount=0.0, token_amount=0.0,
                                    token_amount_raw=0, error=repr(e))
            if not result.success:
                jlog(self.logger, "FORCE_CLOSE_SELL_FAIL", logging.ERROR, mint=mint, error=result.error)
                summary["failed"] += 1
                continue
            # only the tracked share of the fill belongs to this position
            tokens_sold = min(result.token_amount, position.remaining_tokens)
            share = tokens_sold / result.token_amount if result.token_amount > 0 else 0.0
            usdc_received = result.usdc_amount * share
            if result.token_amount > tokens_sold:
                jlog(self.logger, "FORCE_CLOSE_ORPHAN_SOLD", logging.WARNING, mint=mint,
                     orphan_tokens=result.token_amount - tokens_sold,
                     orphan_usdc=round(result.usdc_amount - usdc_received, 4))
            position.exits.append(PositionExit(
                type="force_close", sell_pct=100.0, tokens_sold=tokens_sold,
                usdc_received=usdc_received,
                price=result.usdc_amount / result.token_amount if result.token_amount > 0 else position.current_price,
                timestamp=self.clock(), signature=result.signature,
            ))
            position.apply_sell(tokens_sold)
            self.close_position(position, f"force-closed (recovered {result.usdc_amount:.2f} USDC)")
            summary["sold"] += 1
            summary["usdc_recovered"] += result.usdc_amount
        jlog(self.logger, "FORCE_CLOSE_DONE", **summary)
        return summary

    # ---------- persistence ----------
    def _date_str(self, days_back: int = 0) -> str:
        d = datetime.fromtimestamp(self.clock(), tz=timezone.utc) - timedelta(days=days_back)
        return d.strftime("%Y-%m-%d")

    def positions_path(self, date_str: str) -> str:
        return os.path.join(self.cfg.persistence.data_dir, f"positions-{date_str}.json")

    def today(self) -> str:
        return self._date_str()

    async def roll_day(self, previous_date: str):
        """Close out the finished UTC day and start fresh counters for the new one."""
        self.save(previous_date)
        self.closed_positions = []
        self.reset_daily_stats()
        await self.init_portfolio()

    def save(self, date_str: Optional[str] = None) -> str:
        os.makedirs(self.cfg.persistence.data_dir, exist_ok=True)
        data = {
            "savedAt": datetime.fromtimestamp(self.clock(), tz=timezone.utc).isoformat(),
            "open": [p.to_dict() for p in self.open_positions.values()],
            "closed": [p.to_dict() for p in self.closed_positions],
            "stats": {
                "totalTrades": len(self.closed_positions),
                "wins": sum(1 for p in self.closed_positions if p.realized_pnl_usdc() > 0),
                "dailyPnlUsdc": self.daily_pnl_usdc,
                "consecutiveLosses": self.consecutive_losses,
                "lastLossTime": self.last_loss_time,
                "stoppedOutTokens": self.stopped_out_tokens,
            },
        }
        path = self.positions_path(date_str or self._date_str())
        tmp = path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp, path)
        jlog(self.logger, "POSITIONS_SAVED", path=path, open=len(self.open_positions),
             closed=len(self.closed_positions))
        return path

    def restore(self) -> int:
        """Load today's file, else carry over yesterday's open positions with fresh daily counters."""
        today = self.positions_path(self._date_str())
        if os.path.exists(today):
            with open(today, "r", encoding="utf-8") as f:
                data = json.load(f)
            self._load_open(data.get("open") or [])
            self.closed_positions = [Position.from_dict(p) for p in data.get("closed") or []]
            stats = data.get("stats") or {}
            self.daily_pnl_usdc = float(_stat(stats, "dailyPnlUsdc", "daily_pnl_usdc") or 0.0)
            self.consecutive_losses = int(_stat(stats, "consecutiveLosses", "consecutive_losses") or 0)
            self.last_loss_time = float(_stat(stats, "lastLossTime", "last_loss_time") or 0.0)
            stopped = _stat(stats, "stoppedOutTokens", "stopped_out_tokens") or {}
            self.stopped_out_tokens = {k: float(v) for k, v in stopped.items()}
            jlog(self.logger, "POSITIONS_RESTORED", path=today, open=len(self.open_positions),
                 closed=len(self.closed_positions))
            return len(self.open_positions)

        yesterday = self.positions_path(self._date_str(1))
        if os.path.exists(yesterday):
            with open(yesterday, "r", encoding="utf-8") as f:
                data = json.load(f)
            self._load_open(data.get("open") or [])
            # new trading day: open risk carries over, risk counters do not
            self.daily_pnl_usdc = 0.0
            self.consecutive_losses = 0
            self.last_loss_time = 0.0
            jlog(self.logger, "POSITIONS_CARRIED_OVER", path=yesterday, open=len(self.open_positions))
            return len(self.open_positions)

        jlog(self.logger, "POSITIONS_NONE_TO_RESTORE")
        return 0

    async def resume(self) -> int:
        """Restore from disk and bring the executor's wallet view in line with it."""
        restored = self.restore()
        await self.executor.sync_positions(list(self.open_positions.values()))
        return restored

    def _load_open(self, items: List[Dict[str, Any]]):
        for raw in items:
            p = Position.from_dict(raw)
            if p.status == OPEN:
                self.open_positions[p.mint] = p
