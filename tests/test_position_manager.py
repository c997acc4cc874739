import asyncio
import logging

from soltrader.config import Config
from soltrader.core.manager import PositionManager
from soltrader.core.position import CLOSED, OPEN, ExitPlan, Position
from soltrader.data.models import FillSource, SwapResult
from soltrader.utils.exit import ExitDecision
from soltrader.utils.retry import ApiError, TransientError

log = logging.getLogger("test")
T0 = 1_760_000_000.0

class FakeExecutor:
    """Same surface as Trader: 6-decimal tokens, fills at ``price``."""

    def __init__(self, balance=1_000.0, price=1.0, impact=0.5):
        self.balance = balance
        self.price = price
        self.impact = impact
        self.onchain_raw = {}
        self.buys = []
        self.sells = []
        self.buy_error = None
        self.sell_error = None
        self.sell_fails = False

    async def get_quote_balance(self):
        await asyncio.sleep(0)
        return self.balance

    async def quote_impact(self, mint, size_usdc, slippage_bps):
        await asyncio.sleep(0)
        if isinstance(self.impact, Exception):
            raise self.impact
        return self.impact

    async def buy_token(self, mint, usdc_amount, slippage_bps, use_bundle=False):
        self.buys.append((mint, usdc_amount))
        await asyncio.sleep(0)
        if self.buy_error:
            raise self.buy_error
        tokens = usdc_amount / self.price
        self.onchain_raw[mint] = self.onchain_raw.get(mint, 0) + int(tokens * 1e6)
        return SwapResult(True, "buy", usdc_amount=usdc_amount, token_amount=tokens,
                          token_amount_raw=int(tokens * 1e6), fill_source=FillSource.ONCHAIN,
                          signature=f"buy-{len(self.buys)}")

    async def sell_token(self, mint, token_amount_raw, slippage_bps, use_bundle=False, trade_type="trade"):
        self.sells.append((mint, token_amount_raw))
        if self.sell_error:
            raise self.sell_error
        if self.sell_fails:
            return SwapResult(False, "sell", 0.0, 0.0, 0, error="Failed after 3 attempts: boom")
        tokens = token_amount_raw / 1e6
        return SwapResult(True, "sell", usdc_amount=tokens * self.price, token_amount=tokens,
                          token_amount_raw=token_amount_raw, fill_source=FillSource.ONCHAIN,
                          signature=f"sell-{len(self.sells)}")

    async def get_token_balance_raw(self, mint):
        return self.onchain_raw.get(mint, 0)

    async def get_decimals(self, mint):
        return 6

    async def get_native_balance(self):
        return 1.0

class FakeMarket:
    def __init__(self):
        self.quotes = {}
        self.fail = set()

    async def price_and_liquidity(self, mint):
        if mint in self.fail:
            raise RuntimeError("market down")
        return self.quotes.get(mint)

class Clock:
    def __init__(self, t=T0):
        self.t = t

    def __call__(self):
        return self.t

def make_manager(executor=None, evaluator=None, tmp_path=None, clock=None):
    cfg = Config()
    if tmp_path is not None:
        cfg.persistence.data_dir = str(tmp_path)
    ex = executor or FakeExecutor()
    m = PositionManager(cfg, log, ex, FakeMarket(), evaluator=evaluator, clock=clock or Clock())
    m.daily_start_equity = 1_000.0
    return m

def seed_position(m, mint="TOK", tokens=100.0, price=1.0, plan=None):
    p = Position(mint=mint, entry_price=price, initial_size_usdc=tokens * price, initial_tokens=tokens,
                 entry_signature="sig", entry_time=m.clock(), plan=plan)
    m.open_positions[mint] = p
    m.executor.onchain_raw[mint] = int(tokens * 1e6)
    return p

# ---------- entries ----------

def test_open_position_records_entry_price_from_fill():
    m = make_manager(FakeExecutor(price=0.5))
    p = asyncio.run(m.open_position("TOK", 50.0))
    assert p is not None and p.status == OPEN
    assert p.initial_tokens == 100.0
    assert p.entry_price == 0.5
    assert m.reserved_usdc == 0.0
    assert m.in_flight == set()
    assert m.has_open_position("TOK")

def test_concurrent_opens_same_mint_buy_once():
    ex = FakeExecutor()
    m = make_manager(ex)

    async def both():
        return await asyncio.gather(m.open_position("TOK", 20.0), m.open_position("TOK", 20.0))

    results = asyncio.run(both())
    assert len(ex.buys) == 1
    assert sum(1 for r in results if r is not None) == 1
    assert m.reserved_usdc == 0.0
    assert m.in_flight == set()

def test_concurrent_opens_cannot_double_spend_balance():
    ex = FakeExecutor(balance=100.0)
    m = make_manager(ex)

    async def both():
        return await asyncio.gather(m.open_position("AAA", 60.0), m.open_position("BBB", 60.0))

    results = asyncio.run(both())
    assert len(ex.buys) == 1
    assert sum(1 for r in results if r is not None) == 1

def test_reserved_capital_restored_when_buy_raises():
    ex = FakeExecutor()
    ex.buy_error = RuntimeError("socket closed")
    m = make_manager(ex)
    m.reserved_usdc = 5.0
    assert asyncio.run(m.open_position("TOK", 20.0)) is None
    assert m.reserved_usdc == 5.0
    assert m.in_flight == set()
    assert not m.open_positions

def test_reserved_capital_unchanged_on_guard_rejection():
    ex = FakeExecutor()
    m = make_manager(ex)
    m.consecutive_losses = 4
    assert asyncio.run(m.open_position("TOK", 20.0)) is None
    assert ex.buys == []
    assert m.reserved_usdc == 0.0

def test_entry_gates():
    ex = FakeExecutor(balance=30.0)
    m = make_manager(ex)
    # capital
    assert asyncio.run(m.open_position("TOK", 50.0)) is None
    # exposure: 700 of 1000 equity is above the 60% ceiling
    ex.balance = 1_000.0
    assert asyncio.run(m.open_position("TOK", 700.0)) is None
    # position count
    for mint in ("A", "B", "C"):
        seed_position(m, mint, tokens=1.0)
    assert asyncio.run(m.open_position("TOK", 10.0)) is None
    assert ex.buys == []

def test_daily_loss_kill_switch_blocks_entries():
    ex = FakeExecutor()
    m = make_manager(ex)
    m.daily_pnl_usdc = -90.0
    assert abs(m.portfolio_state().daily_pnl_pct + 9.0) < 1e-9
    assert asyncio.run(m.open_position("TOK", 10.0)) is None
    assert ex.buys == []

def test_reentry_lockout_after_stop_out():
    clock = Clock()
    m = make_manager(clock=clock)
    m.stopped_out_tokens["TOK"] = clock.t - 600
    assert asyncio.run(m.open_position("TOK", 10.0)) is None
    clock.t += 3 * 3600
    assert asyncio.run(m.open_position("TOK", 10.0)) is not None

def test_probe_rejects_high_impact_and_hard_fail():
    ex = FakeExecutor(impact=2.5)
    m = make_manager(ex)
    assert asyncio.run(m.open_position("TOK", 10.0)) is None
    ex.impact = ApiError("quote error: TOKEN_NOT_TRADABLE", status=400)
    assert asyncio.run(m.open_position("TOK", 10.0)) is None
    assert ex.buys == []
    assert m.last_quoted_impact is not None and m.last_quoted_impact["impact"] == 2.5

def test_probe_transient_failure_does_not_block():
    ex = FakeExecutor(impact=TransientError("connect timeout"))
    m = make_manager(ex)
    assert asyncio.run(m.open_position("AAA", 10.0)) is not None
    assert asyncio.run(m.open_position("BBB", 10.0)) is not None
    assert m.transient_probe_failures == 2
    ex.impact = 0.3
    assert asyncio.run(m.open_position("CCC", 10.0)) is not None
    assert m.transient_probe_failures == 0

def test_probe_timeout_is_transient():
    class SlowExecutor(FakeExecutor):
        async def quote_impact(self, mint, size_usdc, slippage_bps):
            await asyncio.sleep(5)
            return 0.1

    m = make_manager(SlowExecutor())
    m.cfg.position.entry_probe_timeout_sec = 0.01
    assert asyncio.run(m.open_position("TOK", 10.0)) is not None
    assert m.transient_probe_failures == 1

def test_rate_limited_probe_is_transient():
    m = make_manager(FakeExecutor(impact=ApiError("quote HTTP 429", status=429)))
    assert asyncio.run(m.open_position("TOK", 10.0)) is not None
    assert m.transient_probe_failures == 1

# ---------- exits ----------

def test_partial_then_full_exit_with_fee_dust():
    ex = FakeExecutor(price=1.0)
    m = make_manager(ex)
    p = asyncio.run(m.open_position("TOK", 100.0))
    assert p.initial_tokens == 100.0

    ex.price = 1.10
    p.mark_price(1.10)
    assert abs(p.current_pnl_pct - 10.0) < 1e-9
    asyncio.run(m.execute_exit(p, "tp1", 50.0, "test"))
    assert ex.sells[-1] == ("TOK", 50_000_000)
    assert p.remaining_tokens == 50.0
    assert p.remaining_pct == 50.0
    assert p.status == OPEN
    assert p.tp1_hit and p.stop_moved_to_breakeven

    # wallet holds a little less than tracked
    ex.onchain_raw["TOK"] = 49_980_000
    asyncio.run(m.execute_exit(p, "hard_stop", 100.0, "test"))
    assert ex.sells[-1] == ("TOK", 49_980_000)
    assert abs(p.remaining_tokens - 0.02) < 1e-9
    assert p.status == CLOSED
    assert not m.has_open_position("TOK")
    expected = 50 * 1.10 + 49.98 * 1.10 - 100.0
    assert abs(p.realized_pnl_usdc() - expected) < 1e-9
    assert abs(m.daily_pnl_usdc - expected) < 1e-9
    assert m.consecutive_losses == 0

def test_full_exit_trims_to_smaller_onchain_balance():
    m = make_manager()
    p = seed_position(m, tokens=1.0)
    m.executor.onchain_raw["TOK"] = 999_950
    asyncio.run(m.execute_exit(p, "hard_stop", 100.0, "test"))
    assert m.executor.sells == [("TOK", 999_950)]

def test_full_exit_never_sells_orphaned_balance():
    m = make_manager()
    p = seed_position(m, tokens=1.0)
    m.executor.onchain_raw["TOK"] = 1_050_000
    asyncio.run(m.execute_exit(p, "hard_stop", 100.0, "test"))
    assert m.executor.sells == [("TOK", 1_000_000)]

def test_zero_amount_exit_is_skipped():
    m = make_manager()
    p = seed_position(m, tokens=0.0000004)
    asyncio.run(m.execute_exit(p, "tp1", 50.0, "test"))
    assert m.executor.sells == []
    assert len(p.exits) == 1 and not p.exits[0].success
    assert p.status == OPEN

def test_failed_exit_keeps_position_open_and_retries_next_cycle():
    ex = FakeExecutor(price=0.9)
    calls = []

    def evaluator(pnl, peak, hold, lp, tp1, tp2):
        calls.append(pnl)
        return ExitDecision("hard_stop", 100.0, "stop")

    m = make_manager(ex, evaluator=evaluator)
    p = seed_position(m, tokens=100.0)
    m.market.quotes["TOK"] = (0.9, 50_000.0)
    ex.sell_error = TransientError("rpc down")

    asyncio.run(m.update_positions())
    assert p.status == OPEN
    assert p.remaining_tokens == 100.0
    assert p.exits[-1].success is False

    ex.sell_error = None
    ex.sell_fails = True
    asyncio.run(m.update_positions())
    assert p.status == OPEN
    assert len(ex.sells) == 2 and len(calls) == 2

    ex.sell_fails = False
    asyncio.run(m.update_positions())
    assert p.status == CLOSED
    assert m.consecutive_losses == 1
    assert "TOK" in m.stopped_out_tokens

def test_remaining_tokens_match_sum_of_successful_sells():
    ex = FakeExecutor()
    m = make_manager(ex)
    p = seed_position(m, tokens=100.0)
    history = [p.remaining_tokens]
    for pct in (50.0, 30.0, 25.0):
        asyncio.run(m.execute_exit(p, "tp1", pct, "test"))
        history.append(p.remaining_tokens)
    ex.sell_fails = True
    asyncio.run(m.execute_exit(p, "tp2", 50.0, "test"))
    history.append(p.remaining_tokens)
    assert all(b <= a for a, b in zip(history, history[1:]))
    assert all(x >= 0 for x in history)
    assert abs((p.initial_tokens - p.remaining_tokens) - p.tokens_sold()) < 1e-6

# ---------- monitoring ----------

def test_peak_pnl_is_monotonic():
    m = make_manager(evaluator=lambda *a: None)
    p = seed_position(m)
    peaks = []
    for price in (1.05, 1.20, 1.10, 0.95, 1.15):
        m.market.quotes["TOK"] = (price, 10_000.0)
        asyncio.run(m.update_positions())
        peaks.append(p.peak_pnl_pct)
    assert peaks == sorted(peaks)
    assert abs(p.peak_pnl_pct - 20.0) < 1e-9

def test_update_is_single_flight():
    m = make_manager(evaluator=lambda *a: None)
    seed_position(m)
    m.market.fail.add("TOK")
    m._updating = True
    asyncio.run(m.update_positions())
    assert m._updating is True

def test_one_failing_position_does_not_abort_cycle():
    m = make_manager(evaluator=lambda *a: None)
    seed_position(m, "BAD")
    good = seed_position(m, "GOOD")
    m.market.fail.add("BAD")
    m.market.quotes["GOOD"] = (1.3, 10_000.0)
    asyncio.run(m.update_positions())
    assert abs(good.current_pnl_pct - 30.0) < 1e-9
    assert m._updating is False

def test_liquidity_drop_triggers_emergency_before_plan():
    clock = Clock()
    m = make_manager(clock=clock)
    p = seed_position(m, plan=ExitPlan(stop_loss_pct=50.0, take_profit_pct=100.0))
    m.market.quotes["TOK"] = (1.0, 100_000.0)
    asyncio.run(m.update_positions())
    assert p.status == OPEN

    clock.t += 301
    m.market.quotes["TOK"] = (1.02, 60_000.0)
    asyncio.run(m.update_positions())
    assert p.status == CLOSED
    assert p.exits[-1].type == "emergency"

def test_liquidity_history_is_pruned():
    clock = Clock()
    m = make_manager(evaluator=lambda *a: None, clock=clock)
    seed_position(m)
    m.market.quotes["TOK"] = (1.0, 100_000.0)
    for _ in range(5):
        asyncio.run(m.update_positions())
        clock.t += 600
    retention = m.cfg.exits.lp_history_retention_minutes * 60
    assert all(clock.t - 600 - t <= retention for t, _ in m.lp_history["TOK"])
    assert len(m.lp_history["TOK"]) == 2

def test_evaluator_receives_position_metrics():
    clock = Clock()
    seen = []

    def evaluator(pnl, peak, hold, lp, tp1, tp2):
        seen.append((round(pnl, 6), round(peak, 6), hold, lp, tp1, tp2))
        return None

    m = make_manager(evaluator=evaluator, clock=clock)
    seed_position(m)
    clock.t += 120
    m.market.quotes["TOK"] = (1.05, 10_000.0)
    asyncio.run(m.update_positions())
    assert seen == [(5.0, 5.0, 2.0, 0.0, False, False)]

# ---------- maintenance ----------

def test_force_close_all_sells_onchain_and_closes_ghosts():
    ex = FakeExecutor()
    m = make_manager(ex)
    seed_position(m, "REAL", tokens=10.0)
    seed_position(m, "GHOST", tokens=5.0)
    ex.onchain_raw["GHOST"] = 0
    summary = asyncio.run(m.force_close_all())
    assert summary["sold"] == 1 and summary["ghost_closed"] == 1 and summary["failed"] == 0
    assert ex.sells == [("REAL", 10_000_000)]
    assert not m.open_positions
    assert m.consecutive_losses == 0

def test_native_replenish_paper_only_logs():
    class LowNative(FakeExecutor):
        async def get_native_balance(self):
            return 0.01

    m = make_manager(LowNative())
    m.market.quotes[m.cfg.native_mint] = (150.0, 1e9)
    assert asyncio.run(m.check_native_replenish()) is False

def test_native_replenish_live_swaps_usdc():
    class LowNative(FakeExecutor):
        def __init__(self):
            super().__init__()
            self.swapped = []

        async def get_native_balance(self):
            return 0.01

        async def get_quote(self, input_mint, output_mint, amount_raw, slippage_bps):
            return (input_mint, output_mint, amount_raw)

        async def execute_swap(self, quote, use_bundle=False, trade_type="trade"):
            self.swapped.append((quote, trade_type))
            return SwapResult(True, "buy", 75.0, 0.5, 500_000_000)

    ex = LowNative()
    m = make_manager(ex)
    m.cfg.mode = "live"
    m.market.quotes[m.cfg.native_mint] = (150.0, 1e9)
    assert asyncio.run(m.check_native_replenish()) is True
    quote, trade_type = ex.swapped[0]
    assert quote == (m.cfg.quote_mint, m.cfg.native_mint, 75_000_000)
    assert trade_type == "replenish"

def test_init_portfolio_counts_open_positions_at_cost():
    ex = FakeExecutor(balance=400.0)
    m = make_manager(ex)
    seed_position(m, tokens=100.0, price=1.0)
    asyncio.run(m.init_portfolio())
    assert m.daily_start_equity == 500.0

def test_force_close_all_books_only_the_tracked_share():
    ex = FakeExecutor(price=1.0)
    m = make_manager(ex)
    p = seed_position(m, "TOK", tokens=100.0)
    ex.onchain_raw["TOK"] = 150_000_000
    summary = asyncio.run(m.force_close_all())
    assert summary["sold"] == 1
    assert ex.sells == [("TOK", 150_000_000)]
    assert p.status == CLOSED
    assert p.tokens_sold() == 100.0
    assert abs(p.exits[-1].usdc_received - 100.0) < 1e-9
    # breakeven on the tracked tokens; orphan proceeds are not this position's PnL
    assert abs(p.realized_pnl_usdc()) < 1e-9
    assert abs(m.daily_pnl_usdc) < 1e-9
    assert summary["usdc_recovered"] == 150.0
