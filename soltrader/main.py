import argparse
import asyncio
import logging
import os
import sys

from soltrader.bot import Bot
from soltrader.config import load_config
from soltrader.core.bundle import BundleRelay
from soltrader.core.manager import PositionManager
from soltrader.core.paper import PaperTrader
from soltrader.core.trader import Trader
from soltrader.data.jupiter import JupiterApi
from soltrader.data.market import MarketData
from soltrader.data.rpc import LedgerRpc
from soltrader.utils.db import ensure_dirs, init_db, swap_summary
from soltrader.utils.guards import Guards
from soltrader.utils.logging_utils import jlog, setup_logging
from soltrader.utils.wallet import load_signer

def build_parser():
    p = argparse.ArgumentParser("sol-spot-trader")
    p.add_argument("--config", help="Path to config.yaml (default: ./config.yaml if present)")
    p.add_argument("--status", action="store_true", help="Print positions and swap summary and exit")
    p.add_argument("--dry-run", action="store_true", help="Force paper mode")
    p.add_argument("--mode", choices=["paper", "live"], help="Override mode")
    p.add_argument("--buy", metavar="MINT", help="Open one position in MINT through all entry guards")
    p.add_argument("--size", type=float, help="USDC to spend with --buy")
    p.add_argument("--slippage-bps", type=int, help="Slippage tolerance for --buy")
    p.add_argument("--close-all", action="store_true", help="Sell the on-chain balance of every open position")
    p.add_argument("--confirm", action="store_true", help="Required with --close-all")
    p.add_argument("-v", "--verbose", action="store_true", help="Set logging to DEBUG")
    return p

def build_components(cfg, logger: logging.Logger):
    api = JupiterApi(cfg, logger)
    rpc = LedgerRpc(cfg, logger)
    market = MarketData(cfg, logger)
    guards = Guards(cfg)
    if cfg.paper_mode:
        # rpc only serves mint decimals here
        executor = PaperTrader(cfg, logger, api, rpc=rpc, db_path=cfg.database.path)
    else:
        signer = load_signer(cfg, logger)
        bundle = BundleRelay(cfg, logger, rpc, signer) if cfg.execution.use_bundle else None
        executor = Trader(cfg, logger, api, rpc, signer, guards=guards, bundle=bundle,
                          db_path=cfg.database.path)
    manager = PositionManager(cfg, logger, executor, market, guards=guards)
    return executor, market, manager

async def print_status(cfg, logger: logging.Logger):
    manager = PositionManager(cfg, logger, executor=None, market=None)
    manager.restore()
    print(f"Open positions ({len(manager.open_positions)}):")
    for p in manager.open_positions.values():
        print(f"  {p.mint}: {p.remaining_tokens:.6f} tokens ({p.remaining_pct:.1f}%) @ entry {p.entry_price:.4e}, "
              f"pnl {p.current_pnl_pct:+.2f}%, tp1={p.tp1_hit} tp2={p.tp2_hit}")
    closed = manager.closed_positions
    wins = sum(1 for p in closed if p.realized_pnl_usdc() > 0)
    print(f"Closed today: {len(closed)}, wins: {wins}, daily PnL: {manager.daily_pnl_usdc:.4f} USDC, "
          f"consecutive losses: {manager.consecutive_losses}")
    if os.path.exists(cfg.database.path):
        s = await swap_summary(cfg.database.path)
        avg = f"{s['avg_slippage_pct']:.3f}%" if s["avg_slippage_pct"] is not None else "n/a"
        print(f"Swaps: {s['swaps']} ({s['succeeded']} ok, {s['onchain_verified']} verified on-chain), "
              f"avg slippage {avg}, slippage cost {s['slippage_cost_usdc']:.4f} USDC, fees {s['fees']:.6f}")

async def manual_buy(cfg, logger, mint: str, size: float, slippage_bps):
    executor, market, manager = build_components(cfg, logger)
    try:
        await manager.resume()
        await manager.init_portfolio()
        position = await manager.open_position(mint, size, slippage_bps)
        manager.save()
    finally:
        await executor.close()
        await market.close()
    if position is None:
        print(f"Entry rejected or failed for {mint} (see log)")
        return 1
    print(f"Opened {position.id}: {position.initial_tokens:.6f} tokens for {position.initial_size_usdc:.4f} USDC "
          f"@ {position.entry_price:.4e}")
    return 0

async def close_all(cfg, logger):
    executor, market, manager = build_components(cfg, logger)
    try:
        await manager.resume()
        summary = await manager.force_close_all()
        manager.save()
    finally:
        await executor.close()
        await market.close()
    print(f"Sold: {summary['sold']}, ghosts closed: {summary['ghost_closed']}, failed: {summary['failed']}, "
          f"recovered: {summary['usdc_recovered']:.4f} USDC")
    return 1 if summary["failed"] else 0

def main():
    parser = build_parser()
    args = parser.parse_args()

    config_path = args.config or ("config.yaml" if os.path.exists("config.yaml") else None)
    cfg = load_config(config_path)
    if args.mode:
        cfg.mode = args.mode
    if args.dry_run:
        cfg.mode = "paper"

    log_level = "DEBUG" if args.verbose else cfg.logging.level
    logger = setup_logging(cfg, level=log_level)

    ensure_dirs(cfg)
    asyncio.run(init_db(cfg))

    if args.status:
        asyncio.run(print_status(cfg, logger))
        return

    if args.buy:
        if not args.size or args.size <= 0:
            parser.error("--buy requires a positive --size")
        sys.exit(asyncio.run(manual_buy(cfg, logger, args.buy, args.size, args.slippage_bps)))

    if args.close_all:
        if not args.confirm:
            parser.error("--close-all sells every open position; pass --confirm to proceed")
        sys.exit(asyncio.run(close_all(cfg, logger)))

    executor, market, manager = build_components(cfg, logger)
    bot = Bot(cfg, logger, manager, executor, market)
    try:
        asyncio.run(bot.run())
    except KeyboardInterrupt:
        jlog(logger, "INTERRUPTED", logging.WARNING)

if __name__ == "__main__":
    main()
