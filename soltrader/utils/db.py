import os
import aiosqlite
from typing import Any, Dict

SCHEMA = """
PRAGMA journal_mode=WAL;
CREATE TABLE IF NOT EXISTS swaps (
  id TEXT PRIMARY KEY,
  mint TEXT NOT NULL,
  side TEXT NOT NULL,          -- buy/sell
  ts REAL NOT NULL,
  trade_type TEXT NOT NULL,    -- trade/replenish/force_close
  quote_price REAL,
  actual_price REAL,
  slippage_pct REAL,           -- positive = worse than quoted, NULL when fill not measured
  slippage_cost_usdc REAL,
  expected_slippage_pct REAL NOT NULL,
  actual_fill REAL NOT NULL,
  usdc_amount REAL NOT NULL,
  fill_source TEXT NOT NULL,
  latency_ms INTEGER NOT NULL,
  fees REAL NOT NULL,
  signature TEXT,
  success INTEGER NOT NULL,
  error TEXT
);
CREATE INDEX IF NOT EXISTS swaps_ts ON swaps(ts);
"""

COLUMNS = (
    "id", "mint", "side", "ts", "trade_type", "quote_price", "actual_price", "slippage_pct",
    "slippage_cost_usdc", "expected_slippage_pct", "actual_fill", "usdc_amount", "fill_source",
    "latency_ms", "fees", "signature", "success", "error",
)

async def init_db(cfg):
    async with aiosqlite.connect(cfg.database.path) as db:
        for stmt in SCHEMA.strip().split(";"):
            s = stmt.strip()
            if s:
                await db.execute(s)
        await db.commit()

def ensure_dirs(cfg):
    for path in (cfg.logging.log_file, cfg.database.path):
        d = os.path.dirname(path)
        if d:
            os.makedirs(d, exist_ok=True)
    os.makedirs(cfg.persistence.data_dir, exist_ok=True)

async def append_swap(db_path: str, entry: Dict[str, Any]):
    # append-only: rows are never updated
    row = tuple(entry.get(c) for c in COLUMNS)
    async with aiosqlite.connect(db_path) as db:
        await db.execute(
            f"INSERT INTO swaps({', '.join(COLUMNS)}) VALUES({', '.join('?' for _ in COLUMNS)})", row
        )
        await db.commit()

async def swap_summary(db_path: str) -> Dict[str, Any]:
    async with aiosqlite.connect(db_path) as db:
        async with db.execute(
            "SELECT COUNT(*), SUM(success), SUM(CASE WHEN fill_source='onchain' THEN 1 ELSE 0 END), "
            "AVG(slippage_pct), SUM(slippage_cost_usdc), SUM(fees) FROM swaps"
        ) as cur:
            row = await cur.fetchone()
    return {
        "swaps": row[0] or 0,
        "succeeded": row[1] or 0,
        "onchain_verified": row[2] or 0,
        "avg_slippage_pct": row[3],
        "slippage_cost_usdc": row[4] or 0.0,
        "fees": row[5] or 0.0,
    }
