import os
from dataclasses import dataclass, field
from typing import List, Optional
import yaml

USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
SOL_MINT = "So11111111111111111111111111111111111111112"

@dataclass
class Guards:
    max_route_impact_pct: float = 3.0
    max_slippage_bps: int = 500
    daily_loss_limit_pct: float = -8.0      # negative: halt when daily pnl% <= this
    consecutive_loss_limit: int = 4

@dataclass
class PortfolioCfg:
    max_concurrent_positions: int = 3
    max_open_exposure_pct: float = 60.0
    reentry_lockout_hours: float = 2.0
    starting_equity_usdc: float = 100.0     # paper mode seed

@dataclass
class PositionCfg:
    max_entry_impact_pct: float = 2.0       # 0 disables the pre-flight probe
    entry_probe_slippage_bps: int = 100
    entry_probe_timeout_sec: float = 5.0
    transient_warn_threshold: int = 3
    default_slippage_bps: int = 300
    full_exit_epsilon_pct: float = 0.01

@dataclass
class TakeProfit:
    target_pct: float = 12.0
    sell_pct: float = 50.0

@dataclass
class Runner:
    trailing_stop_pct: float = 6.0

@dataclass
class Exits:
    hard_stop_pct: float = -8.0
    tp1: TakeProfit = field(default_factory=TakeProfit)
    tp2: TakeProfit = field(default_factory=lambda: TakeProfit(target_pct=22.0, sell_pct=30.0))
    runner: Runner = field(default_factory=Runner)
    time_stop_minutes: float = 20.0
    time_stop_pnl_range_pct: List[float] = field(default_factory=lambda: [-3.0, 6.0])
    emergency_lp_drop_pct: float = -25.0
    emergency_lp_drop_window_minutes: float = 5.0
    lp_history_retention_minutes: float = 15.0

@dataclass
class Execution:
    max_retries: int = 2                    # attempts = max_retries + 1
    simulate_before_submit: bool = True
    use_bundle: bool = True
    backoff_base_sec: float = 2.0
    backoff_max_sec: float = 30.0
    fill_fetch_attempts: int = 5
    fill_fetch_delay_sec: float = 1.2
    confirm_timeout_sec: float = 60.0
    confirm_poll_sec: float = 1.0
    balance_cache_ttl_sec: float = 30.0

@dataclass
class ExecJupiter:
    quote_url: str = "https://lite-api.jup.ag/swap/v1/quote"
    swap_url: str = "https://lite-api.jup.ag/swap/v1/swap"
    api_key: str = ""
    timeout_sec: float = 10.0
    http_retries: int = 2

@dataclass
class Rpc:
    url: str = "https://api.mainnet-beta.solana.com"
    timeout_sec: float = 15.0
    commitment: str = "confirmed"

@dataclass
class Wallet:
    private_key: str = ""                   # base58 secret key
    min_native_balance: float = 0.1
    native_replenish_amount: float = 0.5

@dataclass
class Bundle:
    url: str = "https://mainnet.block-engine.jito.wtf/api/v1/bundles"
    tip_lamports: int = 10_000
    tip_accounts: List[str] = field(default_factory=lambda: [
        "96gYZGLnJYVFmbjzopPSU6QiEV5fGqZNyN9nmNhvrZU5",
        "HFqU5x63VTqvQss8hp11i4bVqkfRtQ7NmXwkiNPLpzuN",
        "Cw8CFyM9FkoMi7K7Crf6HNQqf4uEMzpKw6QNghXLvLkY",
        "ADaUMid9yfUytqMBgopwjb2DTLSokTSzL1zt6iGPaS49",
        "DfXygSm4jCyNCybVYYK6DwvWqjKee8pbDmJGcLWNDXjh",
        "ADuUkR4vqLUMWXxW9gh6D6L8pMSawimctcNZ5pGwDcEt",
        "DttWaMuVvTiduZRnguLF7jNxTgiMBZ1hyAumKUiL2KRL",
        "3AVi9Tg9Uo68tJfuvoKvqKNWKkC5wPdSSdeBnizKZ6jT",
    ])

@dataclass
class Paper:
    latency_range_ms: List[float] = field(default_factory=lambda: [200.0, 1200.0])
    tx_failure_probability: float = 0.02
    slippage_simulation: bool = True
    priority_fee_simulation: bool = True

@dataclass
class Market:
    dexscreener_url: str = "https://api.dexscreener.com/latest/dex/tokens"
    timeout_sec: float = 10.0

@dataclass
class Persistence:
    data_dir: str = "data"

@dataclass
class LoggingConfig:
    level: str = "INFO"
    json: bool = True
    log_file: str = "logs/tradebot.jsonl"

@dataclass
class Database:
    path: str = "tradebot.db"

@dataclass
class BotCfg:
    update_interval_sec: float = 10.0
    save_interval_sec: float = 60.0
    replenish_interval_sec: float = 300.0

@dataclass
class Config:
    mode: str = "paper"
    quote_mint: str = USDC_MINT
    quote_decimals: int = 6
    native_mint: str = SOL_MINT
    native_decimals: int = 9
    guards: Guards = field(default_factory=Guards)
    portfolio: PortfolioCfg = field(default_factory=PortfolioCfg)
    position: PositionCfg = field(default_factory=PositionCfg)
    exits: Exits = field(default_factory=Exits)
    execution: Execution = field(default_factory=Execution)
    jupiter: ExecJupiter = field(default_factory=ExecJupiter)
    rpc: Rpc = field(default_factory=Rpc)
    wallet: Wallet = field(default_factory=Wallet)
    bundle: Bundle = field(default_factory=Bundle)
    paper: Paper = field(default_factory=Paper)
    market: Market = field(default_factory=Market)
    persistence: Persistence = field(default_factory=Persistence)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    database: Database = field(default_factory=Database)
    bot: BotCfg = field(default_factory=BotCfg)

    @property
    def paper_mode(self) -> bool:
        return self.mode == "paper"

def merge(dc, cls, base=None):
    obj = base if base is not None else cls()
    for k, v in (dc or {}).items():
        if hasattr(obj, k):
            attr = getattr(obj, k)
            if hasattr(attr, "__dataclass_fields__"):  # nested dataclass, keep its own defaults
                setattr(obj, k, merge(v, type(attr), attr))
            else:
                setattr(obj, k, v)
    return obj

def apply_env(cfg: Config) -> Config:
    # secrets stay out of config.yaml
    key = os.getenv("SOLTRADER_WALLET_KEY")
    if key:
        cfg.wallet.private_key = key
    rpc_url = os.getenv("SOLTRADER_RPC_URL")
    if rpc_url:
        cfg.rpc.url = rpc_url
    jup_key = os.getenv("JUPITER_API_KEY")
    if jup_key:
        cfg.jupiter.api_key = jup_key
    return cfg

def load_config(path: Optional[str]) -> Config:
    if path is None:
        return apply_env(Config())
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    return apply_env(merge(data, Config))
